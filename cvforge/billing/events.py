"""
Typed Stripe webhook events.

Verified payloads are parsed into a closed set of pydantic models, one per
event type we reconcile, discriminated on the ``type`` field. Anything else
becomes an ``UnhandledEvent`` so the dispatcher can acknowledge it without
touching state. A payload whose ``type`` we handle but whose shape we cannot
read raises ``MalformedEventError``.

Only the fields reconciliation needs are declared. Extra fields are
ignored so new Stripe API versions do not break parsing.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Annotated
from typing import Any
from typing import Generic
from typing import Literal
from typing import TypeVar
from typing import Union

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import TypeAdapter
from pydantic import ValidationError

from cvforge.billing.errors import MalformedEventError

# ==============================================================================
# Stripe objects
# ==============================================================================


class StripeObject(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str


class CheckoutSession(StripeObject):
    customer: str | None = None
    mode: str = "payment"
    payment_intent: str | None = None
    payment_status: str = "unpaid"
    amount_total: int | None = None
    currency: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)


class SubscriptionItem(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    current_period_end: datetime | None = None


class SubscriptionItemList(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    data: list[SubscriptionItem] = Field(default_factory=list)


class Subscription(StripeObject):
    customer: str
    status: str
    current_period_end: datetime | None = None
    items: SubscriptionItemList = Field(default_factory=SubscriptionItemList)

    @property
    def period_end(self) -> datetime | None:
        """
        End of the current billing period.

        Newer API versions moved this field from the subscription onto each
        subscription item, so fall back to the first item.
        """
        if self.current_period_end is not None:
            return self.current_period_end
        for item in self.items.data:
            if item.current_period_end is not None:
                return item.current_period_end
        return None


class InvoiceSubscriptionDetails(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    subscription: str | None = None


class InvoiceParent(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    subscription_details: InvoiceSubscriptionDetails | None = None


class Invoice(StripeObject):
    customer: str
    subscription: str | None = None
    parent: InvoiceParent | None = None
    amount_paid: int = 0
    amount_due: int = 0

    @property
    def subscription_id(self) -> str | None:
        """The subscription this invoice bills, if any."""
        if self.subscription:
            return self.subscription
        if self.parent and self.parent.subscription_details:
            return self.parent.subscription_details.subscription
        return None


class PaymentIntent(StripeObject):
    customer: str | None = None
    amount: int = 0
    currency: str | None = None
    # Per-CV checkouts copy their session metadata here
    metadata: dict[str, str] = Field(default_factory=dict)


# ==============================================================================
# Event envelopes
# ==============================================================================

ObjectT = TypeVar("ObjectT", bound=BaseModel)


class EventData(BaseModel, Generic[ObjectT]):
    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)

    obj: ObjectT = Field(alias="object")


class BaseEvent(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    type: str
    created: datetime
    livemode: bool = False


class CheckoutSessionCompletedEvent(BaseEvent):
    type: Literal["checkout.session.completed"]
    data: EventData[CheckoutSession]


class SubscriptionChangedEvent(BaseEvent):
    type: Literal["customer.subscription.created", "customer.subscription.updated"]
    data: EventData[Subscription]


class SubscriptionDeletedEvent(BaseEvent):
    type: Literal["customer.subscription.deleted"]
    data: EventData[Subscription]


class InvoicePaidEvent(BaseEvent):
    type: Literal["invoice.paid"]
    data: EventData[Invoice]


class InvoicePaymentFailedEvent(BaseEvent):
    type: Literal["invoice.payment_failed"]
    data: EventData[Invoice]


class PaymentIntentSucceededEvent(BaseEvent):
    type: Literal["payment_intent.succeeded"]
    data: EventData[PaymentIntent]


class UnhandledEvent(BaseEvent):
    """Any authentic event whose type we do not reconcile."""

    data: dict[str, Any] = Field(default_factory=dict)


HandledEvent = Annotated[
    Union[
        CheckoutSessionCompletedEvent,
        SubscriptionChangedEvent,
        SubscriptionDeletedEvent,
        InvoicePaidEvent,
        InvoicePaymentFailedEvent,
        PaymentIntentSucceededEvent,
    ],
    Field(discriminator="type"),
]

StripeEvent = Union[
    CheckoutSessionCompletedEvent,
    SubscriptionChangedEvent,
    SubscriptionDeletedEvent,
    InvoicePaidEvent,
    InvoicePaymentFailedEvent,
    PaymentIntentSucceededEvent,
    UnhandledEvent,
]

HANDLED_EVENT_TYPES = frozenset(
    {
        "checkout.session.completed",
        "customer.subscription.created",
        "customer.subscription.updated",
        "customer.subscription.deleted",
        "invoice.paid",
        "invoice.payment_failed",
        "payment_intent.succeeded",
    },
)

_handled_event_adapter = TypeAdapter(HandledEvent)


def load_payload(text: str) -> dict[str, Any]:
    """Decode a verified payload into the raw event dict."""
    try:
        data = json.loads(text)
    except ValueError as exc:
        raise MalformedEventError("Payload is not valid JSON.") from exc
    if not isinstance(data, dict):
        raise MalformedEventError("Payload is not a JSON object.")
    return data


def parse_event(data: dict[str, Any]) -> StripeEvent:
    """
    Parse a raw Stripe event dict into its typed event model.

    Raises:
        MalformedEventError: If the envelope is unreadable, or the event
            type is one we handle but its object is missing required fields.
    """
    event_type = data.get("type")
    if not isinstance(event_type, str) or not data.get("id"):
        raise MalformedEventError("Event is missing its id or type.")

    try:
        if event_type not in HANDLED_EVENT_TYPES:
            return UnhandledEvent.model_validate(data)
        return _handled_event_adapter.validate_python(data)
    except ValidationError as exc:
        raise MalformedEventError(
            f"Malformed {event_type} event: {exc.error_count()} validation error(s).",
        ) from exc
