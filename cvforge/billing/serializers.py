from rest_framework import serializers

from cvforge.billing.constants import PriceType


class CheckoutRequestSerializer(serializers.Serializer):
    """
    Body of ``POST /billing/checkout/``.

    Keys are camelCase to match what the editor frontend sends.
    """

    priceType = serializers.ChoiceField(choices=PriceType.choices)  # noqa: N815
    resumeId = serializers.UUIDField(required=False, allow_null=True)  # noqa: N815

    def error_message(self) -> str:
        """Single user-facing message for the first invalid field."""
        if "priceType" in self.errors:
            return "Invalid price type"
        return "Invalid resume ID"
