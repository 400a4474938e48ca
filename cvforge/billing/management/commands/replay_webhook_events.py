"""
Management command to replay dead-lettered Stripe webhook events.

Stripe stops redelivering an event once we dead-letter it. After fixing the
cause (typically creating or linking the account the event refers to), run
this command to push the stored payloads through reconciliation again.

Usage:
    python manage.py replay_webhook_events
    python manage.py replay_webhook_events --include-failed
    python manage.py replay_webhook_events --event-id evt_123
    python manage.py replay_webhook_events --dry-run
"""

import logging

from django.core.management.base import BaseCommand

from cvforge.billing.config import StripeConfig
from cvforge.billing.constants import WebhookEventStatus
from cvforge.billing.errors import MalformedEventError
from cvforge.billing.models import WebhookEvent
from cvforge.billing.webhooks import WebhookProcessor

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Replay dead-lettered (and optionally failed) Stripe webhook events."

    def add_arguments(self, parser):
        parser.add_argument(
            "--include-failed",
            action="store_true",
            help="Also replay FAILED events that Stripe is still redelivering",
        )
        parser.add_argument(
            "--event-id",
            action="append",
            dest="event_ids",
            default=[],
            help="Only replay this Stripe event id (repeatable)",
        )
        parser.add_argument(
            "--batch-size",
            type=int,
            default=100,
            help="Number of events to replay per run (default: 100)",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would be replayed without replaying it",
        )

    def handle(self, *args, **options):
        statuses = [WebhookEventStatus.DEAD_LETTERED]
        if options["include_failed"]:
            statuses.append(WebhookEventStatus.FAILED)

        queryset = WebhookEvent.objects.filter(status__in=statuses)
        if options["event_ids"]:
            queryset = queryset.filter(stripe_event_id__in=options["event_ids"])
        records = list(queryset.order_by("created")[: options["batch_size"]])

        if not records:
            self.stdout.write(self.style.SUCCESS("No webhook events to replay."))
            return

        self.stdout.write(f"Replaying {len(records)} webhook event(s)")

        if options["dry_run"]:
            for record in records:
                self.stdout.write(
                    f"  [DRY RUN] Would replay: {record.stripe_event_id} "
                    f"({record.event_type}, {record.attempts} attempt(s))",
                )
            return

        processor = WebhookProcessor(StripeConfig.from_settings())
        settled = 0
        pending = 0
        for record in records:
            try:
                delivery = processor.replay(record)
            except MalformedEventError as exc:
                pending += 1
                self.stdout.write(
                    self.style.ERROR(f"  Unreadable: {record.stripe_event_id}: {exc.detail}"),
                )
                logger.exception("Stored webhook payload %s is unreadable", record.stripe_event_id)
                continue

            if delivery.result.retryable:
                pending += 1
                self.stdout.write(
                    self.style.WARNING(
                        f"  Still failing: {record.stripe_event_id}: "
                        f"{delivery.result.detail}",
                    ),
                )
            else:
                settled += 1
                self.stdout.write(
                    self.style.SUCCESS(
                        f"  Replayed: {record.stripe_event_id} "
                        f"({delivery.result.outcome.value})",
                    ),
                )

        self.stdout.write(
            self.style.SUCCESS(f"Complete. Settled: {settled}, Still pending: {pending}"),
        )
