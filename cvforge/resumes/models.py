from __future__ import annotations

import uuid

from django.conf import settings
from django.db import models
from model_utils.models import TimeStampedModel


class Resume(TimeStampedModel):
    """
    A résumé owned by a single user.

    ``is_purchased`` is the one-time export right bought through a per-CV
    checkout. It is only ever set by billing reconciliation and never
    cleared.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="resumes",
    )
    title = models.CharField(max_length=255, blank=True, default="")
    is_purchased = models.BooleanField(
        default=False,
        help_text="Whether a per-CV export right has been paid for.",
    )
    purchased_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-modified"]

    def __str__(self) -> str:
        return self.title or str(self.id)
