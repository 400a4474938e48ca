from __future__ import annotations

from django.contrib.auth.models import AbstractUser
from django.db.models import CharField
from django.utils.translation import gettext_lazy as _


class User(AbstractUser):
    """
    Default custom user model for CVForge.

    Authentication itself happens upstream; this core only consumes the
    authenticated principal. Billing state lives on ``user.billing_account``.
    """

    # First and last name do not cover name patterns around the globe
    name = CharField(_("Name of User"), blank=True, max_length=255)

    first_name = None  # type: ignore[assignment]

    last_name = None  # type: ignore[assignment]

    def __str__(self) -> str:
        return self.email or self.username
