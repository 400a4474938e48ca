"""
With these settings, tests run faster.
"""

import os

# Set test-safe Stripe keys before base settings reads them
# These look like real test keys but are dummy values for testing
os.environ.setdefault("STRIPE_TEST_SECRET_KEY", "sk_test_dummy_test_key_for_testing")
os.environ.setdefault("STRIPE_TEST_PUBLIC_KEY", "pk_test_dummy_test_key_for_testing")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_dummy_test_secret_for_testing")
os.environ.setdefault("STRIPE_PRICE_MONTHLY", "price_test_monthly")
os.environ.setdefault("STRIPE_PRICE_YEARLY", "price_test_yearly")

from .base import *  # noqa: F403
from .base import BASE_DIR
from .base import TEMPLATES
from .base import database_timeout_options
from .base import env

# GENERAL
# ------------------------------------------------------------------------------
# https://docs.djangoproject.com/en/dev/ref/settings/#secret-key
SECRET_KEY = env(
    "DJANGO_SECRET_KEY",
    default="Q0xJm8cVtY3eRk1sZbN7uHfL2wDpGa9oTiCq5yWvKjEnMhXrBdUgAlSzP4F6I",
)
# https://docs.djangoproject.com/en/dev/ref/settings/#test-runner
TEST_RUNNER = "django.test.runner.DiscoverRunner"
# https://docs.djangoproject.com/en/dev/ref/settings/#allowed-hosts
ALLOWED_HOSTS = ["localhost", "127.0.0.1", "testserver"]

# DATABASES
# ------------------------------------------------------------------------------
# Tests run against SQLite unless DATABASE_URL points somewhere else
DATABASES = {
    "default": env.db(
        "DATABASE_URL",
        default=f"sqlite:///{BASE_DIR / 'test.sqlite3'}",
    ),
}
DATABASES["default"]["CONN_MAX_AGE"] = 0
DATABASES["default"].setdefault("OPTIONS", {}).update(
    database_timeout_options(DATABASES["default"]),
)

# PASSWORDS
# ------------------------------------------------------------------------------
# https://docs.djangoproject.com/en/dev/ref/settings/#password-hashers
PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

# EMAIL
# ------------------------------------------------------------------------------
# https://docs.djangoproject.com/en/dev/ref/settings/#email-backend
EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"

# DEBUGGING FOR TEMPLATES
# ------------------------------------------------------------------------------
TEMPLATES[0]["OPTIONS"]["debug"] = True  # type: ignore[index]

# Your stuff...
# ------------------------------------------------------------------------------
STRIPE_WEBHOOK_TOLERANCE = 300
BILLING_WEBHOOK_MAX_ATTEMPTS = 5
BILLING_WEBHOOK_RETRY_WINDOW_HOURS = 72
APP_BASE_URL = "http://testserver"
