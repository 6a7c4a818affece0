"""
With these settings, tests run faster.
"""

import os

# Dummy Stripe and WhatsApp credentials so service constructors succeed.
# Every test that reaches Stripe or the Graph API mocks the transport.
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy_mahad_key_for_testing")
os.environ.setdefault("STRIPE_DUGSI_SECRET_KEY", "sk_test_dummy_dugsi_key_for_testing")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET_MAHAD", "whsec_test_mahad")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET_DUGSI", "whsec_test_dugsi")
os.environ.setdefault("STRIPE_MAHAD_PRODUCT_ID", "prod_test_mahad")
os.environ.setdefault("STRIPE_DUGSI_PRODUCT_ID", "prod_test_dugsi")

from .base import *  # noqa: F403
from .base import DATABASES
from .base import env

# GENERAL
# ------------------------------------------------------------------------------
# https://docs.djangoproject.com/en/dev/ref/settings/#secret-key
SECRET_KEY = env(
    "DJANGO_SECRET_KEY",
    default="kq3Jx0a2Vd8sFzN1pT6wYc4bHm7LrE9uQ5oGiK2nWjS8vXyA0fB3eD6hM1tC4gR7",
)
# https://docs.djangoproject.com/en/dev/ref/settings/#test-runner
TEST_RUNNER = "django.test.runner.DiscoverRunner"
DATABASES["default"]["CONN_MAX_AGE"] = 0  # type: ignore[index]
# https://docs.djangoproject.com/en/dev/ref/settings/#allowed-hosts
ALLOWED_HOSTS = ["localhost", "127.0.0.1", "testserver"]

# PASSWORDS
# ------------------------------------------------------------------------------
# https://docs.djangoproject.com/en/dev/ref/settings/#password-hashers
PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

# EMAIL
# ------------------------------------------------------------------------------
# https://docs.djangoproject.com/en/dev/ref/settings/#email-backend
EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"

# STORAGES
# ------------------------------------------------------------------------------
STORAGES = {
    "default": {
        "BACKEND": "django.core.files.storage.InMemoryStorage",
    },
    "staticfiles": {
        "BACKEND": "django.contrib.staticfiles.storage.StaticFilesStorage",
    },
}

# Your stuff...
# ------------------------------------------------------------------------------
APP_BASE_URL = "https://madrasa.test"
WHATSAPP_PHONE_NUMBER_ID = "123456789"
WHATSAPP_ACCESS_TOKEN = "test-whatsapp-token"
WHATSAPP_APP_SECRET = "test-whatsapp-secret"
