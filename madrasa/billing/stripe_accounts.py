"""
Per-account Stripe credentials.

Mahad and Dugsi use separate Stripe accounts. Instead of setting the global
``stripe.api_key`` we pass ``api_key=`` on each call, so one process can talk
to both accounts.
"""

from __future__ import annotations

from typing import Any

import stripe
from django.conf import settings

from madrasa.billing.constants import StripeAccountType
from madrasa.billing.constants import WebhookSource
from madrasa.billing.errors import StripeAccountNotConfigured

API_KEY_SETTINGS = {
    StripeAccountType.MAHAD: "STRIPE_SECRET_KEY",
    StripeAccountType.DUGSI: "STRIPE_DUGSI_SECRET_KEY",
}
WEBHOOK_SECRET_SETTINGS = {
    WebhookSource.MAHAD: "STRIPE_WEBHOOK_SECRET_MAHAD",
    WebhookSource.DUGSI: "STRIPE_WEBHOOK_SECRET_DUGSI",
}
PRODUCT_ID_SETTINGS = {
    StripeAccountType.MAHAD: "STRIPE_MAHAD_PRODUCT_ID",
    StripeAccountType.DUGSI: "STRIPE_DUGSI_PRODUCT_ID",
}
ACCOUNT_FOR_SOURCE = {
    WebhookSource.MAHAD: StripeAccountType.MAHAD,
    WebhookSource.DUGSI: StripeAccountType.DUGSI,
}


def _required_setting(name: str | None, what: str) -> str:
    value = getattr(settings, name, "") if name else ""
    if not value:
        msg = f"{what} is not configured ({name or 'unsupported account'})"
        raise StripeAccountNotConfigured(msg)
    return value


def get_stripe_api_key(account_type: str) -> str:
    return _required_setting(API_KEY_SETTINGS.get(account_type), "Stripe secret key")


def get_webhook_secret(source: str) -> str:
    return _required_setting(
        WEBHOOK_SECRET_SETTINGS.get(source),
        "Stripe webhook secret",
    )


def get_product_id(account_type: str) -> str:
    return _required_setting(PRODUCT_ID_SETTINGS.get(account_type), "Stripe product")


def to_plain(obj: Any) -> Any:
    """
    Recursive plain-dict copy of a Stripe API object.

    ``StripeObject`` is not a ``dict``, so everything the services read with
    ``.get`` goes through here first. Plain values pass through untouched.
    """
    if isinstance(obj, stripe.StripeObject):
        return obj.to_dict()
    return obj
