"""
Subscription lifecycle against Stripe.

Stripe is the source of truth for status, amount and billing period. These
helpers read a Stripe subscription object (or a plain dict shaped like one,
as webhook payloads are) and mirror it into the local ``Subscription`` table.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING
from typing import Any

import stripe

from madrasa.billing import queries
from madrasa.billing.constants import ACTIVE_SUBSCRIPTION_STATUSES
from madrasa.billing.constants import SubscriptionStatus
from madrasa.billing.dates import from_timestamp
from madrasa.billing.models import BillingAccount
from madrasa.billing.stripe_accounts import get_stripe_api_key
from madrasa.core.exceptions import NotFoundError
from madrasa.core.exceptions import ValidationError

if TYPE_CHECKING:
    import datetime as dt

    from madrasa.billing.models import Subscription

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubscriptionValidation:
    """Normalized fields extracted from a Stripe subscription."""

    subscription_id: str
    customer_id: str
    status: str
    amount: int
    currency: str
    interval: str
    current_period_start: dt.datetime | None
    current_period_end: dt.datetime | None


def stripe_object_id(value: Any) -> str | None:
    """Id of a Stripe reference that may be a bare id or an expanded object."""
    if isinstance(value, str):
        return value
    if value:
        return value.get("id")
    return None


def first_item(stripe_subscription: Any) -> dict:
    items = (stripe_subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def extract_period_dates(
    stripe_subscription: Any,
) -> tuple[dt.datetime | None, dt.datetime | None]:
    """
    Return ``(start, end)`` of the current period.

    Newer Stripe API versions moved the period fields from the subscription
    onto each subscription item.
    """
    start = stripe_subscription.get("current_period_start")
    end = stripe_subscription.get("current_period_end")
    if start is None or end is None:
        item = first_item(stripe_subscription)
        start = start if start is not None else item.get("current_period_start")
        end = end if end is not None else item.get("current_period_end")
    return from_timestamp(start), from_timestamp(end)


def coerce_status(value: str | None) -> str:
    if value in SubscriptionStatus.values:
        return value
    logger.warning("Unknown Stripe subscription status %r", value)
    return SubscriptionStatus.INCOMPLETE


def subscription_status(stripe_subscription: Any) -> str:
    """
    Local status for a Stripe subscription.

    Stripe keeps ``status="active"`` while invoice collection is paused; we
    record that as ``paused``.
    """
    status = coerce_status(stripe_subscription.get("status"))
    if status == SubscriptionStatus.ACTIVE and stripe_subscription.get("pause_collection"):
        return SubscriptionStatus.PAUSED
    return status


def validate_stripe_subscription(stripe_subscription: Any) -> SubscriptionValidation:
    """
    Check a Stripe subscription and pull out the fields we store.

    Raises:
        ValidationError: If the id is not a ``sub_`` id or the customer is missing.
    """
    subscription_id = stripe_subscription.get("id") or ""
    if not subscription_id.startswith("sub_"):
        raise ValidationError(
            'Invalid subscription ID format. Must start with "sub_"',
        )

    customer_id = stripe_object_id(stripe_subscription.get("customer"))
    if not customer_id:
        raise ValidationError("Invalid customer ID in subscription")

    price = first_item(stripe_subscription).get("price") or {}
    recurring = price.get("recurring") or {}
    start, end = extract_period_dates(stripe_subscription)

    return SubscriptionValidation(
        subscription_id=subscription_id,
        customer_id=customer_id,
        status=subscription_status(stripe_subscription),
        amount=price.get("unit_amount") or 0,
        currency=stripe_subscription.get("currency") or "usd",
        interval=recurring.get("interval") or "month",
        current_period_start=start,
        current_period_end=end,
    )


def create_subscription_from_stripe(
    stripe_subscription: Any,
    billing_account_id: int,
    account_type: str,
) -> Subscription:
    """Record a Stripe subscription locally under ``billing_account_id``."""
    data = validate_stripe_subscription(stripe_subscription)
    billing_account = BillingAccount.objects.get(pk=billing_account_id)

    subscription = queries.create_subscription(
        billing_account=billing_account,
        stripe_account_type=account_type,
        stripe_subscription_id=data.subscription_id,
        stripe_customer_id=data.customer_id,
        status=data.status,
        amount=data.amount,
        currency=data.currency,
        interval=data.interval,
        current_period_start=data.current_period_start,
        current_period_end=data.current_period_end,
        paid_until=data.current_period_end,
    )
    logger.info(
        "Created subscription %s (%s) for billing account %s",
        subscription.stripe_subscription_id,
        account_type,
        billing_account_id,
    )
    return subscription


def sync_subscription_from_stripe(stripe_subscription: Any) -> Subscription | None:
    """
    Copy status, amount and period from Stripe onto the local row.

    Returns ``None`` when the subscription is not known locally.
    """
    data = validate_stripe_subscription(stripe_subscription)
    subscription = queries.update_subscription_status(
        data.subscription_id,
        data.status,
        amount=data.amount,
        current_period_start=data.current_period_start,
        current_period_end=data.current_period_end,
        paid_until=data.current_period_end,
    )
    if subscription is None:
        logger.warning("Cannot sync unknown subscription %s", data.subscription_id)
    return subscription


def cancel_subscription(
    stripe_subscription_id: str,
    *,
    cancel_in_stripe: bool = False,
    account_type: str | None = None,
) -> Subscription:
    """
    Mark a subscription canceled, and optionally cancel it in Stripe too.

    Raises:
        NotFoundError: If the subscription is not known locally.
        ValueError: If ``cancel_in_stripe`` is set without an account type.
    """
    if cancel_in_stripe and not account_type:
        msg = "Account type required when canceling in Stripe"
        raise ValueError(msg)

    subscription = queries.update_subscription_status(
        stripe_subscription_id,
        SubscriptionStatus.CANCELED,
    )
    if subscription is None:
        raise NotFoundError("Subscription not found in database")

    if cancel_in_stripe:
        stripe.Subscription.cancel(
            stripe_subscription_id,
            api_key=get_stripe_api_key(account_type),
        )
        logger.info("Canceled subscription %s in Stripe", stripe_subscription_id)
    return subscription


def is_subscription_active(status: str | None) -> bool:
    return status in ACTIVE_SUBSCRIPTION_STATUSES
