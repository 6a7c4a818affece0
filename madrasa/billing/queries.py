"""
Database queries for billing accounts, subscriptions and assignments.

These are thin ORM wrappers shared by the checkout, webhook and linking
services. Business rules live in those services, not here.
"""

from __future__ import annotations

import logging
from typing import Any

from django.db.models import QuerySet
from django.utils import timezone

from madrasa.billing.constants import CUSTOMER_ID_FIELDS
from madrasa.billing.constants import LIVE_SUBSCRIPTION_STATUSES
from madrasa.billing.constants import SubscriptionStatus
from madrasa.billing.models import BillingAccount
from madrasa.billing.models import BillingAssignment
from madrasa.billing.models import Subscription
from madrasa.billing.models import SubscriptionHistory

logger = logging.getLogger(__name__)

BILLING_ACCOUNT_FIELDS = {
    *CUSTOMER_ID_FIELDS.values(),
    "payment_intent_id_dugsi",
    "payment_method_captured",
    "payment_method_captured_at",
}


def get_billing_account_by_person(
    person_id: int,
    account_type: str,
) -> BillingAccount | None:
    return BillingAccount.objects.filter(
        person_id=person_id,
        account_type=account_type,
    ).first()


def get_billing_account_by_stripe_customer_id(
    customer_id: str,
    account_type: str,
) -> BillingAccount | None:
    """Look up the account by the customer id field for ``account_type``."""
    if not customer_id:
        return None
    field_name = CUSTOMER_ID_FIELDS[account_type]
    return (
        BillingAccount.objects.filter(**{field_name: customer_id})
        .select_related("person")
        .first()
    )


def upsert_billing_account(
    person_id: int | None,
    account_type: str,
    **fields: Any,
) -> BillingAccount:
    """
    Create or update the account for ``(person_id, account_type)``.

    Only known billing fields are written; ``None`` values are skipped so a
    partial update never clears a stored customer id.
    """
    updates = _billing_updates(fields)
    account, created = BillingAccount.objects.get_or_create(
        person_id=person_id,
        account_type=account_type,
        defaults=updates,
    )
    if not created:
        update_billing_account(account, **updates)
    return account


def _billing_updates(fields: dict[str, Any]) -> dict[str, Any]:
    unknown = set(fields) - BILLING_ACCOUNT_FIELDS
    if unknown:
        msg = f"Unknown billing account fields: {', '.join(sorted(unknown))}"
        raise ValueError(msg)
    return {key: value for key, value in fields.items() if value is not None}


def update_billing_account(
    account: BillingAccount,
    **fields: Any,
) -> BillingAccount:
    """Write known, non-``None`` billing fields to an existing account."""
    updates = _billing_updates(fields)
    for key, value in updates.items():
        setattr(account, key, value)
    if updates:
        account.save(update_fields=[*updates, "modified"])
    return account


def get_subscription_by_stripe_id(stripe_subscription_id: str) -> Subscription | None:
    return (
        Subscription.objects.filter(stripe_subscription_id=stripe_subscription_id)
        .select_related("billing_account", "billing_account__person")
        .first()
    )


def get_orphaned_subscriptions(account_type: str | None = None) -> QuerySet[Subscription]:
    """
    Live local subscriptions with no active billing assignment.
    """
    queryset = (
        Subscription.objects.filter(status__in=LIVE_SUBSCRIPTION_STATUSES)
        .exclude(assignments__is_active=True)
        .select_related("billing_account", "billing_account__person")
        .order_by("-created")
    )
    if account_type:
        queryset = queryset.filter(stripe_account_type=account_type)
    return queryset.distinct()


def create_subscription(
    *,
    billing_account: BillingAccount,
    stripe_account_type: str,
    stripe_subscription_id: str,
    stripe_customer_id: str,
    amount: int,
    status: str = SubscriptionStatus.INCOMPLETE,
    currency: str = "usd",
    interval: str = "month",
    current_period_start=None,
    current_period_end=None,
    paid_until=None,
) -> Subscription:
    return Subscription.objects.create(
        billing_account=billing_account,
        stripe_account_type=stripe_account_type,
        stripe_subscription_id=stripe_subscription_id,
        stripe_customer_id=stripe_customer_id,
        status=status,
        amount=amount,
        currency=currency,
        interval=interval,
        current_period_start=current_period_start,
        current_period_end=current_period_end,
        paid_until=paid_until,
    )


def update_subscription_status(
    stripe_subscription_id: str,
    status: str,
    **fields: Any,
) -> Subscription | None:
    """Update status (and any extra model fields); ``None`` if unknown."""
    subscription = get_subscription_by_stripe_id(stripe_subscription_id)
    if subscription is None:
        return None
    subscription.status = status
    for key, value in fields.items():
        setattr(subscription, key, value)
    subscription.save(update_fields=["status", *fields, "modified"])
    return subscription


def create_billing_assignment(
    *,
    subscription: Subscription,
    program_profile_id: int,
    amount: int,
    percentage=None,
    notes: str = "",
) -> BillingAssignment:
    return BillingAssignment.objects.create(
        subscription=subscription,
        program_profile_id=program_profile_id,
        amount=amount,
        percentage=percentage,
        notes=notes or "",
        start_date=timezone.now(),
    )


def deactivate_billing_assignment(assignment_id: int) -> BillingAssignment:
    assignment = BillingAssignment.objects.get(pk=assignment_id)
    assignment.is_active = False
    assignment.end_date = timezone.now()
    assignment.save(update_fields=["is_active", "end_date", "modified"])
    return assignment


def add_subscription_history(
    *,
    subscription: Subscription,
    event_type: str,
    event_id: str = "",
    status: str = "",
    amount: int | None = None,
    metadata: dict | None = None,
) -> SubscriptionHistory:
    return SubscriptionHistory.objects.create(
        subscription=subscription,
        event_type=event_type,
        event_id=event_id or "",
        status=status or subscription.status,
        amount=amount,
        metadata=metadata or {},
        processed_at=timezone.now(),
    )
