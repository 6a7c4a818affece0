"""
Stripe webhook handlers for the Mahad and Dugsi accounts.

Each Stripe account posts to its own endpoint (see ``views.StripeWebhookView``)
and events are dispatched here by type. Handlers are plain functions taking
the event's data object and the Stripe account type.

Key events:
- checkout.session.completed: match the checkout to a student or guardian and
  record the captured payment method.
- customer.subscription.created: record the subscription and link the
  profiles named in its metadata.
- customer.subscription.updated/deleted: mirror status changes.
- invoice.payment_succeeded/finalized: advance ``paid_until``.
- invoice.payment_failed: log and record history for follow-up.

Idempotency: every delivery is written to the ``WebhookEvent`` ledger first.
A redelivery of a processed event is skipped. If a handler raises, the ledger
row is removed so Stripe's retry is processed again.

Events can arrive out of order (``subscription.updated`` before ``created``).
Handlers raise ``RetryableWebhookError`` when the row they need does not exist
yet; the view answers 500 and Stripe retries with backoff.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from django.db import IntegrityError
from django.db import transaction
from django.utils import timezone
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import ValidationError as PydanticValidationError
from pydantic import field_validator

from madrasa.billing import accounting
from madrasa.billing import queries
from madrasa.billing import subscriptions
from madrasa.billing.constants import StripeAccountType
from madrasa.billing.dates import from_timestamp
from madrasa.billing.errors import RateMismatchError
from madrasa.billing.errors import RetryableWebhookError
from madrasa.billing.errors import WebhookError
from madrasa.billing.matcher import BillingMatcher
from madrasa.billing.matcher import log_no_match_found
from madrasa.billing.models import WebhookEvent
from madrasa.billing.stripe_accounts import ACCOUNT_FOR_SOURCE
from madrasa.billing.tuition import calculate_dugsi_rate
from madrasa.billing.tuition import calculate_mahad_rate
from madrasa.programs.constants import BillingType
from madrasa.programs.constants import GraduationStatus
from madrasa.programs.constants import PaymentFrequency
from madrasa.programs.models import ProgramProfile

logger = logging.getLogger(__name__)


class SubscriptionMetadata(BaseModel):
    """
    Metadata our checkout sessions attach to Stripe subscriptions.

    Stripe stores metadata values as strings; blank values are read as unset.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    profile_id: int | None = Field(default=None, alias="profileId")
    profile_ids: list[int] = Field(default_factory=list, alias="profileIds")
    person_id: int | None = Field(default=None, alias="personId")
    guardian_person_id: int | None = Field(default=None, alias="guardianPersonId")
    family_id: str | None = Field(default=None, alias="familyId")
    graduation_status: GraduationStatus | None = Field(
        default=None,
        alias="graduationStatus",
    )
    payment_frequency: PaymentFrequency | None = Field(
        default=None,
        alias="paymentFrequency",
    )
    billing_type: BillingType | None = Field(default=None, alias="billingType")
    calculated_rate: int | None = Field(default=None, alias="calculatedRate")
    child_count: int | None = Field(default=None, alias="childCount")
    override_used: bool | None = Field(default=None, alias="overrideUsed")

    @field_validator("*", mode="before")
    @classmethod
    def blank_as_unset(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("profile_ids", mode="before")
    @classmethod
    def split_profile_ids(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @property
    def payer_person_id(self) -> int | None:
        return self.person_id or self.guardian_person_id

    @property
    def linked_profile_ids(self) -> list[int]:
        if self.profile_ids:
            return self.profile_ids
        return [self.profile_id] if self.profile_id else []


def parse_metadata(raw: Any, subscription_id: str = "") -> SubscriptionMetadata:
    try:
        return SubscriptionMetadata.model_validate(dict(raw or {}))
    except PydanticValidationError:
        logger.warning(
            "Ignoring malformed metadata on subscription %s",
            subscription_id,
            exc_info=True,
        )
        return SubscriptionMetadata()


def _unit_amount(stripe_subscription: Any) -> int | None:
    price = subscriptions.first_item(stripe_subscription).get("price") or {}
    return price.get("unit_amount")


# =============================================================================
# Rate validation
# =============================================================================


def validate_subscription_rate(
    stripe_subscription: Any,
    account_type: str,
    metadata: SubscriptionMetadata,
) -> None:
    """
    Compare what Stripe will charge with what we calculated at checkout.

    Raises:
        RateMismatchError: A Mahad subscription charges a different amount
            than the ``calculatedRate`` it was created with.
    """
    subscription_id = stripe_subscription.get("id", "")
    amount = _unit_amount(stripe_subscription)

    if account_type == StripeAccountType.MAHAD:
        if metadata.calculated_rate is None or metadata.billing_type is None:
            return
        if amount != metadata.calculated_rate:
            raise RateMismatchError(
                expected=metadata.calculated_rate,
                actual=amount,
                subscription_id=subscription_id,
            )
        recalculated = calculate_mahad_rate(
            metadata.graduation_status,
            metadata.payment_frequency,
            metadata.billing_type,
        )
        if recalculated != metadata.calculated_rate:
            logger.warning(
                "Stored rate %s for subscription %s differs from recalculated rate %s",
                metadata.calculated_rate,
                subscription_id,
                recalculated,
            )
        return

    if account_type == StripeAccountType.DUGSI and metadata.child_count:
        if metadata.override_used:
            return
        expected = calculate_dugsi_rate(metadata.child_count)
        if amount != expected:
            logger.warning(
                "Dugsi subscription %s charges %s but %s children should cost %s",
                subscription_id,
                amount,
                metadata.child_count,
                expected,
            )


# =============================================================================
# Event handlers
# =============================================================================


def handle_checkout_completed(session: Any, account_type: str, event_id: str = "") -> None:
    """
    Record the payment method captured by a completed checkout.

    An unmatched checkout is not an error: the payment went through and an
    admin links it by hand from the orphaned subscriptions screen.
    """
    result = BillingMatcher().find_by_checkout_session(session, account_type)
    subscription_id = subscriptions.stripe_object_id(session.get("subscription"))
    if not result.matched:
        log_no_match_found(session, subscription_id or "no-subscription", account_type)
        return

    customer_id = subscriptions.stripe_object_id(session.get("customer"))
    if not customer_id:
        msg = "Invalid or missing customer ID in checkout session"
        raise WebhookError(msg)

    if result.billing_account is not None and result.billing_account.person_id:
        person_id = result.billing_account.person_id
    else:
        person_id = result.program_profile.person_id

    fields: dict[str, Any] = {
        "payment_method_captured": True,
        "payment_method_captured_at": timezone.now(),
    }
    payment_intent = subscriptions.stripe_object_id(session.get("payment_intent"))
    if account_type == StripeAccountType.DUGSI and payment_intent:
        fields["payment_intent_id_dugsi"] = payment_intent

    account = accounting.create_or_update_billing_account(
        person_id,
        account_type,
        customer_id,
        **fields,
    )
    logger.info(
        "Captured payment method for billing account %s via %s match",
        account.id,
        result.match_method,
    )


def _resolve_billing_account(
    customer_id: str,
    account_type: str,
    metadata: SubscriptionMetadata,
    subscription_id: str,
):
    account = queries.get_billing_account_by_stripe_customer_id(customer_id, account_type)
    if account is not None:
        return account

    # subscription.created can beat checkout.session.completed; the metadata
    # names the payer so the account can be created here instead.
    if metadata.payer_person_id:
        return accounting.create_or_update_billing_account(
            metadata.payer_person_id,
            account_type,
            customer_id,
            payment_method_captured=True,
            payment_method_captured_at=timezone.now(),
        )

    msg = (
        f"No billing account for customer {customer_id} "
        f"(subscription {subscription_id})"
    )
    raise RetryableWebhookError(msg)


def handle_subscription_created(
    stripe_subscription: Any,
    account_type: str,
    event_id: str = "",
) -> None:
    data = subscriptions.validate_stripe_subscription(stripe_subscription)
    if queries.get_subscription_by_stripe_id(data.subscription_id) is not None:
        logger.info("Subscription %s already recorded", data.subscription_id)
        return

    metadata = parse_metadata(stripe_subscription.get("metadata"), data.subscription_id)
    account = _resolve_billing_account(
        data.customer_id,
        account_type,
        metadata,
        data.subscription_id,
    )
    validate_subscription_rate(stripe_subscription, account_type, metadata)

    with transaction.atomic():
        subscription = subscriptions.create_subscription_from_stripe(
            stripe_subscription,
            account.id,
            account_type,
        )

        requested = metadata.linked_profile_ids
        existing = set(
            ProgramProfile.objects.filter(pk__in=requested).values_list("id", flat=True),
        )
        missing = [pk for pk in requested if pk not in existing]
        if missing:
            logger.warning(
                "Subscription %s names unknown profiles %s",
                data.subscription_id,
                missing,
            )
        profile_ids = [pk for pk in requested if pk in existing]
        if profile_ids and data.amount > 0:
            accounting.link_subscription_to_profiles(
                subscription.id,
                profile_ids,
                data.amount,
                notes="Linked automatically via webhook",
            )

        queries.add_subscription_history(
            subscription=subscription,
            event_type="customer.subscription.created",
            event_id=event_id,
            amount=data.amount,
            metadata={"profileIds": profile_ids},
        )


def handle_subscription_updated(
    stripe_subscription: Any,
    account_type: str,
    event_id: str = "",
) -> None:
    subscription = subscriptions.sync_subscription_from_stripe(stripe_subscription)
    if subscription is None:
        msg = f"Subscription {stripe_subscription.get('id')} not found; retry later"
        raise RetryableWebhookError(msg)
    queries.add_subscription_history(
        subscription=subscription,
        event_type="customer.subscription.updated",
        event_id=event_id,
        amount=subscription.amount,
    )


def handle_subscription_deleted(
    stripe_subscription: Any,
    account_type: str,
    event_id: str = "",
) -> None:
    stripe_id = stripe_subscription.get("id")
    if queries.get_subscription_by_stripe_id(stripe_id) is None:
        msg = f"Subscription {stripe_id} not found; retry later"
        raise RetryableWebhookError(msg)

    with transaction.atomic():
        subscription = subscriptions.cancel_subscription(stripe_id)
        unlinked = accounting.unlink_subscription(subscription.id)
        queries.add_subscription_history(
            subscription=subscription,
            event_type="customer.subscription.deleted",
            event_id=event_id,
            metadata={"unlinkedAssignments": unlinked},
        )
    logger.info("Canceled subscription %s and unlinked %s profiles", stripe_id, unlinked)


def invoice_subscription_id(invoice: Any) -> str | None:
    """Subscription id of an invoice, on old and new API versions."""
    subscription = invoice.get("subscription")
    if not subscription:
        parent = invoice.get("parent") or {}
        subscription = (parent.get("subscription_details") or {}).get("subscription")
    return subscriptions.stripe_object_id(subscription)


def invoice_period_end(invoice: Any):
    lines = (invoice.get("lines") or {}).get("data") or []
    if lines:
        end = (lines[0].get("period") or {}).get("end")
        if end:
            return from_timestamp(end)
    return from_timestamp(invoice.get("period_end"))


def _handle_invoice(invoice: Any, event_type: str, event_id: str) -> None:
    stripe_id = invoice_subscription_id(invoice)
    if not stripe_id:
        return
    subscription = queries.get_subscription_by_stripe_id(stripe_id)
    if subscription is None:
        msg = f"Subscription {stripe_id} not found for invoice {invoice.get('id')}"
        raise RetryableWebhookError(msg)

    subscription.paid_until = invoice_period_end(invoice)
    update_fields = ["paid_until", "modified"]
    if event_type == "invoice.payment_succeeded":
        subscription.last_payment_date = timezone.now()
        update_fields.append("last_payment_date")
    subscription.save(update_fields=update_fields)

    queries.add_subscription_history(
        subscription=subscription,
        event_type=event_type,
        event_id=event_id,
        amount=invoice.get("amount_paid"),
        metadata={"invoiceId": invoice.get("id")},
    )


def handle_invoice_payment_succeeded(invoice: Any, account_type: str, event_id: str = "") -> None:
    _handle_invoice(invoice, "invoice.payment_succeeded", event_id)


def handle_invoice_finalized(invoice: Any, account_type: str, event_id: str = "") -> None:
    _handle_invoice(invoice, "invoice.finalized", event_id)


def handle_invoice_payment_failed(invoice: Any, account_type: str, event_id: str = "") -> None:
    stripe_id = invoice_subscription_id(invoice)
    logger.warning(
        "invoice.payment_failed: subscription=%s, customer=%s, amount=%s, attempt=%s",
        stripe_id,
        invoice.get("customer"),
        invoice.get("amount_due"),
        invoice.get("attempt_count"),
    )
    subscription = queries.get_subscription_by_stripe_id(stripe_id) if stripe_id else None
    if subscription is not None:
        queries.add_subscription_history(
            subscription=subscription,
            event_type="invoice.payment_failed",
            event_id=event_id,
            amount=invoice.get("amount_due"),
            metadata={
                "invoiceId": invoice.get("id"),
                "attemptCount": invoice.get("attempt_count"),
            },
        )


EVENT_HANDLERS: dict[str, Callable[..., None]] = {
    "checkout.session.completed": handle_checkout_completed,
    "customer.subscription.created": handle_subscription_created,
    "customer.subscription.updated": handle_subscription_updated,
    "customer.subscription.deleted": handle_subscription_deleted,
    "invoice.payment_succeeded": handle_invoice_payment_succeeded,
    "invoice.finalized": handle_invoice_finalized,
    "invoice.payment_failed": handle_invoice_payment_failed,
}


# =============================================================================
# Dispatch
# =============================================================================


def process_event(event: Any, source: str, payload: dict | None = None) -> bool:
    """
    Record and handle one verified Stripe event.

    Returns False when the event was already processed for this source.
    Handler exceptions propagate after the ledger row is removed.
    """
    event_id = event["id"]
    event_type = event["type"]
    try:
        with transaction.atomic():
            WebhookEvent.objects.create(
                event_id=event_id,
                event_type=event_type,
                source=source,
                payload=payload or {},
            )
    except IntegrityError:
        logger.info("Skipping duplicate %s webhook %s", source, event_id)
        return False

    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        logger.debug("Ignoring unhandled %s webhook type %s", source, event_type)
        return True

    logger.info("Processing %s webhook %s (%s)", source, event_type, event_id)
    try:
        handler(event["data"]["object"], ACCOUNT_FOR_SOURCE[source], event_id)
    except Exception:
        WebhookEvent.objects.filter(event_id=event_id, source=source).delete()
        raise
    return True
