"""
Dugsi withdrawals, re-enrollment and family billing adjustments.

Withdrawing a child closes their profile, enrollment and billing assignment,
then adjusts the family's Dugsi subscription in one of four ways:

    keep_current          leave the amount alone
    auto_recalculate      charge the tiered rate for the children who remain,
                          canceling when none remain
    custom                charge a given amount
    cancel_subscription   cancel the subscription

The enrollment change commits before Stripe is called. A Stripe failure is
reported on the result as ``billing_error`` and does not undo the withdrawal.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import stripe
from django.db import DatabaseError
from django.db import transaction
from django.db.models import Q

from madrasa.billing import accounting
from madrasa.billing import queries
from madrasa.billing import subscriptions
from madrasa.billing.constants import FAMILY_BILLING_STATUSES
from madrasa.billing.constants import BillingAdjustment
from madrasa.billing.constants import StripeAccountType
from madrasa.billing.constants import SubscriptionStatus
from madrasa.billing.errors import StripeAccountNotConfigured
from madrasa.billing.models import BillingAssignment
from madrasa.billing.models import Subscription
from madrasa.billing.stripe_accounts import get_product_id
from madrasa.billing.stripe_accounts import get_stripe_api_key
from madrasa.billing.stripe_accounts import to_plain
from madrasa.billing.tuition import calculate_dugsi_rate
from madrasa.core.exceptions import NotFoundError
from madrasa.core.exceptions import ValidationError
from madrasa.programs import enrollment
from madrasa.programs.constants import BILLABLE_DUGSI_STATUSES
from madrasa.programs.constants import EnrollmentStatus
from madrasa.programs.constants import Program
from madrasa.programs.constants import WithdrawalReason
from madrasa.programs.models import ProgramProfile

logger = logging.getLogger(__name__)

# Adjustments that leave a charge in place, so they need a child left to bill.
CHARGING_ADJUSTMENTS = (BillingAdjustment.KEEP_CURRENT, BillingAdjustment.CUSTOM)


@dataclass
class AdjustmentResult:
    updated: bool
    error: str | None = None


@dataclass
class WithdrawResult:
    withdrawn: bool
    billing_updated: bool
    billing_error: str | None = None


@dataclass
class WithdrawAllResult:
    withdrawn_count: int
    failed_count: int
    billing_updated: bool
    billing_error: str | None = None


@dataclass
class ReEnrollResult:
    re_enrolled: bool
    billing_updated: bool
    billing_error: str | None = None


@dataclass
class WithdrawPreview:
    child_name: str
    active_children_count: int
    current_amount: int | None
    recalculated_amount: int
    is_last_active_child: bool
    has_active_subscription: bool
    is_paused: bool


def format_withdrawal_reason(reason: str, note: str = "") -> str:
    """``"Family moved"`` or, with a note, ``"Family moved: relocating to Ohio"``."""
    label = str(WithdrawalReason(reason).label)
    note = (note or "").strip()
    return f"{label}: {note}" if note else label


# =============================================================================
# Lookups
# =============================================================================


def _get_dugsi_profile(profile_id: int) -> ProgramProfile:
    profile = (
        ProgramProfile.objects.select_related("person")
        .filter(pk=profile_id, program=Program.DUGSI_PROGRAM)
        .first()
    )
    if profile is None:
        raise NotFoundError("Student not found")
    return profile


def _family_scope(profile: ProgramProfile) -> Q:
    if profile.family_reference_id:
        return Q(
            program=Program.DUGSI_PROGRAM,
            family_reference_id=profile.family_reference_id,
        )
    return Q(pk=profile.pk)


def _billable_count(profile: ProgramProfile) -> int:
    return ProgramProfile.objects.filter(
        _family_scope(profile),
        status__in=BILLABLE_DUGSI_STATUSES,
    ).count()


def _find_subscription(assignment_scope: Q) -> Subscription | None:
    assignment = (
        BillingAssignment.objects.active()
        .filter(
            assignment_scope,
            program_profile__program=Program.DUGSI_PROGRAM,
            subscription__stripe_account_type=StripeAccountType.DUGSI,
            subscription__status__in=FAMILY_BILLING_STATUSES,
        )
        .select_related("subscription")
        .order_by("-created")
        .first()
    )
    return assignment.subscription if assignment else None


def _profile_subscription(profile: ProgramProfile) -> Subscription | None:
    if profile.family_reference_id:
        return find_family_subscription(profile.family_reference_id)
    return _find_subscription(Q(program_profile=profile))


def find_family_subscription(family_reference_id: str | None) -> Subscription | None:
    """The family's active or paused Dugsi subscription, newest assignment first."""
    if not family_reference_id:
        return None
    return _find_subscription(Q(program_profile__family_reference_id=family_reference_id))


def get_withdraw_preview(profile_id: int) -> WithdrawPreview:
    """What withdrawing this child would do to the family's billing."""
    profile = _get_dugsi_profile(profile_id)
    active_count = _billable_count(profile)
    remaining = max(active_count - 1, 0)
    subscription = _profile_subscription(profile)
    return WithdrawPreview(
        child_name=profile.person.name,
        active_children_count=active_count,
        current_amount=subscription.amount if subscription else None,
        recalculated_amount=calculate_dugsi_rate(remaining),
        is_last_active_child=remaining == 0,
        has_active_subscription=subscription is not None,
        is_paused=(
            subscription is not None and subscription.status == SubscriptionStatus.PAUSED
        ),
    )


# =============================================================================
# Stripe adjustments
# =============================================================================


def _cancel_family_subscription(subscription: Subscription) -> None:
    stripe.Subscription.cancel(
        subscription.stripe_subscription_id,
        api_key=get_stripe_api_key(StripeAccountType.DUGSI),
    )
    try:
        with transaction.atomic():
            queries.update_subscription_status(
                subscription.stripe_subscription_id,
                SubscriptionStatus.CANCELED,
            )
            accounting.unlink_subscription(subscription.id)
    except DatabaseError:
        logger.exception(
            "Stripe subscription %s canceled but database update failed; states diverged",
            subscription.stripe_subscription_id,
        )
        raise
    logger.info("Canceled family subscription %s", subscription.stripe_subscription_id)


def _update_family_amount(subscription: Subscription, amount: int) -> AdjustmentResult:
    api_key = get_stripe_api_key(StripeAccountType.DUGSI)
    product_id = get_product_id(StripeAccountType.DUGSI)
    stripe_subscription = to_plain(
        stripe.Subscription.retrieve(subscription.stripe_subscription_id, api_key=api_key),
    )
    item_id = subscriptions.first_item(stripe_subscription).get("id")
    if not item_id:
        return AdjustmentResult(updated=False, error="No subscription item found in Stripe")

    stripe.Subscription.modify(
        subscription.stripe_subscription_id,
        items=[
            {
                "id": item_id,
                "price_data": {
                    "currency": "usd",
                    "product": product_id,
                    "unit_amount": amount,
                    "recurring": {"interval": "month"},
                },
            },
        ],
        proration_behavior="none",
        api_key=api_key,
    )
    try:
        with transaction.atomic():
            subscription.amount = amount
            subscription.save(update_fields=["amount", "modified"])
            accounting.rebalance_subscription_assignments(subscription)
    except DatabaseError:
        logger.exception(
            "Stripe amount for %s updated but database update failed; states diverged",
            subscription.stripe_subscription_id,
        )
        raise
    logger.info(
        "Updated family subscription %s to %s",
        subscription.stripe_subscription_id,
        amount,
    )
    return AdjustmentResult(updated=True)


def apply_billing_adjustment(
    profile: ProgramProfile,
    adjustment: str,
    custom_amount: int | None = None,
    fallback_subscription: Subscription | None = None,
) -> AdjustmentResult:
    """
    Bring the family subscription in line with the children still enrolled.

    ``fallback_subscription`` is the subscription found before the child's
    assignment was closed; it is used when the withdrawn child was the only
    one still assigned.
    """
    subscription = _profile_subscription(profile)
    if subscription is None and fallback_subscription is not None:
        logger.warning(
            "Using pre-withdrawal subscription %s for profile %s",
            fallback_subscription.stripe_subscription_id,
            profile.id,
        )
        subscription = fallback_subscription

    if subscription is None:
        if adjustment == BillingAdjustment.CANCEL_SUBSCRIPTION:
            return AdjustmentResult(updated=False, error="No active subscription to cancel")
        return AdjustmentResult(updated=True)
    if adjustment == BillingAdjustment.KEEP_CURRENT:
        accounting.rebalance_subscription_assignments(subscription)
        return AdjustmentResult(updated=True)

    try:
        if adjustment == BillingAdjustment.CANCEL_SUBSCRIPTION:
            _cancel_family_subscription(subscription)
            return AdjustmentResult(updated=True)

        if adjustment == BillingAdjustment.CUSTOM:
            amount = custom_amount or 0
        else:
            amount = calculate_dugsi_rate(_billable_count(profile))

        if amount <= 0:
            if adjustment == BillingAdjustment.AUTO_RECALCULATE:
                _cancel_family_subscription(subscription)
                return AdjustmentResult(updated=True)
            return AdjustmentResult(
                updated=False,
                error="Calculated amount is zero or negative",
            )
        return _update_family_amount(subscription, amount)
    except (stripe.StripeError, StripeAccountNotConfigured) as exc:
        logger.exception(
            "Billing adjustment %s failed for subscription %s",
            adjustment,
            subscription.stripe_subscription_id,
        )
        message = getattr(exc, "user_message", None) or str(exc)
        return AdjustmentResult(updated=False, error=message)


# =============================================================================
# Withdraw and re-enroll
# =============================================================================


def _withdraw_profile(profile: ProgramProfile, reason_text: str) -> None:
    with transaction.atomic():
        enrollment.withdraw_program_profile(profile, reason_text)
        assignment_ids = list(
            BillingAssignment.objects.active()
            .filter(program_profile=profile)
            .values_list("id", flat=True),
        )
        for assignment_id in assignment_ids:
            queries.deactivate_billing_assignment(assignment_id)
    logger.info("Withdrew Dugsi profile %s (%s)", profile.id, reason_text)


def withdraw_child(
    profile_id: int,
    *,
    reason: str,
    reason_note: str = "",
    adjustment: str = BillingAdjustment.AUTO_RECALCULATE,
    custom_amount: int | None = None,
) -> WithdrawResult:
    """
    Withdraw one Dugsi child and adjust the family subscription.

    Raises:
        NotFoundError: If the profile is not a Dugsi student.
        ValidationError: If the child is already withdrawn, or a charging
            adjustment is used for the family's last active child.
    """
    profile = _get_dugsi_profile(profile_id)
    if profile.status == EnrollmentStatus.WITHDRAWN:
        raise ValidationError("Student is already withdrawn")
    if adjustment == BillingAdjustment.CUSTOM and custom_amount is None:
        raise ValidationError("Custom amount is required for a custom adjustment")

    others = (
        ProgramProfile.objects.filter(
            _family_scope(profile),
            status__in=BILLABLE_DUGSI_STATUSES,
        )
        .exclude(pk=profile.pk)
        .count()
    )
    if others == 0 and adjustment in CHARGING_ADJUSTMENTS:
        raise ValidationError(
            f'Cannot use "{adjustment}" when withdrawing the last active child',
        )

    fallback = _profile_subscription(profile)
    _withdraw_profile(profile, format_withdrawal_reason(reason, reason_note))
    billing = apply_billing_adjustment(profile, adjustment, custom_amount, fallback)
    return WithdrawResult(
        withdrawn=True,
        billing_updated=billing.updated,
        billing_error=billing.error,
    )


def withdraw_all_children(
    profile_id: int,
    *,
    reason: str,
    reason_note: str = "",
    adjustment: str = BillingAdjustment.CANCEL_SUBSCRIPTION,
) -> WithdrawAllResult:
    """
    Withdraw every active child in ``profile_id``'s family, then adjust billing once.

    A failed child is counted and skipped. If any child failed, a requested
    cancellation is downgraded to a recalculation so the remaining children
    are still billed.
    """
    profile = _get_dugsi_profile(profile_id)
    children = list(
        ProgramProfile.objects.filter(_family_scope(profile))
        .exclude(status=EnrollmentStatus.WITHDRAWN)
        .order_by("created"),
    )
    if not children:
        raise ValidationError("No active children to withdraw")

    fallback = _profile_subscription(profile)
    reason_text = format_withdrawal_reason(reason, reason_note)
    withdrawn = failed = 0
    for child in children:
        try:
            _withdraw_profile(child, reason_text)
        except DatabaseError:
            logger.exception("Failed to withdraw Dugsi profile %s", child.id)
            failed += 1
        else:
            withdrawn += 1

    if failed and adjustment == BillingAdjustment.CANCEL_SUBSCRIPTION:
        logger.warning(
            "%s children could not be withdrawn; recalculating instead of canceling",
            failed,
        )
        adjustment = BillingAdjustment.AUTO_RECALCULATE
    billing = apply_billing_adjustment(profile, adjustment, None, fallback)
    return WithdrawAllResult(
        withdrawn_count=withdrawn,
        failed_count=failed,
        billing_updated=billing.updated,
        billing_error=billing.error,
    )


def re_enroll_child(
    profile_id: int,
    *,
    adjustment: str = BillingAdjustment.AUTO_RECALCULATE,
    custom_amount: int | None = None,
) -> ReEnrollResult:
    """
    Return a withdrawn child to the family and its subscription.

    Raises:
        NotFoundError: If the profile is not a Dugsi student.
        ValidationError: If the child is not withdrawn.
    """
    profile = _get_dugsi_profile(profile_id)
    if profile.status != EnrollmentStatus.WITHDRAWN:
        raise ValidationError("Student is not withdrawn")
    if adjustment == BillingAdjustment.CANCEL_SUBSCRIPTION:
        raise ValidationError("Cannot cancel the subscription when re-enrolling")

    subscription = _profile_subscription(profile)
    with transaction.atomic():
        enrollment.reenroll_program_profile(profile)
        if subscription is not None:
            queries.create_billing_assignment(
                subscription=subscription,
                program_profile_id=profile.id,
                amount=0,
                notes="Re-enrolled",
            )
            accounting.rebalance_subscription_assignments(subscription)
    logger.info("Re-enrolled Dugsi profile %s", profile.id)

    billing = apply_billing_adjustment(profile, adjustment, custom_amount)
    return ReEnrollResult(
        re_enrolled=True,
        billing_updated=billing.updated,
        billing_error=billing.error,
    )


# =============================================================================
# Pause and resume
# =============================================================================


def _require_family_subscription(family_reference_id: str) -> Subscription:
    subscription = find_family_subscription(family_reference_id)
    if subscription is None:
        raise NotFoundError("No active subscription found for this family")
    return subscription


def pause_family_billing(family_reference_id: str) -> Subscription:
    """
    Stop collecting payments for the family without canceling.

    Raises:
        NotFoundError: If the family has no active or paused subscription.
        ValidationError: If the subscription is not active.
    """
    subscription = _require_family_subscription(family_reference_id)
    if subscription.status != SubscriptionStatus.ACTIVE:
        raise ValidationError(f'Cannot pause subscription with status "{subscription.status}"')

    stripe.Subscription.modify(
        subscription.stripe_subscription_id,
        pause_collection={"behavior": "void"},
        api_key=get_stripe_api_key(StripeAccountType.DUGSI),
    )
    subscription = queries.update_subscription_status(
        subscription.stripe_subscription_id,
        SubscriptionStatus.PAUSED,
    )
    logger.info("Paused billing for family %s", family_reference_id)
    return subscription


def resume_family_billing(family_reference_id: str) -> Subscription:
    """
    Resume collection on a paused family subscription.

    Raises:
        NotFoundError: If the family has no active or paused subscription.
        ValidationError: If the subscription is not paused.
    """
    subscription = _require_family_subscription(family_reference_id)
    if subscription.status != SubscriptionStatus.PAUSED:
        raise ValidationError(
            f'Cannot resume subscription with status "{subscription.status}"',
        )

    # An empty string clears pause_collection in Stripe.
    stripe.Subscription.modify(
        subscription.stripe_subscription_id,
        pause_collection="",
        api_key=get_stripe_api_key(StripeAccountType.DUGSI),
    )
    subscription = queries.update_subscription_status(
        subscription.stripe_subscription_id,
        SubscriptionStatus.ACTIVE,
    )
    logger.info("Resumed billing for family %s", family_reference_id)
    return subscription
