"""
Billing assignment accounting.

A subscription's amount is apportioned across one or more program profiles
with BillingAssignment rows (one Dugsi family subscription covers several
siblings). This module:

- Totals active assignments and reports remaining balance / overage
- Creates assignments, optionally refusing to over-assign (``strict=True``)
- Splits a family amount evenly and links or unlinks profiles in bulk

Over-assignment is advisory by default: admins sometimes link a student
before the subscription amount is updated, so the default path logs a
warning instead of failing. Callers that must not over-assign pass
``strict=True``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP
from decimal import Decimal
from typing import Any

from django.db import transaction
from django.db.models import Sum

from madrasa.billing import queries
from madrasa.billing.constants import ACTIVE_SUBSCRIPTION_STATUSES
from madrasa.billing.constants import CUSTOMER_ID_FIELDS
from madrasa.billing.errors import BillingAssignmentError
from madrasa.billing.models import BillingAccount
from madrasa.billing.models import BillingAssignment
from madrasa.billing.models import Subscription
from madrasa.billing.tuition import format_rate
from madrasa.core.exceptions import NotFoundError
from madrasa.people.services import find_person_by_contact

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")


@dataclass(frozen=True)
class BillingAssignmentSummary:
    subscription_amount: int
    total_assigned: int
    remaining: int
    percentage_used: float
    is_over_assigned: bool
    overage_amount: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "subscriptionAmount": self.subscription_amount,
            "totalAssigned": self.total_assigned,
            "remaining": self.remaining,
            "percentageUsed": self.percentage_used,
            "isOverAssigned": self.is_over_assigned,
            "overageAmount": self.overage_amount,
        }


# =============================================================================
# Totals and summaries
# =============================================================================


def calculate_billing_assignment_total(
    subscription_id: int,
    exclude_profile_id: int | None = None,
) -> int:
    """Sum of active assignment amounts, optionally ignoring one profile."""
    assignments = BillingAssignment.objects.active().filter(
        subscription_id=subscription_id,
    )
    if exclude_profile_id is not None:
        assignments = assignments.exclude(program_profile_id=exclude_profile_id)
    return assignments.aggregate(total=Sum("amount"))["total"] or 0


def get_billing_assignment_summary(subscription_id: int) -> BillingAssignmentSummary | None:
    """
    Report how much of a subscription is assigned; ``None`` if it does not exist.
    """
    subscription = Subscription.objects.filter(pk=subscription_id).first()
    if subscription is None:
        return None

    total = calculate_billing_assignment_total(subscription.id)
    amount = subscription.amount
    if amount > 0:
        percentage = (Decimal(total) / Decimal(amount) * 100).quantize(
            TWO_PLACES,
            rounding=ROUND_HALF_UP,
        )
    else:
        percentage = Decimal(0)

    return BillingAssignmentSummary(
        subscription_amount=amount,
        total_assigned=total,
        remaining=max(0, amount - total),
        percentage_used=float(percentage),
        is_over_assigned=total > amount,
        overage_amount=max(0, total - amount),
    )


def create_billing_assignment_with_validation(
    *,
    subscription_id: int,
    program_profile_id: int,
    amount: int,
    percentage=None,
    notes: str = "",
    strict: bool = False,
) -> BillingAssignment:
    """
    Create an assignment after checking it fits within the subscription amount.

    Raises:
        NotFoundError: If the subscription does not exist.
        BillingAssignmentError: If ``strict`` and the new total would exceed
            the subscription amount.
    """
    with transaction.atomic():
        subscription = (
            Subscription.objects.select_for_update().filter(pk=subscription_id).first()
        )
        if subscription is None:
            raise NotFoundError("Subscription not found")

        current = calculate_billing_assignment_total(
            subscription.id,
            exclude_profile_id=program_profile_id,
        )
        new_total = current + amount
        if new_total > subscription.amount:
            message = (
                f"Total assignments ({format_rate(new_total)}) would exceed "
                f"subscription amount ({format_rate(subscription.amount)})"
            )
            if strict:
                raise BillingAssignmentError(message)
            logger.warning(
                "Over-assigning subscription %s: %s",
                subscription.stripe_subscription_id,
                message,
            )

        return queries.create_billing_assignment(
            subscription=subscription,
            program_profile_id=program_profile_id,
            amount=amount,
            percentage=percentage,
            notes=notes,
        )


# =============================================================================
# Splitting and bulk linking
# =============================================================================


def calculate_split_amounts(total_amount: int, count: int) -> list[int]:
    """
    Split ``total_amount`` evenly; the last item absorbs the remainder.

        calculate_split_amounts(500, 3)  # [166, 166, 168]
    """
    if count <= 0:
        msg = "Count must be positive"
        raise ValueError(msg)
    base = total_amount // count
    remainder = total_amount - base * count
    return [base] * (count - 1) + [base + remainder]


def link_subscription_to_profiles(
    subscription_id: int,
    profile_ids: list[int],
    total_amount: int,
    notes: str = "",
) -> int:
    """
    Create one assignment per profile with an even split of ``total_amount``.

    Profiles already actively assigned to this subscription are skipped.
    Returns the number of assignments created.
    """
    if not profile_ids:
        msg = "At least one profile ID is required"
        raise ValueError(msg)

    existing = set(
        BillingAssignment.objects.active()
        .filter(subscription_id=subscription_id, program_profile_id__in=profile_ids)
        .values_list("program_profile_id", flat=True),
    )
    amounts = calculate_split_amounts(total_amount, len(profile_ids))
    subscription = Subscription.objects.get(pk=subscription_id)

    created = 0
    with transaction.atomic():
        for profile_id, amount in zip(profile_ids, amounts, strict=True):
            if profile_id in existing:
                continue
            percentage = None
            if len(profile_ids) > 1 and total_amount > 0:
                percentage = (Decimal(amount) / Decimal(total_amount) * 100).quantize(
                    TWO_PLACES,
                    rounding=ROUND_HALF_UP,
                )
            queries.create_billing_assignment(
                subscription=subscription,
                program_profile_id=profile_id,
                amount=amount,
                percentage=percentage,
                notes=notes,
            )
            created += 1

    logger.info(
        "Linked subscription %s to %s of %s profiles",
        subscription.stripe_subscription_id,
        created,
        len(profile_ids),
    )
    return created


def rebalance_subscription_assignments(subscription: Subscription) -> int:
    """
    Re-split ``subscription.amount`` across its active assignments.

    Each assigned profile's ``monthly_rate`` follows its new share. Returns
    the number of assignments updated.
    """
    assignments = list(
        BillingAssignment.objects.active()
        .filter(subscription=subscription)
        .select_related("program_profile")
        .order_by("created"),
    )
    if not assignments:
        return 0

    total = subscription.amount
    amounts = calculate_split_amounts(total, len(assignments))
    with transaction.atomic():
        for assignment, amount in zip(assignments, amounts, strict=True):
            assignment.amount = amount
            assignment.percentage = None
            if len(assignments) > 1 and total > 0:
                assignment.percentage = (Decimal(amount) / Decimal(total) * 100).quantize(
                    TWO_PLACES,
                    rounding=ROUND_HALF_UP,
                )
            assignment.save(update_fields=["amount", "percentage", "modified"])
            profile = assignment.program_profile
            profile.monthly_rate = amount
            profile.save(update_fields=["monthly_rate", "modified"])
    return len(assignments)


def unlink_subscription(subscription_id: int) -> int:
    """Deactivate every active assignment of the subscription."""
    with transaction.atomic():
        assignment_ids = list(
            BillingAssignment.objects.active()
            .filter(subscription_id=subscription_id)
            .values_list("id", flat=True),
        )
        for assignment_id in assignment_ids:
            queries.deactivate_billing_assignment(assignment_id)
    return len(assignment_ids)


# =============================================================================
# Billing accounts and status
# =============================================================================


def create_or_update_billing_account(
    person_id: int | None,
    account_type: str,
    stripe_customer_id: str,
    **fields: Any,
) -> BillingAccount:
    """
    Store ``stripe_customer_id`` in the field matching ``account_type``.

    If another person's account already owns the customer id, that account
    is returned (with ``fields`` applied) rather than violating the unique
    constraint.
    """
    existing = queries.get_billing_account_by_stripe_customer_id(
        stripe_customer_id,
        account_type,
    )
    if existing is not None and existing.person_id not in (None, person_id):
        logger.warning(
            "Stripe customer %s already linked to billing account %s",
            stripe_customer_id,
            existing.id,
        )
        return queries.update_billing_account(existing, **fields)
    if existing is not None and existing.person_id is None and person_id is not None:
        existing.person_id = person_id
        existing.save(update_fields=["person", "modified"])
        return queries.update_billing_account(existing, **fields)

    return queries.upsert_billing_account(
        person_id,
        account_type,
        **{CUSTOMER_ID_FIELDS[account_type]: stripe_customer_id},
        **fields,
    )


def get_billing_status_by_email(email: str, account_type: str) -> dict[str, Any]:
    """
    Billing status for the person owning ``email``.

    Raises:
        NotFoundError: If no person has this email.
    """
    person = find_person_by_contact(email=email)
    if person is None:
        raise NotFoundError("Person not found with this email address")

    account = queries.get_billing_account_by_person(person.id, account_type)
    subscription = None
    if account is not None:
        subscription = (
            account.subscriptions.filter(status__in=ACTIVE_SUBSCRIPTION_STATUSES)
            .order_by("-created")
            .first()
        )

    return {
        "has_payment_method": bool(account and account.payment_method_captured),
        "has_subscription": subscription is not None,
        "stripe_customer_id": account.customer_id_for(account_type) if account else None,
        "status": subscription.status if subscription else None,
        "amount": subscription.amount if subscription else None,
        "paid_until": subscription.paid_until if subscription else None,
        "current_period_start": subscription.current_period_start if subscription else None,
        "current_period_end": subscription.current_period_end if subscription else None,
    }
