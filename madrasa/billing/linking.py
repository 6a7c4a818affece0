"""
Admin tools for linking Stripe subscriptions to students.

Subscriptions created outside our checkout flow (old payment links, manual
dashboard edits, webhook misses) end up "orphaned": live in Stripe but not
attributed to any program profile. This module lists them across both
Stripe accounts, helps admins find the right student, and links them.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from dataclasses import field
from typing import TYPE_CHECKING
from typing import Any

import stripe
from django.db import transaction
from django.db.models import Q

from madrasa.billing import accounting
from madrasa.billing import queries
from madrasa.billing import subscriptions
from madrasa.billing.constants import ACCOUNT_FOR_PROGRAM
from madrasa.billing.constants import LIVE_SUBSCRIPTION_STATUSES
from madrasa.billing.constants import StripeAccountType
from madrasa.billing.dates import from_timestamp
from madrasa.billing.errors import StripeAccountNotConfigured
from madrasa.billing.models import BillingAssignment
from madrasa.billing.models import Subscription
from madrasa.billing.stripe_accounts import get_stripe_api_key
from madrasa.billing.stripe_accounts import to_plain
from madrasa.core.exceptions import MadrasaError
from madrasa.people.services import find_person_by_contact
from madrasa.people.services import get_primary_payer
from madrasa.people.services import primary_email
from madrasa.people.services import primary_phone
from madrasa.programs.constants import BILLABLE_DUGSI_STATUSES
from madrasa.programs.constants import Program
from madrasa.programs.models import ProgramProfile

if TYPE_CHECKING:
    import datetime as dt

logger = logging.getLogger(__name__)

SEARCH_LIMIT = 50
PARENT_EMAIL_REQUIRED = (
    "Parent email is required to link subscription. Please update the student "
    "record with a parent email first."
)


@dataclass
class OrphanedSubscription:
    id: str
    status: str
    customer_id: str
    customer_email: str | None
    customer_name: str | None
    amount: int
    created: dt.datetime | None
    current_period_start: dt.datetime | None
    current_period_end: dt.datetime | None
    account_type: str
    metadata: dict = field(default_factory=dict)
    subscription_count: int = 1


@dataclass
class StudentMatch:
    id: int
    name: str
    email: str
    phone: str | None
    status: str
    has_subscription: bool
    program: str


@dataclass
class LinkResult:
    success: bool
    error: str | None = None
    subscription_id: str = ""
    linked_profile_ids: list[int] = field(default_factory=list)
    previous_subscription_ids: list[str] = field(default_factory=list)


# =============================================================================
# Orphaned subscriptions
# =============================================================================


def _linked_subscription_ids(subscription_ids: list[str]) -> set[str]:
    return set(
        Subscription.objects.filter(
            stripe_subscription_id__in=subscription_ids,
            assignments__is_active=True,
        ).values_list("stripe_subscription_id", flat=True),
    )


def _fetch_live_subscriptions(account_type: str) -> list[Any]:
    listing = stripe.Subscription.list(
        limit=100,
        expand=["data.customer"],
        api_key=get_stripe_api_key(account_type),
    )
    live = []
    for sub in listing.auto_paging_iter():
        data = to_plain(sub)
        if data.get("status") in LIVE_SUBSCRIPTION_STATUSES:
            live.append(data)
    return live


def _build_orphaned(
    sub: Any,
    account_type: str,
    customer_counts: Counter | None,
) -> OrphanedSubscription | None:
    customer = sub.get("customer")
    customer_id = subscriptions.stripe_object_id(customer)
    if not customer_id:
        logger.warning("Skipping subscription %s: missing customer", sub.get("id"))
        return None
    expanded = customer if not isinstance(customer, str) else {}
    start, end = subscriptions.extract_period_dates(sub)
    price = subscriptions.first_item(sub).get("price") or {}

    return OrphanedSubscription(
        id=sub["id"],
        status=sub.get("status"),
        customer_id=customer_id,
        customer_email=expanded.get("email"),
        customer_name=expanded.get("name"),
        amount=price.get("unit_amount") or 0,
        created=from_timestamp(sub.get("created")),
        current_period_start=start,
        current_period_end=end,
        account_type=account_type,
        metadata=dict(sub.get("metadata") or {}),
        subscription_count=customer_counts.get(customer_id, 1) if customer_counts else 1,
    )


def get_orphaned_subscriptions_for_account(account_type: str) -> list[OrphanedSubscription]:
    live = _fetch_live_subscriptions(account_type)
    linked = _linked_subscription_ids([sub["id"] for sub in live])

    # Mahad students sometimes end up with duplicate subscriptions; admins
    # need to see how many each customer holds.
    customer_counts = None
    if account_type == StripeAccountType.MAHAD:
        customer_counts = Counter(
            subscriptions.stripe_object_id(sub.get("customer")) for sub in live
        )

    orphaned = []
    for sub in live:
        if sub["id"] in linked:
            continue
        entry = _build_orphaned(sub, account_type, customer_counts)
        if entry is not None:
            orphaned.append(entry)
    return orphaned


def get_all_orphaned_subscriptions() -> list[OrphanedSubscription]:
    """
    Live Stripe subscriptions, from both accounts, with no active assignment.

    A failure talking to one account is logged and that account is skipped.
    """
    results: list[OrphanedSubscription] = []
    seen: set[str] = set()
    for account_type in (StripeAccountType.MAHAD, StripeAccountType.DUGSI):
        try:
            orphaned = get_orphaned_subscriptions_for_account(account_type)
        except (stripe.StripeError, StripeAccountNotConfigured):
            logger.exception("Failed to list %s subscriptions", account_type)
            continue
        for entry in orphaned:
            if entry.id in seen:
                continue
            seen.add(entry.id)
            results.append(entry)
    return results


# =============================================================================
# Student search
# =============================================================================


def _student_match(profile: ProgramProfile) -> StudentMatch:
    has_subscription = BillingAssignment.objects.filter(
        program_profile=profile,
        is_active=True,
        subscription__status__in=LIVE_SUBSCRIPTION_STATUSES,
    ).exists()
    return StudentMatch(
        id=profile.id,
        name=profile.person.name,
        email=primary_email(profile.person) or "",
        phone=primary_phone(profile.person),
        status=profile.status,
        has_subscription=has_subscription,
        program=profile.program,
    )


def search_students_for_linking(query: str, program: str | None = None) -> list[StudentMatch]:
    """Profiles whose name or contact value contains ``query``."""
    query = (query or "").strip()
    if not query:
        return []
    profiles = ProgramProfile.objects.select_related("person").filter(
        Q(person__name__icontains=query)
        | Q(person__contact_points__value__icontains=query.lower()),
    )
    if program:
        profiles = profiles.filter(program=program)
    profiles = profiles.distinct().order_by("person__name")[:SEARCH_LIMIT]
    return [_student_match(profile) for profile in profiles]


def get_potential_student_matches(
    customer_email: str | None,
    customer_name: str | None,
    program: str,
) -> list[StudentMatch]:
    """Suggest students for a subscription: exact email match first, then name."""
    if customer_email:
        person = find_person_by_contact(email=customer_email)
        if person is not None:
            profiles = person.program_profiles.filter(program=program).select_related(
                "person",
            )
            if profiles:
                return [_student_match(profile) for profile in profiles]

    if customer_name and customer_name.strip():
        profiles = (
            ProgramProfile.objects.select_related("person")
            .filter(program=program, person__name__icontains=customer_name.strip())
            .order_by("person__name")[:SEARCH_LIMIT]
        )
        return [_student_match(profile) for profile in profiles]
    return []


# =============================================================================
# Linking
# =============================================================================


def _family_profiles(profile: ProgramProfile) -> list[ProgramProfile]:
    if not profile.family_reference_id:
        return [profile]
    return list(
        ProgramProfile.objects.select_related("person")
        .filter(
            program=Program.DUGSI_PROGRAM,
            family_reference_id=profile.family_reference_id,
            status__in=BILLABLE_DUGSI_STATUSES,
        )
        .order_by("created"),
    )


def _retire_previous_assignments(
    profiles: list[ProgramProfile],
    subscription: Subscription,
) -> list[str]:
    """Deactivate assignments to other subscriptions; return their Stripe ids."""
    old = BillingAssignment.objects.active().filter(
        program_profile__in=profiles,
    ).exclude(subscription=subscription).select_related("subscription")

    previous_ids: list[str] = []
    for assignment in old:
        stripe_id = assignment.subscription.stripe_subscription_id
        if stripe_id not in previous_ids:
            previous_ids.append(stripe_id)
        queries.deactivate_billing_assignment(assignment.id)

    if previous_ids:
        history = list(subscription.previous_subscription_ids or [])
        history.extend(pk for pk in previous_ids if pk not in history)
        subscription.previous_subscription_ids = history
        subscription.save(update_fields=["previous_subscription_ids", "modified"])
    return previous_ids


def link_subscription_to_student(
    subscription_id: str,
    profile_id: int,
    program: str,
) -> LinkResult:
    """
    Attach a Stripe subscription to a student (and, for Dugsi, their siblings).

    The Stripe subscription is retrieved from the program's account, mirrored
    locally, and its amount split evenly across the linked profiles.
    """
    profile = ProgramProfile.objects.select_related("person").filter(pk=profile_id).first()
    if profile is None:
        return LinkResult(success=False, error="Profile not found")
    if profile.program != program:
        return LinkResult(
            success=False,
            error=f"Profile is not in {Program(program).label} program",
        )

    account_type = ACCOUNT_FOR_PROGRAM[program]
    if program == Program.DUGSI_PROGRAM:
        profiles = _family_profiles(profile)
        if not profiles:
            return LinkResult(success=False, error="No active students in this family")
        payer = get_primary_payer([p.person for p in profiles])
        payer_email = primary_email(payer) if payer else None
        if not payer_email or not payer_email.strip():
            return LinkResult(success=False, error=PARENT_EMAIL_REQUIRED)
    else:
        profiles = [profile]
        payer = profile.person

    try:
        stripe_subscription = to_plain(
            stripe.Subscription.retrieve(
                subscription_id,
                api_key=get_stripe_api_key(account_type),
            ),
        )
        data = subscriptions.validate_stripe_subscription(stripe_subscription)

        with transaction.atomic():
            billing_account = accounting.create_or_update_billing_account(
                payer.id,
                account_type,
                data.customer_id,
            )
            subscription = queries.get_subscription_by_stripe_id(subscription_id)
            if subscription is None:
                subscription = subscriptions.create_subscription_from_stripe(
                    stripe_subscription,
                    billing_account.id,
                    account_type,
                )
            else:
                subscription = subscriptions.sync_subscription_from_stripe(
                    stripe_subscription,
                )

            previous_ids = _retire_previous_assignments(profiles, subscription)
            profile_ids = [p.id for p in profiles]
            accounting.link_subscription_to_profiles(
                subscription.id,
                profile_ids,
                data.amount,
                notes="Linked via admin interface",
            )
            shares = accounting.calculate_split_amounts(data.amount, len(profiles))
            for linked, share in zip(profiles, shares, strict=True):
                linked.monthly_rate = share
                linked.save(update_fields=["monthly_rate", "modified"])
    except (MadrasaError, stripe.StripeError) as exc:
        logger.exception("Error linking subscription %s", subscription_id)
        message = exc.detail if isinstance(exc, MadrasaError) else str(exc)
        return LinkResult(success=False, error=message, subscription_id=subscription_id)

    logger.info(
        "Linked subscription %s to profiles %s",
        subscription_id,
        profile_ids,
    )
    return LinkResult(
        success=True,
        subscription_id=subscription_id,
        linked_profile_ids=profile_ids,
        previous_subscription_ids=previous_ids,
    )
