"""
Match a completed Stripe Checkout session to our records.

The Mahad payment link asks students for the email and WhatsApp number
they registered with. Those custom fields are the most reliable signal; the
payer's own email is a fallback that also covers a guardian paying on
someone's behalf.

Usage:
    result = BillingMatcher().find_by_checkout_session(session, StripeAccountType.MAHAD)
    if not result.matched:
        log_no_match_found(session, subscription_id, StripeAccountType.MAHAD)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from django.db.models import Exists
from django.db.models import OuterRef

from madrasa.billing import queries
from madrasa.billing.constants import ACTIVE_SUBSCRIPTION_STATUSES
from madrasa.billing.constants import STUDENT_EMAIL_FIELD_KEY
from madrasa.billing.constants import STUDENT_PHONE_FIELD_KEY
from madrasa.billing.constants import MatchMethod
from madrasa.billing.constants import program_for_account
from madrasa.billing.models import BillingAccount
from madrasa.billing.models import BillingAssignment
from madrasa.people.models import Person
from madrasa.people.services import find_person_by_contact
from madrasa.people.services import normalize_email
from madrasa.people.services import normalize_phone
from madrasa.programs.models import ProgramProfile

logger = logging.getLogger(__name__)


@dataclass
class BillingMatchResult:
    account_type: str
    billing_account: BillingAccount | None = None
    program_profile: ProgramProfile | None = None
    match_method: str | None = None
    validated_email: str | None = None

    @property
    def matched(self) -> bool:
        return self.billing_account is not None or self.program_profile is not None


def custom_field_value(session: Any, key: str, kind: str) -> Any:
    """Value of a Checkout custom field (``kind`` is ``text`` or ``numeric``)."""
    for custom_field in session.get("custom_fields") or []:
        if custom_field.get("key") == key:
            return (custom_field.get(kind) or {}).get("value")
    return None


def payer_email(session: Any) -> str | None:
    return (session.get("customer_details") or {}).get("email")


def unassigned_profile(person: Person, program: str) -> ProgramProfile | None:
    """
    The person's profile in ``program`` with no live paid assignment.

    A profile whose only assignments point at canceled or incomplete
    subscriptions counts as unassigned so the student can re-subscribe.
    """
    live_assignment = BillingAssignment.objects.filter(
        program_profile=OuterRef("pk"),
        is_active=True,
        subscription__status__in=ACTIVE_SUBSCRIPTION_STATUSES,
    )
    return (
        ProgramProfile.objects.filter(person=person, program=program)
        .exclude(Exists(live_assignment))
        .select_related("person")
        .first()
    )


class BillingMatcher:
    """
    Find the billing account and program profile a checkout session pays for.

    Strategies run in order and the first that finds a profile wins:

    1. Student email from the custom field
    2. Student phone from the custom field
    3. Payer email (an existing billing account means a guardian payer)
    """

    def find_by_checkout_session(
        self,
        session: Any,
        account_type: str,
    ) -> BillingMatchResult:
        result = self._find_by_custom_email(session, account_type)
        if result.program_profile:
            return result
        result = self._find_by_custom_phone(session, account_type)
        if result.program_profile:
            return result
        return self._find_by_payer_email(session, account_type)

    def _profile_match(
        self,
        person: Person,
        account_type: str,
        method: str,
        validated_email: str | None,
    ) -> BillingMatchResult:
        profile = unassigned_profile(person, program_for_account(account_type))
        if profile is None:
            return BillingMatchResult(account_type, validated_email=validated_email)

        billing_account = queries.upsert_billing_account(person.id, account_type)
        logger.info(
            "Matched checkout to profile %s by %s",
            profile.id,
            method,
        )
        return BillingMatchResult(
            account_type,
            billing_account=billing_account,
            program_profile=profile,
            match_method=method,
            validated_email=validated_email,
        )

    def _find_by_custom_email(self, session: Any, account_type: str) -> BillingMatchResult:
        raw = custom_field_value(session, STUDENT_EMAIL_FIELD_KEY, "text")
        email = normalize_email(raw)
        if raw and not email:
            logger.warning("Invalid student email in checkout custom field: %r", raw)
        if not email:
            return BillingMatchResult(account_type)

        person = find_person_by_contact(email=email)
        if person is None:
            return BillingMatchResult(account_type, validated_email=email)
        return self._profile_match(person, account_type, MatchMethod.EMAIL, email)

    def _find_by_custom_phone(self, session: Any, account_type: str) -> BillingMatchResult:
        raw = custom_field_value(session, STUDENT_PHONE_FIELD_KEY, "numeric")
        phone = normalize_phone(raw)
        if raw and not phone:
            logger.warning("Invalid student phone in checkout custom field: %r", raw)
        if not phone:
            return BillingMatchResult(account_type)

        person = find_person_by_contact(phone=phone)
        if person is None:
            return BillingMatchResult(account_type)
        return self._profile_match(person, account_type, MatchMethod.PHONE, None)

    def _find_by_payer_email(self, session: Any, account_type: str) -> BillingMatchResult:
        email = normalize_email(payer_email(session))
        if not email:
            return BillingMatchResult(account_type)

        person = find_person_by_contact(email=email)
        if person is None:
            return BillingMatchResult(account_type, validated_email=email)

        billing_account = queries.get_billing_account_by_person(person.id, account_type)
        if billing_account is not None:
            logger.info(
                "Matched checkout to billing account %s by payer email",
                billing_account.id,
            )
            return BillingMatchResult(
                account_type,
                billing_account=billing_account,
                match_method=MatchMethod.GUARDIAN,
                validated_email=email,
            )

        return self._profile_match(person, account_type, MatchMethod.EMAIL, email)


def log_no_match_found(session: Any, subscription_id: str, account_type: str) -> None:
    logger.warning(
        "Could not find billing account or program profile for subscription %s "
        "(%s). Attempted lookup with custom field email: %r, phone: %r, and "
        "payer email: %r. Manual review required.",
        subscription_id,
        account_type,
        custom_field_value(session, STUDENT_EMAIL_FIELD_KEY, "text") or "N/A",
        custom_field_value(session, STUDENT_PHONE_FIELD_KEY, "numeric") or "N/A",
        payer_email(session) or "N/A",
    )
