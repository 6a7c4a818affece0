"""
Checkout service for Stripe operations.

This service provides a clean interface for:
- Creating Mahad subscription checkout sessions (student self-signup)
- Creating Dugsi family payment links (admin-initiated)
- Getting or creating Stripe customers on the right account

We use Stripe Checkout (not custom payment forms) for PCI compliance. Mahad
and Dugsi live in separate Stripe accounts, so every call passes the account's
``api_key`` explicitly.
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import stripe
from django.conf import settings

from madrasa.billing import queries
from madrasa.billing.accounting import create_or_update_billing_account
from madrasa.billing.constants import DUGSI_CHECKOUT_SOURCE
from madrasa.billing.constants import MAHAD_CHECKOUT_SOURCE
from madrasa.billing.constants import StripeAccountType
from madrasa.billing.dates import billing_cycle_anchor
from madrasa.billing.stripe_accounts import get_product_id
from madrasa.billing.stripe_accounts import get_stripe_api_key
from madrasa.billing.tuition import MAX_EXPECTED_FAMILY_RATE
from madrasa.billing.tuition import calculate_dugsi_rate
from madrasa.billing.tuition import calculate_mahad_rate
from madrasa.billing.tuition import format_billing_type
from madrasa.billing.tuition import format_graduation_status
from madrasa.billing.tuition import format_rate
from madrasa.billing.tuition import format_rate_display
from madrasa.billing.tuition import get_rate_tier_description
from madrasa.billing.tuition import get_stripe_interval
from madrasa.billing.tuition import should_create_subscription
from madrasa.billing.tuition import validate_override_amount
from madrasa.core.exceptions import NotFoundError
from madrasa.core.exceptions import ValidationError
from madrasa.people.services import get_primary_payer
from madrasa.people.services import primary_email
from madrasa.people.services import primary_phone
from madrasa.programs.constants import BILLABLE_DUGSI_STATUSES
from madrasa.programs.constants import BillingType
from madrasa.programs.constants import PaymentFrequency
from madrasa.programs.constants import Program
from madrasa.programs.models import ProgramProfile

if TYPE_CHECKING:
    from madrasa.people.models import Person

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutSessionResult:
    session_id: str
    url: str


@dataclass(frozen=True)
class DugsiCheckoutResult:
    """Everything the admin UI shows after generating a family payment link."""

    session_id: str
    url: str
    family_id: str
    family_name: str
    guardian_person_id: int
    guardian_name: str
    guardian_email: str
    guardian_phone: str | None
    child_count: int
    profile_ids: list[int]
    calculated_rate: int
    final_rate: int
    is_override: bool
    rate_description: str
    tier_description: str
    override_warning: str | None = None

    def as_dict(self) -> dict:
        return {
            "sessionId": self.session_id,
            "url": self.url,
            "familyId": self.family_id,
            "familyName": self.family_name,
            "guardianName": self.guardian_name,
            "guardianEmail": self.guardian_email,
            "guardianPhone": self.guardian_phone,
            "childCount": self.child_count,
            "calculatedRate": self.calculated_rate,
            "finalRate": self.final_rate,
            "isOverride": self.is_override,
            "rateDescription": self.rate_description,
            "tierDescription": self.tier_description,
            "overrideWarning": self.override_warning,
        }


class CheckoutService:
    """
    Service for Stripe checkout operations across both program accounts.

    Usage:
        service = CheckoutService()
        result = service.create_mahad_checkout_session(
            profile_id=profile.id,
            graduation_status=GraduationStatus.NON_GRADUATE,
            payment_frequency=PaymentFrequency.MONTHLY,
        )
        redirect(result.url)
    """

    def get_or_create_stripe_customer(
        self,
        person: Person,
        account_type: str,
        email: str,
    ) -> str:
        """
        Get the person's Stripe customer on ``account_type`` or create one.

        Returns the Stripe customer ID (cus_xxx).
        """
        account = queries.get_billing_account_by_person(person.id, account_type)
        if account is not None and account.customer_id_for(account_type):
            return account.customer_id_for(account_type)

        customer = stripe.Customer.create(
            email=email,
            name=person.name,
            metadata={
                "personId": str(person.id),
                "accountType": account_type,
            },
            api_key=get_stripe_api_key(account_type),
        )

        create_or_update_billing_account(person.id, account_type, customer.id)
        logger.info(
            "Created Stripe customer %s (%s) for person %s",
            customer.id,
            account_type,
            person.id,
        )
        return customer.id

    # ------------------------------------------------------------------
    # Mahad
    # ------------------------------------------------------------------

    def create_mahad_checkout_session(
        self,
        *,
        profile_id: int,
        graduation_status: str,
        payment_frequency: str,
        billing_type: str = BillingType.FULL_TIME,
        success_url: str | None = None,
        cancel_url: str | None = None,
    ) -> CheckoutSessionResult:
        """
        Create a subscription checkout session for a Mahad student.

        The profile's billing configuration is saved before Stripe is called,
        so a failed or abandoned checkout still records what the student chose.

        Raises:
            ValidationError: Exempt billing type or a non-positive rate.
            NotFoundError: Unknown profile or a profile outside Mahad.
        """
        if not should_create_subscription(billing_type):
            raise ValidationError("Exempt students do not need to set up payment")

        profile = (
            ProgramProfile.objects.select_related("person")
            .filter(pk=profile_id, program=Program.MAHAD_PROGRAM)
            .first()
        )
        if profile is None:
            raise NotFoundError("Student profile not found")

        rate = calculate_mahad_rate(graduation_status, payment_frequency, billing_type)
        if rate <= 0:
            raise ValidationError("Invalid rate calculation")

        profile.graduation_status = graduation_status
        profile.payment_frequency = payment_frequency
        profile.billing_type = billing_type
        profile.monthly_rate = rate
        profile.save(
            update_fields=[
                "graduation_status",
                "payment_frequency",
                "billing_type",
                "monthly_rate",
                "modified",
            ],
        )

        person = profile.person
        account = queries.get_billing_account_by_person(
            person.id,
            StripeAccountType.MAHAD,
        )
        customer_id = account.stripe_customer_id_mahad if account else None
        customer_kwargs = (
            {"customer": customer_id}
            if customer_id
            else _optional({"customer_email": primary_email(person)})
        )

        base_url = settings.APP_BASE_URL
        session = stripe.checkout.Session.create(
            mode="subscription",
            payment_method_types=["card", "us_bank_account"],
            line_items=[
                {
                    "price_data": {
                        "currency": "usd",
                        "product": get_product_id(StripeAccountType.MAHAD),
                        "unit_amount": rate,
                        "recurring": get_stripe_interval(payment_frequency),
                    },
                    "quantity": 1,
                },
            ],
            subscription_data={
                "metadata": {
                    # Shown in the Stripe dashboard
                    "Student": person.name,
                    "Rate": format_rate_display(rate, payment_frequency),
                    "Status": format_graduation_status(graduation_status),
                    "Type": format_billing_type(billing_type),
                    "Source": "Mahad Registration",
                    # Read by the webhook handlers
                    "profileId": str(profile.id),
                    "personId": str(person.id),
                    "studentName": person.name,
                    "graduationStatus": graduation_status,
                    "paymentFrequency": payment_frequency,
                    "billingType": billing_type,
                    "calculatedRate": str(rate),
                    "source": MAHAD_CHECKOUT_SOURCE,
                },
            },
            metadata={
                "Student": person.name,
                "profileId": str(profile.id),
                "personId": str(person.id),
                "calculatedRate": str(rate),
                "source": MAHAD_CHECKOUT_SOURCE,
            },
            success_url=success_url or f"{base_url}/mahad/register?success=true",
            cancel_url=cancel_url or f"{base_url}/mahad/register?canceled=true",
            allow_promotion_codes=True,
            api_key=get_stripe_api_key(StripeAccountType.MAHAD),
            **customer_kwargs,
        )

        logger.info(
            "Created Mahad checkout session %s for profile %s at %s",
            session.id,
            profile.id,
            format_rate_display(rate, payment_frequency),
        )
        return CheckoutSessionResult(session_id=session.id, url=session.url)

    # ------------------------------------------------------------------
    # Dugsi
    # ------------------------------------------------------------------

    def create_dugsi_checkout_session(
        self,
        family_id: str,
        override_amount: int | None = None,
        billing_start_date: dt.date | None = None,
        success_url: str | None = None,
        cancel_url: str | None = None,
    ) -> DugsiCheckoutResult:
        """
        Create a monthly ACH subscription checkout for a Dugsi family.

        Raises:
            NotFoundError: No registered or enrolled children in the family.
            ValidationError: Missing guardian or guardian email, an invalid
                override amount, or a billing start date out of range.
        """
        profiles = list(
            ProgramProfile.objects.select_related("person")
            .filter(
                family_reference_id=family_id,
                program=Program.DUGSI_PROGRAM,
                status__in=BILLABLE_DUGSI_STATUSES,
            )
            .order_by("created"),
        )
        if not profiles:
            raise NotFoundError("Family not found or no active students")

        guardian = get_primary_payer([profile.person for profile in profiles])
        if guardian is None:
            raise ValidationError("No guardian found for this family")
        guardian_email = primary_email(guardian)
        if not guardian_email:
            raise ValidationError(
                "Guardian must have an email address on file to receive payment link",
            )

        child_count = len(profiles)
        calculated_rate = calculate_dugsi_rate(child_count)
        override_warning = None
        if override_amount is not None:
            validation = validate_override_amount(override_amount, child_count)
            if not validation.valid:
                raise ValidationError(validation.reason)
            override_warning = validation.reason
        rate = int(override_amount) if override_amount is not None else calculated_rate

        if rate > MAX_EXPECTED_FAMILY_RATE:
            logger.warning(
                "Dugsi rate %s for family %s exceeds expected maximum %s",
                format_rate(rate),
                family_id,
                format_rate(MAX_EXPECTED_FAMILY_RATE),
            )

        subscription_data: dict = {}
        if billing_start_date is not None:
            subscription_data["billing_cycle_anchor"] = billing_cycle_anchor(
                billing_start_date,
            )
            subscription_data["proration_behavior"] = "none"

        customer_id = self.get_or_create_stripe_customer(
            guardian,
            StripeAccountType.DUGSI,
            guardian_email,
        )

        profile_ids = [profile.id for profile in profiles]
        child_names = ", ".join(profile.person.first_name for profile in profiles)
        tier = get_rate_tier_description(child_count)
        subscription_data["metadata"] = {
            "Family": guardian.name,
            "Children": child_names,
            "Rate": format_rate_display(rate),
            "Tier": tier,
            "Source": "Dugsi Admin Payment Link",
            "familyId": family_id,
            "guardianPersonId": str(guardian.id),
            "childCount": str(child_count),
            "profileIds": ",".join(str(pk) for pk in profile_ids),
            "calculatedRate": str(calculated_rate),
            "overrideUsed": "true" if override_amount is not None else "false",
            "billingStartDate": (
                billing_start_date.isoformat() if billing_start_date else "immediate"
            ),
            "source": DUGSI_CHECKOUT_SOURCE,
        }

        base_url = settings.APP_BASE_URL
        session = stripe.checkout.Session.create(
            mode="subscription",
            customer=customer_id,
            payment_method_types=["us_bank_account"],
            line_items=[
                {
                    "price_data": {
                        "currency": "usd",
                        "product": get_product_id(StripeAccountType.DUGSI),
                        "unit_amount": rate,
                        "recurring": get_stripe_interval(PaymentFrequency.MONTHLY),
                    },
                    "quantity": 1,
                },
            ],
            subscription_data=subscription_data,
            metadata={
                "Family": guardian.name,
                "familyId": family_id,
                "guardianPersonId": str(guardian.id),
                "childCount": str(child_count),
                "source": DUGSI_CHECKOUT_SOURCE,
            },
            success_url=success_url or f"{base_url}/dugsi?payment=success",
            cancel_url=cancel_url or f"{base_url}/dugsi?payment=canceled",
            api_key=get_stripe_api_key(StripeAccountType.DUGSI),
        )

        logger.info(
            "Created Dugsi checkout session %s for family %s (%s children, %s)",
            session.id,
            family_id,
            child_count,
            format_rate_display(rate),
        )
        return DugsiCheckoutResult(
            session_id=session.id,
            url=session.url,
            family_id=family_id,
            family_name=guardian.name,
            guardian_person_id=guardian.id,
            guardian_name=guardian.name,
            guardian_email=guardian_email,
            guardian_phone=primary_phone(guardian),
            child_count=child_count,
            profile_ids=profile_ids,
            calculated_rate=calculated_rate,
            final_rate=rate,
            is_override=override_amount is not None,
            rate_description=format_rate(rate),
            tier_description=tier,
            override_warning=override_warning,
        )


def _optional(kwargs: dict) -> dict:
    return {key: value for key, value in kwargs.items() if value}
