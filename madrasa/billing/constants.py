"""
Billing constants.

Mahad and Dugsi each have their own Stripe account, so most billing records
carry a ``StripeAccountType`` saying which account they belong to.
"""

from django.db import models
from django.utils.translation import gettext_lazy as _

from madrasa.programs.constants import Program


class StripeAccountType(models.TextChoices):
    MAHAD = "MAHAD", _("Mahad")
    DUGSI = "DUGSI", _("Dugsi")
    YOUTH_EVENTS = "YOUTH_EVENTS", _("Youth Events")
    GENERAL_DONATION = "GENERAL_DONATION", _("General Donation")


class SubscriptionStatus(models.TextChoices):
    """Mirror of Stripe's subscription statuses (lower-case, as Stripe sends them)."""

    INCOMPLETE = "incomplete", _("Incomplete")
    INCOMPLETE_EXPIRED = "incomplete_expired", _("Incomplete Expired")
    TRIALING = "trialing", _("Trialing")
    ACTIVE = "active", _("Active")
    PAST_DUE = "past_due", _("Past Due")
    CANCELED = "canceled", _("Canceled")
    UNPAID = "unpaid", _("Unpaid")
    PAUSED = "paused", _("Paused")


class WebhookSource(models.TextChoices):
    MAHAD = "mahad", _("Mahad")
    DUGSI = "dugsi", _("Dugsi")


class MatchMethod(models.TextChoices):
    EMAIL = "email", _("Email")
    PHONE = "phone", _("Phone")
    GUARDIAN = "guardian", _("Guardian")


# Subscriptions in these states are considered live and must be assigned.
LIVE_SUBSCRIPTION_STATUSES = (
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.TRIALING,
    SubscriptionStatus.PAST_DUE,
)
ACTIVE_SUBSCRIPTION_STATUSES = (
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.TRIALING,
)
# A Dugsi family subscription that withdrawals and pauses can still adjust.
FAMILY_BILLING_STATUSES = (
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.PAUSED,
)

ACCOUNT_FOR_PROGRAM = {
    Program.MAHAD_PROGRAM: StripeAccountType.MAHAD,
    Program.DUGSI_PROGRAM: StripeAccountType.DUGSI,
}

# BillingAccount field holding the Stripe customer id for each account type.
CUSTOMER_ID_FIELDS = {
    StripeAccountType.MAHAD: "stripe_customer_id_mahad",
    StripeAccountType.DUGSI: "stripe_customer_id_dugsi",
    StripeAccountType.YOUTH_EVENTS: "stripe_customer_id_youth",
    StripeAccountType.GENERAL_DONATION: "stripe_customer_id_donation",
}

# Stripe Checkout custom field keys configured on the Mahad payment link.
STUDENT_EMAIL_FIELD_KEY = "studentsemailonethatyouusedtoregister"
STUDENT_PHONE_FIELD_KEY = "studentswhatsappthatyouuseforourgroup"

MAHAD_CHECKOUT_SOURCE = "mahad-registration"
DUGSI_CHECKOUT_SOURCE = "dugsi-admin-payment-link"


def program_for_account(account_type: str) -> str:
    """Program whose profiles are billed through ``account_type``."""
    if account_type == StripeAccountType.MAHAD:
        return Program.MAHAD_PROGRAM
    return Program.DUGSI_PROGRAM


class BillingAdjustment(models.TextChoices):
    """What happens to the family subscription when a child leaves or returns."""

    AUTO_RECALCULATE = "auto_recalculate", _("Recalculate for remaining children")
    KEEP_CURRENT = "keep_current", _("Keep current amount")
    CUSTOM = "custom", _("Custom amount")
    CANCEL_SUBSCRIPTION = "cancel_subscription", _("Cancel subscription")
