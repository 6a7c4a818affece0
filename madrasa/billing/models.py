"""
Billing models.

Key design decisions:
- BillingAccount is per person and per Stripe account type; it holds one
  customer id field per Stripe account so a guardian paying for both
  programs keeps a single row per program family.
- Subscription mirrors a Stripe subscription. Which Stripe account it lives
  in is recorded on ``stripe_account_type``.
- BillingAssignment apportions a subscription's amount across program
  profiles (siblings on one Dugsi family subscription). The sum of active
  assignment amounts should not exceed the subscription amount, but this is
  reported rather than enforced (see ``madrasa.billing.accounting``).
- WebhookEvent is the idempotency ledger for Stripe webhook deliveries.

Relationship:
    Person ──1:N── BillingAccount ──1:N── Subscription ──1:N── BillingAssignment ──N:1── ProgramProfile
"""

from django.db import models
from django.utils.translation import gettext_lazy as _
from model_utils.models import TimeStampedModel

from madrasa.billing.constants import CUSTOMER_ID_FIELDS
from madrasa.billing.constants import StripeAccountType
from madrasa.billing.constants import SubscriptionStatus
from madrasa.billing.constants import WebhookSource
from madrasa.people.models import Person
from madrasa.programs.models import ProgramProfile


class BillingAccount(TimeStampedModel):
    """
    Stripe customer references for one payer in one program family.

    Usage:
        account.customer_id_for(StripeAccountType.DUGSI)
    """

    person = models.ForeignKey(
        Person,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="billing_accounts",
    )
    account_type = models.CharField(
        max_length=20,
        choices=StripeAccountType.choices,
    )
    stripe_customer_id_mahad = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
    )
    stripe_customer_id_dugsi = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
    )
    stripe_customer_id_youth = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
    )
    stripe_customer_id_donation = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
    )
    payment_intent_id_dugsi = models.CharField(max_length=255, blank=True, default="")
    payment_method_captured = models.BooleanField(default=False)
    payment_method_captured_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["person", "account_type"],
                name="unique_billing_account_per_person_type",
            ),
        ]

    def __str__(self):
        return f"{self.person or 'Unlinked'} ({self.get_account_type_display()})"

    def customer_id_for(self, account_type: str) -> str | None:
        return getattr(self, CUSTOMER_ID_FIELDS[account_type])


class Subscription(TimeStampedModel):
    """
    Local mirror of a Stripe subscription.

    ``amount`` is the charge per billing interval in cents. ``paid_until`` is
    advanced from invoice period ends.
    """

    billing_account = models.ForeignKey(
        BillingAccount,
        on_delete=models.PROTECT,
        related_name="subscriptions",
    )
    stripe_account_type = models.CharField(
        max_length=20,
        choices=StripeAccountType.choices,
    )
    stripe_subscription_id = models.CharField(max_length=255, unique=True)
    stripe_customer_id = models.CharField(max_length=255, db_index=True)
    status = models.CharField(
        max_length=20,
        choices=SubscriptionStatus.choices,
        default=SubscriptionStatus.INCOMPLETE,
    )
    amount = models.PositiveIntegerField(default=0)
    currency = models.CharField(max_length=3, default="usd")
    interval = models.CharField(max_length=10, default="month")
    current_period_start = models.DateTimeField(null=True, blank=True)
    current_period_end = models.DateTimeField(null=True, blank=True)
    paid_until = models.DateTimeField(null=True, blank=True)
    last_payment_date = models.DateTimeField(null=True, blank=True)
    previous_subscription_ids = models.JSONField(
        default=list,
        blank=True,
        help_text=_("Stripe subscription ids this subscription replaced."),
    )

    def __str__(self):
        return f"{self.stripe_subscription_id} ({self.status})"


class BillingAssignmentQuerySet(models.QuerySet):
    def active(self):
        return self.filter(is_active=True)


class BillingAssignment(TimeStampedModel):
    """The share of a subscription's amount attributed to one profile."""

    subscription = models.ForeignKey(
        Subscription,
        on_delete=models.CASCADE,
        related_name="assignments",
    )
    program_profile = models.ForeignKey(
        ProgramProfile,
        on_delete=models.CASCADE,
        related_name="billing_assignments",
    )
    amount = models.PositiveIntegerField()
    percentage = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        null=True,
        blank=True,
    )
    is_active = models.BooleanField(default=True)
    start_date = models.DateTimeField()
    end_date = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True, default="")

    objects = BillingAssignmentQuerySet.as_manager()

    def __str__(self):
        return f"{self.program_profile} ← {self.subscription} ({self.amount})"


class SubscriptionHistory(TimeStampedModel):
    """Audit row for each webhook or admin action touching a subscription."""

    subscription = models.ForeignKey(
        Subscription,
        on_delete=models.CASCADE,
        related_name="history",
    )
    event_type = models.CharField(max_length=64)
    event_id = models.CharField(max_length=255, blank=True, default="")
    status = models.CharField(max_length=20, blank=True, default="")
    amount = models.PositiveIntegerField(null=True, blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    processed_at = models.DateTimeField()

    class Meta:
        verbose_name_plural = "subscription history"
        ordering = ["-processed_at"]

    def __str__(self):
        return f"{self.event_type} on {self.subscription_id}"


class WebhookEvent(TimeStampedModel):
    """
    One processed Stripe webhook delivery.

    The unique (event_id, source) pair is what makes redelivery a no-op.
    """

    event_id = models.CharField(max_length=255)
    event_type = models.CharField(max_length=64)
    source = models.CharField(max_length=10, choices=WebhookSource.choices)
    payload = models.JSONField(default=dict)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["event_id", "source"],
                name="unique_webhook_event_per_source",
            ),
        ]

    def __str__(self):
        return f"{self.source}:{self.event_type} {self.event_id}"
