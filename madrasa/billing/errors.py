"""Billing-specific exceptions."""

from __future__ import annotations

from django.core.exceptions import ImproperlyConfigured

from madrasa.core.exceptions import MadrasaError


class BillingAssignmentError(MadrasaError):
    """Raised when a strict billing assignment would over-assign a subscription."""

    def __init__(self, detail: str):
        super().__init__(detail, code="billing_assignment_error")


class StripeAccountNotConfigured(ImproperlyConfigured):
    """Raised when a Stripe key or secret for an account type is missing."""


class WebhookError(Exception):
    """Base exception for webhook handler failures."""


class RetryableWebhookError(WebhookError):
    """
    The event arrived before the data it refers to.

    The handler returns 500 and forgets the event so Stripe's redelivery is
    processed again (e.g. ``subscription.updated`` racing ``created``).
    """


class RateMismatchError(WebhookError):
    """The amount Stripe charged does not match the rate we calculated."""

    def __init__(self, expected: int, actual: int, subscription_id: str = ""):
        self.expected = expected
        self.actual = actual
        self.subscription_id = subscription_id
        super().__init__(
            f"Rate mismatch for {subscription_id or 'subscription'}: "
            f"expected {expected}, got {actual}",
        )
