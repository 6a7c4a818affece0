import datetime as dt
from unittest import mock

import pytest

from madrasa.billing.constants import StripeAccountType
from madrasa.billing.constants import SubscriptionStatus
from madrasa.billing.subscriptions import cancel_subscription
from madrasa.billing.subscriptions import create_subscription_from_stripe
from madrasa.billing.subscriptions import extract_period_dates
from madrasa.billing.subscriptions import is_subscription_active
from madrasa.billing.subscriptions import sync_subscription_from_stripe
from madrasa.billing.subscriptions import validate_stripe_subscription
from madrasa.billing.tests.factories import BillingAccountFactory
from madrasa.billing.tests.factories import SubscriptionFactory
from madrasa.billing.tests.factories import stripe_subscription
from madrasa.core.exceptions import NotFoundError
from madrasa.core.exceptions import ValidationError


class TestValidateStripeSubscription:
    def test_extracts_fields(self):
        data = validate_stripe_subscription(
            stripe_subscription(customer={"id": "cus_expanded"}, amount=22000),
        )

        assert data.subscription_id == "sub_test123"
        assert data.customer_id == "cus_expanded"
        assert data.amount == 22000
        assert data.interval == "month"
        assert data.current_period_end == dt.datetime(2025, 2, 1, tzinfo=dt.UTC)

    def test_rejects_bad_id(self):
        with pytest.raises(ValidationError, match="Must start with"):
            validate_stripe_subscription(stripe_subscription(subscription_id="in_123"))

    def test_rejects_missing_customer(self):
        with pytest.raises(ValidationError, match="customer"):
            validate_stripe_subscription(stripe_subscription(customer=None))

    def test_unknown_status_becomes_incomplete(self):
        data = validate_stripe_subscription(stripe_subscription(status="mystery"))

        assert data.status == SubscriptionStatus.INCOMPLETE

    def test_paused_collection_is_paused(self):
        paused = {**stripe_subscription(), "pause_collection": {"behavior": "void"}}
        resumed = {**stripe_subscription(), "pause_collection": None}

        assert validate_stripe_subscription(paused).status == SubscriptionStatus.PAUSED
        assert validate_stripe_subscription(resumed).status == SubscriptionStatus.ACTIVE


class TestExtractPeriodDates:
    def test_falls_back_to_item_periods(self):
        sub = stripe_subscription()
        del sub["current_period_start"]
        del sub["current_period_end"]
        sub["items"]["data"][0].update(
            current_period_start=1735689600,
            current_period_end=1738368000,
        )

        start, end = extract_period_dates(sub)

        assert start == dt.datetime(2025, 1, 1, tzinfo=dt.UTC)
        assert end == dt.datetime(2025, 2, 1, tzinfo=dt.UTC)

    def test_missing_everywhere(self):
        assert extract_period_dates({"items": {"data": []}}) == (None, None)


@pytest.mark.parametrize(
    ("status", "expected"),
    [
        ("active", True),
        ("trialing", True),
        ("past_due", False),
        ("canceled", False),
        (None, False),
    ],
)
def test_is_subscription_active(status, expected):
    assert is_subscription_active(status) is expected


@pytest.mark.django_db
class TestSubscriptionPersistence:
    def test_create_from_stripe(self):
        account = BillingAccountFactory(stripe_customer_id_mahad="cus_test123")

        subscription = create_subscription_from_stripe(
            stripe_subscription(),
            account.id,
            StripeAccountType.MAHAD,
        )

        assert subscription.billing_account == account
        assert subscription.status == SubscriptionStatus.ACTIVE
        assert subscription.amount == 12000
        assert subscription.paid_until == subscription.current_period_end

    def test_sync_updates_existing(self):
        local = SubscriptionFactory(stripe_subscription_id="sub_sync", amount=12000)

        synced = sync_subscription_from_stripe(
            stripe_subscription(subscription_id="sub_sync", status="past_due", amount=9000),
        )

        local.refresh_from_db()
        assert synced.id == local.id
        assert local.status == SubscriptionStatus.PAST_DUE
        assert local.amount == 9000

    def test_sync_unknown_returns_none(self):
        assert sync_subscription_from_stripe(stripe_subscription(subscription_id="sub_x")) is None

    def test_cancel_locally(self):
        local = SubscriptionFactory(stripe_subscription_id="sub_cancel")

        with mock.patch("stripe.Subscription.cancel") as stripe_cancel:
            cancel_subscription("sub_cancel")

        local.refresh_from_db()
        assert local.status == SubscriptionStatus.CANCELED
        stripe_cancel.assert_not_called()

    def test_cancel_in_stripe_uses_account_key(self, settings):
        SubscriptionFactory(stripe_subscription_id="sub_remote")
        settings.STRIPE_DUGSI_SECRET_KEY = "sk_test_dugsi"

        with mock.patch("stripe.Subscription.cancel") as stripe_cancel:
            cancel_subscription(
                "sub_remote",
                cancel_in_stripe=True,
                account_type=StripeAccountType.DUGSI,
            )

        stripe_cancel.assert_called_once_with("sub_remote", api_key="sk_test_dugsi")

    def test_cancel_in_stripe_requires_account_type(self):
        with pytest.raises(ValueError, match="Account type required"):
            cancel_subscription("sub_any", cancel_in_stripe=True)

    def test_cancel_unknown(self):
        with pytest.raises(NotFoundError):
            cancel_subscription("sub_missing")
