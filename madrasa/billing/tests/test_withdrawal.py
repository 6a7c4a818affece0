from unittest import mock

import pytest
import stripe
from django.db import DatabaseError

from madrasa.billing import withdrawal
from madrasa.billing.constants import BillingAdjustment
from madrasa.billing.constants import SubscriptionStatus
from madrasa.billing.models import BillingAssignment
from madrasa.billing.tests.factories import BillingAssignmentFactory
from madrasa.billing.tests.factories import DugsiBillingAccountFactory
from madrasa.billing.tests.factories import SubscriptionFactory
from madrasa.billing.tests.factories import stripe_subscription
from madrasa.core.exceptions import NotFoundError
from madrasa.core.exceptions import ValidationError
from madrasa.programs.constants import EnrollmentStatus
from madrasa.programs.constants import WithdrawalReason
from madrasa.programs.models import Enrollment
from madrasa.programs.tests.factories import DugsiProfileFactory
from madrasa.programs.tests.factories import EnrollmentFactory
from madrasa.programs.tests.factories import MahadProfileFactory

pytestmark = pytest.mark.django_db

FAMILY = "fam-withdraw"


def family(children=3, amount=23000, status=SubscriptionStatus.ACTIVE):
    """A Dugsi family whose children all share one subscription."""
    subscription = SubscriptionFactory(
        billing_account=DugsiBillingAccountFactory(),
        stripe_subscription_id="sub_family",
        amount=amount,
        status=status,
    )
    profiles = DugsiProfileFactory.create_batch(children, family_reference_id=FAMILY)
    share = amount // children
    for profile in profiles:
        EnrollmentFactory(program_profile=profile, batch=None)
        BillingAssignmentFactory(
            subscription=subscription,
            program_profile=profile,
            amount=share,
        )
    return subscription, profiles


def retrieved(item_id="si_family"):
    subscription = stripe_subscription("sub_family", amount=23000)
    subscription["items"]["data"][0]["id"] = item_id
    return subscription


class TestFormatWithdrawalReason:
    def test_label_only(self):
        assert withdrawal.format_withdrawal_reason(WithdrawalReason.FAMILY_MOVED) == "Family moved"

    def test_label_with_note(self):
        text = withdrawal.format_withdrawal_reason(WithdrawalReason.FINANCIAL, "  lost job ")

        assert text == "Financial reasons: lost job"


class TestWithdrawPreview:
    def test_preview_for_middle_child(self):
        _subscription, profiles = family()

        preview = withdrawal.get_withdraw_preview(profiles[0].id)

        assert preview.active_children_count == 3
        assert preview.current_amount == 23000
        assert preview.recalculated_amount == 16000
        assert preview.is_last_active_child is False
        assert preview.has_active_subscription is True
        assert preview.is_paused is False

    def test_preview_for_last_child_without_subscription(self):
        profile = DugsiProfileFactory()

        preview = withdrawal.get_withdraw_preview(profile.id)

        assert preview.is_last_active_child is True
        assert preview.recalculated_amount == 0
        assert preview.current_amount is None
        assert preview.has_active_subscription is False

    def test_mahad_profile_is_not_found(self):
        with pytest.raises(NotFoundError, match="Student not found"):
            withdrawal.get_withdraw_preview(MahadProfileFactory().id)


class TestWithdrawChild:
    def test_auto_recalculate_updates_stripe_and_rebalances(self):
        subscription, profiles = family()

        with (
            mock.patch("stripe.Subscription.retrieve", return_value=retrieved()),
            mock.patch("stripe.Subscription.modify") as modify,
        ):
            result = withdrawal.withdraw_child(
                profiles[2].id,
                reason=WithdrawalReason.FAMILY_MOVED,
                reason_note="Minneapolis",
            )

        assert result.withdrawn is True
        assert result.billing_updated is True
        assert result.billing_error is None

        kwargs = modify.call_args.kwargs
        assert modify.call_args.args == ("sub_family",)
        assert kwargs["proration_behavior"] == "none"
        item = kwargs["items"][0]
        assert item["id"] == "si_family"
        assert item["price_data"]["unit_amount"] == 16000
        assert item["price_data"]["product"] == "prod_test_dugsi"

        subscription.refresh_from_db()
        assert subscription.amount == 16000
        active = BillingAssignment.objects.active().filter(subscription=subscription)
        assert sorted(a.amount for a in active) == [8000, 8000]
        assert not active.filter(program_profile=profiles[2]).exists()

        profiles[2].refresh_from_db()
        assert profiles[2].status == EnrollmentStatus.WITHDRAWN
        enrollment = Enrollment.objects.get(program_profile=profiles[2])
        assert enrollment.reason == "Family moved: Minneapolis"

    def test_keep_current_leaves_stripe_alone(self):
        subscription, profiles = family(children=2, amount=16000)

        with mock.patch("stripe.Subscription.modify") as modify:
            result = withdrawal.withdraw_child(
                profiles[0].id,
                reason=WithdrawalReason.OTHER,
                adjustment=BillingAdjustment.KEEP_CURRENT,
            )

        assert result.billing_updated is True
        modify.assert_not_called()
        remaining = BillingAssignment.objects.active().get(subscription=subscription)
        assert remaining.amount == 16000

    def test_custom_amount(self):
        _subscription, profiles = family()

        with (
            mock.patch("stripe.Subscription.retrieve", return_value=retrieved()),
            mock.patch("stripe.Subscription.modify") as modify,
        ):
            withdrawal.withdraw_child(
                profiles[0].id,
                reason=WithdrawalReason.SEASONAL_BREAK,
                adjustment=BillingAdjustment.CUSTOM,
                custom_amount=15000,
            )

        assert modify.call_args.kwargs["items"][0]["price_data"]["unit_amount"] == 15000

    def test_custom_requires_amount(self):
        _subscription, profiles = family()

        with pytest.raises(ValidationError, match="Custom amount is required"):
            withdrawal.withdraw_child(
                profiles[0].id,
                reason=WithdrawalReason.OTHER,
                adjustment=BillingAdjustment.CUSTOM,
            )

    @pytest.mark.parametrize(
        "adjustment",
        [BillingAdjustment.KEEP_CURRENT, BillingAdjustment.CUSTOM],
    )
    def test_last_child_refuses_charging_adjustment(self, adjustment):
        _subscription, profiles = family(children=1, amount=8000)

        with pytest.raises(ValidationError, match="last active child"):
            withdrawal.withdraw_child(
                profiles[0].id,
                reason=WithdrawalReason.OTHER,
                adjustment=adjustment,
                custom_amount=5000,
            )

        profiles[0].refresh_from_db()
        assert profiles[0].status == EnrollmentStatus.ENROLLED

    def test_last_child_auto_cancels_pre_withdrawal_subscription(self):
        subscription, profiles = family(children=1, amount=8000)

        with mock.patch("stripe.Subscription.cancel") as cancel:
            result = withdrawal.withdraw_child(profiles[0].id, reason=WithdrawalReason.OTHER)

        assert result.billing_updated is True
        cancel.assert_called_once_with("sub_family", api_key="sk_test_dummy_dugsi_key_for_testing")
        subscription.refresh_from_db()
        assert subscription.status == SubscriptionStatus.CANCELED

    def test_cancel_without_subscription_reports_error(self):
        profile = DugsiProfileFactory()

        result = withdrawal.withdraw_child(
            profile.id,
            reason=WithdrawalReason.OTHER,
            adjustment=BillingAdjustment.CANCEL_SUBSCRIPTION,
        )

        assert result.withdrawn is True
        assert result.billing_updated is False
        assert result.billing_error == "No active subscription to cancel"

    def test_stripe_error_keeps_withdrawal(self):
        subscription, profiles = family()
        error = stripe.InvalidRequestError("No such subscription", param="id")

        with mock.patch("stripe.Subscription.retrieve", side_effect=error):
            result = withdrawal.withdraw_child(profiles[0].id, reason=WithdrawalReason.OTHER)

        assert result.withdrawn is True
        assert result.billing_updated is False
        assert "No such subscription" in result.billing_error
        profiles[0].refresh_from_db()
        assert profiles[0].status == EnrollmentStatus.WITHDRAWN
        subscription.refresh_from_db()
        assert subscription.amount == 23000

    def test_missing_stripe_item_is_reported(self):
        _subscription, profiles = family()
        without_items = stripe_subscription("sub_family")
        without_items["items"]["data"] = []

        with (
            mock.patch("stripe.Subscription.retrieve", return_value=without_items),
            mock.patch("stripe.Subscription.modify") as modify,
        ):
            result = withdrawal.withdraw_child(profiles[0].id, reason=WithdrawalReason.OTHER)

        assert result.billing_error == "No subscription item found in Stripe"
        modify.assert_not_called()

    def test_already_withdrawn(self):
        profile = DugsiProfileFactory(status=EnrollmentStatus.WITHDRAWN)

        with pytest.raises(ValidationError, match="already withdrawn"):
            withdrawal.withdraw_child(profile.id, reason=WithdrawalReason.OTHER)


class TestWithdrawAllChildren:
    def test_cancels_family_subscription(self):
        subscription, profiles = family()

        with mock.patch("stripe.Subscription.cancel") as cancel:
            result = withdrawal.withdraw_all_children(
                profiles[1].id,
                reason=WithdrawalReason.FINANCIAL,
            )

        assert result.withdrawn_count == 3
        assert result.failed_count == 0
        assert result.billing_updated is True
        cancel.assert_called_once()
        subscription.refresh_from_db()
        assert subscription.status == SubscriptionStatus.CANCELED
        assert not BillingAssignment.objects.active().filter(subscription=subscription).exists()

    def test_failed_child_downgrades_cancel_to_recalculate(self):
        _subscription, profiles = family()
        real_withdraw = withdrawal._withdraw_profile

        def fail_for_first(profile, reason_text):
            if profile.pk == profiles[0].pk:
                raise DatabaseError("locked")
            return real_withdraw(profile, reason_text)

        with (
            mock.patch.object(withdrawal, "_withdraw_profile", side_effect=fail_for_first),
            mock.patch("stripe.Subscription.cancel") as cancel,
            mock.patch("stripe.Subscription.retrieve", return_value=retrieved()),
            mock.patch("stripe.Subscription.modify") as modify,
        ):
            result = withdrawal.withdraw_all_children(
                profiles[0].id,
                reason=WithdrawalReason.OTHER,
            )

        assert result.withdrawn_count == 2
        assert result.failed_count == 1
        cancel.assert_not_called()
        assert modify.call_args.kwargs["items"][0]["price_data"]["unit_amount"] == 8000

    def test_no_active_children(self):
        profile = DugsiProfileFactory(status=EnrollmentStatus.WITHDRAWN)

        with pytest.raises(ValidationError, match="No active children"):
            withdrawal.withdraw_all_children(profile.id, reason=WithdrawalReason.OTHER)


class TestReEnrollChild:
    def test_rejoins_family_subscription(self):
        subscription, profiles = family(children=2, amount=16000)
        returning = DugsiProfileFactory(
            family_reference_id=FAMILY,
            status=EnrollmentStatus.WITHDRAWN,
        )

        with (
            mock.patch("stripe.Subscription.retrieve", return_value=retrieved()),
            mock.patch("stripe.Subscription.modify") as modify,
        ):
            result = withdrawal.re_enroll_child(returning.id)

        assert result.re_enrolled is True
        assert result.billing_updated is True
        assert modify.call_args.kwargs["items"][0]["price_data"]["unit_amount"] == 23000
        returning.refresh_from_db()
        assert returning.status == EnrollmentStatus.ENROLLED
        assert BillingAssignment.objects.active().filter(subscription=subscription).count() == 3

    def test_keep_current_rebalances_locally(self):
        subscription, _profiles = family(children=2, amount=16000)
        returning = DugsiProfileFactory(
            family_reference_id=FAMILY,
            status=EnrollmentStatus.WITHDRAWN,
        )

        with mock.patch("stripe.Subscription.modify") as modify:
            withdrawal.re_enroll_child(returning.id, adjustment=BillingAdjustment.KEEP_CURRENT)

        modify.assert_not_called()
        amounts = BillingAssignment.objects.active().filter(subscription=subscription)
        assert sorted(a.amount for a in amounts) == [5333, 5333, 5334]

    def test_not_withdrawn(self):
        profile = DugsiProfileFactory()

        with pytest.raises(ValidationError, match="not withdrawn"):
            withdrawal.re_enroll_child(profile.id)

    def test_cannot_cancel(self):
        profile = DugsiProfileFactory(status=EnrollmentStatus.WITHDRAWN)

        with pytest.raises(ValidationError, match="Cannot cancel"):
            withdrawal.re_enroll_child(
                profile.id,
                adjustment=BillingAdjustment.CANCEL_SUBSCRIPTION,
            )


class TestPauseAndResume:
    def test_pause_voids_collection(self):
        subscription, _profiles = family()

        with mock.patch("stripe.Subscription.modify") as modify:
            paused = withdrawal.pause_family_billing(FAMILY)

        modify.assert_called_once_with(
            "sub_family",
            pause_collection={"behavior": "void"},
            api_key="sk_test_dummy_dugsi_key_for_testing",
        )
        assert paused.pk == subscription.pk
        assert paused.status == SubscriptionStatus.PAUSED

    def test_resume_clears_pause(self):
        _subscription, _profiles = family(status=SubscriptionStatus.PAUSED)

        with mock.patch("stripe.Subscription.modify") as modify:
            resumed = withdrawal.resume_family_billing(FAMILY)

        assert modify.call_args.kwargs["pause_collection"] == ""
        assert resumed.status == SubscriptionStatus.ACTIVE

    def test_cannot_pause_paused(self):
        family(status=SubscriptionStatus.PAUSED)

        with pytest.raises(ValidationError, match='status "paused"'):
            withdrawal.pause_family_billing(FAMILY)

    def test_cannot_resume_active(self):
        family()

        with pytest.raises(ValidationError, match='status "active"'):
            withdrawal.resume_family_billing(FAMILY)

    def test_unknown_family(self):
        with pytest.raises(NotFoundError, match="No active subscription"):
            withdrawal.pause_family_billing("fam-unknown")

    def test_stripe_failure_leaves_status(self):
        subscription, _profiles = family()
        error = stripe.APIConnectionError("Network down")

        with (
            mock.patch("stripe.Subscription.modify", side_effect=error),
            pytest.raises(stripe.APIConnectionError),
        ):
            withdrawal.pause_family_billing(FAMILY)

        subscription.refresh_from_db()
        assert subscription.status == SubscriptionStatus.ACTIVE
