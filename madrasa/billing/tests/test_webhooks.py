import datetime as dt

import pytest

from madrasa.billing.constants import StripeAccountType
from madrasa.billing.constants import SubscriptionStatus
from madrasa.billing.constants import WebhookSource
from madrasa.billing.errors import RateMismatchError
from madrasa.billing.errors import RetryableWebhookError
from madrasa.billing.models import BillingAccount
from madrasa.billing.models import BillingAssignment
from madrasa.billing.models import Subscription
from madrasa.billing.models import SubscriptionHistory
from madrasa.billing.models import WebhookEvent
from madrasa.billing.tests.factories import BillingAccountFactory
from madrasa.billing.tests.factories import BillingAssignmentFactory
from madrasa.billing.tests.factories import SubscriptionFactory
from madrasa.billing.tests.factories import stripe_subscription
from madrasa.billing.webhooks import handle_checkout_completed
from madrasa.billing.webhooks import handle_invoice_payment_failed
from madrasa.billing.webhooks import handle_subscription_created
from madrasa.billing.webhooks import invoice_period_end
from madrasa.billing.webhooks import invoice_subscription_id
from madrasa.billing.webhooks import parse_metadata
from madrasa.billing.webhooks import process_event
from madrasa.billing.webhooks import validate_subscription_rate
from madrasa.people.tests.factories import ContactPointFactory
from madrasa.people.tests.factories import PersonFactory
from madrasa.programs.tests.factories import DugsiProfileFactory
from madrasa.programs.tests.factories import MahadProfileFactory

MAHAD = StripeAccountType.MAHAD
DUGSI = StripeAccountType.DUGSI


def event(event_type, obj, event_id="evt_1"):
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


class TestSubscriptionMetadata:
    def test_parses_strings(self):
        metadata = parse_metadata(
            {
                "profileIds": "12, 13,",
                "guardianPersonId": "7",
                "calculatedRate": "16000",
                "overrideUsed": "false",
                "familyId": "",
                "Family": "Hassan",
            },
        )

        assert metadata.linked_profile_ids == [12, 13]
        assert metadata.payer_person_id == 7
        assert metadata.calculated_rate == 16000
        assert metadata.override_used is False
        assert metadata.family_id is None

    def test_single_profile(self):
        metadata = parse_metadata({"profileId": "5", "personId": "9"})

        assert metadata.linked_profile_ids == [5]
        assert metadata.payer_person_id == 9

    def test_malformed_metadata_is_ignored(self):
        metadata = parse_metadata({"calculatedRate": "twelve"}, "sub_bad")

        assert metadata.calculated_rate is None
        assert metadata.linked_profile_ids == []


class TestValidateSubscriptionRate:
    def test_mahad_mismatch_raises(self):
        sub = stripe_subscription(amount=9000)
        metadata = parse_metadata({"calculatedRate": "12000", "billingType": "FULL_TIME"})

        with pytest.raises(RateMismatchError) as excinfo:
            validate_subscription_rate(sub, MAHAD, metadata)

        assert excinfo.value.expected == 12000
        assert excinfo.value.actual == 9000

    def test_mahad_stale_rate_only_warns(self, caplog):
        sub = stripe_subscription(amount=10000)
        metadata = parse_metadata(
            {
                "calculatedRate": "10000",
                "graduationStatus": "NON_GRADUATE",
                "paymentFrequency": "MONTHLY",
                "billingType": "FULL_TIME",
            },
        )

        validate_subscription_rate(sub, MAHAD, metadata)

        assert "differs from recalculated rate" in caplog.text

    def test_mahad_without_metadata_is_skipped(self):
        validate_subscription_rate(stripe_subscription(amount=1), MAHAD, parse_metadata({}))

    def test_dugsi_override_skips_check(self, caplog):
        metadata = parse_metadata({"childCount": "2", "overrideUsed": "true"})

        validate_subscription_rate(stripe_subscription(amount=5000), DUGSI, metadata)

        assert "should cost" not in caplog.text

    def test_dugsi_mismatch_warns(self, caplog):
        metadata = parse_metadata({"childCount": "2", "overrideUsed": "false"})

        validate_subscription_rate(stripe_subscription(amount=5000), DUGSI, metadata)

        assert "should cost" in caplog.text


class TestInvoiceHelpers:
    def test_subscription_id_from_parent(self):
        invoice = {
            "id": "in_1",
            "parent": {"subscription_details": {"subscription": "sub_new_api"}},
        }

        assert invoice_subscription_id(invoice) == "sub_new_api"

    def test_period_end_prefers_line_item(self):
        invoice = {
            "period_end": 1735689600,
            "lines": {"data": [{"period": {"end": 1738368000}}]},
        }

        assert invoice_period_end(invoice) == dt.datetime(2025, 2, 1, tzinfo=dt.UTC)

    def test_period_end_fallback(self):
        assert invoice_period_end({"period_end": 1735689600}) == dt.datetime(
            2025,
            1,
            1,
            tzinfo=dt.UTC,
        )


@pytest.mark.django_db
class TestCheckoutCompleted:
    def test_marks_payment_method_captured(self):
        profile = MahadProfileFactory()
        ContactPointFactory(person=profile.person, value="student@example.com")
        session = {
            "id": "cs_1",
            "customer": "cus_checkout",
            "subscription": "sub_1",
            "customer_details": {"email": "student@example.com"},
        }

        handle_checkout_completed(session, MAHAD)

        account = BillingAccount.objects.get(person=profile.person)
        assert account.stripe_customer_id_mahad == "cus_checkout"
        assert account.payment_method_captured is True
        assert account.payment_method_captured_at is not None

    def test_unmatched_session_is_logged(self, caplog):
        session = {"id": "cs_2", "customer": "cus_x", "customer_details": {}}

        handle_checkout_completed(session, MAHAD)

        assert "Manual review required" in caplog.text
        assert not BillingAccount.objects.exists()


@pytest.mark.django_db
class TestSubscriptionCreated:
    def test_records_and_links_profiles(self):
        account = BillingAccountFactory(stripe_customer_id_mahad="cus_test123")
        profile = MahadProfileFactory(person=account.person)
        sub = stripe_subscription(
            metadata={
                "profileId": str(profile.id),
                "calculatedRate": "12000",
                "graduationStatus": "NON_GRADUATE",
                "paymentFrequency": "MONTHLY",
                "billingType": "FULL_TIME",
            },
        )

        handle_subscription_created(sub, MAHAD, "evt_created")

        subscription = Subscription.objects.get(stripe_subscription_id="sub_test123")
        assert subscription.billing_account == account
        assignment = subscription.assignments.get()
        assert assignment.program_profile == profile
        assert assignment.amount == 12000
        history = SubscriptionHistory.objects.get(subscription=subscription)
        assert history.event_id == "evt_created"

    def test_creates_account_from_metadata_payer(self):
        guardian = PersonFactory()
        children = DugsiProfileFactory.create_batch(2, family_reference_id="fam-1")
        sub = stripe_subscription(
            customer="cus_family",
            amount=16000,
            metadata={
                "guardianPersonId": str(guardian.id),
                "profileIds": ",".join(str(c.id) for c in children),
                "childCount": "2",
                "overrideUsed": "false",
            },
        )

        handle_subscription_created(sub, DUGSI)

        account = BillingAccount.objects.get(person=guardian)
        assert account.stripe_customer_id_dugsi == "cus_family"
        amounts = BillingAssignment.objects.values_list("amount", flat=True)
        assert sorted(amounts) == [8000, 8000]

    def test_unknown_customer_without_payer_is_retryable(self):
        with pytest.raises(RetryableWebhookError):
            handle_subscription_created(stripe_subscription(customer="cus_nobody"), MAHAD)

    def test_skips_unknown_profiles(self, caplog):
        BillingAccountFactory(stripe_customer_id_mahad="cus_test123")

        handle_subscription_created(
            stripe_subscription(metadata={"profileId": "999999"}),
            MAHAD,
        )

        assert not BillingAssignment.objects.exists()
        assert "unknown profiles" in caplog.text

    def test_rate_mismatch_creates_nothing(self):
        BillingAccountFactory(stripe_customer_id_mahad="cus_test123")
        sub = stripe_subscription(
            amount=5000,
            metadata={"calculatedRate": "12000", "billingType": "FULL_TIME"},
        )

        with pytest.raises(RateMismatchError):
            handle_subscription_created(sub, MAHAD)
        assert not Subscription.objects.exists()


@pytest.mark.django_db
class TestProcessEvent:
    def test_records_ledger_and_skips_redelivery(self):
        SubscriptionFactory(stripe_subscription_id="sub_1", status=SubscriptionStatus.ACTIVE)
        payload = event(
            "customer.subscription.updated",
            stripe_subscription("sub_1", status="past_due"),
        )

        assert process_event(payload, WebhookSource.MAHAD, payload) is True
        assert process_event(payload, WebhookSource.MAHAD, payload) is False

        assert WebhookEvent.objects.filter(event_id="evt_1").count() == 1
        assert Subscription.objects.get().status == SubscriptionStatus.PAST_DUE
        assert SubscriptionHistory.objects.count() == 1

    def test_same_event_id_on_other_source_is_processed(self):
        payload = event("customer.created", {"id": "cus_1"})

        assert process_event(payload, WebhookSource.MAHAD) is True
        assert process_event(payload, WebhookSource.DUGSI) is True

    def test_unhandled_type_is_acknowledged(self):
        assert process_event(event("charge.refunded", {"id": "ch_1"}), WebhookSource.DUGSI)
        assert WebhookEvent.objects.filter(event_type="charge.refunded").exists()

    def test_failed_handler_forgets_event(self):
        payload = event(
            "customer.subscription.updated",
            stripe_subscription("sub_unknown"),
            "evt_retry",
        )

        with pytest.raises(RetryableWebhookError):
            process_event(payload, WebhookSource.MAHAD)
        assert not WebhookEvent.objects.filter(event_id="evt_retry").exists()

    def test_deleted_cancels_and_unlinks(self):
        assignment = BillingAssignmentFactory(subscription__stripe_subscription_id="sub_gone")

        process_event(
            event("customer.subscription.deleted", stripe_subscription("sub_gone")),
            WebhookSource.MAHAD,
        )

        assignment.refresh_from_db()
        assert assignment.is_active is False
        assert assignment.subscription.status == SubscriptionStatus.CANCELED

    def test_invoice_paid_advances_paid_until(self):
        SubscriptionFactory(stripe_subscription_id="sub_paid")
        invoice = {
            "id": "in_1",
            "subscription": "sub_paid",
            "amount_paid": 12000,
            "lines": {"data": [{"period": {"end": 1738368000}}]},
        }

        process_event(event("invoice.payment_succeeded", invoice), WebhookSource.MAHAD)

        subscription = Subscription.objects.get()
        assert subscription.paid_until == dt.datetime(2025, 2, 1, tzinfo=dt.UTC)
        assert subscription.last_payment_date is not None

    def test_invoice_for_unknown_subscription_is_retryable(self):
        invoice = {"id": "in_2", "subscription": "sub_later", "period_end": 1738368000}

        with pytest.raises(RetryableWebhookError):
            process_event(event("invoice.finalized", invoice, "evt_inv"), WebhookSource.DUGSI)


@pytest.mark.django_db
def test_payment_failed_records_history(caplog):
    subscription = SubscriptionFactory(stripe_subscription_id="sub_fail")

    handle_invoice_payment_failed(
        {
            "id": "in_f",
            "subscription": "sub_fail",
            "customer": "cus_1",
            "amount_due": 12000,
            "attempt_count": 2,
        },
        MAHAD,
        "evt_fail",
    )

    history = SubscriptionHistory.objects.get(subscription=subscription)
    assert history.event_type == "invoice.payment_failed"
    assert history.metadata["attemptCount"] == 2
    assert "invoice.payment_failed" in caplog.text
