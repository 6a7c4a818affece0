from unittest import mock

import pytest
import stripe

from madrasa.billing.constants import StripeAccountType
from madrasa.billing.linking import PARENT_EMAIL_REQUIRED
from madrasa.billing.linking import get_all_orphaned_subscriptions
from madrasa.billing.linking import get_orphaned_subscriptions_for_account
from madrasa.billing.linking import get_potential_student_matches
from madrasa.billing.linking import link_subscription_to_student
from madrasa.billing.linking import search_students_for_linking
from madrasa.billing.models import BillingAssignment
from madrasa.billing.models import Subscription
from madrasa.billing.tests.factories import BillingAssignmentFactory
from madrasa.billing.tests.factories import SubscriptionFactory
from madrasa.billing.tests.factories import stripe_subscription
from madrasa.people.tests.factories import ContactPointFactory
from madrasa.people.tests.factories import GuardianRelationshipFactory
from madrasa.people.tests.factories import PersonFactory
from madrasa.programs.constants import EnrollmentStatus
from madrasa.programs.constants import Program
from madrasa.programs.tests.factories import DugsiProfileFactory
from madrasa.programs.tests.factories import MahadProfileFactory

pytestmark = pytest.mark.django_db


def listing(*subs):
    result = mock.Mock()
    result.auto_paging_iter.return_value = iter(subs)
    return result


class TestOrphanedSubscriptions:
    def test_lists_live_unlinked_subscriptions(self):
        BillingAssignmentFactory(subscription__stripe_subscription_id="sub_linked")
        subs = [
            stripe_subscription(
                "sub_orphan",
                customer={"id": "cus_a", "email": "a@example.com", "name": "Aisha"},
            ),
            stripe_subscription("sub_other", customer="cus_a", status="past_due"),
            stripe_subscription("sub_linked", customer="cus_b"),
            stripe_subscription("sub_old", customer="cus_c", status="canceled"),
        ]

        with mock.patch("stripe.Subscription.list", return_value=listing(*subs)) as stripe_list:
            orphaned = get_orphaned_subscriptions_for_account(StripeAccountType.MAHAD)

        assert [o.id for o in orphaned] == ["sub_orphan", "sub_other"]
        first = orphaned[0]
        assert first.customer_email == "a@example.com"
        assert first.customer_name == "Aisha"
        assert first.subscription_count == 2
        assert first.account_type == StripeAccountType.MAHAD
        assert stripe_list.call_args.kwargs["expand"] == ["data.customer"]

    def test_dugsi_does_not_count_per_customer(self):
        subs = [
            stripe_subscription("sub_1", customer="cus_a"),
            stripe_subscription("sub_2", customer="cus_a"),
        ]

        with mock.patch("stripe.Subscription.list", return_value=listing(*subs)):
            orphaned = get_orphaned_subscriptions_for_account(StripeAccountType.DUGSI)

        assert {o.subscription_count for o in orphaned} == {1}

    def test_reads_stripe_api_objects(self):
        subs = [
            stripe.Subscription.construct_from(
                stripe_subscription(
                    "sub_obj",
                    customer={"id": "cus_obj", "object": "customer", "email": "o@example.com"},
                ),
                "sk_test",
            ),
            stripe.Subscription.construct_from(
                stripe_subscription("sub_gone", status="canceled"),
                "sk_test",
            ),
        ]

        with mock.patch("stripe.Subscription.list", return_value=listing(*subs)):
            orphaned = get_orphaned_subscriptions_for_account(StripeAccountType.MAHAD)

        assert [o.id for o in orphaned] == ["sub_obj"]
        assert orphaned[0].customer_email == "o@example.com"
        assert orphaned[0].customer_id == "cus_obj"

    def test_all_accounts_dedupes_and_survives_stripe_errors(self):
        def fake_list(**kwargs):
            if kwargs["api_key"] == "sk_test_dummy_dugsi_key_for_testing":
                raise stripe.APIConnectionError("down")
            return listing(stripe_subscription("sub_1"), stripe_subscription("sub_1"))

        with mock.patch("stripe.Subscription.list", side_effect=fake_list):
            orphaned = get_all_orphaned_subscriptions()

        assert [o.id for o in orphaned] == ["sub_1"]


class TestStudentSearch:
    def test_matches_name_and_contact(self):
        by_name = MahadProfileFactory(person__name="Yusuf Ali")
        by_email = MahadProfileFactory(person__name="Someone Else")
        ContactPointFactory(person=by_email.person, value="yusuf.ali@example.com")
        DugsiProfileFactory(person__name="Yusuf Dugsi")

        results = search_students_for_linking("yusuf", Program.MAHAD_PROGRAM)

        assert {r.id for r in results} == {by_name.id, by_email.id}

    def test_reports_existing_subscription(self):
        assignment = BillingAssignmentFactory(program_profile__person__name="Hodan Omar")

        [match] = search_students_for_linking("Hodan")

        assert match.id == assignment.program_profile_id
        assert match.has_subscription is True

    def test_blank_query(self):
        assert search_students_for_linking("   ") == []

    def test_potential_matches_prefer_email(self):
        profile = MahadProfileFactory(person__name="Fatima Noor")
        ContactPointFactory(person=profile.person, value="fatima@example.com")
        MahadProfileFactory(person__name="Fatima Other")

        matches = get_potential_student_matches(
            "fatima@example.com",
            "Fatima",
            Program.MAHAD_PROGRAM,
        )

        assert [m.id for m in matches] == [profile.id]

    def test_potential_matches_fall_back_to_name(self):
        profile = MahadProfileFactory(person__name="Fatima Noor")

        matches = get_potential_student_matches(None, "noor", Program.MAHAD_PROGRAM)

        assert [m.id for m in matches] == [profile.id]


class TestLinkSubscriptionToStudent:
    def test_links_mahad_student(self):
        profile = MahadProfileFactory()

        with mock.patch(
            "stripe.Subscription.retrieve",
            return_value=stripe_subscription("sub_new", customer="cus_student"),
        ) as retrieve:
            result = link_subscription_to_student("sub_new", profile.id, Program.MAHAD_PROGRAM)

        assert result.success, result.error
        assert result.linked_profile_ids == [profile.id]
        retrieve.assert_called_once_with(
            "sub_new",
            api_key="sk_test_dummy_mahad_key_for_testing",
        )
        subscription = Subscription.objects.get(stripe_subscription_id="sub_new")
        assert subscription.billing_account.person == profile.person
        assert subscription.billing_account.stripe_customer_id_mahad == "cus_student"
        profile.refresh_from_db()
        assert profile.monthly_rate == 12000

    def test_retires_previous_subscription(self):
        old = BillingAssignmentFactory(subscription__stripe_subscription_id="sub_old")
        profile = old.program_profile

        with mock.patch(
            "stripe.Subscription.retrieve",
            return_value=stripe_subscription("sub_new", customer="cus_student"),
        ):
            result = link_subscription_to_student("sub_new", profile.id, Program.MAHAD_PROGRAM)

        assert result.previous_subscription_ids == ["sub_old"]
        old.refresh_from_db()
        assert old.is_active is False
        new = Subscription.objects.get(stripe_subscription_id="sub_new")
        assert new.previous_subscription_ids == ["sub_old"]

    def test_links_whole_dugsi_family(self):
        guardian = PersonFactory()
        ContactPointFactory(person=guardian, value="parent@example.com")
        profiles = DugsiProfileFactory.create_batch(2, family_reference_id="fam-1")
        for profile in profiles:
            GuardianRelationshipFactory(guardian=guardian, dependent=profile.person)

        with mock.patch(
            "stripe.Subscription.retrieve",
            return_value=stripe_subscription("sub_fam", customer="cus_parent", amount=16000),
        ):
            result = link_subscription_to_student("sub_fam", profiles[0].id, Program.DUGSI_PROGRAM)

        assert result.success, result.error
        assert sorted(result.linked_profile_ids) == sorted(p.id for p in profiles)
        amounts = BillingAssignment.objects.filter(
            subscription__stripe_subscription_id="sub_fam",
        ).values_list("amount", flat=True)
        assert sorted(amounts) == [8000, 8000]
        subscription = Subscription.objects.get(stripe_subscription_id="sub_fam")
        assert subscription.billing_account.person == guardian

    def test_dugsi_requires_parent_email_before_calling_stripe(self):
        profile = DugsiProfileFactory(family_reference_id="fam-2")
        GuardianRelationshipFactory(dependent=profile.person)

        with mock.patch("stripe.Subscription.retrieve") as retrieve:
            result = link_subscription_to_student("sub_fam", profile.id, Program.DUGSI_PROGRAM)

        assert result.success is False
        assert result.error == PARENT_EMAIL_REQUIRED
        retrieve.assert_not_called()

    def test_program_mismatch(self):
        profile = DugsiProfileFactory()

        result = link_subscription_to_student("sub_x", profile.id, Program.MAHAD_PROGRAM)

        assert result.success is False
        assert result.error == "Profile is not in Mahad program"

    def test_unknown_profile(self):
        result = link_subscription_to_student("sub_x", 999999, Program.MAHAD_PROGRAM)

        assert result.error == "Profile not found"

    def test_stripe_error_is_reported(self):
        profile = MahadProfileFactory()

        with mock.patch(
            "stripe.Subscription.retrieve",
            side_effect=stripe.InvalidRequestError("No such subscription", "id"),
        ):
            result = link_subscription_to_student("sub_missing", profile.id, Program.MAHAD_PROGRAM)

        assert result.success is False
        assert "No such subscription" in result.error
        assert not Subscription.objects.filter(stripe_subscription_id="sub_missing").exists()

    def test_existing_local_subscription_is_synced(self):
        existing = SubscriptionFactory(stripe_subscription_id="sub_known", amount=9000)
        profile = MahadProfileFactory()

        with mock.patch(
            "stripe.Subscription.retrieve",
            return_value=stripe_subscription(
                "sub_known",
                customer=existing.stripe_customer_id,
                amount=12000,
            ),
        ):
            result = link_subscription_to_student("sub_known", profile.id, Program.MAHAD_PROGRAM)

        assert result.success, result.error
        existing.refresh_from_db()
        assert existing.amount == 12000
        assert existing.assignments.filter(program_profile=profile, is_active=True).exists()

    def test_links_stripe_api_object(self):
        profile = MahadProfileFactory()
        api_object = stripe.Subscription.construct_from(
            stripe_subscription("sub_obj", customer="cus_obj", amount=9000),
            "sk_test",
        )

        with mock.patch("stripe.Subscription.retrieve", return_value=api_object):
            result = link_subscription_to_student("sub_obj", profile.id, Program.MAHAD_PROGRAM)

        assert result.success, result.error
        subscription = Subscription.objects.get(stripe_subscription_id="sub_obj")
        assert subscription.amount == 9000
        assert subscription.stripe_customer_id == "cus_obj"

    def test_withdrawn_sibling_is_not_billed(self):
        guardian = PersonFactory()
        ContactPointFactory(person=guardian, value="parent@example.com")
        enrolled = DugsiProfileFactory.create_batch(2, family_reference_id="fam-3")
        withdrawn = DugsiProfileFactory(
            family_reference_id="fam-3",
            status=EnrollmentStatus.WITHDRAWN,
        )
        for profile in [*enrolled, withdrawn]:
            GuardianRelationshipFactory(guardian=guardian, dependent=profile.person)

        with mock.patch(
            "stripe.Subscription.retrieve",
            return_value=stripe_subscription("sub_fam3", customer="cus_parent", amount=16000),
        ):
            result = link_subscription_to_student(
                "sub_fam3",
                enrolled[0].id,
                Program.DUGSI_PROGRAM,
            )

        assert result.success, result.error
        assert sorted(result.linked_profile_ids) == sorted(p.id for p in enrolled)
        assignments = BillingAssignment.objects.filter(
            subscription__stripe_subscription_id="sub_fam3",
        )
        assert sorted(assignments.values_list("amount", flat=True)) == [8000, 8000]
        assert not assignments.filter(program_profile=withdrawn).exists()
        withdrawn.refresh_from_db()
        assert withdrawn.monthly_rate == 0
