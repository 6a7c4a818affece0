"""
Billing API endpoints.

Public:
    POST /api/mahad/create-checkout-session
    POST /api/webhooks/stripe/mahad
    POST /api/webhooks/stripe/dugsi

Staff only:
    POST /api/dugsi/families/<family_id>/payment-link
    GET  /api/billing/subscriptions/<subscription_id>/assignments
    GET  /api/billing/orphaned-subscriptions
    POST /api/billing/orphaned-subscriptions/link
    GET  /api/billing/students/search
    GET  /api/dugsi/students/<profile_id>/withdraw-preview
    POST /api/dugsi/students/<profile_id>/withdraw
    POST /api/dugsi/students/<profile_id>/withdraw-family
    POST /api/dugsi/students/<profile_id>/re-enroll
    POST /api/dugsi/families/<family_id>/pause-billing
    POST /api/dugsi/families/<family_id>/resume-billing
"""

import json
import logging

import stripe
from django.core.exceptions import ImproperlyConfigured
from drf_spectacular.utils import extend_schema
from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.permissions import IsAdminUser
from rest_framework.response import Response
from rest_framework.views import APIView

from madrasa.billing import accounting
from madrasa.billing import linking
from madrasa.billing import queries
from madrasa.billing import webhooks
from madrasa.billing import withdrawal
from madrasa.billing.errors import RateMismatchError
from madrasa.billing.errors import RetryableWebhookError
from madrasa.billing.errors import StripeAccountNotConfigured
from madrasa.billing.models import BillingAssignment
from madrasa.billing.serializers import BillingAssignmentSerializer
from madrasa.billing.serializers import DugsiPaymentLinkSerializer
from madrasa.billing.serializers import LinkSubscriptionSerializer
from madrasa.billing.serializers import MahadCheckoutSerializer
from madrasa.billing.serializers import OrphanedSubscriptionSerializer
from madrasa.billing.serializers import ReEnrollSerializer
from madrasa.billing.serializers import StudentMatchSerializer
from madrasa.billing.serializers import StudentSearchSerializer
from madrasa.billing.serializers import WithdrawChildSerializer
from madrasa.billing.serializers import WithdrawFamilySerializer
from madrasa.billing.serializers import WithdrawPreviewSerializer
from madrasa.billing.services import CheckoutService
from madrasa.billing.stripe_accounts import get_webhook_secret
from madrasa.core.api import error_response
from madrasa.core.api import serializer_error_response
from madrasa.core.api import service_error_response
from madrasa.core.exceptions import MadrasaError
from madrasa.notifications.emails import send_payment_link_email
from madrasa.notifications.whatsapp import WhatsAppService

logger = logging.getLogger(__name__)


class MahadCheckoutSessionView(APIView):
    """
    Start a Stripe Checkout subscription for a Mahad student.

    Called from the public registration page, so no authentication.
    """

    authentication_classes = []
    permission_classes = [AllowAny]

    @extend_schema(request=MahadCheckoutSerializer, tags=["Mahad"])
    def post(self, request):
        serializer = MahadCheckoutSerializer(data=request.data)
        if not serializer.is_valid():
            return serializer_error_response(serializer.errors, request.data)
        data = serializer.validated_data

        try:
            result = CheckoutService().create_mahad_checkout_session(
                profile_id=data["profileId"],
                graduation_status=data["graduationStatus"],
                payment_frequency=data["paymentFrequency"],
                billing_type=data["billingType"],
                success_url=data.get("successUrl"),
                cancel_url=data.get("cancelUrl"),
            )
        except MadrasaError as exc:
            return service_error_response(exc)
        except Exception:
            logger.exception("Failed to create Mahad checkout session")
            return error_response(
                "Failed to create checkout session",
                status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

        return Response(
            {"sessionId": result.session_id, "url": result.url},
            status=status.HTTP_200_OK,
        )


class DugsiPaymentLinkView(APIView):
    """
    Generate a family's Dugsi payment link and optionally send it.

    The checkout link is returned even when a WhatsApp or email send fails;
    the send outcome is reported alongside it.
    """

    permission_classes = [IsAdminUser]

    @extend_schema(request=DugsiPaymentLinkSerializer, tags=["Dugsi"])
    def post(self, request, family_id):
        serializer = DugsiPaymentLinkSerializer(data=request.data)
        if not serializer.is_valid():
            return serializer_error_response(serializer.errors, request.data)
        data = serializer.validated_data

        try:
            result = CheckoutService().create_dugsi_checkout_session(
                family_id,
                override_amount=data.get("overrideAmount"),
                billing_start_date=data.get("billingStartDate"),
                success_url=data.get("successUrl"),
                cancel_url=data.get("cancelUrl"),
            )
        except MadrasaError as exc:
            return service_error_response(exc)
        except Exception:
            logger.exception("Failed to create Dugsi payment link for family %s", family_id)
            return error_response(
                "Failed to generate payment link",
                status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

        body = result.as_dict()
        if data["sendWhatsapp"]:
            body["whatsapp"] = self._send_whatsapp(result)
        if data["sendEmail"]:
            body["emailSent"] = send_payment_link_email(
                result.guardian_email,
                result.guardian_name,
                result.url,
                result.final_rate,
                result.child_count,
            )
        return Response(body, status=status.HTTP_200_OK)

    def _send_whatsapp(self, result) -> dict:
        if not result.guardian_phone:
            return {"success": False, "error": "No phone number on file for guardian"}
        try:
            service = WhatsAppService()
            sent = service.send_payment_link(
                phone=result.guardian_phone,
                parent_name=result.guardian_name,
                amount=result.final_rate,
                child_count=result.child_count,
                payment_url=result.url,
                person_id=result.guardian_person_id,
                family_id=result.family_id,
            )
        except ImproperlyConfigured:
            logger.exception("WhatsApp is not configured")
            return {"success": False, "error": "WhatsApp is not configured"}
        return {"success": sent.success, "wamid": sent.wamid, "error": sent.error}


class SubscriptionAssignmentsView(APIView):
    """Billing assignment summary for one Stripe subscription."""

    permission_classes = [IsAdminUser]

    @extend_schema(tags=["Billing"])
    def get(self, request, subscription_id):
        subscription = queries.get_subscription_by_stripe_id(subscription_id)
        if subscription is None:
            return error_response("Subscription not found", status.HTTP_404_NOT_FOUND)

        summary = accounting.get_billing_assignment_summary(subscription.id)
        assignments = (
            BillingAssignment.objects.active()
            .filter(subscription=subscription)
            .select_related("program_profile__person")
            .order_by("created")
        )
        body = summary.as_dict()
        body["assignments"] = BillingAssignmentSerializer(assignments, many=True).data
        return Response(body, status=status.HTTP_200_OK)


class OrphanedSubscriptionsView(APIView):
    """Live Stripe subscriptions, across both accounts, with no active assignment."""

    permission_classes = [IsAdminUser]

    @extend_schema(tags=["Billing"])
    def get(self, request):
        try:
            orphaned = linking.get_all_orphaned_subscriptions()
        except Exception:
            logger.exception("Failed to load orphaned subscriptions")
            return error_response(
                "Failed to load orphaned subscriptions",
                status.HTTP_500_INTERNAL_SERVER_ERROR,
            )
        return Response(
            {
                "count": len(orphaned),
                "subscriptions": OrphanedSubscriptionSerializer(orphaned, many=True).data,
            },
            status=status.HTTP_200_OK,
        )


class LinkSubscriptionView(APIView):
    permission_classes = [IsAdminUser]

    @extend_schema(request=LinkSubscriptionSerializer, tags=["Billing"])
    def post(self, request):
        serializer = LinkSubscriptionSerializer(data=request.data)
        if not serializer.is_valid():
            return serializer_error_response(serializer.errors, request.data)
        data = serializer.validated_data

        result = linking.link_subscription_to_student(
            data["subscriptionId"],
            data["profileId"],
            data["program"],
        )
        if not result.success:
            return error_response(result.error)
        return Response(
            {
                "success": True,
                "subscriptionId": result.subscription_id,
                "linkedProfileIds": result.linked_profile_ids,
                "previousSubscriptionIds": result.previous_subscription_ids,
            },
            status=status.HTTP_200_OK,
        )


class StudentSearchView(APIView):
    permission_classes = [IsAdminUser]

    @extend_schema(parameters=[StudentSearchSerializer], tags=["Billing"])
    def get(self, request):
        serializer = StudentSearchSerializer(data=request.query_params)
        if not serializer.is_valid():
            return serializer_error_response(serializer.errors, request.query_params)
        matches = linking.search_students_for_linking(
            serializer.validated_data["q"],
            serializer.validated_data.get("program"),
        )
        return Response(
            {"students": StudentMatchSerializer(matches, many=True).data},
            status=status.HTTP_200_OK,
        )


class StripeWebhookView(APIView):
    """
    Receive Stripe events for one account.

    Mounted once per account with ``source`` set to a ``WebhookSource``.
    Authentication is the Stripe signature, so DRF auth is disabled here.
    """

    authentication_classes = []
    permission_classes = [AllowAny]
    source = None

    @extend_schema(exclude=True)
    def post(self, request):
        payload = request.body
        signature = request.headers.get("Stripe-Signature", "")
        if not payload:
            return error_response("Empty request body")
        if not signature:
            return error_response("Missing signature")

        try:
            stripe.Webhook.construct_event(
                payload,
                signature,
                get_webhook_secret(self.source),
            )
        except StripeAccountNotConfigured:
            logger.exception("Stripe webhook secret missing for %s", self.source)
            return error_response(
                "Webhook processing failed",
                status.HTTP_500_INTERNAL_SERVER_ERROR,
            )
        except (ValueError, stripe.SignatureVerificationError):
            logger.warning("Rejected %s webhook with invalid signature", self.source)
            return error_response("Invalid signature", status.HTTP_401_UNAUTHORIZED)

        # The verified body as plain dicts; handlers read it with .get.
        event = json.loads(payload)
        try:
            processed = webhooks.process_event(event, self.source, event)
        except RetryableWebhookError as exc:
            logger.warning("Webhook %s deferred for retry: %s", event.get("id"), exc)
            return error_response(str(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
        except RateMismatchError as exc:
            logger.exception("Rate mismatch in webhook %s", event.get("id"))
            return error_response(str(exc))
        except Exception:
            logger.exception("Webhook processing failed for %s", event.get("id"))
            return error_response(
                "Webhook processing failed",
                status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

        if not processed:
            return Response({"received": True, "skipped": True}, status=status.HTTP_200_OK)
        return Response({"received": True}, status=status.HTTP_200_OK)


# =============================================================================
# Dugsi withdrawals and family billing
# =============================================================================


def _billing_payload(result, **fields):
    return {
        **fields,
        "billingUpdated": result.billing_updated,
        "billingError": result.billing_error,
    }


class WithdrawPreviewView(APIView):
    permission_classes = [IsAdminUser]

    @extend_schema(responses=WithdrawPreviewSerializer, tags=["Dugsi"])
    def get(self, request, profile_id):
        try:
            preview = withdrawal.get_withdraw_preview(profile_id)
        except MadrasaError as exc:
            return service_error_response(exc)
        return Response(WithdrawPreviewSerializer(preview).data, status=status.HTTP_200_OK)


class WithdrawChildView(APIView):
    permission_classes = [IsAdminUser]

    @extend_schema(request=WithdrawChildSerializer, tags=["Dugsi"])
    def post(self, request, profile_id):
        serializer = WithdrawChildSerializer(data=request.data)
        if not serializer.is_valid():
            return serializer_error_response(serializer.errors, request.data)
        data = serializer.validated_data

        try:
            result = withdrawal.withdraw_child(
                profile_id,
                reason=data["reason"],
                reason_note=data["reasonNote"],
                adjustment=data["billingAdjustment"],
                custom_amount=data.get("customAmount"),
            )
        except MadrasaError as exc:
            return service_error_response(exc)

        return Response(
            _billing_payload(result, withdrawn=result.withdrawn),
            status=status.HTTP_200_OK,
        )


class WithdrawFamilyView(APIView):
    permission_classes = [IsAdminUser]

    @extend_schema(request=WithdrawFamilySerializer, tags=["Dugsi"])
    def post(self, request, profile_id):
        serializer = WithdrawFamilySerializer(data=request.data)
        if not serializer.is_valid():
            return serializer_error_response(serializer.errors, request.data)
        data = serializer.validated_data

        try:
            result = withdrawal.withdraw_all_children(
                profile_id,
                reason=data["reason"],
                reason_note=data["reasonNote"],
                adjustment=data["billingAdjustment"],
            )
        except MadrasaError as exc:
            return service_error_response(exc)

        return Response(
            _billing_payload(
                result,
                withdrawnCount=result.withdrawn_count,
                failedCount=result.failed_count,
            ),
            status=status.HTTP_200_OK,
        )


class ReEnrollChildView(APIView):
    permission_classes = [IsAdminUser]

    @extend_schema(request=ReEnrollSerializer, tags=["Dugsi"])
    def post(self, request, profile_id):
        serializer = ReEnrollSerializer(data=request.data)
        if not serializer.is_valid():
            return serializer_error_response(serializer.errors, request.data)
        data = serializer.validated_data

        try:
            result = withdrawal.re_enroll_child(
                profile_id,
                adjustment=data["billingAdjustment"],
                custom_amount=data.get("customAmount"),
            )
        except MadrasaError as exc:
            return service_error_response(exc)

        return Response(
            _billing_payload(result, reEnrolled=result.re_enrolled),
            status=status.HTTP_200_OK,
        )


class FamilyBillingView(APIView):
    """Base for pausing and resuming a family subscription; subclasses set ``verb``."""

    permission_classes = [IsAdminUser]
    verb = None

    def run(self, family_id):
        raise NotImplementedError

    @extend_schema(request=None, tags=["Dugsi"])
    def post(self, request, family_id):
        try:
            subscription = self.run(family_id)
        except MadrasaError as exc:
            return service_error_response(exc)
        except (stripe.StripeError, StripeAccountNotConfigured):
            logger.exception("Failed to %s billing for family %s", self.verb, family_id)
            return error_response(
                f"Failed to {self.verb} billing",
                status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

        return Response(
            {
                "success": True,
                "subscriptionId": subscription.stripe_subscription_id,
                "status": subscription.status,
            },
            status=status.HTTP_200_OK,
        )


class PauseFamilyBillingView(FamilyBillingView):
    verb = "pause"

    def run(self, family_id):
        return withdrawal.pause_family_billing(family_id)


class ResumeFamilyBillingView(FamilyBillingView):
    verb = "resume"

    def run(self, family_id):
        return withdrawal.resume_family_billing(family_id)
