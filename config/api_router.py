"""
API routes.

Registration, checkout and webhook endpoints are public; everything else
requires a staff user (session or token auth).
"""

from django.urls import path

from madrasa.billing import views as billing_views
from madrasa.billing.constants import WebhookSource
from madrasa.programs import views as program_views

app_name = "api"
urlpatterns = [
    # Public registration
    path(
        "mahad/register",
        program_views.MahadRegistrationView.as_view(),
        name="mahad-register",
    ),
    path(
        "dugsi/register",
        program_views.DugsiRegistrationView.as_view(),
        name="dugsi-register",
    ),
    path(
        "mahad/create-checkout-session",
        billing_views.MahadCheckoutSessionView.as_view(),
        name="mahad-checkout-session",
    ),
    # Dugsi admin
    path(
        "dugsi/families/<str:family_id>/payment-link",
        billing_views.DugsiPaymentLinkView.as_view(),
        name="dugsi-payment-link",
    ),
    path(
        "dugsi/families/<str:family_id>/pause-billing",
        billing_views.PauseFamilyBillingView.as_view(),
        name="dugsi-pause-billing",
    ),
    path(
        "dugsi/families/<str:family_id>/resume-billing",
        billing_views.ResumeFamilyBillingView.as_view(),
        name="dugsi-resume-billing",
    ),
    path(
        "dugsi/students/<int:profile_id>/withdraw-preview",
        billing_views.WithdrawPreviewView.as_view(),
        name="dugsi-withdraw-preview",
    ),
    path(
        "dugsi/students/<int:profile_id>/withdraw",
        billing_views.WithdrawChildView.as_view(),
        name="dugsi-withdraw",
    ),
    path(
        "dugsi/students/<int:profile_id>/withdraw-family",
        billing_views.WithdrawFamilyView.as_view(),
        name="dugsi-withdraw-family",
    ),
    path(
        "dugsi/students/<int:profile_id>/re-enroll",
        billing_views.ReEnrollChildView.as_view(),
        name="dugsi-re-enroll",
    ),
    # Billing admin
    path(
        "billing/subscriptions/<str:subscription_id>/assignments",
        billing_views.SubscriptionAssignmentsView.as_view(),
        name="subscription-assignments",
    ),
    path(
        "billing/orphaned-subscriptions",
        billing_views.OrphanedSubscriptionsView.as_view(),
        name="orphaned-subscriptions",
    ),
    path(
        "billing/orphaned-subscriptions/link",
        billing_views.LinkSubscriptionView.as_view(),
        name="link-subscription",
    ),
    path(
        "billing/students/search",
        billing_views.StudentSearchView.as_view(),
        name="student-search",
    ),
    # Batches and enrollments
    path(
        "batches/<int:batch_id>/assign",
        program_views.BatchAssignView.as_view(),
        name="batch-assign",
    ),
    path(
        "batches/<int:batch_id>/transfer",
        program_views.BatchTransferView.as_view(),
        name="batch-transfer",
    ),
    path(
        "enrollments/withdraw",
        program_views.WithdrawEnrollmentView.as_view(),
        name="enrollment-withdraw",
    ),
    # Stripe webhooks, one endpoint per account
    path(
        "webhooks/stripe/mahad",
        billing_views.StripeWebhookView.as_view(source=WebhookSource.MAHAD),
        name="stripe-webhook-mahad",
    ),
    path(
        "webhooks/stripe/dugsi",
        billing_views.StripeWebhookView.as_view(source=WebhookSource.DUGSI),
        name="stripe-webhook-dugsi",
    ),
]
