from django.apps import AppConfig


class BillingConfig(AppConfig):
    """
    Django app configuration for the billing app.

    Handles tuition rates, Stripe checkout and subscriptions for the Mahad
    and Dugsi Stripe accounts, billing assignments, and webhook ingestion.
    """

    default_auto_field = "django.db.models.BigAutoField"
    name = "madrasa.billing"
