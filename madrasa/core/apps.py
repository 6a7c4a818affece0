from django.apps import AppConfig


class CoreConfig(AppConfig):
    """Shared exceptions and API helpers used by every Madrasa app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "madrasa.core"
