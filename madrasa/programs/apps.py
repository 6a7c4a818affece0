from django.apps import AppConfig
from django.utils.translation import gettext_lazy as _


class ProgramsConfig(AppConfig):
    """Program profiles, batches and batch enrollments."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "madrasa.programs"
    verbose_name = _("Programs")
