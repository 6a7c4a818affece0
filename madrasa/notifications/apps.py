from django.apps import AppConfig
from django.utils.translation import gettext_lazy as _


class NotificationsConfig(AppConfig):
    """WhatsApp and email notifications sent to students and parents."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "madrasa.notifications"
    verbose_name = _("Notifications")
