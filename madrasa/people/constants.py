from django.db import models
from django.utils.translation import gettext_lazy as _


class ContactType(models.TextChoices):
    EMAIL = "EMAIL", _("Email")
    PHONE = "PHONE", _("Phone")
    WHATSAPP = "WHATSAPP", _("WhatsApp")
    OTHER = "OTHER", _("Other")


class GuardianRole(models.TextChoices):
    PARENT = "PARENT", _("Parent")
    GUARDIAN = "GUARDIAN", _("Guardian")
    OTHER = "OTHER", _("Other")


# Valid phone numbers carry between 10 (US local) and 15 (E.164 max) digits.
MIN_PHONE_DIGITS = 10
MAX_PHONE_DIGITS = 15
