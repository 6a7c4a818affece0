from django.db import models
from django.utils.translation import gettext_lazy as _


class MessageStatus(models.TextChoices):
    SENT = "sent", _("Sent")
    FAILED = "failed", _("Failed")


class MessageType(models.TextChoices):
    TRANSACTIONAL = "TRANSACTIONAL", _("Transactional")
    ANNOUNCEMENT = "ANNOUNCEMENT", _("Announcement")


# Meta-approved template names.
DUGSI_PAYMENT_LINK_TEMPLATE = "dugsi_payment_link"

# The same template is not re-sent to a phone within this window.
DUPLICATE_WINDOW_HOURS = 1
