"""
Notification models.

Every WhatsApp send attempt is logged, successful or not, so admins can see
what a family was sent and the duplicate guard has something to check.
"""

from django.db import models
from model_utils.models import TimeStampedModel

from madrasa.notifications.constants import MessageStatus
from madrasa.notifications.constants import MessageType
from madrasa.people.models import Person
from madrasa.programs.constants import Program


class WhatsAppMessage(TimeStampedModel):
    wamid = models.CharField(
        "WhatsApp message id",
        max_length=255,
        blank=True,
        default="",
        db_index=True,
    )
    phone = models.CharField(max_length=20, db_index=True)
    template_name = models.CharField(max_length=100)
    message_type = models.CharField(
        max_length=20,
        choices=MessageType.choices,
        default=MessageType.TRANSACTIONAL,
    )
    status = models.CharField(max_length=10, choices=MessageStatus.choices)
    person = models.ForeignKey(
        Person,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="whatsapp_messages",
    )
    program = models.CharField(
        max_length=20,
        choices=Program.choices,
        blank=True,
        default="",
    )
    batch_id = models.CharField(max_length=64, blank=True, default="")
    metadata = models.JSONField(default=dict, blank=True)
    failure_reason = models.TextField(blank=True, default="")

    class Meta:
        ordering = ["-created"]
        verbose_name = "WhatsApp message"

    def __str__(self):
        return f"{self.template_name} to {self.phone} ({self.status})"
