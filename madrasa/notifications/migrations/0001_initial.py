import django.db.models.deletion
import django.utils.timezone
import model_utils.fields
from django.db import migrations
from django.db import models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("people", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="WhatsAppMessage",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created", model_utils.fields.AutoCreatedField(default=django.utils.timezone.now, editable=False, verbose_name="created")),
                ("modified", model_utils.fields.AutoLastModifiedField(default=django.utils.timezone.now, editable=False, verbose_name="modified")),
                ("wamid", models.CharField(blank=True, db_index=True, default="", max_length=255, verbose_name="WhatsApp message id")),
                ("phone", models.CharField(db_index=True, max_length=20)),
                ("template_name", models.CharField(max_length=100)),
                ("message_type", models.CharField(choices=[("TRANSACTIONAL", "Transactional"), ("ANNOUNCEMENT", "Announcement")], default="TRANSACTIONAL", max_length=20)),
                ("status", models.CharField(choices=[("sent", "Sent"), ("failed", "Failed")], max_length=10)),
                ("program", models.CharField(blank=True, choices=[("MAHAD_PROGRAM", "Mahad"), ("DUGSI_PROGRAM", "Dugsi")], default="", max_length=20)),
                ("batch_id", models.CharField(blank=True, default="", max_length=64)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("failure_reason", models.TextField(blank=True, default="")),
                ("person", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="whatsapp_messages", to="people.person")),
            ],
            options={
                "verbose_name": "WhatsApp message",
                "ordering": ["-created"],
            },
        ),
    ]
