import django.db.models.deletion
import django.utils.timezone
import model_utils.fields
from django.db import migrations
from django.db import models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Person",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created", model_utils.fields.AutoCreatedField(default=django.utils.timezone.now, editable=False, verbose_name="created")),
                ("modified", model_utils.fields.AutoLastModifiedField(default=django.utils.timezone.now, editable=False, verbose_name="modified")),
                ("name", models.CharField(max_length=255, verbose_name="Name")),
                ("date_of_birth", models.DateField(blank=True, null=True)),
            ],
            options={
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="ContactPoint",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created", model_utils.fields.AutoCreatedField(default=django.utils.timezone.now, editable=False, verbose_name="created")),
                ("modified", model_utils.fields.AutoLastModifiedField(default=django.utils.timezone.now, editable=False, verbose_name="modified")),
                ("type", models.CharField(choices=[("EMAIL", "Email"), ("PHONE", "Phone"), ("WHATSAPP", "WhatsApp"), ("OTHER", "Other")], max_length=16)),
                ("value", models.CharField(db_index=True, max_length=255)),
                ("is_primary", models.BooleanField(default=False)),
                ("is_active", models.BooleanField(default=True)),
                ("person", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="contact_points", to="people.person")),
            ],
        ),
        migrations.CreateModel(
            name="GuardianRelationship",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created", model_utils.fields.AutoCreatedField(default=django.utils.timezone.now, editable=False, verbose_name="created")),
                ("modified", model_utils.fields.AutoLastModifiedField(default=django.utils.timezone.now, editable=False, verbose_name="modified")),
                ("role", models.CharField(choices=[("PARENT", "Parent"), ("GUARDIAN", "Guardian"), ("OTHER", "Other")], default="PARENT", max_length=16)),
                ("is_active", models.BooleanField(default=True)),
                ("is_primary_payer", models.BooleanField(default=False)),
                ("dependent", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="guardian_relationships", to="people.person")),
                ("guardian", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="dependent_relationships", to="people.person")),
            ],
        ),
        migrations.AddConstraint(
            model_name="contactpoint",
            constraint=models.UniqueConstraint(fields=("person", "type", "value"), name="unique_contact_point_per_person"),
        ),
        migrations.AddConstraint(
            model_name="guardianrelationship",
            constraint=models.UniqueConstraint(fields=("guardian", "dependent"), name="unique_guardian_dependent"),
        ),
    ]
