import django.db.models.deletion
import django.utils.timezone
import model_utils.fields
from django.db import migrations
from django.db import models

ENROLLMENT_STATUS_CHOICES = [
    ("REGISTERED", "Registered"),
    ("ENROLLED", "Enrolled"),
    ("ON_LEAVE", "On Leave"),
    ("WITHDRAWN", "Withdrawn"),
    ("COMPLETED", "Completed"),
    ("SUSPENDED", "Suspended"),
]


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("people", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Batch",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created", model_utils.fields.AutoCreatedField(default=django.utils.timezone.now, editable=False, verbose_name="created")),
                ("modified", model_utils.fields.AutoLastModifiedField(default=django.utils.timezone.now, editable=False, verbose_name="modified")),
                ("name", models.CharField(max_length=120, unique=True)),
                ("start_date", models.DateField(blank=True, null=True)),
                ("end_date", models.DateField(blank=True, null=True)),
            ],
            options={
                "verbose_name_plural": "batches",
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="ProgramProfile",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created", model_utils.fields.AutoCreatedField(default=django.utils.timezone.now, editable=False, verbose_name="created")),
                ("modified", model_utils.fields.AutoLastModifiedField(default=django.utils.timezone.now, editable=False, verbose_name="modified")),
                ("program", models.CharField(choices=[("MAHAD_PROGRAM", "Mahad"), ("DUGSI_PROGRAM", "Dugsi")], max_length=20)),
                ("status", models.CharField(choices=ENROLLMENT_STATUS_CHOICES, default="REGISTERED", max_length=16)),
                ("monthly_rate", models.PositiveIntegerField(default=0)),
                ("graduation_status", models.CharField(blank=True, choices=[("NON_GRADUATE", "Non-Graduate"), ("GRADUATE", "Graduate")], max_length=16, null=True)),
                ("payment_frequency", models.CharField(blank=True, choices=[("MONTHLY", "Monthly"), ("BI_MONTHLY", "Bi-Monthly")], max_length=16, null=True)),
                ("billing_type", models.CharField(blank=True, choices=[("FULL_TIME", "Full Time"), ("FULL_TIME_SCHOLARSHIP", "Full Time (Scholarship)"), ("PART_TIME", "Part Time"), ("EXEMPT", "Exempt")], max_length=24, null=True)),
                ("family_reference_id", models.CharField(blank=True, db_index=True, help_text="Shared by Dugsi siblings that are billed together.", max_length=64, null=True)),
                ("person", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="program_profiles", to="people.person")),
            ],
        ),
        migrations.CreateModel(
            name="Enrollment",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created", model_utils.fields.AutoCreatedField(default=django.utils.timezone.now, editable=False, verbose_name="created")),
                ("modified", model_utils.fields.AutoLastModifiedField(default=django.utils.timezone.now, editable=False, verbose_name="modified")),
                ("status", models.CharField(choices=ENROLLMENT_STATUS_CHOICES, default="REGISTERED", max_length=16)),
                ("start_date", models.DateTimeField()),
                ("end_date", models.DateTimeField(blank=True, null=True)),
                ("reason", models.CharField(blank=True, default="", max_length=255)),
                ("notes", models.TextField(blank=True, default="")),
                ("batch", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="enrollments", to="programs.batch")),
                ("program_profile", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="enrollments", to="programs.programprofile")),
            ],
            options={
                "ordering": ["-start_date"],
            },
        ),
        migrations.AddConstraint(
            model_name="programprofile",
            constraint=models.UniqueConstraint(fields=("person", "program"), name="unique_profile_per_program"),
        ),
    ]
