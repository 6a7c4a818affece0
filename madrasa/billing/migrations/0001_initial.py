import django.db.models.deletion
import django.utils.timezone
import model_utils.fields
from django.db import migrations
from django.db import models

ACCOUNT_TYPE_CHOICES = [
    ("MAHAD", "Mahad"),
    ("DUGSI", "Dugsi"),
    ("YOUTH_EVENTS", "Youth Events"),
    ("GENERAL_DONATION", "General Donation"),
]


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("people", "0001_initial"),
        ("programs", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="BillingAccount",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created", model_utils.fields.AutoCreatedField(default=django.utils.timezone.now, editable=False, verbose_name="created")),
                ("modified", model_utils.fields.AutoLastModifiedField(default=django.utils.timezone.now, editable=False, verbose_name="modified")),
                ("account_type", models.CharField(choices=ACCOUNT_TYPE_CHOICES, max_length=20)),
                ("stripe_customer_id_mahad", models.CharField(blank=True, max_length=255, null=True, unique=True)),
                ("stripe_customer_id_dugsi", models.CharField(blank=True, max_length=255, null=True, unique=True)),
                ("stripe_customer_id_youth", models.CharField(blank=True, max_length=255, null=True, unique=True)),
                ("stripe_customer_id_donation", models.CharField(blank=True, max_length=255, null=True, unique=True)),
                ("payment_intent_id_dugsi", models.CharField(blank=True, default="", max_length=255)),
                ("payment_method_captured", models.BooleanField(default=False)),
                ("payment_method_captured_at", models.DateTimeField(blank=True, null=True)),
                ("person", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="billing_accounts", to="people.person")),
            ],
        ),
        migrations.CreateModel(
            name="Subscription",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created", model_utils.fields.AutoCreatedField(default=django.utils.timezone.now, editable=False, verbose_name="created")),
                ("modified", model_utils.fields.AutoLastModifiedField(default=django.utils.timezone.now, editable=False, verbose_name="modified")),
                ("stripe_account_type", models.CharField(choices=ACCOUNT_TYPE_CHOICES, max_length=20)),
                ("stripe_subscription_id", models.CharField(max_length=255, unique=True)),
                ("stripe_customer_id", models.CharField(db_index=True, max_length=255)),
                ("status", models.CharField(choices=[("incomplete", "Incomplete"), ("incomplete_expired", "Incomplete Expired"), ("trialing", "Trialing"), ("active", "Active"), ("past_due", "Past Due"), ("canceled", "Canceled"), ("unpaid", "Unpaid"), ("paused", "Paused")], default="incomplete", max_length=20)),
                ("amount", models.PositiveIntegerField(default=0)),
                ("currency", models.CharField(default="usd", max_length=3)),
                ("interval", models.CharField(default="month", max_length=10)),
                ("current_period_start", models.DateTimeField(blank=True, null=True)),
                ("current_period_end", models.DateTimeField(blank=True, null=True)),
                ("paid_until", models.DateTimeField(blank=True, null=True)),
                ("last_payment_date", models.DateTimeField(blank=True, null=True)),
                ("previous_subscription_ids", models.JSONField(blank=True, default=list, help_text="Stripe subscription ids this subscription replaced.")),
                ("billing_account", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="subscriptions", to="billing.billingaccount")),
            ],
        ),
        migrations.CreateModel(
            name="BillingAssignment",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created", model_utils.fields.AutoCreatedField(default=django.utils.timezone.now, editable=False, verbose_name="created")),
                ("modified", model_utils.fields.AutoLastModifiedField(default=django.utils.timezone.now, editable=False, verbose_name="modified")),
                ("amount", models.PositiveIntegerField()),
                ("percentage", models.DecimalField(blank=True, decimal_places=2, max_digits=5, null=True)),
                ("is_active", models.BooleanField(default=True)),
                ("start_date", models.DateTimeField()),
                ("end_date", models.DateTimeField(blank=True, null=True)),
                ("notes", models.TextField(blank=True, default="")),
                ("program_profile", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="billing_assignments", to="programs.programprofile")),
                ("subscription", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="assignments", to="billing.subscription")),
            ],
        ),
        migrations.CreateModel(
            name="SubscriptionHistory",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created", model_utils.fields.AutoCreatedField(default=django.utils.timezone.now, editable=False, verbose_name="created")),
                ("modified", model_utils.fields.AutoLastModifiedField(default=django.utils.timezone.now, editable=False, verbose_name="modified")),
                ("event_type", models.CharField(max_length=64)),
                ("event_id", models.CharField(blank=True, default="", max_length=255)),
                ("status", models.CharField(blank=True, default="", max_length=20)),
                ("amount", models.PositiveIntegerField(blank=True, null=True)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("processed_at", models.DateTimeField()),
                ("subscription", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="history", to="billing.subscription")),
            ],
            options={
                "verbose_name_plural": "subscription history",
                "ordering": ["-processed_at"],
            },
        ),
        migrations.CreateModel(
            name="WebhookEvent",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created", model_utils.fields.AutoCreatedField(default=django.utils.timezone.now, editable=False, verbose_name="created")),
                ("modified", model_utils.fields.AutoLastModifiedField(default=django.utils.timezone.now, editable=False, verbose_name="modified")),
                ("event_id", models.CharField(max_length=255)),
                ("event_type", models.CharField(max_length=64)),
                ("source", models.CharField(choices=[("mahad", "Mahad"), ("dugsi", "Dugsi")], max_length=10)),
                ("payload", models.JSONField(default=dict)),
            ],
        ),
        migrations.AddConstraint(
            model_name="billingaccount",
            constraint=models.UniqueConstraint(fields=("person", "account_type"), name="unique_billing_account_per_person_type"),
        ),
        migrations.AddConstraint(
            model_name="webhookevent",
            constraint=models.UniqueConstraint(fields=("event_id", "source"), name="unique_webhook_event_per_source"),
        ),
    ]
