from django.contrib import admin

from madrasa.billing import queries
from madrasa.billing.models import BillingAccount
from madrasa.billing.models import BillingAssignment
from madrasa.billing.models import Subscription
from madrasa.billing.models import SubscriptionHistory
from madrasa.billing.models import WebhookEvent


@admin.register(BillingAccount)
class BillingAccountAdmin(admin.ModelAdmin):
    list_display = [
        "person",
        "account_type",
        "stripe_customer_id_mahad",
        "stripe_customer_id_dugsi",
        "payment_method_captured",
    ]
    list_filter = ["account_type", "payment_method_captured"]
    search_fields = [
        "person__name",
        "stripe_customer_id_mahad",
        "stripe_customer_id_dugsi",
    ]
    raw_id_fields = ["person"]


class BillingAssignmentInline(admin.TabularInline):
    model = BillingAssignment
    extra = 0
    fields = ["program_profile", "amount", "percentage", "is_active", "start_date", "end_date"]
    raw_id_fields = ["program_profile"]



class AssignmentFilter(admin.SimpleListFilter):
    title = "assignment"
    parameter_name = "assignment"

    def lookups(self, request, model_admin):
        return [("unassigned", "Live, no active assignment")]

    def queryset(self, request, queryset):
        if self.value() == "unassigned":
            return queryset.filter(
                pk__in=queries.get_orphaned_subscriptions().order_by().values("pk"),
            )
        return queryset

@admin.register(Subscription)
class SubscriptionAdmin(admin.ModelAdmin):
    list_display = [
        "stripe_subscription_id",
        "stripe_account_type",
        "status",
        "amount",
        "paid_until",
    ]
    list_filter = ["stripe_account_type", "status", AssignmentFilter]
    search_fields = ["stripe_subscription_id", "stripe_customer_id", "billing_account__person__name"]
    raw_id_fields = ["billing_account"]
    inlines = [BillingAssignmentInline]


@admin.register(SubscriptionHistory)
class SubscriptionHistoryAdmin(admin.ModelAdmin):
    list_display = ["subscription", "event_type", "status", "amount", "processed_at"]
    list_filter = ["event_type"]
    search_fields = ["subscription__stripe_subscription_id", "event_id"]
    raw_id_fields = ["subscription"]


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    list_display = ["event_id", "event_type", "source", "created"]
    list_filter = ["source", "event_type"]
    search_fields = ["event_id"]
    readonly_fields = ["event_id", "event_type", "source", "payload", "created", "modified"]
