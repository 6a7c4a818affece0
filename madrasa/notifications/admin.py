from django.contrib import admin

from madrasa.notifications.models import WhatsAppMessage


@admin.register(WhatsAppMessage)
class WhatsAppMessageAdmin(admin.ModelAdmin):
    list_display = ["phone", "template_name", "status", "program", "created"]
    list_filter = ["status", "template_name", "program"]
    search_fields = ["phone", "wamid", "person__name"]
    raw_id_fields = ["person"]
    readonly_fields = ["wamid", "metadata", "failure_reason", "created", "modified"]
