from django.contrib import admin

from madrasa.programs.models import Batch
from madrasa.programs.models import Enrollment
from madrasa.programs.models import ProgramProfile


class EnrollmentInline(admin.TabularInline):
    model = Enrollment
    extra = 0
    fields = ["batch", "status", "start_date", "end_date", "reason"]


@admin.register(ProgramProfile)
class ProgramProfileAdmin(admin.ModelAdmin):
    list_display = [
        "person",
        "program",
        "status",
        "billing_type",
        "payment_frequency",
        "monthly_rate",
        "family_reference_id",
    ]
    list_filter = ["program", "status", "billing_type", "graduation_status"]
    search_fields = ["person__name", "family_reference_id"]
    raw_id_fields = ["person"]
    inlines = [EnrollmentInline]


@admin.register(Batch)
class BatchAdmin(admin.ModelAdmin):
    list_display = ["name", "start_date", "end_date"]
    search_fields = ["name"]


@admin.register(Enrollment)
class EnrollmentAdmin(admin.ModelAdmin):
    list_display = ["program_profile", "batch", "status", "start_date", "end_date"]
    list_filter = ["status", "batch"]
    raw_id_fields = ["program_profile"]
