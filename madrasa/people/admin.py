from django.contrib import admin

from madrasa.people.models import ContactPoint
from madrasa.people.models import GuardianRelationship
from madrasa.people.models import Person


class ContactPointInline(admin.TabularInline):
    model = ContactPoint
    extra = 0
    fields = ["type", "value", "is_primary", "is_active"]


@admin.register(Person)
class PersonAdmin(admin.ModelAdmin):
    list_display = ["name", "date_of_birth", "created"]
    search_fields = ["name", "contact_points__value"]
    inlines = [ContactPointInline]


@admin.register(GuardianRelationship)
class GuardianRelationshipAdmin(admin.ModelAdmin):
    list_display = ["guardian", "dependent", "role", "is_primary_payer", "is_active"]
    list_filter = ["role", "is_primary_payer", "is_active"]
    search_fields = ["guardian__name", "dependent__name"]
    raw_id_fields = ["guardian", "dependent"]
