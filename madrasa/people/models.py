"""
People models.

Relationship:
    Person ──1:N── ContactPoint
    Person (guardian) ──N:M── Person (dependent) via GuardianRelationship
"""

from django.db import models
from django.utils.translation import gettext_lazy as _
from model_utils.models import TimeStampedModel

from madrasa.people.constants import ContactType
from madrasa.people.constants import GuardianRole


class Person(TimeStampedModel):
    """A student, parent or guardian."""

    name = models.CharField(_("Name"), max_length=255)
    date_of_birth = models.DateField(null=True, blank=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name

    @property
    def first_name(self) -> str:
        return self.name.split(" ", 1)[0] if self.name else ""


class ContactPoint(TimeStampedModel):
    """
    One email address or phone number belonging to a person.

    Values are stored normalized: emails lower-cased, phones as digits only.
    """

    person = models.ForeignKey(
        Person,
        on_delete=models.CASCADE,
        related_name="contact_points",
    )
    type = models.CharField(max_length=16, choices=ContactType.choices)
    value = models.CharField(max_length=255, db_index=True)
    is_primary = models.BooleanField(default=False)
    is_active = models.BooleanField(default=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["person", "type", "value"],
                name="unique_contact_point_per_person",
            ),
        ]

    def __str__(self):
        return f"{self.get_type_display()}: {self.value}"


class GuardianRelationship(TimeStampedModel):
    """
    Links a guardian to a dependent.

    ``is_primary_payer`` marks the guardian who receives payment links and
    owns the family's Dugsi billing account.
    """

    guardian = models.ForeignKey(
        Person,
        on_delete=models.CASCADE,
        related_name="dependent_relationships",
    )
    dependent = models.ForeignKey(
        Person,
        on_delete=models.CASCADE,
        related_name="guardian_relationships",
    )
    role = models.CharField(
        max_length=16,
        choices=GuardianRole.choices,
        default=GuardianRole.PARENT,
    )
    is_active = models.BooleanField(default=True)
    is_primary_payer = models.BooleanField(default=False)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["guardian", "dependent"],
                name="unique_guardian_dependent",
            ),
        ]

    def __str__(self):
        return f"{self.guardian} → {self.dependent}"
