"""
Program models.

Relationship:
    Person ──1:N── ProgramProfile ──1:N── Enrollment ──N:1── Batch

A ProgramProfile is a person's record within one program. Dugsi siblings
share a ``family_reference_id`` so they can be billed together.
"""

from django.db import models
from django.utils.translation import gettext_lazy as _
from model_utils.models import TimeStampedModel

from madrasa.people.models import Person
from madrasa.programs.constants import BillingType
from madrasa.programs.constants import EnrollmentStatus
from madrasa.programs.constants import GraduationStatus
from madrasa.programs.constants import PaymentFrequency
from madrasa.programs.constants import Program


class ProgramProfile(TimeStampedModel):
    """
    A person's enrollment record in one program, with billing configuration.

    ``monthly_rate`` holds the amount (in cents) billed per Stripe interval.
    For bi-monthly Mahad students that is the two-month total.
    """

    person = models.ForeignKey(
        Person,
        on_delete=models.CASCADE,
        related_name="program_profiles",
    )
    program = models.CharField(max_length=20, choices=Program.choices)
    status = models.CharField(
        max_length=16,
        choices=EnrollmentStatus.choices,
        default=EnrollmentStatus.REGISTERED,
    )
    monthly_rate = models.PositiveIntegerField(default=0)
    graduation_status = models.CharField(
        max_length=16,
        choices=GraduationStatus.choices,
        null=True,
        blank=True,
    )
    payment_frequency = models.CharField(
        max_length=16,
        choices=PaymentFrequency.choices,
        null=True,
        blank=True,
    )
    billing_type = models.CharField(
        max_length=24,
        choices=BillingType.choices,
        null=True,
        blank=True,
    )
    family_reference_id = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        db_index=True,
        help_text=_("Shared by Dugsi siblings that are billed together."),
    )

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["person", "program"],
                name="unique_profile_per_program",
            ),
        ]

    def __str__(self):
        return f"{self.person} ({self.get_program_display()})"


class Batch(TimeStampedModel):
    """A cohort of Mahad students taught together."""

    name = models.CharField(max_length=120, unique=True)
    start_date = models.DateField(null=True, blank=True)
    end_date = models.DateField(null=True, blank=True)

    class Meta:
        verbose_name_plural = "batches"
        ordering = ["name"]

    def __str__(self):
        return self.name


class EnrollmentQuerySet(models.QuerySet):
    def active(self):
        """Enrollments that are neither withdrawn nor closed."""
        return self.exclude(status=EnrollmentStatus.WITHDRAWN).filter(
            end_date__isnull=True,
        )


class Enrollment(TimeStampedModel):
    program_profile = models.ForeignKey(
        ProgramProfile,
        on_delete=models.CASCADE,
        related_name="enrollments",
    )
    batch = models.ForeignKey(
        Batch,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="enrollments",
    )
    status = models.CharField(
        max_length=16,
        choices=EnrollmentStatus.choices,
        default=EnrollmentStatus.REGISTERED,
    )
    start_date = models.DateTimeField()
    end_date = models.DateTimeField(null=True, blank=True)
    reason = models.CharField(max_length=255, blank=True, default="")
    notes = models.TextField(blank=True, default="")

    objects = EnrollmentQuerySet.as_manager()

    class Meta:
        ordering = ["-start_date"]

    def __str__(self):
        return f"{self.program_profile} in {self.batch or 'no batch'}"

    @property
    def is_active(self) -> bool:
        return self.status != EnrollmentStatus.WITHDRAWN and self.end_date is None
