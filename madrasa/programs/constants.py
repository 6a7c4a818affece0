"""
Program and enrollment enums.

The billing configuration enums (graduation status, payment frequency and
billing type) live here because they are stored on ``ProgramProfile``; the
rate tables that consume them live in ``madrasa.billing.tuition``.
"""

from django.db import models
from django.utils.translation import gettext_lazy as _


class Program(models.TextChoices):
    MAHAD_PROGRAM = "MAHAD_PROGRAM", _("Mahad")
    DUGSI_PROGRAM = "DUGSI_PROGRAM", _("Dugsi")


class EnrollmentStatus(models.TextChoices):
    """
    Enrollment lifecycle.

    Typical flow:
        REGISTERED → ENROLLED → COMPLETED
        ENROLLED → ON_LEAVE → ENROLLED
        any → WITHDRAWN (terminal for that enrollment row)
    """

    REGISTERED = "REGISTERED", _("Registered")
    ENROLLED = "ENROLLED", _("Enrolled")
    ON_LEAVE = "ON_LEAVE", _("On Leave")
    WITHDRAWN = "WITHDRAWN", _("Withdrawn")
    COMPLETED = "COMPLETED", _("Completed")
    SUSPENDED = "SUSPENDED", _("Suspended")


class GraduationStatus(models.TextChoices):
    NON_GRADUATE = "NON_GRADUATE", _("Non-Graduate")
    GRADUATE = "GRADUATE", _("Graduate")


class PaymentFrequency(models.TextChoices):
    MONTHLY = "MONTHLY", _("Monthly")
    BI_MONTHLY = "BI_MONTHLY", _("Bi-Monthly")


class BillingType(models.TextChoices):
    FULL_TIME = "FULL_TIME", _("Full Time")
    FULL_TIME_SCHOLARSHIP = "FULL_TIME_SCHOLARSHIP", _("Full Time (Scholarship)")
    PART_TIME = "PART_TIME", _("Part Time")
    EXEMPT = "EXEMPT", _("Exempt")


# Profiles in these states are billable members of a Dugsi family.
BILLABLE_DUGSI_STATUSES = (EnrollmentStatus.REGISTERED, EnrollmentStatus.ENROLLED)


class WithdrawalReason(models.TextChoices):
    FAMILY_MOVED = "family_moved", _("Family moved")
    FINANCIAL = "financial", _("Financial reasons")
    BEHAVIORAL = "behavioral", _("Behavioral")
    SEASONAL_BREAK = "seasonal_break", _("Seasonal break")
    OTHER = "other", _("Other")
