"""
Tuition rate calculators for Mahad and Dugsi.

All amounts are integer cents.

Mahad rates are table-driven by graduation status and payment frequency, then
adjusted by billing type:

    FULL_TIME              base rate
    FULL_TIME_SCHOLARSHIP  base rate - $30
    PART_TIME              base rate // 2
    EXEMPT                 0 (no subscription is created)

BI_MONTHLY students are charged the two-month total in a single invoice, so
the per-month result is doubled.

Dugsi is billed per family, monthly, with tiered sibling discounts:

    1st and 2nd child  $80 each
    3rd child          $70
    4th child onward   $60 each
"""

from __future__ import annotations

from dataclasses import dataclass

from madrasa.programs.constants import BillingType
from madrasa.programs.constants import GraduationStatus
from madrasa.programs.constants import PaymentFrequency

# =============================================================================
# Mahad
# =============================================================================

BASE_RATES = {
    GraduationStatus.NON_GRADUATE: {
        PaymentFrequency.MONTHLY: 12000,
        PaymentFrequency.BI_MONTHLY: 11000,
    },
    GraduationStatus.GRADUATE: {
        PaymentFrequency.MONTHLY: 9500,
        PaymentFrequency.BI_MONTHLY: 9000,
    },
}
SCHOLARSHIP_DISCOUNT = 3000

BILLING_TYPE_DESCRIPTIONS = {
    BillingType.FULL_TIME: "Full-time student",
    BillingType.FULL_TIME_SCHOLARSHIP: "Full-time with scholarship ($30 discount)",
    BillingType.PART_TIME: "Part-time student (50% rate)",
    BillingType.EXEMPT: "Exempt from payment (TA, staff, etc.)",
}


def calculate_mahad_rate(
    graduation_status: str | None,
    payment_frequency: str | None,
    billing_type: str | None,
) -> int:
    """
    Return the amount charged per Stripe billing interval, in cents.

    A missing graduation status is treated as NON_GRADUATE and a missing
    frequency as MONTHLY. A missing billing type means no billing.
    """
    if not billing_type or billing_type == BillingType.EXEMPT:
        return 0

    status = graduation_status or GraduationStatus.NON_GRADUATE
    frequency = payment_frequency or PaymentFrequency.MONTHLY
    base = BASE_RATES[status][frequency]

    if billing_type == BillingType.PART_TIME:
        rate = base // 2
    elif billing_type == BillingType.FULL_TIME_SCHOLARSHIP:
        rate = base - SCHOLARSHIP_DISCOUNT
    else:
        rate = base

    if frequency == PaymentFrequency.BI_MONTHLY:
        rate *= 2
    return max(rate, 0)


def get_stripe_interval(payment_frequency: str | None = None) -> dict[str, object]:
    """Stripe ``recurring`` block for a payment frequency (monthly by default)."""
    interval_count = 2 if payment_frequency == PaymentFrequency.BI_MONTHLY else 1
    return {"interval": "month", "interval_count": interval_count}


def should_create_subscription(billing_type: str | None) -> bool:
    return billing_type != BillingType.EXEMPT


def format_rate(cents: int) -> str:
    return f"${cents / 100:,.2f}"


def format_rate_display(cents: int, payment_frequency: str | None = None) -> str:
    """``$120.00/month`` or ``$220.00/bi-monthly``."""
    suffix = "bi-monthly" if payment_frequency == PaymentFrequency.BI_MONTHLY else "month"
    return f"{format_rate(cents)}/{suffix}"


def format_graduation_status(graduation_status: str | None) -> str:
    if not graduation_status:
        return "Unknown"
    return str(GraduationStatus(graduation_status).label)


def format_billing_type(billing_type: str | None) -> str:
    if not billing_type:
        return "Unknown"
    return str(BillingType(billing_type).label)


def get_billing_type_description(billing_type: str) -> str:
    return BILLING_TYPE_DESCRIPTIONS.get(billing_type, "Unknown billing type")


# =============================================================================
# Dugsi
# =============================================================================

DUGSI_BASE_RATE = 8000
DUGSI_THIRD_CHILD_RATE = 7000
DUGSI_FOURTH_PLUS_RATE = 6000
MIN_RATE_PER_CHILD = DUGSI_FOURTH_PLUS_RATE
MAX_EXPECTED_FAMILY_RATE = 65000

# Overrides further than this fraction from the calculated rate get a warning.
OVERRIDE_DEVIATION_THRESHOLD = 0.5


@dataclass(frozen=True)
class RateBreakdown:
    first_two: int
    third: int
    fourth_plus: int

    @property
    def total(self) -> int:
        return self.first_two + self.third + self.fourth_plus


@dataclass(frozen=True)
class OverrideValidation:
    valid: bool
    reason: str | None = None


def get_rate_breakdown(child_count: int) -> RateBreakdown:
    if not isinstance(child_count, int) or child_count <= 0:
        return RateBreakdown(0, 0, 0)
    first_two = min(child_count, 2) * DUGSI_BASE_RATE
    third = DUGSI_THIRD_CHILD_RATE if child_count >= 3 else 0  # noqa: PLR2004
    fourth_plus = max(child_count - 3, 0) * DUGSI_FOURTH_PLUS_RATE
    return RateBreakdown(first_two, third, fourth_plus)


def calculate_dugsi_rate(child_count: int) -> int:
    """Monthly family rate in cents; 0 for a non-positive or fractional count."""
    return get_rate_breakdown(child_count).total


def get_rate_tier_description(child_count: int) -> str:
    if child_count <= 0:
        return "No children enrolled"
    if child_count == 1:
        return f"1 child at {_dollars(DUGSI_BASE_RATE)}/month"
    if child_count == 2:  # noqa: PLR2004
        return f"2 children at {_dollars(DUGSI_BASE_RATE)}/month each"

    tiers = [
        f"2 at {_dollars(DUGSI_BASE_RATE)}",
        f"1 at {_dollars(DUGSI_THIRD_CHILD_RATE)}",
    ]
    if child_count > 3:  # noqa: PLR2004
        tiers.append(f"{child_count - 3} at {_dollars(DUGSI_FOURTH_PLUS_RATE)}")
    return f"{child_count} children ({', '.join(tiers)})"


def validate_override_amount(amount: float, child_count: int) -> OverrideValidation:
    """
    Check an admin-entered family rate.

    Non-positive and fractional amounts are invalid. Amounts far from the
    calculated rate are allowed but come back with a warning ``reason``.
    """
    if amount <= 0:
        return OverrideValidation(False, "Override amount must be positive")
    if amount != int(amount):
        return OverrideValidation(False, "Override amount must be a whole number")

    if amount > MAX_EXPECTED_FAMILY_RATE:
        return OverrideValidation(
            True,
            f"Override amount exceeds typical maximum "
            f"({format_rate(MAX_EXPECTED_FAMILY_RATE)})",
        )

    calculated = calculate_dugsi_rate(child_count)
    if calculated > 0:
        deviation = abs(amount - calculated) / calculated
        if deviation > OVERRIDE_DEVIATION_THRESHOLD:
            return OverrideValidation(
                True,
                f"Override amount differs significantly from calculated rate "
                f"({format_rate(calculated)})",
            )
    return OverrideValidation(True)


def _dollars(cents: int) -> str:
    return f"${cents // 100}"
