import itertools

import pytest

from madrasa.billing.tuition import BASE_RATES
from madrasa.billing.tuition import MAX_EXPECTED_FAMILY_RATE
from madrasa.billing.tuition import SCHOLARSHIP_DISCOUNT
from madrasa.billing.tuition import calculate_dugsi_rate
from madrasa.billing.tuition import calculate_mahad_rate
from madrasa.billing.tuition import format_billing_type
from madrasa.billing.tuition import format_graduation_status
from madrasa.billing.tuition import format_rate
from madrasa.billing.tuition import format_rate_display
from madrasa.billing.tuition import get_billing_type_description
from madrasa.billing.tuition import get_rate_breakdown
from madrasa.billing.tuition import get_rate_tier_description
from madrasa.billing.tuition import get_stripe_interval
from madrasa.billing.tuition import should_create_subscription
from madrasa.billing.tuition import validate_override_amount
from madrasa.programs.constants import BillingType
from madrasa.programs.constants import GraduationStatus
from madrasa.programs.constants import PaymentFrequency

NG = GraduationStatus.NON_GRADUATE
G = GraduationStatus.GRADUATE
MONTHLY = PaymentFrequency.MONTHLY
BI = PaymentFrequency.BI_MONTHLY


class TestCalculateMahadRate:
    @pytest.mark.parametrize(
        ("status", "frequency", "billing_type", "expected"),
        [
            (NG, MONTHLY, BillingType.FULL_TIME, 12000),
            (NG, BI, BillingType.FULL_TIME, 22000),
            (NG, MONTHLY, BillingType.FULL_TIME_SCHOLARSHIP, 9000),
            (NG, BI, BillingType.FULL_TIME_SCHOLARSHIP, 16000),
            (NG, MONTHLY, BillingType.PART_TIME, 6000),
            (NG, BI, BillingType.PART_TIME, 11000),
            (G, MONTHLY, BillingType.FULL_TIME, 9500),
            (G, BI, BillingType.FULL_TIME, 18000),
            (G, MONTHLY, BillingType.FULL_TIME_SCHOLARSHIP, 6500),
            (G, BI, BillingType.FULL_TIME_SCHOLARSHIP, 12000),
            (G, MONTHLY, BillingType.PART_TIME, 4750),
            (G, BI, BillingType.PART_TIME, 9000),
        ],
    )
    def test_rate_table(self, status, frequency, billing_type, expected):
        assert calculate_mahad_rate(status, frequency, billing_type) == expected

    def test_every_combination_is_non_negative_int(self):
        for status, frequency, billing_type in itertools.product(
            [*GraduationStatus.values, None],
            [*PaymentFrequency.values, None],
            [*BillingType.values, None],
        ):
            rate = calculate_mahad_rate(status, frequency, billing_type)
            assert isinstance(rate, int)
            assert rate >= 0

    @pytest.mark.parametrize("status", [NG, G, None])
    @pytest.mark.parametrize("frequency", [MONTHLY, BI, None])
    def test_exempt_is_always_zero(self, status, frequency):
        assert calculate_mahad_rate(status, frequency, BillingType.EXEMPT) == 0

    def test_part_time_floors_half_of_base(self):
        base = BASE_RATES[G][MONTHLY]

        assert calculate_mahad_rate(G, MONTHLY, BillingType.PART_TIME) == base // 2

    def test_scholarship_subtracts_discount(self):
        base = BASE_RATES[NG][MONTHLY]

        assert (
            calculate_mahad_rate(NG, MONTHLY, BillingType.FULL_TIME_SCHOLARSHIP)
            == base - SCHOLARSHIP_DISCOUNT
        )

    @pytest.mark.parametrize("status", [NG, G])
    @pytest.mark.parametrize(
        "billing_type",
        [
            BillingType.FULL_TIME,
            BillingType.FULL_TIME_SCHOLARSHIP,
            BillingType.PART_TIME,
        ],
    )
    def test_bi_monthly_charges_two_months(self, status, billing_type):
        base_bi = BASE_RATES[status][BI]
        per_month = {
            BillingType.FULL_TIME: base_bi,
            BillingType.FULL_TIME_SCHOLARSHIP: base_bi - SCHOLARSHIP_DISCOUNT,
            BillingType.PART_TIME: base_bi // 2,
        }[billing_type]

        assert calculate_mahad_rate(status, BI, billing_type) == 2 * per_month

    def test_null_billing_type_is_zero(self):
        assert calculate_mahad_rate(NG, MONTHLY, None) == 0

    def test_null_status_and_frequency_use_defaults(self):
        assert calculate_mahad_rate(None, MONTHLY, BillingType.FULL_TIME) == 12000
        assert calculate_mahad_rate(G, None, BillingType.FULL_TIME) == 9500
        assert calculate_mahad_rate(None, None, BillingType.FULL_TIME) == 12000


class TestMahadHelpers:
    def test_stripe_interval(self):
        assert get_stripe_interval(MONTHLY) == {"interval": "month", "interval_count": 1}
        assert get_stripe_interval(BI) == {"interval": "month", "interval_count": 2}
        assert get_stripe_interval() == {"interval": "month", "interval_count": 1}

    def test_should_create_subscription(self):
        assert should_create_subscription(BillingType.FULL_TIME)
        assert should_create_subscription(BillingType.PART_TIME)
        assert not should_create_subscription(BillingType.EXEMPT)

    @pytest.mark.parametrize(
        ("cents", "expected"),
        [(12000, "$120.00"), (4750, "$47.50"), (0, "$0.00"), (22000, "$220.00")],
    )
    def test_format_rate(self, cents, expected):
        assert format_rate(cents) == expected

    def test_format_rate_display(self):
        assert format_rate_display(12000, MONTHLY) == "$120.00/month"
        assert format_rate_display(22000, BI) == "$220.00/bi-monthly"
        assert format_rate_display(8000) == "$80.00/month"

    def test_labels(self):
        assert format_graduation_status(G) == "Graduate"
        assert format_billing_type(BillingType.FULL_TIME_SCHOLARSHIP) == (
            "Full Time (Scholarship)"
        )
        assert format_billing_type(None) == "Unknown"
        assert get_billing_type_description(BillingType.PART_TIME) == (
            "Part-time student (50% rate)"
        )


class TestDugsiRates:
    @pytest.mark.parametrize(
        ("children", "expected"),
        [
            (1, 8000),
            (2, 16000),
            (3, 23000),
            (4, 29000),
            (5, 35000),
            (6, 41000),
            (10, 65000),
            (0, 0),
            (-2, 0),
            (1.5, 0),
        ],
    )
    def test_calculate_dugsi_rate(self, children, expected):
        assert calculate_dugsi_rate(children) == expected

    def test_rate_breakdown_for_five_children(self):
        breakdown = get_rate_breakdown(5)

        assert breakdown.first_two == 16000
        assert breakdown.third == 7000
        assert breakdown.fourth_plus == 12000
        assert breakdown.total == 35000

    @pytest.mark.parametrize(
        ("children", "expected"),
        [
            (0, "No children enrolled"),
            (1, "1 child at $80/month"),
            (2, "2 children at $80/month each"),
            (3, "3 children (2 at $80, 1 at $70)"),
            (5, "5 children (2 at $80, 1 at $70, 2 at $60)"),
        ],
    )
    def test_tier_description(self, children, expected):
        assert get_rate_tier_description(children) == expected


class TestValidateOverrideAmount:
    def test_rejects_non_positive(self):
        result = validate_override_amount(0, 2)

        assert not result.valid
        assert result.reason == "Override amount must be positive"

    def test_rejects_fractional(self):
        result = validate_override_amount(1000.5, 2)

        assert not result.valid
        assert result.reason == "Override amount must be a whole number"

    def test_accepts_reasonable_override(self):
        result = validate_override_amount(15000, 2)

        assert result.valid
        assert result.reason is None

    def test_warns_on_large_deviation(self):
        result = validate_override_amount(5000, 2)

        assert result.valid
        assert "differs significantly" in result.reason

    def test_warns_above_max(self):
        result = validate_override_amount(MAX_EXPECTED_FAMILY_RATE + 35000, 5)

        assert result.valid
        assert "exceeds typical maximum" in result.reason
