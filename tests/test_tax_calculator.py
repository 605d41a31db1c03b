"""Unit tests for ThaiIncomeTaxCalculator.

Uses the built-in 2025 tables; no database needed.
"""

from datetime import date
from decimal import Decimal

import pytest
from hypothesis import given, settings, strategies as st

from grant_payroll.calculators import rule_tables as keys
from grant_payroll.calculators.rule_tables import THAI_2025_BRACKETS, ConfigSnapshot
from grant_payroll.calculators.tax_calculator import (
    ThaiIncomeTaxCalculator,
    months_working_in_year,
)
from grant_payroll.calculators.types import EmployeeProfile

CALC = ThaiIncomeTaxCalculator(ConfigSnapshot.thai_2025())


def profile(**overrides) -> EmployeeProfile:
    values = dict(
        employee_id=None,
        staff_id="SMRU-0001",
        full_name="Test Person",
        organization="SMRU",
        status="Local ID",
    )
    values.update(overrides)
    return EmployeeProfile(**values)


class TestProgressiveTax:
    """Test progressive bracket calculation."""

    @pytest.mark.parametrize(
        "taxable,expected",
        [
            ("0", "0"),
            ("-5000", "0"),
            ("150000", "0"),
            ("191000", "2050"),
            ("300000", "7500"),
            ("500000", "27500"),
            ("1000000", "115000"),
            ("5000000", "1265000"),
            ("6000000", "1615000"),
        ],
    )
    def test_known_values(self, taxable, expected):
        assert CALC.progressive_tax(Decimal(taxable)) == Decimal(expected)

    def test_breakdown_sums_to_total(self):
        """Per-bracket lines add up to the progressive total."""
        lines = CALC.tax_breakdown(Decimal("820000"))

        assert [line.rate for line in lines] == [
            Decimal("0"), Decimal("5"), Decimal("10"), Decimal("15"), Decimal("20")
        ]
        assert lines[-1].taxable_in_bracket == Decimal("70000")
        assert sum(line.tax for line in lines) == CALC.progressive_tax(Decimal("820000"))

    def test_breakdown_empty_for_zero(self):
        assert CALC.tax_breakdown(Decimal("0")) == []

    @settings(max_examples=200)
    @given(income=st.integers(min_value=0, max_value=20_000_000))
    def test_matches_cumulative_base_tax(self, income):
        """Tax equals the bracket's base tax plus its own slice."""
        taxable = Decimal(income)
        bracket = next(
            b
            for b in reversed(THAI_2025_BRACKETS)
            if taxable >= b.min_income
        )
        expected = bracket.base_tax + (taxable - bracket.min_income) * bracket.rate / 100

        assert CALC.progressive_tax(taxable) == expected

    @settings(max_examples=200)
    @given(
        income=st.integers(min_value=0, max_value=10_000_000),
        increase=st.integers(min_value=0, max_value=1_000_000),
    )
    def test_never_decreases_with_income(self, income, increase):
        low = CALC.progressive_tax(Decimal(income))
        high = CALC.progressive_tax(Decimal(income + increase))
        assert high >= low

    @settings(max_examples=100)
    @given(income=st.integers(min_value=1, max_value=10_000_000))
    def test_effective_rate_below_top_rate(self, income):
        tax = CALC.progressive_tax(Decimal(income))
        assert tax < Decimal(income) * Decimal("0.35") or tax == 0


class TestDeductionsAndAllowances:
    """Test deductions and allowances."""

    def test_employment_deduction_rate(self):
        assert CALC.employment_deduction(Decimal("100000")) == Decimal("50000")

    def test_employment_deduction_capped(self):
        assert CALC.employment_deduction(Decimal("400000")) == Decimal("100000")

    def test_spouse_allowance_only_without_income(self):
        assert CALC.spouse_allowance(profile(has_spouse=True)) == Decimal("60000")
        assert CALC.spouse_allowance(profile(has_spouse=True, spouse_has_income=True)) == 0
        assert CALC.spouse_allowance(profile()) == 0

    def test_child_allowance_subsequent_children(self):
        """First child at the base rate; later children born 2018+ at the higher rate."""
        employee = profile(
            children_birth_dates=(date(2021, 5, 1), date(2015, 3, 1), date(2019, 7, 1))
        )
        assert CALC.child_allowance(employee) == Decimal("150000")

    def test_child_allowance_older_children(self):
        employee = profile(children_birth_dates=(date(2010, 1, 1), date(2012, 1, 1)))
        assert CALC.child_allowance(employee) == Decimal("60000")

    def test_child_allowance_capped_at_max_children(self):
        employee = profile(
            children_birth_dates=(
                date(2019, 1, 1),
                date(2020, 1, 1),
                date(2021, 1, 1),
                date(2022, 1, 1),
            )
        )
        # 30000 + 60000 + 60000; the fourth child is not counted
        assert CALC.child_allowance(employee) == Decimal("150000")

    def test_parent_allowance(self):
        assert CALC.parent_allowance(profile(eligible_parents=2)) == Decimal("60000")
        assert CALC.parent_allowance(profile()) == 0

    def test_social_security_deduction_capped(self):
        assert CALC.social_security_deduction(Decimal("750"), 12) == Decimal("9000")
        assert CALC.social_security_deduction(Decimal("600"), 12) == Decimal("7200")

    def test_provident_fund_deduction(self):
        assert CALC.provident_fund_deduction(
            Decimal("2250"), 12, keys.PVD_FUND_MAX
        ) == Decimal("27000")
        assert CALC.provident_fund_deduction(Decimal("0"), 12) == 0


class TestMonthsWorking:
    def test_started_before_year(self):
        assert months_working_in_year(date(2020, 6, 15), 2025) == 12

    def test_started_during_year(self):
        assert months_working_in_year(date(2025, 4, 10), 2025) == 9
        assert months_working_in_year(date(2025, 12, 1), 2025) == 1

    def test_starts_after_year(self):
        assert months_working_in_year(date(2026, 1, 1), 2025) == 0


class TestCompute:
    """Test the full annual-to-monthly computation."""

    def test_single_employee_30000(self):
        result = CALC.compute(
            monthly_income=Decimal("30000"),
            employee=profile(),
            employment_start=date(2024, 1, 1),
            pay_period_date=date(2025, 1, 1),
            monthly_social_security=Decimal("750"),
        )

        assert result.annual_income == Decimal("360000")
        assert result.months_working == 12
        assert result.employment_deduction == Decimal("100000")
        assert result.social_security_deduction == Decimal("9000")
        assert result.taxable_income == Decimal("191000")
        assert result.annual_tax == Decimal("2050")
        assert result.monthly_tax == Decimal("2050") / 12

    def test_taxable_income_floored_at_zero(self):
        result = CALC.compute(
            monthly_income=Decimal("8000"),
            employee=profile(has_spouse=True, eligible_parents=2),
            employment_start=date(2024, 1, 1),
            pay_period_date=date(2025, 1, 1),
        )
        assert result.taxable_income == 0
        assert result.monthly_tax == 0

    def test_total_deductions(self):
        result = CALC.compute(
            monthly_income=Decimal("50000"),
            employee=profile(has_spouse=True),
            employment_start=date(2024, 1, 1),
            pay_period_date=date(2025, 3, 1),
            monthly_social_security=Decimal("750"),
        )
        assert result.total_deductions == Decimal("100000") + Decimal("60000") * 2 + Decimal("9000")
        assert result.taxable_income == result.annual_income - result.total_deductions

    def test_mid_year_start_annualizes_fewer_months(self):
        result = CALC.compute(
            monthly_income=Decimal("40000"),
            employee=profile(),
            employment_start=date(2025, 7, 1),
            pay_period_date=date(2025, 8, 1),
        )
        assert result.months_working == 6
        assert result.annual_income == Decimal("240000")
