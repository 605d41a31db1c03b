"""Unit tests for PayrollCalculator.

Covers the per-allocation pipeline: gross by fte, social security,
provident and saving funds, 13th month, income tax, health welfare, and
totals.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import given, strategies as st

from grant_payroll.calculators import rule_tables as keys
from grant_payroll.calculators.payroll_calculator import (
    PayrollCalculator,
    months_between,
    proration_factor,
    working_days_between,
)
from grant_payroll.calculators.rule_tables import (
    DEFAULT_BENEFIT_SETTINGS,
    THAI_2025_BRACKETS,
    THAI_2025_TAX_SETTINGS,
    ConfigSnapshot,
)
from grant_payroll.calculators.types import (
    AllocationInput,
    EmployeeProfile,
    EmploymentTerms,
    round_money,
)
from grant_payroll.exceptions import ConfigurationError, InvalidAllocationError

PAY_DATE = date(2025, 1, 1)


def employee(**overrides) -> EmployeeProfile:
    values = dict(
        employee_id=uuid4(),
        staff_id="SMRU-0001",
        full_name="Naw Test",
        organization="SMRU",
        status="Local ID",
    )
    values.update(overrides)
    return EmployeeProfile(**values)


def employment(**overrides) -> EmploymentTerms:
    values = dict(
        employment_id=uuid4(),
        start_date=date(2024, 1, 1),
        pass_probation_salary=Decimal("30000"),
    )
    values.update(overrides)
    return EmploymentTerms(**values)


def allocation(fte: str = "1", **overrides) -> AllocationInput:
    values = dict(allocation_id=uuid4(), fte=Decimal(fte), funding_organization="SMRU")
    values.update(overrides)
    return AllocationInput(**values)


@pytest.fixture
def calculator(config_snapshot) -> PayrollCalculator:
    return PayrollCalculator(config_snapshot)


class TestBasicPayroll:
    """Single full-time allocation, no funds or benefits."""

    def test_30000_full_time(self, calculator):
        result = calculator.calculate(employee(), employment(), allocation(), PAY_DATE)

        assert result.salary_type == "pass_probation_salary"
        assert result.gross_salary == Decimal("30000")
        assert result.gross_salary_by_fte == Decimal("30000")
        assert result.employee_social_security == Decimal("750")
        assert result.employer_social_security == Decimal("750")
        assert result.thirteen_month_salary == Decimal("2500")
        assert result.income_tax == Decimal("2050") / 12
        assert result.pvd == 0 and result.saving_fund == 0
        assert result.total_income == Decimal("32500")
        assert result.total_salary == Decimal("33250")
        assert result.employer_contribution == Decimal("750")

        columns = result.to_payroll_columns()
        assert columns["tax"] == Decimal("170.83")
        assert columns["net_salary"] == Decimal("31579.17")
        assert columns["salary_bonus"] == Decimal("0.00")
        assert columns["thirteen_month_salary_accrued"] == columns["thirteen_month_salary"]

    def test_net_identity(self, calculator):
        result = calculator.calculate(
            employee(), employment(health_welfare=True, pvd=True), allocation("0.7"), PAY_DATE
        )
        assert result.net_salary == result.total_income - result.total_deduction
        assert result.total_deduction == (
            result.income_tax
            + result.employee_social_security
            + result.employee_health_welfare
            + result.pvd
            + result.saving_fund
        )

    def test_deterministic(self, calculator):
        args = (employee(), employment(pvd=True), allocation("0.5"), PAY_DATE)
        assert calculator.calculate(*args) == calculator.calculate(*args)

    def test_compensation_refund_adds_to_income(self, calculator):
        base = calculator.calculate(employee(), employment(), allocation(), PAY_DATE)
        refunded = calculator.calculate(
            employee(), employment(), allocation(), PAY_DATE, compensation_refund=Decimal("1000")
        )
        assert refunded.total_income == base.total_income + 1000
        assert refunded.income_tax == base.income_tax


class TestSplitFunding:
    """One employee funded by two allocations during probation."""

    def test_probation_split_60_40(self, calculator):
        terms = employment(
            start_date=date(2025, 1, 1),
            probation_salary=Decimal("20000"),
            pass_probation_salary=Decimal("25000"),
            pass_probation_date=date(2025, 4, 1),
        )
        pay_date = date(2025, 2, 1)

        first = calculator.calculate(employee(), terms, allocation("0.6"), pay_date)
        second = calculator.calculate(employee(), terms, allocation("0.4"), pay_date)

        assert first.salary_type == "probation_salary"
        assert first.gross_salary == Decimal("20000")
        assert first.gross_salary_by_fte == Decimal("12000")
        assert second.gross_salary_by_fte == Decimal("8000")
        assert first.gross_salary_by_fte + second.gross_salary_by_fte == Decimal("20000")

        # Social security is computed per allocation on the fte share
        assert first.employee_social_security == Decimal("600")
        assert second.employee_social_security == Decimal("400")

        # Under six months of service, no 13th month
        assert first.thirteen_month_salary == 0
        assert first.income_tax == 0

    def test_post_probation_salary_from_pass_date(self, calculator):
        terms = employment(
            probation_salary=Decimal("20000"),
            pass_probation_salary=Decimal("25000"),
            pass_probation_date=date(2025, 4, 1),
        )
        result = calculator.calculate(employee(), terms, allocation("0.5"), date(2025, 4, 1))

        assert result.salary_type == "pass_probation_salary"
        assert result.gross_salary_by_fte == Decimal("12500")

    @given(fte=st.decimals(min_value="0.01", max_value="1", places=2))
    def test_gross_scales_with_fte(self, fte):
        calc = PayrollCalculator(ConfigSnapshot.thai_2025())
        result = calc.calculate(employee(), employment(), allocation(str(fte)), PAY_DATE)
        assert result.gross_salary_by_fte == Decimal("30000") * fte
        assert result.net_salary <= result.total_income


class TestProbationTransitionMonth:
    """Probation ends mid-month: days before the pass date use the probation rate."""

    def test_blended_over_thirty_days(self, calculator):
        terms = employment(
            probation_salary=Decimal("20000"),
            pass_probation_date=date(2025, 3, 15),
        )

        result = calculator.calculate(employee(), terms, allocation(), date(2025, 3, 1))

        # 14 days at 20000 / 30, 16 days at 30000 / 30
        assert round_money(result.gross_salary_by_fte) == Decimal("25333.33")
        assert result.salary_type == "probation_salary"
        assert any("14 days at probation salary" in note for note in result.notes)

    def test_blend_scales_with_fte(self, calculator):
        terms = employment(
            probation_salary=Decimal("20000"),
            pass_probation_date=date(2025, 3, 16),
        )

        result = calculator.calculate(employee(), terms, allocation("0.5"), date(2025, 3, 1))

        # (15 * 20000 + 15 * 30000) / 30 = 25000, half of it funded here
        assert result.gross_salary_by_fte == Decimal("12500")

    def test_earlier_months_pay_probation_salary(self, calculator):
        terms = employment(
            probation_salary=Decimal("20000"),
            pass_probation_date=date(2025, 3, 15),
        )

        result = calculator.calculate(employee(), terms, allocation(), date(2025, 2, 1))

        assert result.gross_salary_by_fte == Decimal("20000")

    def test_hire_month_is_prorated_not_blended(self, calculator):
        terms = employment(
            start_date=date(2025, 3, 1),
            probation_salary=Decimal("20000"),
            pass_probation_date=date(2025, 3, 15),
        )

        result = calculator.calculate(employee(), terms, allocation(), date(2025, 3, 1))

        assert result.gross_salary_by_fte == Decimal("20000")


class TestAnnualIncrease:
    """One percent of the pass-probation salary after 365 working days."""

    def test_working_days_skip_weekends(self):
        # Monday to Sunday
        assert working_days_between(date(2025, 1, 6), date(2025, 1, 12)) == 5
        # Saturday to Monday
        assert working_days_between(date(2025, 1, 4), date(2025, 1, 6)) == 1
        assert working_days_between(date(2025, 1, 6), date(2025, 1, 5)) == 0

    def test_threshold_reached_on_pay_date(self, calculator):
        assert working_days_between(date(2023, 10, 9), date(2025, 3, 1)) == 365
        assert working_days_between(date(2023, 10, 10), date(2025, 3, 1)) == 364

        eligible = calculator.calculate(
            employee(), employment(start_date=date(2023, 10, 9)), allocation(), date(2025, 3, 1)
        )
        short = calculator.calculate(
            employee(), employment(start_date=date(2023, 10, 10)), allocation(), date(2025, 3, 1)
        )

        assert eligible.annual_increase == Decimal("300.00")
        assert eligible.gross_salary_by_fte == Decimal("30300")
        assert short.annual_increase == 0
        assert short.gross_salary_by_fte == Decimal("30000")

    def test_increase_feeds_fte_share(self, calculator):
        terms = employment(start_date=date(2023, 1, 1))

        result = calculator.calculate(employee(), terms, allocation("0.5"), PAY_DATE)

        assert result.gross_salary == Decimal("30000")
        assert result.gross_salary_by_fte == Decimal("15150")
        assert result.rounded()["annual_increase"] == Decimal("300.00")

    def test_based_on_pass_probation_salary(self, calculator):
        terms = employment(
            start_date=date(2023, 1, 1),
            probation_salary=Decimal("20000"),
            pass_probation_date=date(2025, 6, 1),
        )

        result = calculator.calculate(employee(), terms, allocation(), PAY_DATE)

        assert result.gross_salary_by_fte == Decimal("20300")

    def test_missing_rate_raises_only_when_eligible(self):
        config = ConfigSnapshot(
            year=2025,
            brackets=THAI_2025_BRACKETS,
            tax_settings={k: v for k, (v, _) in THAI_2025_TAX_SETTINGS.items()},
            benefit_settings={
                k: v
                for k, (v, _) in DEFAULT_BENEFIT_SETTINGS.items()
                if k != keys.ANNUAL_INCREASE_RATE
            },
        )
        calc = PayrollCalculator(config)

        calc.calculate(employee(), employment(), allocation(), PAY_DATE)
        with pytest.raises(ConfigurationError) as exc_info:
            calc.calculate(employee(), employment(start_date=date(2023, 1, 1)), allocation(), PAY_DATE)
        assert exc_info.value.key == keys.ANNUAL_INCREASE_RATE



class TestSocialSecurity:
    def test_capped_at_monthly_max(self, calculator):
        result = calculator.calculate(
            employee(), employment(pass_probation_salary=Decimal("80000")), allocation(), PAY_DATE
        )
        assert result.employee_social_security == Decimal("750")

    def test_floor_basis(self, calculator):
        result = calculator.calculate(
            employee(), employment(pass_probation_salary=Decimal("1000")), allocation(), PAY_DATE
        )
        # Basis clamps up to 1650
        assert result.employee_social_security == Decimal("82.5")


class TestProvidentFund:
    """PVD for Local ID, saving fund for Local non ID, after probation only."""

    def test_pvd_default_rate(self, calculator):
        result = calculator.calculate(employee(), employment(pvd=True), allocation(), PAY_DATE)
        assert result.pvd == Decimal("2250")
        assert result.employer_pvd == Decimal("2250")
        assert result.to_payroll_columns()["total_pvd"] == Decimal("4500.00")

    def test_saving_fund_for_local_non_id(self, calculator):
        result = calculator.calculate(
            employee(status="Local non ID"),
            employment(saving_fund=True),
            allocation(),
            PAY_DATE,
        )
        assert result.pvd == 0
        assert result.saving_fund == Decimal("2250")

    def test_expat_has_no_fund(self, calculator):
        result = calculator.calculate(
            employee(status="Expat"), employment(pvd=True, saving_fund=True), allocation(), PAY_DATE
        )
        assert result.pvd == 0 and result.saving_fund == 0

    def test_no_pvd_during_probation(self, calculator):
        terms = employment(
            pvd=True,
            probation_salary=Decimal("25000"),
            pass_probation_date=date(2025, 3, 1),
        )
        result = calculator.calculate(employee(), terms, allocation(), PAY_DATE)
        assert result.pvd == 0

    def test_rate_override_within_range(self, calculator):
        result = calculator.calculate(
            employee(), employment(pvd=True, pvd_percentage=Decimal("10")), allocation(), PAY_DATE
        )
        assert result.pvd == Decimal("3000")

    def test_rate_out_of_range_raises(self, calculator):
        with pytest.raises(ConfigurationError) as exc_info:
            calculator.calculate(
                employee(),
                employment(pvd=True, pvd_percentage=Decimal("20")),
                allocation(),
                PAY_DATE,
            )
        assert exc_info.value.key == keys.PVD_FUND_RATE
        assert "outside allowed range" in str(exc_info.value)

    def test_pvd_reduces_taxable_income(self, calculator):
        without = calculator.calculate(employee(), employment(), allocation(), PAY_DATE)
        with_pvd = calculator.calculate(employee(), employment(pvd=True), allocation(), PAY_DATE)
        assert with_pvd.tax.provident_fund_deduction == Decimal("27000")
        assert with_pvd.income_tax < without.income_tax


class TestHealthWelfare:
    @pytest.mark.parametrize(
        "salary,expected",
        [("30000", "150"), ("10000", "100"), ("5000", "60")],
    )
    def test_tiers(self, calculator, salary, expected):
        result = calculator.calculate(
            employee(),
            employment(health_welfare=True, pass_probation_salary=Decimal(salary)),
            allocation(),
            PAY_DATE,
        )
        assert result.employee_health_welfare == Decimal(expected)

    def test_employer_pays_for_smru_expat(self, calculator):
        result = calculator.calculate(
            employee(status="Expat"), employment(health_welfare=True), allocation(), PAY_DATE
        )
        assert result.employer_health_welfare == Decimal("150")
        assert result.total_salary == result.total_income + Decimal("750") + Decimal("150")

    @pytest.mark.parametrize(
        "organization,status",
        [("BHF", "Expat"), ("SMRU", "Local ID"), ("BHF", "Non-Thai ID")],
    )
    def test_no_employer_share_otherwise(self, calculator, organization, status):
        result = calculator.calculate(
            employee(organization=organization, status=status),
            employment(health_welfare=True),
            allocation(),
            PAY_DATE,
        )
        assert result.employer_health_welfare == 0

    def test_not_enrolled(self, calculator):
        result = calculator.calculate(employee(), employment(), allocation(), PAY_DATE)
        assert result.employee_health_welfare == 0


class TestProration:
    def test_full_month(self):
        assert proration_factor(employment(), PAY_DATE) == 1

    def test_hired_mid_month(self):
        assert proration_factor(employment(start_date=date(2025, 1, 16)), PAY_DATE) == Decimal(16) / 31

    def test_terminated_mid_month(self, calculator):
        terms = employment(end_date=date(2025, 1, 15))
        result = calculator.calculate(employee(), terms, allocation(), PAY_DATE)

        assert result.gross_salary == Decimal("30000")
        assert round_money(result.gross_salary_by_fte) == Decimal("14516.13")
        assert result.notes == ["Prorated at 0.4839 of the month"]

    def test_months_between(self):
        assert months_between(date(2024, 7, 1), date(2025, 1, 1)) == 6
        assert months_between(date(2024, 7, 15), date(2025, 1, 1)) == 5


class TestValidation:
    @pytest.mark.parametrize("fte", ["0", "-0.1", "1.01"])
    def test_invalid_fte(self, calculator, fte):
        with pytest.raises(InvalidAllocationError):
            calculator.calculate(employee(), employment(), allocation(fte), PAY_DATE)

    def test_missing_setting_raises(self):
        settings = {k: v for k, (v, _) in THAI_2025_TAX_SETTINGS.items() if k != keys.SSF_RATE}
        config = ConfigSnapshot(
            year=2025,
            brackets=THAI_2025_BRACKETS,
            tax_settings=settings,
            benefit_settings={k: v for k, (v, _) in DEFAULT_BENEFIT_SETTINGS.items()},
        )

        with pytest.raises(ConfigurationError) as exc_info:
            PayrollCalculator(config).calculate(employee(), employment(), allocation(), PAY_DATE)
        assert exc_info.value.key == keys.SSF_RATE
        assert exc_info.value.year == 2025

    def test_missing_benefit_setting_raises(self):
        config = ConfigSnapshot(
            year=2025,
            brackets=THAI_2025_BRACKETS,
            tax_settings={k: v for k, (v, _) in THAI_2025_TAX_SETTINGS.items()},
        )
        with pytest.raises(ConfigurationError):
            PayrollCalculator(config).calculate(
                employee(), employment(health_welfare=True), allocation(), PAY_DATE
            )

    def test_rounding_half_up(self):
        assert round_money(Decimal("0.005")) == Decimal("0.01")
        assert round_money(Decimal("170.8333")) == Decimal("170.83")
