"""Per-allocation payroll calculation."""

from __future__ import annotations

import calendar
from datetime import date
from decimal import Decimal

from grant_payroll.calculators import rule_tables as keys
from grant_payroll.calculators.rule_tables import ConfigSnapshot
from grant_payroll.calculators.tax_calculator import HUNDRED, ThaiIncomeTaxCalculator
from grant_payroll.calculators.types import (
    ZERO,
    AllocationInput,
    EmployeeProfile,
    EmploymentTerms,
    PayrollBreakdown,
    round_money,
)
from grant_payroll.exceptions import ConfigurationError, InvalidAllocationError
from grant_payroll.models.employee import EmployeeStatus

ONE = Decimal("1")
THIRTEENTH_MONTH_SERVICE_MONTHS = 6
ANNUAL_INCREASE_WORKING_DAYS = 365
DAYS_PER_SALARY_MONTH = 30
HEALTH_WELFARE_EMPLOYER_ORGANIZATION = "SMRU"
HEALTH_WELFARE_EMPLOYER_STATUSES = frozenset(
    {EmployeeStatus.NON_THAI_ID, EmployeeStatus.EXPAT}
)


def months_between(start: date, end: date) -> int:
    """Whole calendar months from start to end."""
    months = (end.year - start.year) * 12 + (end.month - start.month)
    if end.day < start.day:
        months -= 1
    return months


def proration_factor(employment: EmploymentTerms, pay_period_date: date) -> Decimal:
    """Share of the pay month covered by the employment.

    Hires and terminations inside the pay month are paid by calendar days.
    """
    days_in_month = calendar.monthrange(pay_period_date.year, pay_period_date.month)[1]
    first_day = 1
    last_day = days_in_month

    start = employment.start_date
    if (start.year, start.month) == (pay_period_date.year, pay_period_date.month):
        first_day = start.day

    end = employment.end_date
    if end is not None and (end.year, end.month) == (pay_period_date.year, pay_period_date.month):
        last_day = end.day

    if first_day == 1 and last_day == days_in_month:
        return ONE
    days_worked = max(last_day - first_day + 1, 0)
    return Decimal(days_worked) / Decimal(days_in_month)


def working_days_between(start: date, end: date) -> int:
    """Weekdays from start to end, both inclusive."""
    if end < start:
        return 0
    weeks, extra = divmod((end - start).days + 1, 7)
    first = start.weekday()
    return weeks * 5 + sum(1 for offset in range(extra) if (first + offset) % 7 < 5)


def probation_days_in_month(employment: EmploymentTerms, pay_period_date: date) -> int:
    """Days of the pay month still paid at the probation salary.

    Non-zero only when probation ends after the 1st of the pay month. Hire
    months are prorated instead.
    """
    passed = employment.pass_probation_date
    if employment.probation_salary is None or passed is None:
        return 0
    if (passed.year, passed.month) != (pay_period_date.year, pay_period_date.month):
        return 0
    start = employment.start_date
    if (start.year, start.month) == (pay_period_date.year, pay_period_date.month):
        return 0
    return min(passed.day - 1, DAYS_PER_SALARY_MONTH)


class PayrollCalculator:
    """Calculates one payroll row for one funding allocation.

    Calculation pipeline (strict order, each step feeds the next):
    1) Base salary by probation state plus the annual increase, scaled by
       fte and prorated
    2) Social security, clamped basis, capped monthly, employer mirrors
    3) Provident or saving fund after probation, rate range-checked
    4) 13th-month accrual once six months of service are reached
    5) Taxable income from annualized gross less deductions
    6) Progressive income tax, annual / 12
    7) Health welfare tiers
    8) Net, totals, and employer contribution

    The calculator is pure: identical inputs and configuration always give an
    identical breakdown.
    """

    def __init__(self, config: ConfigSnapshot):
        self.config = config
        self.tax_calculator = ThaiIncomeTaxCalculator(config)

    def calculate(
        self,
        employee: EmployeeProfile,
        employment: EmploymentTerms,
        allocation: AllocationInput,
        pay_period_date: date,
        compensation_refund: Decimal = ZERO,
    ) -> PayrollBreakdown:
        """Compute the full breakdown for one allocation and pay period."""
        if allocation.fte <= 0 or allocation.fte > 1:
            raise InvalidAllocationError(allocation.allocation_id, allocation.fte)

        notes: list[str] = []

        # 1) Gross
        salary_type = employment.salary_type_for(pay_period_date)
        base_salary = self._monthly_salary(employment, pay_period_date, notes)
        annual_increase = self._annual_increase(employment, pay_period_date)
        if annual_increase:
            notes.append(f"Annual increase of {annual_increase}")
        factor = proration_factor(employment, pay_period_date)
        if factor != ONE:
            notes.append(f"Prorated at {factor:.4f} of the month")
        gross_salary = base_salary
        gross_by_fte = (base_salary + annual_increase) * allocation.fte * factor

        # 2) Social security
        employee_ssf = self._social_security(gross_by_fte)
        employer_ssf = employee_ssf

        # 3) Provident / saving fund
        pvd, saving_fund, fund_max_key = self._provident_fund(
            employee, employment, gross_by_fte, pay_period_date
        )
        employer_pvd = pvd
        employer_saving_fund = saving_fund

        # 4) 13th month
        thirteenth = self._thirteenth_month(employment, gross_by_fte, pay_period_date)

        # 5-6) Income tax
        tax = self.tax_calculator.compute(
            monthly_income=gross_by_fte,
            employee=employee,
            employment_start=employment.start_date,
            pay_period_date=pay_period_date,
            monthly_social_security=employee_ssf,
            monthly_provident_fund=pvd + saving_fund,
            provident_fund_max_key=fund_max_key,
        )
        income_tax = tax.monthly_tax

        # 7) Health welfare
        employee_hw, employer_hw = self._health_welfare(employee, employment, gross_by_fte)

        # 8) Totals
        total_income = gross_by_fte + thirteenth + compensation_refund
        total_deduction = income_tax + employee_ssf + employee_hw + pvd + saving_fund
        net_salary = total_income - total_deduction
        employer_contribution = employer_ssf + employer_hw + employer_pvd + employer_saving_fund
        total_salary = total_income + employer_ssf + employer_hw

        return PayrollBreakdown(
            pay_period_date=pay_period_date,
            allocation_id=allocation.allocation_id,
            fte=allocation.fte,
            salary_type=salary_type,
            gross_salary=gross_salary,
            gross_salary_by_fte=gross_by_fte,
            compensation_refund=compensation_refund,
            thirteen_month_salary=thirteenth,
            pvd=pvd,
            saving_fund=saving_fund,
            employer_pvd=employer_pvd,
            employer_saving_fund=employer_saving_fund,
            employee_social_security=employee_ssf,
            employer_social_security=employer_ssf,
            employee_health_welfare=employee_hw,
            employer_health_welfare=employer_hw,
            income_tax=income_tax,
            net_salary=net_salary,
            total_salary=total_salary,
            total_pvd_saving_fund=pvd + saving_fund + employer_pvd + employer_saving_fund,
            total_income=total_income,
            total_deduction=total_deduction,
            employer_contribution=employer_contribution,
            tax=tax,
            notes=notes,
            annual_increase=annual_increase,
        )

    def _monthly_salary(
        self,
        employment: EmploymentTerms,
        pay_period_date: date,
        notes: list[str],
    ) -> Decimal:
        """Month's salary; the month probation ends is blended over 30 days."""
        probation_days = probation_days_in_month(employment, pay_period_date)
        if not probation_days:
            return employment.base_salary_for(pay_period_date)

        per_day = Decimal(DAYS_PER_SALARY_MONTH)
        notes.append(
            f"Probation ends {employment.pass_probation_date.isoformat()}: "
            f"{probation_days} days at probation salary"
        )
        return (
            employment.probation_salary * probation_days / per_day
            + employment.pass_probation_salary * (DAYS_PER_SALARY_MONTH - probation_days) / per_day
        )

    def _annual_increase(self, employment: EmploymentTerms, pay_period_date: date) -> Decimal:
        """Rate of the pass-probation salary once a year of working days is served."""
        if working_days_between(employment.start_date, pay_period_date) < ANNUAL_INCREASE_WORKING_DAYS:
            return ZERO
        rate = self.config.benefit(keys.ANNUAL_INCREASE_RATE)
        return round_money(employment.pass_probation_salary * rate / HUNDRED)

    def _social_security(self, gross: Decimal) -> Decimal:
        """Employee SSF on a basis clamped to [min, max], capped monthly."""
        if gross <= 0:
            return ZERO
        rate = self.config.rate(keys.SSF_RATE)
        floor = self.config.require(keys.SSF_MIN_SALARY)
        ceiling = self.config.require(keys.SSF_MAX_SALARY)
        cap = self.config.require(keys.SSF_MAX_MONTHLY)

        basis = max(floor, min(gross, ceiling))
        return min(basis * rate, cap)

    def _provident_fund(
        self,
        employee: EmployeeProfile,
        employment: EmploymentTerms,
        gross: Decimal,
        pay_period_date: date,
    ) -> tuple[Decimal, Decimal, str | None]:
        """Employee PVD and saving fund contributions.

        Returns (pvd, saving_fund, annual cap key).
        """
        if not employment.has_passed_probation(pay_period_date):
            return ZERO, ZERO, None

        if employee.status == EmployeeStatus.LOCAL_ID and employment.pvd:
            rate = self._fund_rate(employment.pvd_percentage, keys.PVD_FUND_RATE)
            return gross * rate / HUNDRED, ZERO, keys.PVD_FUND_MAX

        if employee.status == EmployeeStatus.LOCAL_NON_ID and employment.saving_fund:
            rate = self._fund_rate(employment.saving_fund_percentage, keys.SAVING_FUND_RATE)
            return ZERO, gross * rate / HUNDRED, keys.SAVING_FUND_MAX

        return ZERO, ZERO, None

    def _fund_rate(self, override: Decimal | None, default_key: str) -> Decimal:
        rate = override if override is not None else self.config.require(default_key)
        low = self.config.require(keys.PF_MIN_RATE)
        high = self.config.require(keys.PF_MAX_RATE)
        if rate < low or rate > high:
            raise ConfigurationError(
                default_key,
                self.config.year,
                reason=f"rate {rate}% outside allowed range {low}%-{high}%",
            )
        return rate

    def _thirteen_month_eligible(self, employment: EmploymentTerms, pay_period_date: date) -> bool:
        return months_between(employment.start_date, pay_period_date) >= THIRTEENTH_MONTH_SERVICE_MONTHS

    def _thirteenth_month(
        self,
        employment: EmploymentTerms,
        gross: Decimal,
        pay_period_date: date,
    ) -> Decimal:
        if not self._thirteen_month_eligible(employment, pay_period_date):
            return ZERO
        return gross / 12

    def _health_welfare(
        self,
        employee: EmployeeProfile,
        employment: EmploymentTerms,
        gross: Decimal,
    ) -> tuple[Decimal, Decimal]:
        """Employee tier by gross; employer pays the same tier only for
        SMRU staff with Non-Thai ID or Expat status."""
        if not employment.health_welfare:
            return ZERO, ZERO

        if gross > self.config.benefit(keys.HEALTH_WELFARE_HIGH_THRESHOLD):
            employee_share = self.config.benefit(keys.HEALTH_WELFARE_HIGH_AMOUNT)
        elif gross > self.config.benefit(keys.HEALTH_WELFARE_MEDIUM_THRESHOLD):
            employee_share = self.config.benefit(keys.HEALTH_WELFARE_MEDIUM_AMOUNT)
        else:
            employee_share = self.config.benefit(keys.HEALTH_WELFARE_LOW_AMOUNT)

        employer_share = ZERO
        if (
            employee.organization == HEALTH_WELFARE_EMPLOYER_ORGANIZATION
            and employee.status in HEALTH_WELFARE_EMPLOYER_STATUSES
        ):
            employer_share = employee_share

        return employee_share, employer_share
