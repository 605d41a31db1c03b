"""Thai personal income tax calculation."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from grant_payroll.calculators import rule_tables as keys
from grant_payroll.calculators.rule_tables import ConfigSnapshot
from grant_payroll.calculators.types import (
    ZERO,
    EmployeeProfile,
    TaxBreakdownLine,
    TaxComputation,
)

HUNDRED = Decimal("100")
MONTHS_PER_YEAR = 12


def months_working_in_year(start_date: date, year: int) -> int:
    """Months of the tax year covered by an employment starting on start_date."""
    if start_date.year < year:
        return MONTHS_PER_YEAR
    if start_date.year > year:
        return 0
    return MONTHS_PER_YEAR - start_date.month + 1


class ThaiIncomeTaxCalculator:
    """Computes annual and monthly withholding from one year's configuration.

    Pipeline:
    1. Annualize monthly income over the months worked this year
    2. Subtract employment deduction, allowances, SSF and provident fund
    3. Apply progressive brackets to what remains (floored at zero)
    4. Divide the annual tax by 12 for monthly withholding
    """

    def __init__(self, config: ConfigSnapshot):
        self.config = config

    # ===== Deductions and allowances =====

    def employment_deduction(self, annual_income: Decimal) -> Decimal:
        """Rate-based deduction capped at EMPLOYMENT_DEDUCTION_MAX."""
        rate = self.config.rate(keys.EMPLOYMENT_DEDUCTION_RATE)
        cap = self.config.require(keys.EMPLOYMENT_DEDUCTION_MAX)
        return min(annual_income * rate, cap)

    def personal_allowance(self) -> Decimal:
        return self.config.require(keys.PERSONAL_ALLOWANCE)

    def spouse_allowance(self, employee: EmployeeProfile) -> Decimal:
        if not employee.has_spouse or employee.spouse_has_income:
            return ZERO
        return self.config.require(keys.SPOUSE_ALLOWANCE)

    def child_allowance(self, employee: EmployeeProfile) -> Decimal:
        """First child gets the base allowance; later children born from the
        cutoff year onwards get the subsequent-child allowance."""
        if not employee.children_birth_dates:
            return ZERO

        max_children = int(self.config.require(keys.CHILD_ALLOWANCE_MAX_CHILDREN))
        first = self.config.require(keys.CHILD_ALLOWANCE)
        subsequent = self.config.require(keys.CHILD_ALLOWANCE_SUBSEQUENT)
        cutoff_year = int(self.config.require(keys.CHILD_SUBSEQUENT_BIRTH_YEAR))

        # Oldest first; unknown birth dates sort last
        ordered = sorted(
            employee.children_birth_dates,
            key=lambda born: (born is None, born or date.min),
        )

        total = ZERO
        for index, born in enumerate(ordered[:max_children]):
            if index == 0:
                total += first
            elif born is not None and born.year >= cutoff_year:
                total += subsequent
            else:
                total += first
        return total

    def parent_allowance(self, employee: EmployeeProfile) -> Decimal:
        if employee.eligible_parents <= 0:
            return ZERO
        return self.config.require(keys.PARENT_ALLOWANCE) * employee.eligible_parents

    def social_security_deduction(self, monthly_contribution: Decimal, months: int) -> Decimal:
        return min(monthly_contribution * months, self.config.require(keys.SSF_MAX_YEARLY))

    def provident_fund_deduction(
        self,
        monthly_contribution: Decimal,
        months: int,
        fund_max_key: str | None = None,
    ) -> Decimal:
        if monthly_contribution <= 0:
            return ZERO
        annual = monthly_contribution * months
        if fund_max_key:
            annual = min(annual, self.config.require(fund_max_key))
        return min(annual, self.config.require(keys.PF_MAX_ANNUAL))

    # ===== Brackets =====

    def progressive_tax(self, taxable_income: Decimal) -> Decimal:
        """Cumulative bracket tax: each bracket taxes only its own slice."""
        if taxable_income <= 0:
            return ZERO

        total_tax = ZERO
        for bracket in self.config.brackets:
            if taxable_income <= bracket.min_income:
                break

            upper = taxable_income
            if bracket.max_income is not None:
                upper = min(taxable_income, bracket.max_income)

            total_tax += (upper - bracket.min_income) * bracket.rate / HUNDRED

        return total_tax

    def tax_breakdown(self, taxable_income: Decimal) -> list[TaxBreakdownLine]:
        """Per-bracket attribution of the progressive tax."""
        lines: list[TaxBreakdownLine] = []
        for bracket in self.config.brackets:
            if taxable_income <= bracket.min_income:
                break

            upper = taxable_income
            if bracket.max_income is not None:
                upper = min(taxable_income, bracket.max_income)
            in_bracket = upper - bracket.min_income

            lines.append(
                TaxBreakdownLine(
                    min_income=bracket.min_income,
                    max_income=bracket.max_income,
                    rate=bracket.rate,
                    taxable_in_bracket=in_bracket,
                    tax=in_bracket * bracket.rate / HUNDRED,
                )
            )
        return lines

    # ===== Full computation =====

    def compute(
        self,
        monthly_income: Decimal,
        employee: EmployeeProfile,
        employment_start: date,
        pay_period_date: date,
        monthly_social_security: Decimal = ZERO,
        monthly_provident_fund: Decimal = ZERO,
        provident_fund_max_key: str | None = None,
    ) -> TaxComputation:
        """Annual tax and monthly withholding for one monthly income."""
        months = months_working_in_year(employment_start, pay_period_date.year)
        annual_income = monthly_income * months

        employment_deduction = self.employment_deduction(annual_income)
        personal = self.personal_allowance()
        spouse = self.spouse_allowance(employee)
        children = self.child_allowance(employee)
        parents = self.parent_allowance(employee)
        ssf = self.social_security_deduction(monthly_social_security, months)
        provident = self.provident_fund_deduction(
            monthly_provident_fund, months, provident_fund_max_key
        )

        taxable = (
            annual_income
            - employment_deduction
            - personal
            - spouse
            - children
            - parents
            - ssf
            - provident
        )
        taxable = max(taxable, ZERO)

        annual_tax = self.progressive_tax(taxable)

        return TaxComputation(
            annual_income=annual_income,
            months_working=months,
            employment_deduction=employment_deduction,
            personal_allowance=personal,
            spouse_allowance=spouse,
            child_allowance=children,
            parent_allowance=parents,
            social_security_deduction=ssf,
            provident_fund_deduction=provident,
            taxable_income=taxable,
            annual_tax=annual_tax,
            monthly_tax=annual_tax / MONTHS_PER_YEAR,
        )
