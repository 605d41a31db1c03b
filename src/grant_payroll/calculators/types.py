"""Type definitions for the calculation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any
from uuid import UUID

ZERO = Decimal("0")
CENT = Decimal("0.01")


def round_money(amount: Decimal) -> Decimal:
    """Round to satang (2 dp, half up)."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class TaxBracketRow:
    """Tax bracket for progressive taxation."""

    min_income: Decimal
    max_income: Decimal | None  # None = no upper limit
    rate: Decimal  # Percent, e.g. 35 for 35%
    base_tax: Decimal = ZERO
    order: int = 0


@dataclass(frozen=True)
class EmployeeProfile:
    """Employee facts the calculator needs: organization, status, dependents."""

    employee_id: UUID | None
    staff_id: str
    full_name: str
    organization: str
    status: str
    has_spouse: bool = False
    spouse_has_income: bool = False
    children_birth_dates: tuple[date | None, ...] = ()
    eligible_parents: int = 0


@dataclass(frozen=True)
class EmploymentTerms:
    """Salary and benefit elections of one employment."""

    employment_id: UUID | None
    start_date: date
    pass_probation_salary: Decimal
    probation_salary: Decimal | None = None
    pass_probation_date: date | None = None
    end_date: date | None = None
    employment_type: str = "Full-time"
    department: str | None = None
    position: str | None = None
    health_welfare: bool = False
    pvd: bool = False
    pvd_percentage: Decimal | None = None
    saving_fund: bool = False
    saving_fund_percentage: Decimal | None = None

    def in_probation(self, on: date) -> bool:
        """Probation salary applies strictly before the pass-probation date."""
        return (
            self.probation_salary is not None
            and self.pass_probation_date is not None
            and on < self.pass_probation_date
        )

    def base_salary_for(self, on: date) -> Decimal:
        if self.in_probation(on):
            return self.probation_salary  # type: ignore[return-value]
        return self.pass_probation_salary

    def salary_type_for(self, on: date) -> str:
        return "probation_salary" if self.in_probation(on) else "pass_probation_salary"

    def has_passed_probation(self, on: date) -> bool:
        return self.pass_probation_date is None or on >= self.pass_probation_date


@dataclass(frozen=True)
class AllocationInput:
    """One funding allocation as seen by the calculator."""

    allocation_id: UUID | None
    fte: Decimal
    funding_organization: str | None = None
    grant_id: UUID | None = None
    grant_item_id: UUID | None = None
    grant_code: str | None = None
    grant_name: str | None = None
    grant_position: str | None = None
    budget_line_code: str | None = None
    label: str = ""

    @property
    def is_grant_funded(self) -> bool:
        return self.grant_id is not None


@dataclass
class TaxComputation:
    """Annual income tax computation for one allocation."""

    annual_income: Decimal
    months_working: int
    employment_deduction: Decimal
    personal_allowance: Decimal
    spouse_allowance: Decimal
    child_allowance: Decimal
    parent_allowance: Decimal
    social_security_deduction: Decimal
    provident_fund_deduction: Decimal
    taxable_income: Decimal
    annual_tax: Decimal
    monthly_tax: Decimal

    @property
    def total_deductions(self) -> Decimal:
        return (
            self.employment_deduction
            + self.personal_allowance
            + self.spouse_allowance
            + self.child_allowance
            + self.parent_allowance
            + self.social_security_deduction
            + self.provident_fund_deduction
        )


@dataclass(frozen=True)
class TaxBreakdownLine:
    """Tax attributed to one bracket."""

    min_income: Decimal
    max_income: Decimal | None
    rate: Decimal
    taxable_in_bracket: Decimal
    tax: Decimal


@dataclass
class PayrollBreakdown:
    """Fully itemized payroll for one allocation and pay period.

    Amounts carry full precision; call ``rounded()`` before persisting.
    """

    pay_period_date: date
    allocation_id: UUID | None
    fte: Decimal
    salary_type: str
    gross_salary: Decimal
    gross_salary_by_fte: Decimal
    compensation_refund: Decimal
    thirteen_month_salary: Decimal
    pvd: Decimal
    saving_fund: Decimal
    employer_pvd: Decimal
    employer_saving_fund: Decimal
    employee_social_security: Decimal
    employer_social_security: Decimal
    employee_health_welfare: Decimal
    employer_health_welfare: Decimal
    income_tax: Decimal
    net_salary: Decimal
    total_salary: Decimal
    total_pvd_saving_fund: Decimal
    total_income: Decimal
    total_deduction: Decimal
    employer_contribution: Decimal
    tax: TaxComputation | None = None
    notes: list[str] = field(default_factory=list)
    annual_increase: Decimal = ZERO

    MONEY_FIELDS = (
        "gross_salary",
        "gross_salary_by_fte",
        "annual_increase",
        "compensation_refund",
        "thirteen_month_salary",
        "pvd",
        "saving_fund",
        "employer_pvd",
        "employer_saving_fund",
        "employee_social_security",
        "employer_social_security",
        "employee_health_welfare",
        "employer_health_welfare",
        "income_tax",
        "net_salary",
        "total_salary",
        "total_pvd_saving_fund",
        "total_income",
        "total_deduction",
        "employer_contribution",
    )

    @property
    def pvd_saving_employee(self) -> Decimal:
        return self.pvd + self.saving_fund

    def rounded(self) -> dict[str, Decimal]:
        """Money fields rounded to 2 dp for persistence."""
        return {name: round_money(getattr(self, name)) for name in self.MONEY_FIELDS}

    def to_payroll_columns(self) -> dict[str, Decimal]:
        """Rounded values keyed by Payroll column name."""
        r = self.rounded()
        return {
            "gross_salary": r["gross_salary"],
            "gross_salary_by_fte": r["gross_salary_by_fte"],
            "compensation_refund": r["compensation_refund"],
            "thirteen_month_salary": r["thirteen_month_salary"],
            "thirteen_month_salary_accrued": r["thirteen_month_salary"],
            "pvd": r["pvd"],
            "saving_fund": r["saving_fund"],
            "employer_social_security": r["employer_social_security"],
            "employee_social_security": r["employee_social_security"],
            "employer_health_welfare": r["employer_health_welfare"],
            "employee_health_welfare": r["employee_health_welfare"],
            "tax": r["income_tax"],
            "net_salary": r["net_salary"],
            "total_salary": r["total_salary"],
            "total_pvd": round_money(self.pvd + self.employer_pvd),
            "total_saving_fund": round_money(self.saving_fund + self.employer_saving_fund),
            "salary_bonus": ZERO.quantize(CENT),
            "total_income": r["total_income"],
            "employer_contribution": r["employer_contribution"],
            "total_deduction": r["total_deduction"],
        }

    def to_dict(self) -> dict[str, Any]:
        """Rounded, JSON-friendly view."""
        data: dict[str, Any] = {
            "pay_period_date": self.pay_period_date.isoformat(),
            "allocation_id": str(self.allocation_id) if self.allocation_id else None,
            "fte": str(self.fte),
            "salary_type": self.salary_type,
        }
        data.update({k: str(v) for k, v in self.rounded().items()})
        return data
