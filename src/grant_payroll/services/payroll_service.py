"""Single-employee payroll processing, preview, and statistics."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from grant_payroll.calculators.payroll_calculator import PayrollCalculator
from grant_payroll.calculators.rule_tables import ConfigSnapshot, RuleTableLoader
from grant_payroll.calculators.types import (
    ZERO,
    AllocationInput,
    EmployeeProfile,
    EmploymentTerms,
    PayrollBreakdown,
    round_money,
)
from grant_payroll.config import Settings, get_settings
from grant_payroll.exceptions import EmployeeNotFoundError
from grant_payroll.models import (
    Employee,
    InterOrganizationAdvance,
    Payroll,
)
from grant_payroll.services.advance_resolver import AdvancePreview, AdvanceResolver
from grant_payroll.services.allocation_service import EmploymentService
from grant_payroll.services.allocation_snapshotter import (
    AllocationSnapshotter,
    snapshot_for_payroll,
    to_allocation_input,
    to_employee_profile,
    to_employment_terms,
)
from grant_payroll.services.batch_runner import parse_pay_period

logger = logging.getLogger(__name__)

SUMMARY_FIELDS = (
    "gross_salary_by_fte",
    "thirteen_month_salary",
    "employee_social_security",
    "employer_social_security",
    "employee_health_welfare",
    "employer_health_welfare",
    "pvd",
    "saving_fund",
    "income_tax",
    "net_salary",
    "total_salary",
    "total_income",
    "total_deduction",
    "employer_contribution",
)


@dataclass
class AllocationPayroll:
    """One calculated allocation of an employee."""

    allocation: AllocationInput
    breakdown: PayrollBreakdown
    payroll_id: UUID | None = None


@dataclass
class EmployeePayrollResult:
    """All allocations of one employee for a pay period."""

    employee: EmployeeProfile
    employment: EmploymentTerms
    pay_period: str
    lines: list[AllocationPayroll] = field(default_factory=list)
    advances: list[AdvancePreview] = field(default_factory=list)
    advances_created: int = 0

    @property
    def total_fte(self) -> Decimal:
        return sum((line.allocation.fte for line in self.lines), ZERO)


def calculate_employee_summary(breakdowns: list[PayrollBreakdown]) -> dict[str, Decimal]:
    """Sum of the main amounts across an employee's allocations, rounded."""
    totals = {name: ZERO for name in SUMMARY_FIELDS}
    for breakdown in breakdowns:
        for name in SUMMARY_FIELDS:
            totals[name] += getattr(breakdown, name)
    return {name: round_money(value) for name, value in totals.items()}


class PayrollService:
    """Calculates, previews, and saves payroll for one employee."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        config: ConfigSnapshot | None = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.config = config
        self.snapshotter = AllocationSnapshotter(session)
        self.advances = AdvanceResolver(session, self.settings.hub_grant_codes)

    async def _config_for(self, pay_period_date: date) -> ConfigSnapshot:
        """Configuration in force on the pay date, as a bulk run loads it."""
        if self.config is not None and self.config.year == pay_period_date.year:
            return self.config
        return await RuleTableLoader(self.session).load(pay_period_date.year, pay_period_date)

    async def _load_employee(self, employee_id: UUID) -> Employee:
        result = await self.session.execute(
            select(Employee)
            .where(Employee.employee_id == employee_id, Employee.deleted_at.is_(None))
            .options(selectinload(Employee.children))
        )
        employee = result.scalar_one_or_none()
        if employee is None:
            raise EmployeeNotFoundError(employee_id)
        return employee

    async def process_employee_payroll(
        self,
        employee_id: UUID,
        pay_period: str,
        save: bool = False,
    ) -> EmployeePayrollResult:
        """Calculate every qualifying allocation of an employee.

        With ``save`` the Payroll rows, their grant snapshots, and any
        inter-organization advances are written (flushed, not committed).
        Errors propagate; there is no per-allocation isolation here.
        """
        pay_period_date = parse_pay_period(pay_period)
        employee = await self._load_employee(employee_id)
        employment = await EmploymentService(self.session).current_employment(
            employee_id, pay_period_date
        )
        allocations = await self.snapshotter.allocations_for_payroll(
            employee_id, pay_period_date, employment.employment_id
        )

        calculator = PayrollCalculator(await self._config_for(pay_period_date))
        profile = to_employee_profile(employee)
        terms = to_employment_terms(employment)

        result = EmployeePayrollResult(employee=profile, employment=terms, pay_period=pay_period)
        for allocation in allocations:
            allocation_input = to_allocation_input(allocation, employee.organization)
            breakdown = calculator.calculate(profile, terms, allocation_input, pay_period_date)
            line = AllocationPayroll(allocation=allocation_input, breakdown=breakdown)

            if save:
                payroll = Payroll(
                    employment_id=employment.employment_id,
                    allocation_id=allocation.allocation_id,
                    pay_period_date=pay_period_date,
                    notes="; ".join(breakdown.notes) or None,
                    **breakdown.to_payroll_columns(),
                )
                snapshot_for_payroll(
                    payroll,
                    allocation_input,
                    allocated_amount=allocation.allocated_amount,
                    salary_type=breakdown.salary_type,
                )
                self.session.add(payroll)
                await self.session.flush()
                line.payroll_id = payroll.payroll_id

                advance = await self.advances.create_advance_if_needed(
                    profile, allocation_input, payroll, pay_period_date
                )
                if advance is not None:
                    result.advances_created += 1

            result.lines.append(line)

        result.advances = self.advances.preview_advances(
            profile,
            [line.allocation for line in result.lines],
            [line.breakdown for line in result.lines],
        )
        if save:
            await self.session.flush()
            logger.info(
                "Saved employee payroll",
                extra={
                    "employee_id": str(employee_id),
                    "pay_period": pay_period,
                    "rows": len(result.lines),
                },
            )
        return result

    async def preview_advances(self, employee_id: UUID, pay_period: str) -> list[AdvancePreview]:
        """Advances an employee's payroll would create, without writing."""
        result = await self.process_employee_payroll(employee_id, pay_period, save=False)
        return result.advances

    async def payroll_statistics(self, pay_period: str) -> dict[str, Any]:
        """Counts and totals of saved payroll for a pay period.

        Amounts are encrypted at rest, so totals are summed after loading.
        """
        pay_period_date = parse_pay_period(pay_period)

        result = await self.session.execute(
            select(Payroll).where(Payroll.pay_period_date == pay_period_date)
        )
        payrolls = list(result.scalars().all())

        employment_count = len({p.employment_id for p in payrolls})
        total_gross = sum((p.gross_salary_by_fte for p in payrolls), ZERO)
        total_net = sum((p.net_salary for p in payrolls), ZERO)
        total_tax = sum((p.tax for p in payrolls), ZERO)
        total_employer = sum((p.employer_contribution for p in payrolls), ZERO)

        advance_result = await self.session.execute(
            select(
                func.count(InterOrganizationAdvance.advance_id),
                func.coalesce(func.sum(InterOrganizationAdvance.amount), 0),
            ).where(InterOrganizationAdvance.advance_date == pay_period_date)
        )
        advance_count, advance_total = advance_result.one()

        return {
            "pay_period": pay_period,
            "payroll_count": len(payrolls),
            "employment_count": employment_count,
            "total_gross_salary": round_money(total_gross),
            "total_net_salary": round_money(total_net),
            "total_tax": round_money(total_tax),
            "total_employer_contribution": round_money(total_employer),
            "advance_count": int(advance_count),
            "advance_total": round_money(Decimal(str(advance_total))),
        }
