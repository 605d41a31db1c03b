"""Selects the funding allocations that qualify for a pay period."""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Iterable, Sequence
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from grant_payroll.calculators.types import (
    AllocationInput,
    EmployeeProfile,
    EmploymentTerms,
)
from grant_payroll.exceptions import MissingGrantItemError, NoQualifyingAllocationsError
from grant_payroll.models import (
    Employee,
    EmployeeFundingAllocation,
    Employment,
    GrantItem,
    Payroll,
    PayrollGrantAllocation,
)

logger = logging.getLogger(__name__)


def _percent(fte: Decimal) -> str:
    # normalize() alone renders 100 as 1E+2
    return f"{(fte * 100).normalize():f}"


def allocation_label(allocation: EmployeeFundingAllocation) -> str:
    """Human label used in progress updates and error entries."""
    pct = _percent(allocation.fte)
    item = allocation.grant_item
    if item is not None and item.grant is not None:
        return f"{item.grant.code} - {item.grant_position} ({pct}%)"
    return f"Allocation ({pct}%)"


def to_employee_profile(employee: Employee) -> EmployeeProfile:
    """Detach the calculator's view of an employee from the ORM row."""
    return EmployeeProfile(
        employee_id=employee.employee_id,
        staff_id=employee.staff_id,
        full_name=employee.full_name_en,
        organization=employee.organization,
        status=employee.status,
        has_spouse=employee.has_spouse,
        spouse_has_income=employee.spouse_has_income,
        children_birth_dates=tuple(c.date_of_birth for c in employee.children),
        eligible_parents=employee.eligible_parents_count,
    )


def to_employment_terms(employment: Employment) -> EmploymentTerms:
    return EmploymentTerms(
        employment_id=employment.employment_id,
        start_date=employment.start_date,
        end_date=employment.end_date,
        pass_probation_salary=employment.pass_probation_salary,
        probation_salary=employment.probation_salary,
        pass_probation_date=employment.pass_probation_date,
        employment_type=employment.employment_type,
        department=employment.department,
        position=employment.position,
        health_welfare=employment.health_welfare,
        pvd=employment.pvd,
        pvd_percentage=employment.pvd_percentage,
        saving_fund=employment.saving_fund,
        saving_fund_percentage=employment.saving_fund_percentage,
    )


def to_allocation_input(
    allocation: EmployeeFundingAllocation,
    home_organization: str,
) -> AllocationInput:
    """Build the calculator input for one allocation.

    Grant-funded allocations take the grant's organization; organization
    funded effort stays with the employee's home organization.
    """
    if allocation.grant_item_id is not None and allocation.grant_item is None:
        raise MissingGrantItemError(allocation.allocation_id, allocation.grant_item_id)

    item = allocation.grant_item
    if item is None:
        return AllocationInput(
            allocation_id=allocation.allocation_id,
            fte=allocation.fte,
            funding_organization=home_organization,
            label=allocation_label(allocation),
        )

    grant = item.grant
    return AllocationInput(
        allocation_id=allocation.allocation_id,
        fte=allocation.fte,
        funding_organization=grant.organization,
        grant_id=grant.grant_id,
        grant_item_id=item.grant_item_id,
        grant_code=grant.code,
        grant_name=grant.name,
        grant_position=item.grant_position,
        budget_line_code=item.budgetline_code,
        label=allocation_label(allocation),
    )


def snapshot_for_payroll(
    payroll: Payroll,
    allocation: AllocationInput,
    allocated_amount: Decimal | None = None,
    salary_type: str | None = None,
) -> PayrollGrantAllocation:
    """Immutable record of the grant line that funded a payroll row."""
    return PayrollGrantAllocation(
        payroll=payroll,
        allocation_id=allocation.allocation_id,
        grant_item_id=allocation.grant_item_id,
        grant_code=allocation.grant_code,
        grant_name=allocation.grant_name,
        budget_line_code=allocation.budget_line_code,
        grant_position=allocation.grant_position,
        fte=allocation.fte,
        allocated_amount=allocated_amount,
        salary_type=salary_type,
    )


class AllocationSnapshotter:
    """Loads allocations in force on a pay period date."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _qualifying(self, pay_period_date: date):
        return (
            select(EmployeeFundingAllocation)
            .where(
                EmployeeFundingAllocation.status == "active",
                EmployeeFundingAllocation.fte > 0,
                EmployeeFundingAllocation.start_date <= pay_period_date,
                or_(
                    EmployeeFundingAllocation.end_date.is_(None),
                    EmployeeFundingAllocation.end_date >= pay_period_date,
                ),
            )
            .options(
                selectinload(EmployeeFundingAllocation.grant_item).selectinload(GrantItem.grant)
            )
            .order_by(
                EmployeeFundingAllocation.start_date,
                EmployeeFundingAllocation.allocation_id,
            )
        )

    async def allocations_for_payroll(
        self,
        employee_id: UUID,
        pay_period_date: date,
        employment_id: UUID | None = None,
    ) -> list[EmployeeFundingAllocation]:
        """Allocations covering the pay period, in stable order.

        Raises NoQualifyingAllocationsError when none qualify.
        """
        query = self._qualifying(pay_period_date).where(
            EmployeeFundingAllocation.employee_id == employee_id
        )
        if employment_id is not None:
            query = query.where(EmployeeFundingAllocation.employment_id == employment_id)

        result = await self.session.execute(query)
        allocations = list(result.scalars().all())
        if not allocations:
            raise NoQualifyingAllocationsError(employee_id, pay_period_date)
        return allocations

    async def load_for_employees(
        self,
        employee_ids: Iterable[UUID],
        pay_period_date: date,
    ) -> dict[UUID, list[EmployeeFundingAllocation]]:
        """Qualifying allocations for many employees in one query.

        Employees without allocations are absent from the result; callers
        report them as failures.
        """
        ids = list(dict.fromkeys(employee_ids))
        if not ids:
            return {}

        result = await self.session.execute(
            self._qualifying(pay_period_date).where(
                EmployeeFundingAllocation.employee_id.in_(ids)
            )
        )

        grouped: dict[UUID, list[EmployeeFundingAllocation]] = defaultdict(list)
        for allocation in result.scalars():
            grouped[allocation.employee_id].append(allocation)

        logger.debug(
            "Loaded allocations",
            extra={"employees": len(ids), "with_allocations": len(grouped)},
        )
        return dict(grouped)

    @staticmethod
    def total_fte(allocations: Sequence[EmployeeFundingAllocation]) -> Decimal:
        return sum((a.fte for a in allocations), Decimal("0"))
