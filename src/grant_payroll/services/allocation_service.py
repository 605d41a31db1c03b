"""Grant, employment, and funding allocation mutations.

Every mutation records its audit trail through ``AuditRecorder`` in the
same transaction.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from grant_payroll.calculators.types import round_money
from grant_payroll.exceptions import (
    DuplicateGrantItemError,
    InvalidAllocationError,
    MissingEmploymentError,
    OverlappingEmploymentError,
)
from grant_payroll.models import (
    Employee,
    EmployeeFundingAllocation,
    Employment,
    Grant,
    GrantItem,
)
from grant_payroll.models.grant import ORGANIZATIONS
from grant_payroll.services.audit_recorder import AuditRecorder, allocation_values
from grant_payroll.services.change_reasons import (
    AllocatedAmountChanged,
    AllocationCreated,
    AllocationEnded,
    ChangeReason,
    EmploymentCreated,
    EmploymentTerminated,
    FteChanged,
    ProbationCompleted,
    SalaryChanged,
)

logger = logging.getLogger(__name__)


def _validate_fte(allocation_id: UUID | None, fte: Decimal) -> None:
    if fte <= 0 or fte > 1:
        raise InvalidAllocationError(allocation_id, fte)


# ===== Grants =====


class GrantService:
    """Grants and their budget lines."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_grant(
        self,
        code: str,
        name: str,
        organization: str,
        description: str | None = None,
        end_date: date | None = None,
    ) -> Grant:
        if organization not in ORGANIZATIONS:
            raise ValueError(f"Unknown organization '{organization}'")
        grant = Grant(
            code=code,
            name=name,
            organization=organization,
            description=description,
            end_date=end_date,
        )
        self.session.add(grant)
        await self.session.flush()
        return grant

    async def get_by_code(self, code: str) -> Grant | None:
        result = await self.session.execute(select(Grant).where(Grant.code == code))
        return result.scalar_one_or_none()

    async def add_item(
        self,
        grant_id: UUID,
        grant_position: str,
        budgetline_code: str | None = None,
        grant_salary: Decimal | None = None,
        grant_benefit: Decimal | None = None,
        grant_level_of_effort: Decimal | None = None,
        grant_position_number: int | None = None,
    ) -> GrantItem:
        """Add a budget line; (grant, position, budget line) must be unique."""
        query = select(GrantItem.grant_item_id).where(
            GrantItem.grant_id == grant_id,
            GrantItem.grant_position == grant_position,
        )
        if budgetline_code is None:
            query = query.where(GrantItem.budgetline_code.is_(None))
        else:
            query = query.where(GrantItem.budgetline_code == budgetline_code)

        existing = await self.session.execute(query)
        if existing.first() is not None:
            raise DuplicateGrantItemError(grant_id, grant_position, budgetline_code)

        item = GrantItem(
            grant_id=grant_id,
            grant_position=grant_position,
            budgetline_code=budgetline_code,
            grant_salary=grant_salary,
            grant_benefit=grant_benefit,
            grant_level_of_effort=grant_level_of_effort,
            grant_position_number=grant_position_number,
        )
        self.session.add(item)
        await self.session.flush()
        return item


# ===== Funding allocations =====


class FundingAllocationService:
    """Creates, updates, and ends funding allocations."""

    def __init__(self, session: AsyncSession, recorder: AuditRecorder | None = None):
        self.session = session
        self.recorder = recorder or AuditRecorder(session)

    async def _employment(self, employment_id: UUID) -> Employment:
        employment = await self.session.get(Employment, employment_id)
        if employment is None:
            raise ValueError(f"Employment {employment_id} not found")
        return employment

    async def _allocation(self, allocation_id: UUID) -> EmployeeFundingAllocation:
        allocation = await self.session.get(EmployeeFundingAllocation, allocation_id)
        if allocation is None:
            raise ValueError(f"Allocation {allocation_id} not found")
        return allocation

    async def create_allocation(
        self,
        employment_id: UUID,
        fte: Decimal,
        start_date: date,
        grant_item_id: UUID | None = None,
        end_date: date | None = None,
        changed_by: str | None = None,
    ) -> EmployeeFundingAllocation:
        _validate_fte(None, fte)
        employment = await self._employment(employment_id)

        allocation = EmployeeFundingAllocation(
            employee_id=employment.employee_id,
            employment_id=employment.employment_id,
            grant_item_id=grant_item_id,
            fte=fte,
            salary_type=employment.salary_type_for(start_date),
            allocated_amount=round_money(employment.salary_for(start_date) * fte),
            status="active",
            start_date=start_date,
            end_date=end_date,
        )
        self.session.add(allocation)
        await self.session.flush()

        await self.recorder.record_allocation_change(
            allocation, AllocationCreated(), changed_by=changed_by
        )
        await self._warn_if_over_allocated(employment.employee_id, start_date)
        return allocation

    async def update_fte(
        self,
        allocation_id: UUID,
        fte: Decimal,
        on: date,
        changed_by: str | None = None,
    ) -> EmployeeFundingAllocation:
        allocation = await self._allocation(allocation_id)
        _validate_fte(allocation_id, fte)
        if allocation.fte == fte:
            return allocation

        employment = await self._employment(allocation.employment_id)
        old_values = allocation_values(allocation)
        old_fte = allocation.fte

        allocation.fte = fte
        allocation.allocated_amount = round_money(employment.salary_for(on) * fte)
        await self.session.flush()

        await self.recorder.record_allocation_change(
            allocation, FteChanged(old=old_fte, new=fte), old_values, changed_by
        )
        await self._warn_if_over_allocated(allocation.employee_id, on)
        return allocation

    async def end_allocation(
        self,
        allocation_id: UUID,
        end_date: date,
        changed_by: str | None = None,
    ) -> EmployeeFundingAllocation:
        allocation = await self._allocation(allocation_id)
        if end_date < allocation.start_date:
            raise ValueError("Allocation cannot end before it starts")

        old_values = allocation_values(allocation)
        allocation.end_date = end_date
        await self.session.flush()

        await self.recorder.record_allocation_change(
            allocation, AllocationEnded(end_date=end_date), old_values, changed_by
        )
        return allocation

    async def active_allocations(
        self, employment_id: UUID, on: date
    ) -> list[EmployeeFundingAllocation]:
        result = await self.session.execute(
            select(EmployeeFundingAllocation)
            .where(
                EmployeeFundingAllocation.employment_id == employment_id,
                EmployeeFundingAllocation.status == "active",
                EmployeeFundingAllocation.start_date <= on,
                or_(
                    EmployeeFundingAllocation.end_date.is_(None),
                    EmployeeFundingAllocation.end_date >= on,
                ),
            )
            .order_by(
                EmployeeFundingAllocation.start_date,
                EmployeeFundingAllocation.allocation_id,
            )
        )
        return list(result.scalars().all())

    async def recompute_amounts(
        self,
        employment: Employment,
        on: date,
        reason: ChangeReason | None = None,
        changed_by: str | None = None,
    ) -> list[EmployeeFundingAllocation]:
        """Refresh allocated_amount after the salary in force changed.

        Returns allocations whose amount changed.
        """
        changed: list[EmployeeFundingAllocation] = []
        salary = employment.salary_for(on)
        salary_type = employment.salary_type_for(on)

        for allocation in await self.active_allocations(employment.employment_id, on):
            new_amount = round_money(salary * allocation.fte)
            if allocation.allocated_amount == new_amount and allocation.salary_type == salary_type:
                continue

            old_values = allocation_values(allocation)
            old_amount = allocation.allocated_amount
            allocation.allocated_amount = new_amount
            allocation.salary_type = salary_type
            await self.session.flush()

            await self.recorder.record_allocation_change(
                allocation,
                reason or AllocatedAmountChanged(old=old_amount, new=new_amount),
                old_values,
                changed_by,
            )
            changed.append(allocation)

        return changed

    async def total_fte(self, employee_id: UUID, on: date) -> Decimal:
        """Sum of fte across active allocations on a date.

        Reporting only: a total above 1 is allowed.
        """
        result = await self.session.execute(
            select(EmployeeFundingAllocation.fte).where(
                EmployeeFundingAllocation.employee_id == employee_id,
                EmployeeFundingAllocation.status == "active",
                EmployeeFundingAllocation.start_date <= on,
                or_(
                    EmployeeFundingAllocation.end_date.is_(None),
                    EmployeeFundingAllocation.end_date >= on,
                ),
            )
        )
        return sum(result.scalars().all(), Decimal("0"))

    async def _warn_if_over_allocated(self, employee_id: UUID, on: date) -> None:
        total = await self.total_fte(employee_id, on)
        if total > 1:
            logger.warning(
                "Employee funding exceeds 100% FTE",
                extra={"employee_id": str(employee_id), "total_fte": str(total)},
            )


# ===== Employments =====


class EmploymentService:
    """Employment lifecycle; salary changes flow into allocation amounts."""

    def __init__(
        self,
        session: AsyncSession,
        recorder: AuditRecorder | None = None,
        allocations: FundingAllocationService | None = None,
    ):
        self.session = session
        self.recorder = recorder or AuditRecorder(session)
        self.allocations = allocations or FundingAllocationService(session, self.recorder)

    async def _get(self, employment_id: UUID) -> Employment:
        employment = await self.session.get(Employment, employment_id)
        if employment is None:
            raise ValueError(f"Employment {employment_id} not found")
        return employment

    async def current_employment(self, employee_id: UUID, on: date) -> Employment:
        """The employment in force on a date; raises MissingEmploymentError."""
        result = await self.session.execute(
            select(Employment)
            .where(
                Employment.employee_id == employee_id,
                Employment.start_date <= on,
                or_(Employment.end_date.is_(None), Employment.end_date >= on),
            )
            .order_by(Employment.start_date.desc())
        )
        employment = result.scalars().first()
        if employment is None:
            raise MissingEmploymentError(employee_id)
        return employment

    async def create_employment(
        self,
        employee_id: UUID,
        start_date: date,
        pass_probation_salary: Decimal,
        changed_by: str | None = None,
        **fields: Any,
    ) -> Employment:
        """Create an employment; only one may be current per employee."""
        employee = await self.session.get(Employee, employee_id)
        if employee is None:
            raise ValueError(f"Employee {employee_id} not found")

        overlapping = await self.session.execute(
            select(Employment.employment_id).where(
                Employment.employee_id == employee_id,
                or_(Employment.end_date.is_(None), Employment.end_date >= start_date),
            )
        )
        existing_id = overlapping.scalars().first()
        if existing_id is not None:
            raise OverlappingEmploymentError(employee_id, existing_id)

        employment = Employment(
            employee_id=employee_id,
            start_date=start_date,
            pass_probation_salary=pass_probation_salary,
            **fields,
        )
        self.session.add(employment)
        await self.session.flush()

        await self.recorder.record_employment(employment, EmploymentCreated(), changed_by)
        return employment

    async def update_salary(
        self,
        employment_id: UUID,
        pass_probation_salary: Decimal,
        on: date,
        changed_by: str | None = None,
    ) -> Employment:
        employment = await self._get(employment_id)
        old_salary = employment.pass_probation_salary
        if old_salary == pass_probation_salary:
            return employment

        employment.pass_probation_salary = pass_probation_salary
        await self.session.flush()

        await self.recorder.record_employment(
            employment, SalaryChanged(old=old_salary, new=pass_probation_salary), changed_by
        )
        await self.allocations.recompute_amounts(employment, on, changed_by=changed_by)
        return employment

    async def complete_probation(
        self,
        employment_id: UUID,
        on: date,
        changed_by: str | None = None,
    ) -> Employment:
        """Switch to the post-probation salary from ``on``."""
        employment = await self._get(employment_id)
        if employment.pass_probation_date is None or employment.pass_probation_date > on:
            employment.pass_probation_date = on
        await self.session.flush()

        reason = ProbationCompleted()
        await self.recorder.record_employment(employment, reason, changed_by)
        await self.allocations.recompute_amounts(employment, on, reason, changed_by)
        return employment

    async def terminate(
        self,
        employment_id: UUID,
        end_date: date,
        changed_by: str | None = None,
    ) -> Employment:
        """End an employment and close its open allocations."""
        employment = await self._get(employment_id)
        if end_date < employment.start_date:
            raise ValueError("Employment cannot end before it starts")

        employment.end_date = end_date
        await self.session.flush()
        await self.recorder.record_employment(
            employment, EmploymentTerminated(end_date=end_date), changed_by
        )

        result = await self.session.execute(
            select(EmployeeFundingAllocation).where(
                EmployeeFundingAllocation.employment_id == employment_id,
                EmployeeFundingAllocation.status == "active",
                or_(
                    EmployeeFundingAllocation.end_date.is_(None),
                    EmployeeFundingAllocation.end_date > end_date,
                ),
            )
        )
        for allocation in result.scalars().all():
            old_values = allocation_values(allocation)
            allocation.end_date = max(end_date, allocation.start_date)
            await self.session.flush()
            await self.recorder.record_allocation_change(
                allocation, EmploymentTerminated(end_date=end_date), old_values, changed_by
            )

        return employment
