"""Ordered cleanup for hard-deleting a soft-deleted employee.

Several tables reference an employee through more than one path, so the
database cannot cascade the delete. ``plan_employee_purge`` returns the
operations in the required order: deepest dependents first, the employee
row last. ``execute_cascade_plan`` runs a plan in a single transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import Delete, delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from grant_payroll.models import (
    AllocationChangeLog,
    Employee,
    EmployeeChild,
    EmployeeFundingAllocation,
    EmployeeFundingAllocationHistory,
    Employment,
    EmploymentHistory,
    InterOrganizationAdvance,
    Payroll,
    PayrollGrantAllocation,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CascadeStep:
    """One delete in a purge plan."""

    order: int
    table: str
    description: str
    build: Callable[[UUID], Delete]

    def statement(self, employee_id: UUID) -> Delete:
        return self.build(employee_id)


def _employment_ids(employee_id: UUID):
    return select(Employment.employment_id).where(Employment.employee_id == employee_id)


def _payroll_ids(employee_id: UUID):
    return select(Payroll.payroll_id).where(
        Payroll.employment_id.in_(_employment_ids(employee_id))
    )


def _allocation_ids(employee_id: UUID):
    return select(EmployeeFundingAllocation.allocation_id).where(
        EmployeeFundingAllocation.employee_id == employee_id
    )


_STEPS: tuple[tuple[str, str, Callable[[UUID], Delete]], ...] = (
    (
        AllocationChangeLog.__tablename__,
        "Allocation change log entries",
        lambda eid: delete(AllocationChangeLog).where(AllocationChangeLog.employee_id == eid),
    ),
    (
        EmployeeFundingAllocationHistory.__tablename__,
        "Allocation history",
        lambda eid: delete(EmployeeFundingAllocationHistory).where(
            EmployeeFundingAllocationHistory.employee_id == eid
        ),
    ),
    (
        PayrollGrantAllocation.__tablename__,
        "Payroll grant snapshots",
        lambda eid: delete(PayrollGrantAllocation).where(
            PayrollGrantAllocation.payroll_id.in_(_payroll_ids(eid))
        ),
    ),
    (
        InterOrganizationAdvance.__tablename__,
        "Inter-organization advances",
        lambda eid: delete(InterOrganizationAdvance).where(
            InterOrganizationAdvance.payroll_id.in_(_payroll_ids(eid))
        ),
    ),
    (
        Payroll.__tablename__,
        "Payroll rows",
        lambda eid: delete(Payroll).where(Payroll.employment_id.in_(_employment_ids(eid))),
    ),
    (
        EmployeeFundingAllocation.__tablename__,
        "Funding allocations",
        lambda eid: delete(EmployeeFundingAllocation).where(
            EmployeeFundingAllocation.allocation_id.in_(_allocation_ids(eid))
        ),
    ),
    (
        EmploymentHistory.__tablename__,
        "Employment history",
        lambda eid: delete(EmploymentHistory).where(EmploymentHistory.employee_id == eid),
    ),
    (
        Employment.__tablename__,
        "Employments",
        lambda eid: delete(Employment).where(Employment.employee_id == eid),
    ),
    (
        EmployeeChild.__tablename__,
        "Children",
        lambda eid: delete(EmployeeChild).where(EmployeeChild.employee_id == eid),
    ),
    (
        Employee.__tablename__,
        "Employee",
        lambda eid: delete(Employee).where(Employee.employee_id == eid),
    ),
)


def plan_employee_purge(employee_id: UUID) -> tuple[CascadeStep, ...]:
    """Steps to hard-delete one employee, deepest dependents first."""
    return tuple(
        CascadeStep(order=i, table=table, description=description, build=build)
        for i, (table, description, build) in enumerate(_STEPS, start=1)
    )


async def execute_cascade_plan(
    session: AsyncSession,
    employee_id: UUID,
    plan: tuple[CascadeStep, ...] | None = None,
    require_soft_deleted: bool = True,
) -> dict[str, Any]:
    """Run a purge plan in one transaction.

    Returns rows deleted per table. Refuses employees that are not
    soft-deleted unless ``require_soft_deleted`` is False.
    """
    employee = await session.get(Employee, employee_id)
    if employee is None:
        raise ValueError(f"Employee {employee_id} not found")
    if require_soft_deleted and employee.deleted_at is None:
        raise ValueError(f"Employee {employee_id} is not soft-deleted")

    plan = plan or plan_employee_purge(employee_id)
    deleted: dict[str, Any] = {}

    try:
        for step in sorted(plan, key=lambda s: s.order):
            result = await session.execute(
                step.statement(employee_id).execution_options(synchronize_session=False)
            )
            deleted[step.table] = result.rowcount
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    session.expunge(employee)
    logger.info(
        "Purged employee",
        extra={"employee_id": str(employee_id), "deleted": deleted},
    )
    return deleted
