"""Append-only audit trail for allocation and employment changes.

Mutation services call the recorder right after their write, inside the
same transaction, so history and data commit or roll back together.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from grant_payroll.models import (
    AllocationChangeLog,
    EmployeeFundingAllocation,
    EmployeeFundingAllocationHistory,
    Employment,
    EmploymentHistory,
    GrantItem,
)
from grant_payroll.services.change_reasons import (
    ChangeReason,
    change_type_for,
    render_change_reason,
)

logger = logging.getLogger(__name__)

ALLOCATION_AUDIT_FIELDS = (
    "fte",
    "allocated_amount",
    "salary_type",
    "status",
    "start_date",
    "end_date",
    "grant_item_id",
)


def _json_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    if value is not None and not isinstance(value, (str, int, float, bool)):
        return str(value)
    return value


def allocation_values(allocation: EmployeeFundingAllocation) -> dict[str, Any]:
    """JSON-friendly copy of the audited allocation fields."""
    return {name: _json_value(getattr(allocation, name)) for name in ALLOCATION_AUDIT_FIELDS}


class AuditRecorder:
    """Writes history and change-log rows for explicit change reasons."""

    def __init__(self, session: AsyncSession, changed_by: str | None = None):
        self.session = session
        self.changed_by = changed_by

    async def _grant_item(self, grant_item_id) -> GrantItem | None:
        if grant_item_id is None:
            return None
        return await self.session.get(
            GrantItem,
            grant_item_id,
            options=[selectinload(GrantItem.grant)],
            populate_existing=True,
        )

    async def record_allocation_change(
        self,
        allocation: EmployeeFundingAllocation,
        reason: ChangeReason,
        old_values: dict[str, Any] | None = None,
        changed_by: str | None = None,
        change_source: str = "system",
    ) -> tuple[EmployeeFundingAllocationHistory, AllocationChangeLog]:
        """Record one allocation change as history plus a change-log entry."""
        changed_by = changed_by or self.changed_by
        change_type = change_type_for(reason)
        description = render_change_reason(reason)
        new_values = allocation_values(allocation)

        item = await self._grant_item(allocation.grant_item_id)
        grant = item.grant if item is not None else None

        history = EmployeeFundingAllocationHistory(
            allocation_id=allocation.allocation_id,
            employee_id=allocation.employee_id,
            employment_id=allocation.employment_id,
            grant_item_id=allocation.grant_item_id,
            grant_code=grant.code if grant else None,
            grant_name=grant.name if grant else None,
            budget_line_code=item.budgetline_code if item else None,
            grant_position=item.grant_position if item else None,
            fte=allocation.fte,
            allocated_amount=allocation.allocated_amount,
            salary_type=allocation.salary_type,
            allocation_status=allocation.status,
            effective_date=allocation.start_date,
            end_date=allocation.end_date,
            change_type=change_type,
            change_reason=description,
            change_details={"old": old_values, "new": new_values} if old_values else None,
            changed_by=changed_by,
        )

        impact = self._financial_impact(old_values, allocation.allocated_amount)
        log = AllocationChangeLog(
            employee_id=allocation.employee_id,
            employment_id=allocation.employment_id,
            allocation_id=allocation.allocation_id,
            change_type=change_type,
            action_description=description,
            old_values=old_values,
            new_values=new_values,
            allocation_summary={
                "grant_code": grant.code if grant else None,
                "fte": str(allocation.fte),
                "allocated_amount": _json_value(allocation.allocated_amount),
            },
            financial_impact=impact,
            impact_type=self._impact_type(impact),
            change_source=change_source,
            changed_by=changed_by,
            effective_date=allocation.start_date,
        )
        if log.requires_approval():
            log.approval_status = AllocationChangeLog.APPROVAL_PENDING
        else:
            log.approval_status = AllocationChangeLog.APPROVAL_APPROVED
            log.approved_at = datetime.now(timezone.utc)

        self.session.add_all([history, log])
        await self.session.flush()

        logger.debug(
            "Recorded allocation change",
            extra={
                "allocation_id": str(allocation.allocation_id),
                "change_type": change_type,
            },
        )
        return history, log

    async def record_employment(
        self,
        employment: Employment,
        reason: ChangeReason,
        changed_by: str | None = None,
    ) -> EmploymentHistory:
        """Mirror the current state of an employment into its history."""
        history = EmploymentHistory(
            employment_id=employment.employment_id,
            employee_id=employment.employee_id,
            employment_type=employment.employment_type,
            department=employment.department,
            position=employment.position,
            start_date=employment.start_date,
            end_date=employment.end_date,
            pass_probation_date=employment.pass_probation_date,
            probation_salary=employment.probation_salary,
            pass_probation_salary=employment.pass_probation_salary,
            health_welfare=employment.health_welfare,
            pvd=employment.pvd,
            saving_fund=employment.saving_fund,
            change_type=change_type_for(reason),
            change_reason=render_change_reason(reason),
            changed_by=changed_by or self.changed_by,
        )
        self.session.add(history)
        await self.session.flush()
        return history

    @staticmethod
    def _financial_impact(
        old_values: dict[str, Any] | None,
        new_amount: Decimal | None,
    ) -> Decimal | None:
        old_raw = (old_values or {}).get("allocated_amount")
        old_amount = Decimal(str(old_raw)) if old_raw is not None else Decimal("0")
        if new_amount is None and old_raw is None:
            return None
        return (new_amount or Decimal("0")) - old_amount

    @staticmethod
    def _impact_type(impact: Decimal | None) -> str:
        if impact is None or impact == 0:
            return AllocationChangeLog.IMPACT_NEUTRAL
        if impact > 0:
            return AllocationChangeLog.IMPACT_INCREASE
        return AllocationChangeLog.IMPACT_DECREASE
