"""Tests for grant, allocation, and employment mutations and their audit trail."""

import logging
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from grant_payroll.exceptions import (
    DuplicateGrantItemError,
    InvalidAllocationError,
    MissingEmploymentError,
    OverlappingEmploymentError,
)
from grant_payroll.models import (
    AllocationChangeLog,
    EmployeeFundingAllocation,
    EmployeeFundingAllocationHistory,
    EmploymentHistory,
)
from grant_payroll.services import EmploymentService, FundingAllocationService, GrantService


async def history_for(session, allocation_id):
    result = await session.execute(
        select(EmployeeFundingAllocationHistory).where(
            EmployeeFundingAllocationHistory.allocation_id == allocation_id
        )
    )
    return list(result.scalars().all())


async def change_logs_for(session, allocation_id):
    result = await session.execute(
        select(AllocationChangeLog).where(AllocationChangeLog.allocation_id == allocation_id)
    )
    return list(result.scalars().all())


async def employment_history(session, employment_id):
    result = await session.execute(
        select(EmploymentHistory).where(EmploymentHistory.employment_id == employment_id)
    )
    return list(result.scalars().all())


class TestGrantService:
    async def test_create_grant_and_item(self, session):
        service = GrantService(session)

        grant = await service.create_grant("GR-NEW-01", "Vector Control", "SMRU")
        item = await service.add_item(grant.grant_id, "Entomologist", "BL-201", Decimal("45000"))

        assert (await service.get_by_code("GR-NEW-01")).grant_id == grant.grant_id
        assert item.grant_id == grant.grant_id

    async def test_unknown_organization(self, session):
        with pytest.raises(ValueError, match="Unknown organization"):
            await GrantService(session).create_grant("GR-X", "X", "WHO")

    async def test_duplicate_item_rejected(self, session):
        service = GrantService(session)
        grant = await service.create_grant("GR-NEW-02", "Outreach", "BHF")
        await service.add_item(grant.grant_id, "Driver", "BL-1")
        await service.add_item(grant.grant_id, "Driver", "BL-2")
        await service.add_item(grant.grant_id, "Driver")

        with pytest.raises(DuplicateGrantItemError):
            await service.add_item(grant.grant_id, "Driver", "BL-1")
        with pytest.raises(DuplicateGrantItemError):
            await service.add_item(grant.grant_id, "Driver")


class TestFundingAllocationService:
    """Test allocation mutations and the history they leave."""

    async def test_create_allocation(self, session, test_grants, make_employment):
        employment = await make_employment(allocations=[])
        service = FundingAllocationService(session)

        allocation = await service.create_allocation(
            employment.employment_id,
            Decimal("0.6"),
            date(2024, 1, 1),
            grant_item_id=test_grants["SMRU"].grant_item_id,
            changed_by="hr.admin",
        )

        assert allocation.allocated_amount == Decimal("18000.00")
        assert allocation.salary_type == "pass_probation_salary"
        assert allocation.employee_id == employment.employee_id

        (history,) = await history_for(session, allocation.allocation_id)
        assert history.change_type == "created"
        assert history.change_reason == "Initial funding allocation"
        assert history.grant_code == "GR-SMRU-01"
        assert history.budget_line_code == "BL-001"
        assert history.changed_by == "hr.admin"
        assert history.change_details is None

        (log,) = await change_logs_for(session, allocation.allocation_id)
        assert log.financial_impact == Decimal("18000.00")
        assert log.impact_type == "increase"
        assert log.approval_status == "approved"
        assert log.allocation_summary["grant_code"] == "GR-SMRU-01"

    @pytest.mark.parametrize("fte", ["0", "-0.1", "1.01"])
    async def test_invalid_fte(self, session, make_employment, fte):
        employment = await make_employment(allocations=[])
        with pytest.raises(InvalidAllocationError):
            await FundingAllocationService(session).create_allocation(
                employment.employment_id, Decimal(fte), date(2024, 1, 1)
            )

    async def test_update_fte(self, session, make_employment):
        employment = await make_employment(allocations=[])
        service = FundingAllocationService(session)
        allocation = await service.create_allocation(
            employment.employment_id, Decimal("0.6"), date(2024, 1, 1)
        )

        await service.update_fte(allocation.allocation_id, Decimal("0.5"), date(2025, 1, 1))

        assert allocation.allocated_amount == Decimal("15000.00")
        reasons = {h.change_reason for h in await history_for(session, allocation.allocation_id)}
        assert "FTE changed from 60% to 50%" in reasons

        log = next(
            entry
            for entry in await change_logs_for(session, allocation.allocation_id)
            if entry.change_type == "updated"
        )
        assert log.old_values["fte"] == "0.6"
        assert log.new_values["fte"] == "0.5"
        assert log.financial_impact == Decimal("-3000.00")
        assert log.impact_type == "decrease"

    async def test_update_to_same_fte_records_nothing(self, session, make_employment):
        employment = await make_employment(allocations=[])
        service = FundingAllocationService(session)
        allocation = await service.create_allocation(
            employment.employment_id, Decimal("0.5"), date(2024, 1, 1)
        )

        await service.update_fte(allocation.allocation_id, Decimal("0.5"), date(2025, 1, 1))

        assert len(await history_for(session, allocation.allocation_id)) == 1

    async def test_end_allocation(self, session, make_employment):
        employment = await make_employment(allocations=[])
        service = FundingAllocationService(session)
        allocation = await service.create_allocation(
            employment.employment_id, Decimal("1"), date(2024, 6, 1)
        )

        with pytest.raises(ValueError, match="before it starts"):
            await service.end_allocation(allocation.allocation_id, date(2024, 5, 31))

        await service.end_allocation(allocation.allocation_id, date(2025, 3, 31))

        assert allocation.end_date == date(2025, 3, 31)
        ended = [
            h for h in await history_for(session, allocation.allocation_id) if h.change_type == "ended"
        ]
        assert ended[0].change_reason == "Allocation ended on 2025-03-31"

    async def test_unknown_allocation(self, session):
        with pytest.raises(ValueError, match="not found"):
            await FundingAllocationService(session).update_fte(uuid4(), Decimal("1"), date(2025, 1, 1))

    async def test_over_allocation_allowed_with_warning(self, session, make_employment, caplog):
        employment = await make_employment(allocations=[])
        service = FundingAllocationService(session)
        await service.create_allocation(employment.employment_id, Decimal("0.7"), date(2024, 1, 1))

        with caplog.at_level(logging.WARNING, logger="grant_payroll.services.allocation_service"):
            await service.create_allocation(
                employment.employment_id, Decimal("0.5"), date(2024, 1, 1)
            )

        assert await service.total_fte(employment.employee_id, date(2025, 1, 1)) == Decimal("1.2")
        assert "Employee funding exceeds 100% FTE" in caplog.text

    async def test_total_fte_ignores_other_dates(self, session, make_employment):
        employment = await make_employment(allocations=[])
        service = FundingAllocationService(session)
        await service.create_allocation(
            employment.employment_id, Decimal("0.4"), date(2024, 1, 1), end_date=date(2024, 12, 31)
        )
        await service.create_allocation(employment.employment_id, Decimal("0.3"), date(2025, 1, 1))

        assert await service.total_fte(employment.employee_id, date(2024, 6, 1)) == Decimal("0.4")
        assert await service.total_fte(employment.employee_id, date(2025, 6, 1)) == Decimal("0.3")


class TestEmploymentService:
    """Test employment lifecycle changes."""

    async def test_current_employment(self, session, make_employment):
        employment = await make_employment(start_date=date(2024, 1, 1))
        service = EmploymentService(session)

        current = await service.current_employment(employment.employee_id, date(2025, 3, 1))
        assert current.employment_id == employment.employment_id

        with pytest.raises(MissingEmploymentError):
            await service.current_employment(employment.employee_id, date(2023, 12, 1))

    async def test_one_current_employment(self, session, make_employment):
        employment = await make_employment(start_date=date(2024, 1, 1))
        service = EmploymentService(session)

        with pytest.raises(OverlappingEmploymentError) as exc_info:
            await service.create_employment(
                employment.employee_id, date(2025, 2, 1), Decimal("35000")
            )
        assert exc_info.value.existing_employment_id == employment.employment_id

        await service.terminate(employment.employment_id, date(2025, 1, 31))
        renewed = await service.create_employment(
            employment.employee_id, date(2025, 2, 1), Decimal("35000"), department="Lab"
        )

        assert renewed.department == "Lab"
        (history,) = await employment_history(session, renewed.employment_id)
        assert history.change_type == "created"
        assert history.change_reason == "Employment created"

    async def test_salary_change_recomputes_allocations(self, session, make_employment):
        employment = await make_employment(
            salary=Decimal("30000"),
            allocations=[(Decimal("0.6"), None), (Decimal("0.4"), None)],
        )

        await EmploymentService(session).update_salary(
            employment.employment_id, Decimal("40000"), date(2025, 3, 1)
        )

        allocations = await FundingAllocationService(session).active_allocations(
            employment.employment_id, date(2025, 3, 1)
        )
        assert sorted(a.allocated_amount for a in allocations) == [
            Decimal("16000.00"),
            Decimal("24000.00"),
        ]
        reasons = {
            h.change_reason
            for a in allocations
            for h in await history_for(session, a.allocation_id)
        }
        assert reasons == {
            "Allocated amount changed from 18,000.00 to 24,000.00",
            "Allocated amount changed from 12,000.00 to 16,000.00",
        }
        (salary_history,) = await employment_history(session, employment.employment_id)
        assert salary_history.change_reason == "Salary changed from 30,000.00 to 40,000.00"

    async def test_large_change_needs_approval(self, session, make_employment):
        employment = await make_employment(salary=Decimal("30000"))

        await EmploymentService(session).update_salary(
            employment.employment_id, Decimal("100000"), date(2025, 3, 1)
        )

        result = await session.execute(
            select(AllocationChangeLog).where(
                AllocationChangeLog.employment_id == employment.employment_id
            )
        )
        (log,) = result.scalars().all()
        assert log.financial_impact == Decimal("70000.00")
        assert log.approval_status == "pending"
        assert log.approved_at is None

    async def test_complete_probation(self, session, make_employment):
        employment = await make_employment(
            salary=Decimal("30000"),
            start_date=date(2025, 1, 1),
            allocations=[],
            probation_salary=Decimal("25000"),
            pass_probation_date=date(2025, 6, 1),
        )
        allocations = FundingAllocationService(session)
        allocation = await allocations.create_allocation(
            employment.employment_id, Decimal("1"), date(2025, 1, 1)
        )
        assert allocation.salary_type == "probation_salary"
        assert allocation.allocated_amount == Decimal("25000.00")

        await EmploymentService(session).complete_probation(
            employment.employment_id, date(2025, 4, 1)
        )

        assert employment.pass_probation_date == date(2025, 4, 1)
        assert allocation.salary_type == "pass_probation_salary"
        assert allocation.allocated_amount == Decimal("30000.00")
        types = {h.change_type for h in await history_for(session, allocation.allocation_id)}
        assert types == {"created", "probation_completed"}

    async def test_terminate_closes_allocations(self, session, make_employment):
        employment = await make_employment(
            start_date=date(2024, 1, 1),
            allocations=[(Decimal("0.5"), None), (Decimal("0.5"), None)],
        )

        await EmploymentService(session).terminate(employment.employment_id, date(2025, 3, 15))

        assert employment.end_date == date(2025, 3, 15)
        result = await session.execute(
            select(EmployeeFundingAllocation).where(
                EmployeeFundingAllocation.employment_id == employment.employment_id
            )
        )
        allocations = result.scalars().all()
        assert {a.end_date for a in allocations} == {date(2025, 3, 15)}
        for allocation in allocations:
            (history,) = await history_for(session, allocation.allocation_id)
            assert history.change_type == "terminated"
            assert history.change_reason == "Employment terminated on 2025-03-15"

    async def test_terminate_before_start(self, session, make_employment):
        employment = await make_employment(start_date=date(2024, 1, 1))
        with pytest.raises(ValueError, match="before it starts"):
            await EmploymentService(session).terminate(employment.employment_id, date(2023, 1, 1))
