"""Bulk payroll runs over many employments.

A run walks every qualifying allocation of every selected employment,
buffers the computed Payroll rows, and writes them in small sub-batches.
Per-allocation failures are recorded on the batch and never abort it; only
infrastructure errors mark the batch failed.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from grant_payroll.calculators.payroll_calculator import PayrollCalculator
from grant_payroll.calculators.rule_tables import ConfigSnapshot, RuleTableLoader
from grant_payroll.calculators.types import AllocationInput, EmployeeProfile, EmploymentTerms
from grant_payroll.config import Settings, get_settings
from grant_payroll.database import hold_batch_lock
from grant_payroll.events.progress import PayrollBulkProgress, ProgressEmitter
from grant_payroll.exceptions import (
    BatchAlreadyRunningError,
    BatchNotFoundError,
    BracketConfigurationError,
    ConfigurationError,
    InvalidPayPeriodError,
    MissingEmployeeError,
    NoQualifyingAllocationsError,
    PayrollError,
    ProgressBroadcastError,
)
from grant_payroll.models import (
    BulkPayrollBatch,
    Employee,
    EmployeeFundingAllocation,
    Employment,
    GrantItem,
    Payroll,
)
from grant_payroll.services.advance_resolver import AdvanceResolver
from grant_payroll.services.allocation_snapshotter import (
    AllocationSnapshotter,
    allocation_label,
    snapshot_for_payroll,
    to_allocation_input,
    to_employee_profile,
    to_employment_terms,
)
from grant_payroll.services.state_machine import BatchStateMachine, BatchStatus

logger = logging.getLogger(__name__)

PAY_PERIOD_PATTERN = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")
FILTER_KEYS = ("organization", "department", "grant_id", "employment_type")


def parse_pay_period(value: str) -> date:
    """Parse ``YYYY-MM`` into the first day of that month."""
    match = PAY_PERIOD_PATTERN.match(value or "")
    if match is None:
        raise InvalidPayPeriodError(value)
    return date(int(match.group(1)), int(match.group(2)), 1)


def normalize_filters(filters: dict[str, Any] | None) -> dict[str, Any]:
    """Keep known filter keys with non-empty values, as strings."""
    normalized: dict[str, Any] = {}
    for key in FILTER_KEYS:
        value = (filters or {}).get(key)
        if value is None or value == "" or value == []:
            continue
        if isinstance(value, (list, tuple, set)):
            normalized[key] = sorted(str(v) for v in value)
        else:
            normalized[key] = str(value)
    return normalized


def compute_filter_hash(filters: dict[str, Any] | None) -> str:
    """Stable SHA-256 fingerprint of a set of batch filters."""
    canonical = json.dumps(normalize_filters(filters), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode()).hexdigest()


def batch_lock_key(pay_period: str, filter_hash: str) -> str:
    return f"payroll-bulk:{pay_period}:{filter_hash}"


@dataclass
class _WorkItem:
    """One allocation to process, detached from the ORM."""

    employment_id: UUID
    employee_name: str
    allocation_label: str
    employee: EmployeeProfile | None = None
    employment: EmploymentTerms | None = None
    allocation: AllocationInput | None = None
    allocated_amount: Any = None
    error: Exception | None = None


@dataclass
class BatchRunResult:
    """Counters of a finished run."""

    batch_id: UUID
    status: str
    total_employees: int = 0
    total_payrolls: int = 0
    processed: int = 0
    successful: int = 0
    failed: int = 0
    advances_created: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return self.successful + self.failed == self.processed

    def summary(self) -> dict[str, Any]:
        return {
            "total_employees": self.total_employees,
            "total_payrolls": self.total_payrolls,
            "successful": self.successful,
            "failed": self.failed,
            "advances_created": self.advances_created,
            "completed_at": datetime.now(timezone.utc).isoformat(),
        }


class BulkPayrollBatchRunner:
    """Runs one bulk payroll batch on a single session, sequentially.

    Run pipeline:
    1) Mark the batch processing
    2) Bulk load employments and their qualifying allocations
    3) Persist the payroll total (the progress denominator)
    4) Calculate each allocation, buffering Payroll rows
    5) Write every ``flush_size`` rows in its own transaction
    6) Create inter-organization advances for the written rows
    7) Broadcast progress every ``broadcast_every`` items, except the last
    8) Mark completed with a summary and send the terminal event
    """

    def __init__(
        self,
        session: AsyncSession,
        emitter: ProgressEmitter | None = None,
        settings: Settings | None = None,
        config: ConfigSnapshot | None = None,
    ):
        self.session = session
        self.emitter = emitter or ProgressEmitter()
        self.settings = settings or get_settings()
        self.config = config
        self.flush_size = self.settings.batch_flush_size
        self.broadcast_every = self.settings.batch_broadcast_every
        self.snapshotter = AllocationSnapshotter(session)
        self.advances = AdvanceResolver(session, self.settings.hub_grant_codes)

    # ===== Batch creation =====

    async def create_batch(
        self,
        pay_period: str,
        filters: dict[str, Any] | None = None,
        created_by: str | None = None,
    ) -> BulkPayrollBatch:
        """Create a pending batch.

        Raises BatchAlreadyRunningError if a pending or processing batch
        already covers the same pay period and filters.
        """
        parse_pay_period(pay_period)
        normalized = normalize_filters(filters)
        filter_hash = compute_filter_hash(normalized)

        result = await self.session.execute(
            select(BulkPayrollBatch.batch_id).where(
                BulkPayrollBatch.pay_period == pay_period,
                BulkPayrollBatch.filter_hash == filter_hash,
                BulkPayrollBatch.status.in_([s.value for s in BatchStateMachine.IN_FLIGHT]),
            )
        )
        existing = result.scalars().first()
        if existing is not None:
            raise BatchAlreadyRunningError(pay_period, filter_hash, existing)

        batch = BulkPayrollBatch(
            pay_period=pay_period,
            filters=normalized,
            filter_hash=filter_hash,
            status=BatchStatus.PENDING.value,
            errors=[],
            created_by=created_by,
            updated_by=created_by,
        )
        self.session.add(batch)
        await self.session.flush()

        logger.info(
            "Created bulk payroll batch",
            extra={"batch_id": str(batch.batch_id), "pay_period": pay_period},
        )
        return batch

    async def resolve_employment_ids(
        self,
        pay_period: str,
        filters: dict[str, Any] | None = None,
    ) -> list[UUID]:
        """Employments current on the pay period that match the filters."""
        pay_period_date = parse_pay_period(pay_period)
        normalized = normalize_filters(filters)

        query = (
            select(Employment.employment_id)
            .join(Employee, Employee.employee_id == Employment.employee_id)
            .where(
                Employee.deleted_at.is_(None),
                Employment.start_date <= pay_period_date,
                or_(Employment.end_date.is_(None), Employment.end_date >= pay_period_date),
            )
        )

        if "organization" in normalized:
            query = query.where(Employee.organization == normalized["organization"])
        if "department" in normalized:
            query = query.where(Employment.department == normalized["department"])
        if "employment_type" in normalized:
            query = query.where(Employment.employment_type == normalized["employment_type"])
        if "grant_id" in normalized:
            grant_ids = normalized["grant_id"]
            if isinstance(grant_ids, str):
                grant_ids = [grant_ids]
            funded = (
                select(EmployeeFundingAllocation.employment_id)
                .join(GrantItem, GrantItem.grant_item_id == EmployeeFundingAllocation.grant_item_id)
                .where(GrantItem.grant_id.in_([UUID(g) for g in grant_ids]))
            )
            query = query.where(Employment.employment_id.in_(funded))

        result = await self.session.execute(query.order_by(Employment.start_date))
        return list(dict.fromkeys(result.scalars().all()))

    # ===== Run =====

    async def run_with_timeout(
        self,
        batch_id: UUID,
        pay_period: str,
        employment_ids: list[UUID],
    ) -> BatchRunResult:
        """Run with the configured wall-clock limit; a timeout fails the batch."""
        timeout = self.settings.batch_timeout_seconds
        try:
            return await asyncio.wait_for(
                self.run(batch_id, pay_period, employment_ids), timeout=timeout
            )
        except asyncio.TimeoutError:
            logger.error("Bulk payroll batch timed out", extra={"batch_id": str(batch_id)})
            await self.session.rollback()
            await self._mark_failed(batch_id, f"Batch timed out after {timeout} seconds")
            raise

    async def run(
        self,
        batch_id: UUID,
        pay_period: str,
        employment_ids: list[UUID],
    ) -> BatchRunResult:
        """Process a batch to completion.

        Raises on infrastructure errors after marking the batch failed.
        """
        batch = await self.session.get(BulkPayrollBatch, batch_id)
        if batch is None:
            raise BatchNotFoundError(batch_id)
        lock_key = batch_lock_key(batch.pay_period, batch.filter_hash)
        BatchStateMachine.validate_transition(batch.status, BatchStatus.PROCESSING)

        result = BatchRunResult(batch_id=batch_id, status=BatchStatus.PROCESSING.value)
        try:
            async with hold_batch_lock(self.session.bind, lock_key) as locked:
                if not locked:
                    raise BatchAlreadyRunningError(batch.pay_period, batch.filter_hash, batch_id)
                await self._execute(batch_id, pay_period, employment_ids, result)
        except Exception as e:
            logger.exception("Fatal error in bulk payroll batch %s", batch_id)
            await self.session.rollback()
            await self._mark_failed(batch_id, f"Fatal error: {e}")
            raise

        logger.info(
            "Completed bulk payroll batch",
            extra={
                "batch_id": str(batch_id),
                "successful": result.successful,
                "failed": result.failed,
                "advances_created": result.advances_created,
            },
        )
        return result

    async def _execute(
        self,
        batch_id: UUID,
        pay_period: str,
        employment_ids: list[UUID],
        result: BatchRunResult,
    ) -> None:
        await self._update_batch(batch_id, status=BatchStatus.PROCESSING.value)
        await self.session.commit()

        pay_period_date = parse_pay_period(pay_period)
        calculator: PayrollCalculator | None = None
        config_error: PayrollError | None = None
        try:
            config = self.config or await RuleTableLoader(self.session).load(
                pay_period_date.year, pay_period_date
            )
            calculator = PayrollCalculator(config)
        except (BracketConfigurationError, ConfigurationError) as e:
            # Every allocation fails with this error; the run still completes
            logger.error("Payroll configuration unusable: %s", e, extra={"batch_id": str(batch_id)})
            config_error = e

        items, total_employees = await self._load_work(employment_ids, pay_period_date)
        result.total_employees = total_employees
        result.total_payrolls = len(items)
        await self._update_batch(
            batch_id,
            total_employees=total_employees,
            total_payrolls=len(items),
        )
        await self.session.commit()

        await self._process(batch_id, items, calculator, config_error, pay_period_date, result)

        BatchStateMachine.validate_transition(BatchStatus.PROCESSING, BatchStatus.COMPLETED)
        result.status = BatchStatus.COMPLETED.value
        await self._update_batch(
            batch_id,
            status=result.status,
            processed_payrolls=result.processed,
            successful_payrolls=result.successful,
            failed_payrolls=result.failed,
            advances_created=result.advances_created,
            errors=result.errors,
            current_employee=None,
            current_allocation=None,
            summary=result.summary(),
        )

        # Completed is committed only once the terminal event was delivered
        broadcast_errors = await self._emit(result, None, None)
        if broadcast_errors:
            raise ProgressBroadcastError(batch_id, broadcast_errors)
        await self.session.commit()

    async def _load_work(
        self,
        employment_ids: list[UUID],
        pay_period_date: date,
    ) -> tuple[list[_WorkItem], int]:
        """Load employments and allocations and detach them into work items.

        An employment without an employee or without allocations occupies
        one failing item so it shows in the error list.
        """
        result = await self.session.execute(
            select(Employment)
            .where(Employment.employment_id.in_(employment_ids))
            .options(selectinload(Employment.employee).selectinload(Employee.children))
        )
        # Same order as employment_ids
        position = {employment_id: i for i, employment_id in enumerate(employment_ids)}
        employments = sorted(result.scalars().all(), key=lambda e: position[e.employment_id])

        employee_ids = [e.employee_id for e in employments if e.employee is not None]
        allocations = await self.snapshotter.load_for_employees(employee_ids, pay_period_date)

        items: list[_WorkItem] = []
        for employment in employments:
            employee = employment.employee
            if employee is None:
                items.append(
                    _WorkItem(
                        employment_id=employment.employment_id,
                        employee_name="Unknown",
                        allocation_label="N/A",
                        error=MissingEmployeeError(employment.employment_id),
                    )
                )
                continue

            profile = to_employee_profile(employee)
            terms = to_employment_terms(employment)
            own = [
                a
                for a in allocations.get(employee.employee_id, [])
                if a.employment_id == employment.employment_id
            ]
            if not own:
                items.append(
                    _WorkItem(
                        employment_id=employment.employment_id,
                        employee_name=profile.full_name,
                        allocation_label="N/A",
                        employee=profile,
                        error=NoQualifyingAllocationsError(employee.employee_id, pay_period_date),
                    )
                )
                continue

            for allocation in own:
                item = _WorkItem(
                    employment_id=employment.employment_id,
                    employee_name=profile.full_name,
                    allocation_label=allocation_label(allocation),
                    employee=profile,
                    employment=terms,
                    allocated_amount=allocation.allocated_amount,
                )
                try:
                    item.allocation = to_allocation_input(allocation, employee.organization)
                except PayrollError as e:
                    item.error = e
                items.append(item)

        return items, len(employments)

    async def _process(
        self,
        batch_id: UUID,
        items: list[_WorkItem],
        calculator: PayrollCalculator | None,
        config_error: PayrollError | None,
        pay_period_date: date,
        result: BatchRunResult,
    ) -> None:
        buffer: list[tuple[Payroll, _WorkItem]] = []
        since_broadcast = 0
        total = len(items)

        for item in items:
            try:
                if item.error is not None:
                    raise item.error
                if calculator is None:
                    raise config_error  # type: ignore[misc]
                breakdown = calculator.calculate(
                    item.employee, item.employment, item.allocation, pay_period_date  # type: ignore[arg-type]
                )
                payroll = Payroll(
                    employment_id=item.employment_id,
                    allocation_id=item.allocation.allocation_id,  # type: ignore[union-attr]
                    pay_period_date=pay_period_date,
                    notes="; ".join(breakdown.notes) or None,
                    **breakdown.to_payroll_columns(),
                )
                snapshot_for_payroll(
                    payroll,
                    item.allocation,  # type: ignore[arg-type]
                    allocated_amount=item.allocated_amount,
                    salary_type=breakdown.salary_type,
                )
                buffer.append((payroll, item))
                result.successful += 1
            except Exception as e:
                logger.error(
                    "Error processing allocation: %s",
                    e,
                    extra={
                        "batch_id": str(batch_id),
                        "employment_id": str(item.employment_id),
                        "allocation": item.allocation_label,
                    },
                )
                result.errors.append(self._error_entry(item, str(e)))
                result.failed += 1

            result.processed += 1
            since_broadcast += 1

            if len(buffer) >= self.flush_size:
                await self._flush(buffer, pay_period_date, result)
                buffer = []

            if since_broadcast >= self.broadcast_every and result.processed != total:
                await self._broadcast(batch_id, result, item)
                since_broadcast = 0

        if buffer:
            await self._flush(buffer, pay_period_date, result)

    async def _flush(
        self,
        buffer: list[tuple[Payroll, _WorkItem]],
        pay_period_date: date,
        result: BatchRunResult,
    ) -> None:
        """Write one sub-batch; a failure loses only these rows."""
        try:
            self.session.add_all([payroll for payroll, _ in buffer])
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "Failed to save payroll sub-batch: %s",
                e,
                extra={"batch_id": str(result.batch_id), "rows": len(buffer)},
            )
            for _, item in buffer:
                result.errors.append(
                    self._error_entry(item, f"Failed to save payroll: {e.__class__.__name__}")
                )
            result.successful -= len(buffer)
            result.failed += len(buffer)
            return

        created = 0
        try:
            for payroll, item in buffer:
                advance = await self.advances.create_advance_if_needed(
                    item.employee, item.allocation, payroll, pay_period_date  # type: ignore[arg-type]
                )
                if advance is not None:
                    created += 1
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.warning(
                "Could not create advances for sub-batch: %s",
                e,
                extra={"batch_id": str(result.batch_id)},
            )
            return

        result.advances_created += created

    async def _broadcast(self, batch_id: UUID, result: BatchRunResult, item: _WorkItem) -> None:
        await self._update_batch(
            batch_id,
            processed_payrolls=result.processed,
            successful_payrolls=result.successful,
            failed_payrolls=result.failed,
            advances_created=result.advances_created,
            current_employee=item.employee_name,
            current_allocation=item.allocation_label,
        )
        await self.session.commit()
        await self._emit(result, item.employee_name, item.allocation_label)

    async def _emit(
        self,
        result: BatchRunResult,
        current_employee: str | None,
        current_allocation: str | None,
    ) -> list[Exception]:
        return await self.emitter.emit(
            PayrollBulkProgress(
                batch_id=result.batch_id,
                processed=result.processed,
                total=result.total_payrolls,
                status=result.status,
                current_employee=current_employee,
                current_allocation=current_allocation,
                successful=result.successful,
                failed=result.failed,
                advances_created=result.advances_created,
            )
        )

    async def _update_batch(self, batch_id: UUID, **values: Any) -> None:
        await self.session.execute(
            update(BulkPayrollBatch)
            .where(BulkPayrollBatch.batch_id == batch_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    async def _mark_failed(self, batch_id: UUID, message: str) -> None:
        """Best-effort: mark failed and broadcast; never raises."""
        try:
            await self._update_batch(
                batch_id,
                status=BatchStatus.FAILED.value,
                errors=[{"error_message": message}],
                current_employee=None,
                current_allocation=None,
            )
            await self.session.commit()
        except SQLAlchemyError:
            logger.exception("Could not mark batch %s failed", batch_id)
            await self.session.rollback()

        try:
            await self.emitter.emit(
                PayrollBulkProgress(
                    batch_id=batch_id,
                    processed=0,
                    total=0,
                    status=BatchStatus.FAILED.value,
                )
            )
        except Exception:
            logger.exception("Could not broadcast failure of batch %s", batch_id)

    @staticmethod
    def _error_entry(item: _WorkItem, message: str) -> dict[str, Any]:
        return {
            "employment_id": str(item.employment_id),
            "employee_name": item.employee_name,
            "allocation_label": item.allocation_label,
            "error_message": message,
        }
