"""Bulk payroll API endpoints."""

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, HTTPException, Path, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from grant_payroll.api.dependencies import AppSettings, DbSession, Emitter, SessionFactory
from grant_payroll.api.schemas import (
    BatchErrorEntry,
    BatchErrorListResponse,
    BulkPayrollCreate,
    BulkPayrollResponse,
    ErrorResponse,
)
from grant_payroll.config import Settings
from grant_payroll.events.progress import ProgressEmitter
from grant_payroll.exceptions import BatchAlreadyRunningError, InvalidPayPeriodError
from grant_payroll.models import BulkPayrollBatch
from grant_payroll.services.batch_runner import BulkPayrollBatchRunner

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bulk-payroll", tags=["bulk-payroll"])


async def run_batch_in_background(
    factory: async_sessionmaker[AsyncSession],
    emitter: ProgressEmitter,
    settings: Settings,
    batch_id: UUID,
    pay_period: str,
    employment_ids: list[UUID],
) -> None:
    """Run a batch on its own session after the response is sent.

    Failures are already recorded on the batch by the runner.
    """
    async with factory() as session:
        runner = BulkPayrollBatchRunner(session, emitter=emitter, settings=settings)
        try:
            await runner.run_with_timeout(batch_id, pay_period, employment_ids)
        except Exception:
            logger.exception("Background bulk payroll run failed", extra={"batch_id": str(batch_id)})


async def _get_batch(db: AsyncSession, batch_id: UUID) -> BulkPayrollBatch:
    batch = await db.get(BulkPayrollBatch, batch_id)
    if batch is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Bulk payroll batch {batch_id} not found",
        )
    return batch


@router.post(
    "",
    response_model=BulkPayrollResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={409: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def create_bulk_payroll(
    db: DbSession,
    factory: SessionFactory,
    emitter: Emitter,
    settings: AppSettings,
    payload: BulkPayrollCreate,
    background_tasks: BackgroundTasks,
) -> BulkPayrollResponse:
    """Create a pending batch and run it in the background."""
    runner = BulkPayrollBatchRunner(db, emitter=emitter, settings=settings)
    filters = payload.filters.to_filter_dict()

    try:
        batch = await runner.create_batch(payload.pay_period, filters, payload.created_by)
        employment_ids = await runner.resolve_employment_ids(payload.pay_period, filters)
    except BatchAlreadyRunningError as e:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except InvalidPayPeriodError as e:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    # The background session must see the batch row
    await db.commit()
    await db.refresh(batch)

    background_tasks.add_task(
        run_batch_in_background,
        factory,
        emitter,
        settings,
        batch.batch_id,
        batch.pay_period,
        employment_ids,
    )
    return BulkPayrollResponse.model_validate(batch)


@router.get(
    "/{batch_id}",
    response_model=BulkPayrollResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_bulk_payroll(
    db: DbSession,
    batch_id: Annotated[UUID, Path()],
) -> BulkPayrollResponse:
    """Poll the progress of a batch."""
    batch = await _get_batch(db, batch_id)
    return BulkPayrollResponse.model_validate(batch)


@router.get(
    "/{batch_id}/errors",
    response_model=BatchErrorListResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_bulk_payroll_errors(
    db: DbSession,
    batch_id: Annotated[UUID, Path()],
) -> BatchErrorListResponse:
    """Per-allocation failures recorded on a batch."""
    batch = await _get_batch(db, batch_id)
    errors = [BatchErrorEntry.model_validate(entry) for entry in batch.errors or []]
    return BatchErrorListResponse(
        batch_id=batch.batch_id,
        status=batch.status,
        errors=errors,
        total=len(errors),
    )
