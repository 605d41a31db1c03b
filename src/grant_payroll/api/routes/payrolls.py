"""Single-employee payroll endpoints."""

from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, status

from grant_payroll.api.dependencies import AppSettings, DbSession
from grant_payroll.api.schemas import (
    PAY_PERIOD_PATTERN,
    AdvancePreviewResponse,
    AllocationPreview,
    ErrorResponse,
    PayrollPreviewRequest,
    PayrollPreviewResponse,
    PayrollStatisticsResponse,
)
from grant_payroll.exceptions import (
    BracketConfigurationError,
    ConfigurationError,
    EmployeeNotFoundError,
    MissingEmploymentError,
    NoQualifyingAllocationsError,
)
from grant_payroll.services.payroll_service import (
    PayrollService,
    calculate_employee_summary,
)

router = APIRouter(prefix="/payrolls", tags=["payrolls"])


@router.post(
    "/preview",
    response_model=PayrollPreviewResponse,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def preview_payroll(
    db: DbSession,
    settings: AppSettings,
    payload: PayrollPreviewRequest,
) -> PayrollPreviewResponse:
    """Calculate an employee's payroll without persisting anything."""
    service = PayrollService(db, settings)
    try:
        result = await service.process_employee_payroll(
            payload.employee_id, payload.pay_period, save=False
        )
    except (EmployeeNotFoundError, MissingEmploymentError, NoQualifyingAllocationsError) as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except (ConfigurationError, BracketConfigurationError) as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    allocations = [
        AllocationPreview(
            allocation_id=line.allocation.allocation_id,
            label=line.allocation.label,
            fte=line.allocation.fte,
            funding_organization=line.allocation.funding_organization,
            grant_code=line.allocation.grant_code,
            salary_type=line.breakdown.salary_type,
            gross_salary=line.breakdown.gross_salary,
            gross_salary_by_fte=line.breakdown.gross_salary_by_fte,
            annual_increase=line.breakdown.annual_increase,
            thirteen_month_salary=line.breakdown.thirteen_month_salary,
            pvd=line.breakdown.pvd,
            saving_fund=line.breakdown.saving_fund,
            employee_social_security=line.breakdown.employee_social_security,
            employer_social_security=line.breakdown.employer_social_security,
            employee_health_welfare=line.breakdown.employee_health_welfare,
            employer_health_welfare=line.breakdown.employer_health_welfare,
            income_tax=line.breakdown.income_tax,
            net_salary=line.breakdown.net_salary,
            total_salary=line.breakdown.total_salary,
            notes=list(line.breakdown.notes),
        )
        for line in result.lines
    ]

    return PayrollPreviewResponse(
        employee_id=payload.employee_id,
        staff_id=result.employee.staff_id,
        employee_name=result.employee.full_name,
        organization=result.employee.organization,
        pay_period=result.pay_period,
        total_fte=result.total_fte,
        allocations=allocations,
        summary=calculate_employee_summary([line.breakdown for line in result.lines]),
        advances=[
            AdvancePreviewResponse(
                allocation_id=a.allocation_id,
                from_organization=a.from_organization,
                to_organization=a.to_organization,
                hub_grant_code=a.hub_grant_code,
                amount=a.amount,
            )
            for a in result.advances
        ],
    )


@router.get("/statistics", response_model=PayrollStatisticsResponse)
async def payroll_statistics(
    db: DbSession,
    settings: AppSettings,
    pay_period: Annotated[str, Query(pattern=PAY_PERIOD_PATTERN)],
) -> PayrollStatisticsResponse:
    """Counts and totals of saved payroll for a pay period."""
    stats = await PayrollService(db, settings).payroll_statistics(pay_period)
    return PayrollStatisticsResponse(**stats)
