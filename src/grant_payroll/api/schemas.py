"""Pydantic schemas for API request/response models."""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

PAY_PERIOD_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


# ============================================================================
# Bulk payroll schemas
# ============================================================================


class BulkPayrollFilters(BaseModel):
    """Optional selection of employments for a batch."""

    organization: str | None = None
    department: str | None = None
    grant_id: list[UUID] | None = None
    employment_type: str | None = None

    def to_filter_dict(self) -> dict[str, Any]:
        data = self.model_dump(exclude_none=True)
        if "grant_id" in data:
            data["grant_id"] = [str(g) for g in data["grant_id"]]
        return data


class BulkPayrollCreate(BaseModel):
    """Schema for starting a bulk payroll batch."""

    pay_period: str = Field(pattern=PAY_PERIOD_PATTERN, examples=["2025-01"])
    filters: BulkPayrollFilters = Field(default_factory=BulkPayrollFilters)
    created_by: str | None = None


class BulkPayrollResponse(BaseModel):
    """Schema for bulk payroll batch status."""

    model_config = ConfigDict(from_attributes=True)

    batch_id: UUID
    pay_period: str
    filters: dict[str, Any]
    status: str
    total_employees: int
    total_payrolls: int
    processed_payrolls: int
    successful_payrolls: int
    failed_payrolls: int
    advances_created: int
    progress_percentage: float
    current_employee: str | None = None
    current_allocation: str | None = None
    error_count: int
    summary: dict[str, Any] | None = None
    created_at: datetime
    updated_at: datetime | None = None


class BatchErrorEntry(BaseModel):
    """One failed payroll slot of a batch."""

    employment_id: str | None = None
    employee_name: str | None = None
    allocation_label: str | None = None
    error_message: str


class BatchErrorListResponse(BaseModel):
    batch_id: UUID
    status: str
    errors: list[BatchErrorEntry]
    total: int


# ============================================================================
# Payroll preview schemas
# ============================================================================


class PayrollPreviewRequest(BaseModel):
    """Schema for a single-employee payroll preview."""

    employee_id: UUID
    pay_period: str = Field(pattern=PAY_PERIOD_PATTERN, examples=["2025-01"])


class AllocationPreview(BaseModel):
    """Calculated amounts for one funding allocation."""

    allocation_id: UUID | None
    label: str
    fte: Decimal
    funding_organization: str | None
    grant_code: str | None
    salary_type: str
    gross_salary: Decimal
    gross_salary_by_fte: Decimal
    annual_increase: Decimal
    thirteen_month_salary: Decimal
    pvd: Decimal
    saving_fund: Decimal
    employee_social_security: Decimal
    employer_social_security: Decimal
    employee_health_welfare: Decimal
    employer_health_welfare: Decimal
    income_tax: Decimal
    net_salary: Decimal
    total_salary: Decimal
    notes: list[str] = []


class AdvancePreviewResponse(BaseModel):
    allocation_id: UUID | None
    from_organization: str
    to_organization: str
    hub_grant_code: str | None
    amount: Decimal


class PayrollPreviewResponse(BaseModel):
    """Schema for a payroll preview; nothing is persisted."""

    employee_id: UUID
    staff_id: str
    employee_name: str
    organization: str
    pay_period: str
    total_fte: Decimal
    allocations: list[AllocationPreview]
    summary: dict[str, Decimal]
    advances: list[AdvancePreviewResponse]


class PayrollStatisticsResponse(BaseModel):
    pay_period: str
    payroll_count: int
    employment_count: int
    total_gross_salary: Decimal
    total_net_salary: Decimal
    total_tax: Decimal
    total_employer_contribution: Decimal
    advance_count: int
    advance_total: Decimal


# ============================================================================
# Error schemas
# ============================================================================


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
    code: str | None = None
