"""Append-only history and change log models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, Date, DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from grant_payroll.models.base import Base, JSONType, TimestampMixin

HIGH_IMPACT_THRESHOLD = Decimal("50000")


class EmploymentHistory(Base, TimestampMixin):
    """Immutable copy of an employment after each create/update."""

    __tablename__ = "employment_history"

    employment_history_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    employment_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("employment.employment_id", ondelete="RESTRICT"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("employee.employee_id", ondelete="RESTRICT"),
        nullable=False,
    )
    employment_type: Mapped[str] = mapped_column(String, nullable=False)
    department: Mapped[str | None] = mapped_column(String, nullable=True)
    position: Mapped[str | None] = mapped_column(String, nullable=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    pass_probation_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    probation_salary: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    pass_probation_salary: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    health_welfare: Mapped[bool] = mapped_column(Boolean, nullable=False)
    pvd: Mapped[bool] = mapped_column(Boolean, nullable=False)
    saving_fund: Mapped[bool] = mapped_column(Boolean, nullable=False)
    change_type: Mapped[str] = mapped_column(String, nullable=False)
    change_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    changed_by: Mapped[str | None] = mapped_column(String, nullable=True)


class EmployeeFundingAllocationHistory(Base, TimestampMixin):
    """Immutable copy of an allocation with the change that produced it."""

    __tablename__ = "employee_funding_allocation_history"

    CHANGE_CREATED = "created"
    CHANGE_UPDATED = "updated"
    CHANGE_ENDED = "ended"
    CHANGE_PROBATION_COMPLETED = "probation_completed"
    CHANGE_TERMINATED = "terminated"

    history_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    allocation_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("employee_funding_allocation.allocation_id", ondelete="SET NULL"),
        nullable=True,
    )
    employee_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False)
    employment_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("employment.employment_id", ondelete="RESTRICT"),
        nullable=False,
    )
    grant_item_id: Mapped[UUID | None] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    grant_code: Mapped[str | None] = mapped_column(String, nullable=True)
    grant_name: Mapped[str | None] = mapped_column(String, nullable=True)
    budget_line_code: Mapped[str | None] = mapped_column(String, nullable=True)
    grant_position: Mapped[str | None] = mapped_column(String, nullable=True)
    fte: Mapped[Decimal] = mapped_column(Numeric(5, 4), nullable=False)
    allocated_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    salary_type: Mapped[str | None] = mapped_column(String, nullable=True)
    allocation_status: Mapped[str] = mapped_column(String, nullable=False)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    change_type: Mapped[str] = mapped_column(String, nullable=False)
    change_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    change_details: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    changed_by: Mapped[str | None] = mapped_column(String, nullable=True)


class AllocationChangeLog(Base, TimestampMixin):
    """Financial change log for allocation mutations."""

    __tablename__ = "allocation_change_log"

    IMPACT_INCREASE = "increase"
    IMPACT_DECREASE = "decrease"
    IMPACT_NEUTRAL = "neutral"

    APPROVAL_PENDING = "pending"
    APPROVAL_APPROVED = "approved"
    APPROVAL_REJECTED = "rejected"

    change_log_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    employee_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False)
    employment_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("employment.employment_id", ondelete="RESTRICT"),
        nullable=False,
    )
    allocation_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("employee_funding_allocation.allocation_id", ondelete="SET NULL"),
        nullable=True,
    )
    change_type: Mapped[str] = mapped_column(String, nullable=False)
    action_description: Mapped[str] = mapped_column(Text, nullable=False)
    old_values: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    new_values: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    allocation_summary: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    financial_impact: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    impact_type: Mapped[str] = mapped_column(String, nullable=False, default=IMPACT_NEUTRAL)
    approval_status: Mapped[str] = mapped_column(String, nullable=False, default=APPROVAL_APPROVED)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    change_source: Mapped[str] = mapped_column(String, nullable=False, default="system")
    changed_by: Mapped[str | None] = mapped_column(String, nullable=True)
    effective_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "impact_type IN ('increase', 'decrease', 'neutral')",
            name="allocation_change_log_impact_check",
        ),
        CheckConstraint(
            "approval_status IN ('pending', 'approved', 'rejected')",
            name="allocation_change_log_approval_check",
        ),
    )

    def requires_approval(self) -> bool:
        """High-impact changes need sign-off."""
        return self.financial_impact is not None and abs(self.financial_impact) > HIGH_IMPACT_THRESHOLD
