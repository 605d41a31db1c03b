"""Payroll, grant snapshot, advance, and bulk batch models."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Date, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from grant_payroll.models.base import AuditMixin, Base, JSONType, TimestampMixin
from grant_payroll.models.encryption import EncryptedDecimal

if TYPE_CHECKING:
    from grant_payroll.models.employee import EmployeeFundingAllocation, Employment
    from grant_payroll.models.grant import Grant


# ===== Payroll =====


class Payroll(Base, AuditMixin):
    """Computed pay for one (employment, allocation, pay period).

    Amounts are encrypted at rest. Rows are never edited in place; a
    correction is a new compensating record.
    """

    __tablename__ = "payroll"

    payroll_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
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
    pay_period_date: Mapped[date] = mapped_column(Date, nullable=False)

    gross_salary: Mapped[Decimal] = mapped_column(EncryptedDecimal, nullable=False)
    gross_salary_by_fte: Mapped[Decimal] = mapped_column(EncryptedDecimal, nullable=False)
    compensation_refund: Mapped[Decimal] = mapped_column(EncryptedDecimal, nullable=False)
    thirteen_month_salary: Mapped[Decimal] = mapped_column(EncryptedDecimal, nullable=False)
    thirteen_month_salary_accrued: Mapped[Decimal] = mapped_column(EncryptedDecimal, nullable=False)
    pvd: Mapped[Decimal] = mapped_column(EncryptedDecimal, nullable=False)
    saving_fund: Mapped[Decimal] = mapped_column(EncryptedDecimal, nullable=False)
    employer_social_security: Mapped[Decimal] = mapped_column(EncryptedDecimal, nullable=False)
    employee_social_security: Mapped[Decimal] = mapped_column(EncryptedDecimal, nullable=False)
    employer_health_welfare: Mapped[Decimal] = mapped_column(EncryptedDecimal, nullable=False)
    employee_health_welfare: Mapped[Decimal] = mapped_column(EncryptedDecimal, nullable=False)
    tax: Mapped[Decimal] = mapped_column(EncryptedDecimal, nullable=False)
    net_salary: Mapped[Decimal] = mapped_column(EncryptedDecimal, nullable=False)
    total_salary: Mapped[Decimal] = mapped_column(EncryptedDecimal, nullable=False)
    total_pvd: Mapped[Decimal] = mapped_column(EncryptedDecimal, nullable=False)
    total_saving_fund: Mapped[Decimal] = mapped_column(EncryptedDecimal, nullable=False)
    salary_bonus: Mapped[Decimal] = mapped_column(EncryptedDecimal, nullable=False)
    total_income: Mapped[Decimal] = mapped_column(EncryptedDecimal, nullable=False)
    employer_contribution: Mapped[Decimal] = mapped_column(EncryptedDecimal, nullable=False)
    total_deduction: Mapped[Decimal] = mapped_column(EncryptedDecimal, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "employment_id",
            "allocation_id",
            "pay_period_date",
            name="payroll_employment_allocation_period_unique",
        ),
    )

    # Relationships
    employment: Mapped[Employment] = relationship()
    allocation: Mapped[EmployeeFundingAllocation | None] = relationship()
    grant_allocations: Mapped[list[PayrollGrantAllocation]] = relationship(
        back_populates="payroll"
    )
    advances: Mapped[list[InterOrganizationAdvance]] = relationship(back_populates="payroll")


class PayrollGrantAllocation(Base, TimestampMixin):
    """Immutable snapshot of the grant line that funded a payroll row."""

    __tablename__ = "payroll_grant_allocation"

    payroll_grant_allocation_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    payroll_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("payroll.payroll_id", ondelete="CASCADE"),
        nullable=False,
    )
    allocation_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("employee_funding_allocation.allocation_id", ondelete="SET NULL"),
        nullable=True,
    )
    grant_item_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("grant_item.grant_item_id", ondelete="SET NULL"),
        nullable=True,
    )
    grant_code: Mapped[str | None] = mapped_column(String, nullable=True)
    grant_name: Mapped[str | None] = mapped_column(String, nullable=True)
    budget_line_code: Mapped[str | None] = mapped_column(String, nullable=True)
    grant_position: Mapped[str | None] = mapped_column(String, nullable=True)
    fte: Mapped[Decimal] = mapped_column(Numeric(5, 4), nullable=False)
    allocated_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    salary_type: Mapped[str | None] = mapped_column(String, nullable=True)

    payroll: Mapped[Payroll] = relationship(back_populates="grant_allocations")

    @property
    def fte_percentage(self) -> Decimal:
        return self.fte * 100


class InterOrganizationAdvance(Base, AuditMixin):
    """Cash advanced by one organization for payroll funded by another."""

    __tablename__ = "inter_organization_advance"

    advance_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    payroll_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("payroll.payroll_id", ondelete="RESTRICT"),
        nullable=False,
    )
    from_organization: Mapped[str] = mapped_column(String, nullable=False)
    to_organization: Mapped[str] = mapped_column(String, nullable=False)
    via_grant_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("grant.grant_id", ondelete="RESTRICT"),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    advance_date: Mapped[date] = mapped_column(Date, nullable=False)
    settlement_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "from_organization <> to_organization",
            name="advance_distinct_organizations_check",
        ),
        CheckConstraint("amount >= 0", name="advance_amount_check"),
    )

    payroll: Mapped[Payroll] = relationship(back_populates="advances")
    via_grant: Mapped[Grant] = relationship()

    @property
    def is_settled(self) -> bool:
        return self.settlement_date is not None


# ===== Bulk Payroll =====


class BulkPayrollBatch(Base, AuditMixin):
    """Progress record for one bulk payroll run."""

    __tablename__ = "bulk_payroll_batch"

    batch_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    pay_period: Mapped[str] = mapped_column(String(7), nullable=False)
    filters: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    filter_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="pending")
    total_employees: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_payrolls: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed_payrolls: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    successful_payrolls: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_payrolls: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    advances_created: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    errors: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    summary: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    current_employee: Mapped[str | None] = mapped_column(String, nullable=True)
    current_allocation: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="bulk_payroll_batch_status_check",
        ),
    )

    @property
    def progress_percentage(self) -> float:
        """Processed share of total payrolls, in percent."""
        if not self.total_payrolls:
            return 0.0
        return round(self.processed_payrolls / self.total_payrolls * 100, 2)

    @property
    def error_count(self) -> int:
        return len(self.errors or [])

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)
