"""Employee, employment, and funding allocation models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from grant_payroll.models.base import AuditMixin, Base

if TYPE_CHECKING:
    from grant_payroll.models.grant import GrantItem


class EmployeeStatus:
    """Employee residency/tax status values."""

    LOCAL_ID = "Local ID"
    LOCAL_NON_ID = "Local non ID"
    EXPAT = "Expat"
    NON_THAI_ID = "Non-Thai ID"


class Employee(Base, AuditMixin):
    """Employee identity record.

    Employees are soft-deleted on offboarding (``deleted_at``) and purged
    later through the cascade plan.
    """

    __tablename__ = "employee"

    employee_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    organization: Mapped[str] = mapped_column(String, nullable=False)
    staff_id: Mapped[str] = mapped_column(String, nullable=False)
    first_name_en: Mapped[str] = mapped_column(String, nullable=False)
    last_name_en: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default=EmployeeStatus.LOCAL_ID)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    marital_status: Mapped[str | None] = mapped_column(String, nullable=True)
    spouse_has_income: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    eligible_parents_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("organization", "staff_id", name="employee_org_staff_id_unique"),
        CheckConstraint(
            "organization IN ('SMRU', 'BHF')",
            name="employee_organization_check",
        ),
        CheckConstraint(
            "eligible_parents_count BETWEEN 0 AND 4",
            name="employee_eligible_parents_check",
        ),
    )

    # Relationships
    children: Mapped[list[EmployeeChild]] = relationship(
        back_populates="employee", order_by="EmployeeChild.date_of_birth"
    )
    employments: Mapped[list[Employment]] = relationship(back_populates="employee")
    funding_allocations: Mapped[list[EmployeeFundingAllocation]] = relationship(
        back_populates="employee"
    )

    @property
    def full_name_en(self) -> str:
        """Get English full name."""
        return " ".join(p for p in (self.first_name_en, self.last_name_en) if p)

    @property
    def has_spouse(self) -> bool:
        return (self.marital_status or "").lower() == "married"


class EmployeeChild(Base, AuditMixin):
    """Dependent child, used for the child tax allowance."""

    __tablename__ = "employee_child"

    employee_child_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    employee_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)

    employee: Mapped[Employee] = relationship(back_populates="children")


class Employment(Base, AuditMixin):
    """Employment contract with salary split by probation state."""

    __tablename__ = "employment"

    employment_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    employee_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("employee.employee_id", ondelete="RESTRICT"),
        nullable=False,
    )
    employment_type: Mapped[str] = mapped_column(String, nullable=False, default="Full-time")
    department: Mapped[str | None] = mapped_column(String, nullable=True)
    position: Mapped[str | None] = mapped_column(String, nullable=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    pass_probation_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    probation_salary: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    pass_probation_salary: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    # Benefit elections
    health_welfare: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    health_welfare_percentage: Mapped[Decimal | None] = mapped_column(
        Numeric(5, 2), nullable=True
    )
    pvd: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    pvd_percentage: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    saving_fund: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    saving_fund_percentage: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "end_date IS NULL OR end_date >= start_date",
            name="employment_dates_check",
        ),
        CheckConstraint("pass_probation_salary >= 0", name="employment_salary_check"),
    )

    # Relationships
    employee: Mapped[Employee] = relationship(back_populates="employments")
    funding_allocations: Mapped[list[EmployeeFundingAllocation]] = relationship(
        back_populates="employment"
    )

    def is_current(self, on: date) -> bool:
        """Check whether the employment is in force on a date."""
        return self.start_date <= on and (self.end_date is None or self.end_date >= on)

    def salary_type_for(self, on: date) -> str:
        """Which salary applies on a date: probation or post-probation."""
        if (
            self.probation_salary is not None
            and self.pass_probation_date is not None
            and on < self.pass_probation_date
        ):
            return "probation_salary"
        return "pass_probation_salary"

    def salary_for(self, on: date) -> Decimal:
        """Base monthly salary in force on a date."""
        if self.salary_type_for(on) == "probation_salary":
            return self.probation_salary  # type: ignore[return-value]
        return self.pass_probation_salary


class EmployeeFundingAllocation(Base, AuditMixin):
    """Link between an employee and one funding source.

    ``grant_item_id`` is null for organization-funded effort. The sum of fte
    across overlapping allocations is reported but not enforced.
    """

    __tablename__ = "employee_funding_allocation"

    allocation_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    employee_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("employee.employee_id", ondelete="RESTRICT"),
        nullable=False,
    )
    employment_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("employment.employment_id", ondelete="RESTRICT"),
        nullable=False,
    )
    grant_item_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("grant_item.grant_item_id", ondelete="SET NULL"),
        nullable=True,
    )
    fte: Mapped[Decimal] = mapped_column(Numeric(5, 4), nullable=False)
    allocated_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    salary_type: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="active")
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'inactive', 'closed')",
            name="allocation_status_check",
        ),
        CheckConstraint("fte >= 0 AND fte <= 1", name="allocation_fte_check"),
    )

    # Relationships
    employee: Mapped[Employee] = relationship(back_populates="funding_allocations")
    employment: Mapped[Employment] = relationship(back_populates="funding_allocations")
    grant_item: Mapped[GrantItem | None] = relationship(back_populates="allocations")

    def covers(self, on: date) -> bool:
        """Check whether the allocation is valid on a date."""
        return self.start_date <= on and (self.end_date is None or self.end_date >= on)
