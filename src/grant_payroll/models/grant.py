"""Grant and grant budget line models."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Date, ForeignKey, Numeric, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from grant_payroll.models.base import AuditMixin, Base

if TYPE_CHECKING:
    from grant_payroll.models.employee import EmployeeFundingAllocation

ORGANIZATIONS = ("SMRU", "BHF")


class Grant(Base, AuditMixin):
    """External funding source owned by one organization."""

    __tablename__ = "grant"

    grant_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    code: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    organization: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "organization IN ('SMRU', 'BHF')",
            name="grant_organization_check",
        ),
    )

    # Relationships
    items: Mapped[list[GrantItem]] = relationship(back_populates="grant")


class GrantItem(Base, AuditMixin):
    """Budget line within a grant."""

    __tablename__ = "grant_item"

    grant_item_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    grant_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("grant.grant_id", ondelete="CASCADE"),
        nullable=False,
    )
    grant_position: Mapped[str] = mapped_column(String, nullable=False)
    budgetline_code: Mapped[str | None] = mapped_column(String, nullable=True)
    grant_salary: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    grant_benefit: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    grant_level_of_effort: Mapped[Decimal | None] = mapped_column(Numeric(5, 4), nullable=True)
    grant_position_number: Mapped[int | None] = mapped_column(nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "grant_id",
            "grant_position",
            "budgetline_code",
            name="grant_item_position_budgetline_unique",
        ),
    )

    # Relationships
    grant: Mapped[Grant] = relationship(back_populates="items")
    allocations: Mapped[list[EmployeeFundingAllocation]] = relationship(
        back_populates="grant_item"
    )
