"""Year-scoped tax and benefit configuration models."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, Date, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from grant_payroll.models.base import AuditMixin, Base


class TaxBracket(Base, AuditMixin):
    """Progressive income tax bracket (rate in percent)."""

    __tablename__ = "tax_bracket"

    tax_bracket_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    min_income: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    max_income: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    base_tax: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0"))
    bracket_order: Mapped[int] = mapped_column(Integer, nullable=False)
    effective_year: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("effective_year", "bracket_order", name="tax_bracket_year_order_unique"),
        CheckConstraint("tax_rate >= 0 AND tax_rate <= 100", name="tax_bracket_rate_check"),
        CheckConstraint(
            "max_income IS NULL OR max_income > min_income",
            name="tax_bracket_range_check",
        ),
    )


class TaxSetting(Base, AuditMixin):
    """Named tax deduction, allowance, rate, or limit for a year."""

    __tablename__ = "tax_setting"

    TYPE_DEDUCTION = "DEDUCTION"
    TYPE_RATE = "RATE"
    TYPE_LIMIT = "LIMIT"
    TYPE_ALLOWANCE = "ALLOWANCE"

    tax_setting_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    setting_key: Mapped[str] = mapped_column(String, nullable=False)
    setting_value: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    setting_type: Mapped[str] = mapped_column(String, nullable=False)
    effective_year: Mapped[int] = mapped_column(Integer, nullable=False)
    is_selected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("setting_key", "effective_year", name="tax_setting_key_year_unique"),
        CheckConstraint(
            "setting_type IN ('DEDUCTION', 'RATE', 'LIMIT', 'ALLOWANCE')",
            name="tax_setting_type_check",
        ),
    )


class BenefitSetting(Base, AuditMixin):
    """Benefit percentage or amount effective from a date."""

    __tablename__ = "benefit_setting"

    benefit_setting_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    setting_key: Mapped[str] = mapped_column(String, nullable=False)
    setting_value: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    setting_type: Mapped[str] = mapped_column(String, nullable=False, default="percentage")
    effective_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "setting_type IN ('percentage', 'numeric')",
            name="benefit_setting_type_check",
        ),
    )
