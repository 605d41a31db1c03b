"""Year-scoped tax and benefit rule tables.

The calculator never reads settings from the database itself. A
``ConfigSnapshot`` is loaded once per calculation run (or per batch) by
``RuleTableLoader`` and passed in explicitly. Missing values raise
``ConfigurationError``; there are no silent defaults.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from grant_payroll.calculators.types import TaxBracketRow
from grant_payroll.exceptions import BracketConfigurationError, ConfigurationError
from grant_payroll.models import BenefitSetting, TaxBracket, TaxSetting

logger = logging.getLogger(__name__)

# ===== Tax setting keys =====

EMPLOYMENT_DEDUCTION_RATE = "EMPLOYMENT_DEDUCTION_RATE"
EMPLOYMENT_DEDUCTION_MAX = "EMPLOYMENT_DEDUCTION_MAX"
PERSONAL_ALLOWANCE = "PERSONAL_ALLOWANCE"
SPOUSE_ALLOWANCE = "SPOUSE_ALLOWANCE"
CHILD_ALLOWANCE = "CHILD_ALLOWANCE"
CHILD_ALLOWANCE_SUBSEQUENT = "CHILD_ALLOWANCE_SUBSEQUENT"
CHILD_SUBSEQUENT_BIRTH_YEAR = "CHILD_SUBSEQUENT_BIRTH_YEAR"
CHILD_ALLOWANCE_MAX_CHILDREN = "CHILD_ALLOWANCE_MAX_CHILDREN"
PARENT_ALLOWANCE = "PARENT_ALLOWANCE"
SSF_RATE = "SSF_RATE"
SSF_MIN_SALARY = "SSF_MIN_SALARY"
SSF_MAX_SALARY = "SSF_MAX_SALARY"
SSF_MAX_MONTHLY = "SSF_MAX_MONTHLY"
SSF_MAX_YEARLY = "SSF_MAX_YEARLY"
PF_MIN_RATE = "PF_MIN_RATE"
PF_MAX_RATE = "PF_MAX_RATE"
PF_MAX_ANNUAL = "PF_MAX_ANNUAL"
PVD_FUND_RATE = "PVD_FUND_RATE"
PVD_FUND_MAX = "PVD_FUND_MAX"
SAVING_FUND_RATE = "SAVING_FUND_RATE"
SAVING_FUND_MAX = "SAVING_FUND_MAX"

# ===== Benefit setting keys =====

HEALTH_WELFARE_HIGH_THRESHOLD = "health_welfare_high_threshold"
HEALTH_WELFARE_HIGH_AMOUNT = "health_welfare_high_amount"
HEALTH_WELFARE_MEDIUM_THRESHOLD = "health_welfare_medium_threshold"
HEALTH_WELFARE_MEDIUM_AMOUNT = "health_welfare_medium_amount"
HEALTH_WELFARE_LOW_AMOUNT = "health_welfare_low_amount"
ANNUAL_INCREASE_RATE = "annual_increase_rate"


def _d(value: Any) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


# Thai personal income tax, 2025 (contiguous bounds; rate in percent)
THAI_2025_BRACKETS: tuple[TaxBracketRow, ...] = (
    TaxBracketRow(_d(0), _d(150000), _d(0), _d(0), 1),
    TaxBracketRow(_d(150000), _d(300000), _d(5), _d(0), 2),
    TaxBracketRow(_d(300000), _d(500000), _d(10), _d(7500), 3),
    TaxBracketRow(_d(500000), _d(750000), _d(15), _d(27500), 4),
    TaxBracketRow(_d(750000), _d(1000000), _d(20), _d(65000), 5),
    TaxBracketRow(_d(1000000), _d(2000000), _d(25), _d(115000), 6),
    TaxBracketRow(_d(2000000), _d(5000000), _d(30), _d(365000), 7),
    TaxBracketRow(_d(5000000), None, _d(35), _d(1265000), 8),
)

# key -> (value, setting type)
THAI_2025_TAX_SETTINGS: dict[str, tuple[Decimal, str]] = {
    EMPLOYMENT_DEDUCTION_RATE: (_d(50), TaxSetting.TYPE_DEDUCTION),
    EMPLOYMENT_DEDUCTION_MAX: (_d(100000), TaxSetting.TYPE_LIMIT),
    PERSONAL_ALLOWANCE: (_d(60000), TaxSetting.TYPE_ALLOWANCE),
    SPOUSE_ALLOWANCE: (_d(60000), TaxSetting.TYPE_ALLOWANCE),
    CHILD_ALLOWANCE: (_d(30000), TaxSetting.TYPE_ALLOWANCE),
    CHILD_ALLOWANCE_SUBSEQUENT: (_d(60000), TaxSetting.TYPE_ALLOWANCE),
    CHILD_SUBSEQUENT_BIRTH_YEAR: (_d(2018), TaxSetting.TYPE_LIMIT),
    CHILD_ALLOWANCE_MAX_CHILDREN: (_d(3), TaxSetting.TYPE_LIMIT),
    PARENT_ALLOWANCE: (_d(30000), TaxSetting.TYPE_ALLOWANCE),
    SSF_RATE: (_d(5), TaxSetting.TYPE_RATE),
    SSF_MIN_SALARY: (_d(1650), TaxSetting.TYPE_LIMIT),
    SSF_MAX_SALARY: (_d(15000), TaxSetting.TYPE_LIMIT),
    SSF_MAX_MONTHLY: (_d(750), TaxSetting.TYPE_LIMIT),
    SSF_MAX_YEARLY: (_d(9000), TaxSetting.TYPE_LIMIT),
    PF_MIN_RATE: (_d(2), TaxSetting.TYPE_RATE),
    PF_MAX_RATE: (_d(15), TaxSetting.TYPE_RATE),
    PF_MAX_ANNUAL: (_d(500000), TaxSetting.TYPE_LIMIT),
    PVD_FUND_RATE: (_d("7.5"), TaxSetting.TYPE_RATE),
    PVD_FUND_MAX: (_d(500000), TaxSetting.TYPE_LIMIT),
    SAVING_FUND_RATE: (_d("7.5"), TaxSetting.TYPE_RATE),
    SAVING_FUND_MAX: (_d(500000), TaxSetting.TYPE_LIMIT),
}

DEFAULT_BENEFIT_SETTINGS: dict[str, tuple[Decimal, str]] = {
    HEALTH_WELFARE_HIGH_THRESHOLD: (_d(15000), "numeric"),
    HEALTH_WELFARE_HIGH_AMOUNT: (_d(150), "numeric"),
    HEALTH_WELFARE_MEDIUM_THRESHOLD: (_d(5000), "numeric"),
    HEALTH_WELFARE_MEDIUM_AMOUNT: (_d(100), "numeric"),
    HEALTH_WELFARE_LOW_AMOUNT: (_d(60), "numeric"),
    ANNUAL_INCREASE_RATE: (_d(1), "percentage"),
}


@dataclass(frozen=True)
class ConfigSnapshot:
    """Immutable view of one year's tax and benefit configuration."""

    year: int
    brackets: tuple[TaxBracketRow, ...]
    tax_settings: Mapping[str, Decimal] = field(default_factory=dict)
    benefit_settings: Mapping[str, Decimal] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Freeze the mappings so a snapshot can be shared across a batch
        object.__setattr__(self, "tax_settings", MappingProxyType(dict(self.tax_settings)))
        object.__setattr__(self, "benefit_settings", MappingProxyType(dict(self.benefit_settings)))
        object.__setattr__(
            self, "brackets", tuple(sorted(self.brackets, key=lambda b: b.min_income))
        )

    def require(self, key: str) -> Decimal:
        """Get a tax setting, raising ConfigurationError if absent."""
        value = self.tax_settings.get(key)
        if value is None:
            raise ConfigurationError(key, self.year)
        return value

    def benefit(self, key: str) -> Decimal:
        """Get a benefit setting, raising ConfigurationError if absent."""
        value = self.benefit_settings.get(key)
        if value is None:
            raise ConfigurationError(key, self.year)
        return value

    def rate(self, key: str) -> Decimal:
        """Percent setting as a fraction (5 -> 0.05)."""
        return self.require(key) / Decimal("100")

    @classmethod
    def thai_2025(cls, year: int = 2025) -> ConfigSnapshot:
        """Snapshot of the built-in 2025 Thai tables."""
        return cls(
            year=year,
            brackets=THAI_2025_BRACKETS,
            tax_settings={k: v for k, (v, _) in THAI_2025_TAX_SETTINGS.items()},
            benefit_settings={k: v for k, (v, _) in DEFAULT_BENEFIT_SETTINGS.items()},
        )


def validate_brackets(brackets: Iterable[TaxBracketRow], year: int | None = None) -> None:
    """Check brackets are ordered, contiguous, non-overlapping, and open-ended.

    Raises BracketConfigurationError on the first violation.
    """
    ordered = sorted(brackets, key=lambda b: b.min_income)
    if not ordered:
        raise BracketConfigurationError("no tax brackets configured", year)

    if ordered[0].min_income != 0:
        raise BracketConfigurationError("lowest bracket must start at 0", year)

    for current, following in zip(ordered, ordered[1:]):
        if current.max_income is None:
            raise BracketConfigurationError(
                f"bracket starting at {current.min_income} is unbounded but not the highest",
                year,
            )
        if following.min_income < current.max_income:
            raise BracketConfigurationError(
                f"brackets overlap at {following.min_income}", year
            )
        if following.min_income > current.max_income:
            raise BracketConfigurationError(
                f"gap between {current.max_income} and {following.min_income}", year
            )

    if ordered[-1].max_income is not None:
        raise BracketConfigurationError("highest bracket must have no upper limit", year)

    for bracket in ordered:
        if bracket.rate < 0 or bracket.rate > 100:
            raise BracketConfigurationError(
                f"rate {bracket.rate} out of range for bracket at {bracket.min_income}", year
            )


def validate_thai_compliance(snapshot: ConfigSnapshot) -> list[str]:
    """Check a snapshot against Thai Revenue Department and SSF rules.

    Returns list of issues (empty if compliant).
    """
    issues: list[str] = []

    try:
        validate_brackets(snapshot.brackets, snapshot.year)
    except BracketConfigurationError as e:
        issues.append(str(e))

    if len(snapshot.brackets) != 8:
        issues.append(f"Expected 8 tax brackets, found {len(snapshot.brackets)}")

    if snapshot.brackets:
        top = snapshot.brackets[-1]
        if top.max_income is not None or top.rate != Decimal("35"):
            issues.append("Highest bracket must be unbounded at 35%")

        cumulative = Decimal("0")
        for bracket in snapshot.brackets:
            if bracket.base_tax != cumulative:
                issues.append(
                    f"Base tax {bracket.base_tax} at {bracket.min_income} "
                    f"does not match cumulative {cumulative}"
                )
            if bracket.max_income is not None:
                cumulative += (bracket.max_income - bracket.min_income) * bracket.rate / 100

    ssf_rate = snapshot.tax_settings.get(SSF_RATE)
    if ssf_rate != Decimal("5"):
        issues.append(f"SSF rate must be exactly 5%, found {ssf_rate}")

    ssf_cap = snapshot.tax_settings.get(SSF_MAX_MONTHLY)
    if ssf_cap != Decimal("750"):
        issues.append(f"SSF monthly cap must be 750, found {ssf_cap}")

    return issues


class RuleTableLoader:
    """Loads a ConfigSnapshot for a tax year from the settings tables."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def load(self, year: int, as_of: date | None = None) -> ConfigSnapshot:
        """Load brackets and settings in force for ``year``.

        Brackets are validated; a malformed table raises
        BracketConfigurationError before any calculation runs.
        """
        as_of = as_of or date(year, 12, 31)

        bracket_result = await self.session.execute(
            select(TaxBracket)
            .where(
                TaxBracket.effective_year == year,
                TaxBracket.is_active.is_(True),
            )
            .order_by(TaxBracket.bracket_order)
        )
        brackets = tuple(
            TaxBracketRow(
                min_income=b.min_income,
                max_income=b.max_income,
                rate=b.tax_rate,
                base_tax=b.base_tax,
                order=b.bracket_order,
            )
            for b in bracket_result.scalars()
        )
        validate_brackets(brackets, year)

        setting_result = await self.session.execute(
            select(TaxSetting).where(
                TaxSetting.effective_year == year,
                TaxSetting.is_selected.is_(True),
            )
        )
        tax_settings = {s.setting_key: s.setting_value for s in setting_result.scalars()}

        benefit_result = await self.session.execute(
            select(BenefitSetting)
            .where(
                BenefitSetting.is_active.is_(True),
                or_(
                    BenefitSetting.effective_date.is_(None),
                    BenefitSetting.effective_date <= as_of,
                ),
            )
            .order_by(BenefitSetting.effective_date.asc().nulls_first())
        )
        # Later effective dates override earlier ones
        benefit_settings: dict[str, Decimal] = {}
        for setting in benefit_result.scalars():
            benefit_settings[setting.setting_key] = setting.setting_value

        logger.debug(
            "Loaded payroll configuration",
            extra={
                "year": year,
                "brackets": len(brackets),
                "tax_settings": len(tax_settings),
                "benefit_settings": len(benefit_settings),
            },
        )

        return ConfigSnapshot(
            year=year,
            brackets=brackets,
            tax_settings=tax_settings,
            benefit_settings=benefit_settings,
        )
