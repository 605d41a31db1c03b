"""Seed script for Thai tax tables, benefit settings, and hub grants.

Run with:
    python scripts/seed_tax_rules.py [YEAR]

Existing rows for the year are left untouched, so the script can be re-run.
"""

from __future__ import annotations

import asyncio
import sys
from datetime import date

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from grant_payroll.calculators.rule_tables import (
    DEFAULT_BENEFIT_SETTINGS,
    THAI_2025_BRACKETS,
    THAI_2025_TAX_SETTINGS,
    validate_brackets,
)
from grant_payroll.config import get_settings
from grant_payroll.database import get_session
from grant_payroll.models import BenefitSetting, Grant, TaxBracket, TaxSetting

HUB_GRANT_NAMES = {
    "SMRU": "SMRU Other Fund",
    "BHF": "BHF General Fund",
}


async def seed_tax_brackets(session: AsyncSession, year: int) -> int:
    """Create the progressive brackets for a year."""
    result = await session.execute(
        select(TaxBracket.tax_bracket_id).where(TaxBracket.effective_year == year)
    )
    if result.first() is not None:
        print(f"Tax brackets for {year} already exist, skipping...")
        return 0

    validate_brackets(THAI_2025_BRACKETS, year)
    for row in THAI_2025_BRACKETS:
        upper = f"{row.max_income:,.0f}" if row.max_income is not None else "and above"
        session.add(
            TaxBracket(
                min_income=row.min_income,
                max_income=row.max_income,
                tax_rate=row.rate,
                base_tax=row.base_tax,
                bracket_order=row.order,
                effective_year=year,
                description=f"{row.min_income:,.0f} - {upper} at {row.rate}%",
            )
        )
    await session.flush()
    print(f"Created {len(THAI_2025_BRACKETS)} tax brackets for {year}")
    return len(THAI_2025_BRACKETS)


async def seed_tax_settings(session: AsyncSession, year: int) -> int:
    """Create deductions, allowances, rates, and limits for a year."""
    result = await session.execute(
        select(TaxSetting.setting_key).where(TaxSetting.effective_year == year)
    )
    existing = set(result.scalars().all())

    created = 0
    for key, (value, setting_type) in THAI_2025_TAX_SETTINGS.items():
        if key in existing:
            continue
        session.add(
            TaxSetting(
                setting_key=key,
                setting_value=value,
                setting_type=setting_type,
                effective_year=year,
            )
        )
        created += 1
    await session.flush()
    print(f"Created {created} tax settings for {year}")
    return created


async def seed_benefit_settings(session: AsyncSession, effective_date: date) -> int:
    """Create the health welfare tiers if absent."""
    result = await session.execute(select(BenefitSetting.setting_key))
    existing = set(result.scalars().all())

    created = 0
    for key, (value, setting_type) in DEFAULT_BENEFIT_SETTINGS.items():
        if key in existing:
            continue
        session.add(
            BenefitSetting(
                setting_key=key,
                setting_value=value,
                setting_type=setting_type,
                effective_date=effective_date,
            )
        )
        created += 1
    await session.flush()
    print(f"Created {created} benefit settings")
    return created


async def seed_hub_grants(session: AsyncSession) -> int:
    """Create the hub grant of each organization from HUB_GRANT_CODES."""
    created = 0
    for organization, code in get_settings().hub_grant_codes.items():
        result = await session.execute(select(Grant.grant_id).where(Grant.code == code))
        if result.first() is not None:
            continue
        session.add(
            Grant(
                code=code,
                name=HUB_GRANT_NAMES.get(organization, f"{organization} hub grant"),
                organization=organization,
                description="Hub grant for inter-organization advances",
            )
        )
        print(f"Created hub grant {code} for {organization}")
        created += 1
    await session.flush()
    return created


async def main(year: int) -> None:
    """Run seed script."""
    print(f"Seeding payroll configuration for {year}...")

    async with get_session() as session:
        await seed_tax_brackets(session, year)
        await seed_tax_settings(session, year)
        await seed_benefit_settings(session, date(year, 1, 1))
        await seed_hub_grants(session)

    print("\nDone! Payroll configuration seeded successfully.")


if __name__ == "__main__":
    asyncio.run(main(int(sys.argv[1]) if len(sys.argv) > 1 else date.today().year))
