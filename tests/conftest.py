"""Pytest fixtures for grant payroll tests."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import AsyncGenerator, Awaitable, Callable

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from grant_payroll.calculators.rule_tables import ConfigSnapshot
from grant_payroll.config import Settings
from grant_payroll.database import make_session_factory
from grant_payroll.models import (
    Base,
    Employee,
    EmployeeChild,
    EmployeeFundingAllocation,
    Employment,
    Grant,
    GrantItem,
)
from scripts.seed_tax_rules import (
    seed_benefit_settings,
    seed_hub_grants,
    seed_tax_brackets,
    seed_tax_settings,
)

TAX_YEAR = 2025


@pytest.fixture
async def engine(tmp_path):
    """Create a file-backed SQLite engine per test.

    A file database gives each session its own connection, like Postgres.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'grant_payroll.db'}",
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)


@pytest.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def test_settings() -> Settings:
    """Settings with small sub-batches so flushing and broadcasting are visible."""
    return Settings(
        database_url="sqlite+aiosqlite://",
        database_url_sync="sqlite://",
        host="127.0.0.1",
        port=8000,
        debug=False,
        log_level="INFO",
        secret_key="test-secret",
        encryption_key=None,
        batch_flush_size=2,
        batch_broadcast_every=2,
        batch_timeout_seconds=30,
    )


@pytest.fixture
def config_snapshot() -> ConfigSnapshot:
    """The built-in 2025 tables, without a database."""
    return ConfigSnapshot.thai_2025()


@pytest.fixture
async def seeded_config(session: AsyncSession) -> AsyncSession:
    """Tax brackets, tax settings, benefit settings, and hub grants for 2025."""
    await seed_tax_brackets(session, TAX_YEAR)
    await seed_tax_settings(session, TAX_YEAR)
    await seed_benefit_settings(session, date(TAX_YEAR, 1, 1))
    await seed_hub_grants(session)
    await session.commit()
    return session


@pytest.fixture
async def test_grants(session: AsyncSession) -> dict[str, GrantItem]:
    """One research grant per organization, each with one budget line."""
    smru = Grant(code="GR-SMRU-01", name="Malaria Elimination", organization="SMRU")
    bhf = Grant(code="GR-BHF-01", name="Border Health Outreach", organization="BHF")
    session.add_all([smru, bhf])
    await session.flush()

    smru_item = GrantItem(
        grant_id=smru.grant_id,
        grant_position="Research Nurse",
        budgetline_code="BL-001",
        grant_salary=Decimal("30000"),
    )
    bhf_item = GrantItem(
        grant_id=bhf.grant_id,
        grant_position="Field Coordinator",
        budgetline_code="BL-101",
        grant_salary=Decimal("30000"),
    )
    session.add_all([smru_item, bhf_item])
    await session.commit()
    return {"SMRU": smru_item, "BHF": bhf_item}


MakeEmployment = Callable[..., Awaitable[Employment]]


@pytest.fixture
def make_employment(session: AsyncSession) -> MakeEmployment:
    """Factory: an employee, their employment, and funding allocations.

    ``allocations`` is a list of ``(fte, grant_item_id_or_None)``; every
    allocation starts with the employment.
    """
    counter = {"n": 0}

    async def _make(
        organization: str = "SMRU",
        status: str = "Local ID",
        salary: Decimal = Decimal("30000"),
        start_date: date = date(2024, 1, 1),
        end_date: date | None = None,
        allocations: list[tuple[Decimal, object]] | None = None,
        first_name: str | None = None,
        children: list[date] | None = None,
        **employment_fields,
    ) -> Employment:
        counter["n"] += 1
        n = counter["n"]
        employee = Employee(
            organization=organization,
            staff_id=f"{organization}-{n:04d}",
            first_name_en=first_name or f"Staff{n}",
            last_name_en="Tester",
            status=status,
        )
        session.add(employee)
        await session.flush()

        for born in children or []:
            session.add(EmployeeChild(employee_id=employee.employee_id, name="Child", date_of_birth=born))

        employment = Employment(
            employee_id=employee.employee_id,
            start_date=start_date,
            end_date=end_date,
            pass_probation_salary=salary,
            department=employment_fields.pop("department", "Research"),
            position=employment_fields.pop("position", "Nurse"),
            **employment_fields,
        )
        session.add(employment)
        await session.flush()

        if allocations is None:
            allocations = [(Decimal("1"), None)]
        for fte, grant_item_id in allocations:
            session.add(
                EmployeeFundingAllocation(
                    employee_id=employee.employee_id,
                    employment_id=employment.employment_id,
                    grant_item_id=grant_item_id,
                    fte=fte,
                    allocated_amount=(salary * fte).quantize(Decimal("0.01")),
                    salary_type="pass_probation_salary",
                    status="active",
                    start_date=start_date,
                )
            )

        await session.commit()
        return employment

    return _make
