"""Integration test fixtures: the FastAPI app over the per-test database."""

from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from grant_payroll.api.app import create_app
from grant_payroll.api.dependencies import (
    get_db_session,
    get_progress_emitter,
    get_session_factory,
)
from grant_payroll.config import get_settings
from grant_payroll.events.progress import ProgressEmitter


@pytest.fixture
def progress_events() -> list:
    """Progress events broadcast during a test."""
    return []


@pytest.fixture
def app(session_factory, test_settings, progress_events):
    """App wired to the test database, settings, and a recording emitter."""
    app = create_app()
    emitter = ProgressEmitter()
    emitter.subscribe(progress_events.append)

    async def override_db_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_db_session] = override_db_session
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_progress_emitter] = lambda: emitter
    return app


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for API testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
