"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from functools import lru_cache
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from grant_payroll.config import Settings, get_settings
from grant_payroll.database import init_db
from grant_payroll.events.progress import ProgressEmitter


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory used by request handlers and background runs."""
    _, factory = init_db()
    return factory


async def get_db_session(
    factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
) -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async with factory() as session:
        try:
            yield session
        finally:
            await session.close()


@lru_cache(maxsize=1)
def get_progress_emitter() -> ProgressEmitter:
    """Process-wide progress emitter."""
    return ProgressEmitter()


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
SessionFactory = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]
AppSettings = Annotated[Settings, Depends(get_settings)]
Emitter = Annotated[ProgressEmitter, Depends(get_progress_emitter)]
