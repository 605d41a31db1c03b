"""Database engine, sessions, and advisory locks for bulk runs."""

from __future__ import annotations

import hashlib
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, AsyncGenerator

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from grant_payroll.config import Settings, get_settings

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine


def engine_options(database_url: str) -> dict[str, Any]:
    """Pool options for a URL; SQLite picks its own pool."""
    if make_url(database_url).get_backend_name() == "sqlite":
        return {}
    return {"pool_pre_ping": True, "pool_size": 10, "max_overflow": 20}


def create_engine_for(settings: Settings) -> AsyncEngine:
    return create_async_engine(
        settings.database_url,
        echo=False,
        **engine_options(settings.database_url),
    )


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Sessions keep loaded attributes after commit; batch results are read after flushing."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_db(settings: Settings | None = None) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Create the process-wide engine and session factory on first use."""
    global _engine, _session_factory
    if _engine is None or _session_factory is None:
        _engine = create_engine_for(settings or get_settings())
        _session_factory = make_session_factory(_engine)
    return _engine, _session_factory


async def dispose_db() -> None:
    """Dispose the process-wide engine (application shutdown)."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


@asynccontextmanager
async def get_session(
    factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncGenerator[AsyncSession, None]:
    """Session that commits on success and rolls back on error."""
    if factory is None:
        _, factory = init_db()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def advisory_lock_id(lock_key: str) -> int:
    """Signed 64-bit id for ``pg_advisory_lock`` derived from a text key."""
    digest = hashlib.blake2b(lock_key.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


@asynccontextmanager
async def hold_batch_lock(engine: AsyncEngine, lock_key: str) -> AsyncGenerator[bool, None]:
    """Hold the advisory lock for a bulk payroll run on its own connection.

    Session-level advisory locks belong to one connection, so the lock is
    taken and released on a connection kept out of the pool for the whole
    run. Yields False when another run holds it. Databases without advisory
    locks always yield True.
    """
    if engine.dialect.name != "postgresql":
        yield True
        return

    lock_id = advisory_lock_id(lock_key)
    async with engine.connect() as conn:
        result = await conn.execute(text("SELECT pg_try_advisory_lock(:lock_id)"), {"lock_id": lock_id})
        acquired = bool(result.scalar())
        await conn.commit()
        try:
            yield acquired
        finally:
            if acquired:
                await conn.execute(text("SELECT pg_advisory_unlock(:lock_id)"), {"lock_id": lock_id})
                await conn.commit()
