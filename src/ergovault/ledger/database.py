"""Async engine and unit-of-work helpers for the wallet ledger.

One engine per process, built on first use from ``Settings.database_url``.
File-backed SQLite databases get their parent directory created, because the
default URL points into ``./data``.
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Optional

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ergovault.config import Settings, get_settings
from ergovault.ledger.models import Base

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def normalize_database_url(url: str) -> str:
    """Use the aiosqlite driver for plain ``sqlite://`` URLs."""
    parsed = make_url(url)
    if parsed.drivername == "sqlite":
        parsed = parsed.set(drivername="sqlite+aiosqlite")
    return parsed.render_as_string(hide_password=False)


def prepare_sqlite_path(url: str) -> Optional[Path]:
    """Create the directory of a file-backed SQLite database.

    Returns:
        The database file path, or None for in-memory and non-SQLite URLs
    """
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return None
    if not parsed.database or parsed.database == ":memory:":
        return None

    path = Path(parsed.database)
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def build_engine(settings: Settings) -> AsyncEngine:
    url = normalize_database_url(settings.database_url)
    path = prepare_sqlite_path(url)
    if path is not None:
        logger.info(f"Using SQLite database at {path}")
    return create_async_engine(url, echo=settings.debug and not settings.is_production)


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        _engine = build_engine(get_settings())
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the process engine.

    Rows stay readable after commit so repositories can hand them out.
    """
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_engine(), expire_on_commit=False, autoflush=False
        )
    return _session_factory


@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Open a session that commits on success and rolls back on error."""
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Unit of work on the process engine."""
    async with session_scope(get_session_factory()) as session:
        yield session


async def init_db() -> None:
    """Create any missing tables."""
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.debug(f"Ensured tables: {', '.join(sorted(Base.metadata.tables))}")


async def close_db() -> None:
    """Dispose the process engine; the next call to get_engine builds a new one."""
    global _engine, _session_factory
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_factory = None
