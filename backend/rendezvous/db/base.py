"""Declarative base, engine construction and the process-wide session factory.

The lifespan calls ``init_db`` once; services receive the session factory by
injection. Tests build their own engine through ``create_engine`` and
``create_tables`` against a throwaway SQLite file.
"""

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from rendezvous.core.config import get_settings


class Base(DeclarativeBase):
    pass


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def create_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Async engine for ``url``.

    SQLite connections are not pooled: aiosqlite binds each connection to the
    event loop that opened it.
    """
    if make_url(url).get_backend_name() == "sqlite":
        return create_async_engine(url, echo=echo, poolclass=NullPool)
    return create_async_engine(url, echo=echo, pool_pre_ping=True, pool_size=10, max_overflow=5)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Appointments are read back after commit to build API responses and pushes
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def create_tables(engine: AsyncEngine) -> None:
    import rendezvous.db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db(url: str | None = None) -> None:
    """Create the shared engine and session factory, then make sure every table exists."""
    global _engine, _session_factory

    if _engine is not None:
        return

    settings = get_settings()
    _engine = create_engine(url or settings.database_url, echo=settings.debug)
    _session_factory = create_session_factory(_engine)
    await create_tables(_engine)


async def close_db() -> None:
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the configured session factory.

    Raises RuntimeError if init_db() has not been called.
    """
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _session_factory
