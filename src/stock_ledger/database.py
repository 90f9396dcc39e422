"""Engine and session plumbing for the ledger database."""
from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from .config import Settings, get_settings


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""


def engine_options(settings: Settings) -> dict[str, Any]:
    """Keyword arguments for :func:`create_async_engine`.

    SQLite serializes writers with a file lock; concurrent ledger writes wait
    up to ``sqlite_busy_timeout`` seconds for it instead of failing at once.
    """

    options: dict[str, Any] = {"echo": settings.echo_sql}
    if settings.database_url.startswith("sqlite"):
        options["connect_args"] = {"timeout": settings.sqlite_busy_timeout}
    else:
        options["pool_pre_ping"] = True
    return options


def create_engine(settings: Settings | None = None) -> AsyncEngine:
    settings = settings or get_settings()
    return create_async_engine(settings.database_url, **engine_options(settings))


def create_session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Writers keep reading committed rows after commit.
    return async_sessionmaker(bind=db_engine, expire_on_commit=False)


engine = create_engine()
SessionFactory = create_session_factory(engine)


async def get_session() -> AsyncIterator[AsyncSession]:
    async with SessionFactory() as session:
        yield session


__all__ = [
    "Base",
    "engine",
    "SessionFactory",
    "create_engine",
    "create_session_factory",
    "engine_options",
    "get_session",
]
