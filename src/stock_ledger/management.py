"""Utility helpers for administrative tasks."""
from __future__ import annotations

import asyncio
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from . import crud, schemas
from .config import Settings, get_settings
from .database import Base, create_session_factory, engine
from .exceptions import ConfigurationError
from .ledger import WarehouseType
from .logging_config import configure_logging

logger = logging.getLogger(__name__)


async def init_database(
    db_engine: AsyncEngine | None = None, settings: Settings | None = None
) -> None:
    """Create database tables and make sure the default location exists."""

    engine_to_use = db_engine or engine
    settings = settings or get_settings()
    async with engine_to_use.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = create_session_factory(engine_to_use)
    async with session_factory() as session:
        try:
            await crud.get_default_location(session, settings.default_location_name)
        except ConfigurationError:
            await crud.create_warehouse(
                session,
                schemas.WarehouseCreate(
                    name=settings.default_location_name, type=WarehouseType.STORE_FRONT
                ),
            )
            await session.commit()
            logger.info("Created default location %r", settings.default_location_name)


def cli_init_database() -> None:
    """CLI wrapper executed from :mod:`python -m`."""

    settings = get_settings()
    configure_logging(settings)
    try:
        asyncio.run(init_database(settings=settings))
    except SQLAlchemyError:
        logger.exception("Database initialisation failed for %s", settings.database_url)
        raise


if __name__ == "__main__":
    cli_init_database()
