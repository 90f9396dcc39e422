"""Command line entrypoint serving the ledger API with uvicorn."""
from __future__ import annotations

import logging

import uvicorn

from .config import Settings, get_settings
from .logging_config import configure_logging

logger = logging.getLogger(__name__)


def run(settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    configure_logging(settings)
    logger.info(
        "Serving %s on %s:%s (%s)", settings.app_name, settings.host, settings.port, settings.environment
    )
    uvicorn.run(
        "stock_ledger.api:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        # dictConfig from configure_logging already owns the handlers.
        log_config=None,
    )


if __name__ == "__main__":
    run()
