"""Module executed when running ``python -m shelfmirror``."""

from __future__ import annotations

import logging

import uvicorn

from app.config import settings

logger = logging.getLogger(__name__)


def main() -> None:
    """Serve the mirror API, creating the data directory first."""

    settings.data_dir.mkdir(parents=True, exist_ok=True)
    logger.info("Serving %s from %s", settings.app_name, settings.data_dir.resolve())
    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":  # pragma: no cover - runtime entrypoint
    main()
