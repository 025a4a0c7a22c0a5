"""Entry point for EdgeWave Gateway."""

from __future__ import annotations

import uvicorn
from loguru import logger

from config.settings import get_settings
from .logging_config import setup_logging


def main() -> None:
    settings = get_settings()
    setup_logging(json=settings.log_json, level="INFO" if settings.is_production else "DEBUG")
    logger.info(
        "Запуск EdgeWave на {host}:{port} ({env})",
        host=settings.web.host,
        port=settings.web.port,
        env=settings.environment,
    )
    uvicorn.run(
        "edgewave.web.app:app",
        host=settings.web.host,
        port=settings.web.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
