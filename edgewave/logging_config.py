"""Настройка loguru для EdgeWave."""

from __future__ import annotations

import logging
import sys

from loguru import logger

# библиотеки, которые пишут через stdlib logging
_FORWARDED = ("uvicorn", "uvicorn.error", "uvicorn.access", "aiohttp.client", "sqlalchemy.engine")


class _ToLoguru(logging.Handler):
    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        logger.opt(depth=6, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(json: bool = False, level: str = "DEBUG") -> None:
    """Один sink в stdout: цветной текст для dev, JSON-строки (serialize) для prod."""

    logger.remove()
    logger.add(
        sys.stdout,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {name}:{line} | {message}",
        level=level,
        colorize=not json,
        serialize=json,
        backtrace=False,
        enqueue=True,
    )
    for name in _FORWARDED:
        std = logging.getLogger(name)
        std.handlers = [_ToLoguru()]
        std.propagate = False


__all__ = ["setup_logging"]
