"""Logging setup for the API process and the maintenance scripts."""

from __future__ import annotations

import logging

from photobutler.config.settings import get_settings

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# client libraries that log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "openai", "aiosqlite", "sqlalchemy.engine")


def configure_logging(level: str | None = None) -> int:
    """Configure the root logger and quiet chatty client libraries.

    ``level`` overrides ``LOG_LEVEL``; returns the numeric level applied.
    """

    name = (level or get_settings().log_level).upper()
    numeric = logging.getLevelName(name)
    if not isinstance(numeric, int):
        numeric = logging.INFO

    logging.basicConfig(level=numeric, format=LOG_FORMAT)
    logging.getLogger().setLevel(numeric)
    library_level = max(numeric, logging.WARNING)
    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(library_level)
    return numeric
