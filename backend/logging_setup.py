"""Logging for the dashboard backend.

Modules log through ``get_logger(__name__)`` under the ``backend`` logger.
The API process calls ``configure_logging()`` once at import time; the level
comes from ``DASHBOARD_LOG_LEVEL`` (a level name such as ``DEBUG``).
"""

from __future__ import annotations

import logging
import os

LOGGER_NAME = "backend"
LOG_LEVEL_ENV = "DASHBOARD_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


def resolve_level(name: str | None) -> int:
    level = logging.getLevelName((name or "").strip().upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging() -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(resolve_level(os.getenv(LOG_LEVEL_ENV)))
    if not any(isinstance(handler, logging.StreamHandler) for handler in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    logger.propagate = False
    return logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
