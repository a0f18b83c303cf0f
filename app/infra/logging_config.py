"""Process-wide logging setup shared by the API and Celery workers."""

from __future__ import annotations

import logging
import logging.config
from typing import Optional

from app.config import get_settings

DEFAULT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
ROOT_LOGGER_NAME = "parley"


class LoggingConfig:
    """Configure logging once per process; later instantiations are no-ops."""

    _configured = False

    def __init__(self, level: Optional[str] = None) -> None:
        if LoggingConfig._configured:
            return
        level = (level or get_settings().log_level or "INFO").upper()
        logging.config.dictConfig(
            {
                "version": 1,
                "disable_existing_loggers": False,
                "formatters": {"default": {"format": DEFAULT_FORMAT}},
                "handlers": {
                    "console": {
                        "class": "logging.StreamHandler",
                        "formatter": "default",
                    }
                },
                "loggers": {
                    "app": {"level": level},
                    ROOT_LOGGER_NAME: {"level": level},
                    "sqlalchemy.engine": {"level": "WARNING"},
                },
                "root": {"level": level, "handlers": ["console"]},
            }
        )
        LoggingConfig._configured = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a logger namespaced under the service root logger."""
    if not name:
        return logging.getLogger(ROOT_LOGGER_NAME)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
