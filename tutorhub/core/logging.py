from __future__ import annotations

import logging.config

from tutorhub.core.config import settings


def configure_logging(level: str | None = None) -> None:
    resolved = (level or settings.log_level or "INFO").strip().upper()
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
            },
            "root": {"level": resolved, "handlers": ["console"]},
            "loggers": {
                # SQL echo stays off unless explicitly raised.
                "sqlalchemy.engine": {"level": "WARNING"},
                "httpx": {"level": "WARNING"},
            },
        }
    )
