from __future__ import annotations

from logging.config import dictConfig
from typing import Optional, Union

_configured = False


def configure_logging(level: Optional[Union[str, int]] = None) -> None:
    """Install the process-wide stream handler once."""
    global _configured
    if _configured:
        return

    log_level = level if level is not None else "INFO"

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                    "datefmt": "%Y-%m-%dT%H:%M:%S",
                }
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "level": log_level,
                    "formatter": "default",
                }
            },
            "root": {"handlers": ["default"], "level": log_level},
        }
    )

    _configured = True
