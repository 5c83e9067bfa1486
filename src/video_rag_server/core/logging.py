"""
Logging Setup

Configures the standard library logging tree for the service. All modules
log through named loggers under the ``rag`` prefix; this module only decides
where records go and how they look.
"""

from __future__ import annotations

import logging.config


LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str = "INFO") -> None:
    """
    Install a single stream handler for the ``rag`` logger tree.

    Parameters
    ----------
    level : str
        Minimum level name (``DEBUG``, ``INFO``, ...).
    """
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {"format": LOG_FORMAT, "datefmt": DATE_FORMAT},
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                },
            },
            "loggers": {
                "rag": {
                    "handlers": ["console"],
                    "level": level.upper(),
                    "propagate": True,
                },
            },
        }
    )
