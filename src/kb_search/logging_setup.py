"""
Logging configuration for command-line use.

Library modules only create ``logging.getLogger(__name__)`` loggers; the
application decides how records are rendered by calling :func:`setup_logging`.
"""

from __future__ import annotations

import logging
import logging.config


def setup_logging(level: str = "INFO") -> None:
    resolved = level.upper()
    debug_mode = resolved == "DEBUG"

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "rich": {"format": "%(name)s: %(message)s", "datefmt": "[%X]"},
            },
            "handlers": {
                "console": {
                    "class": "rich.logging.RichHandler",
                    "formatter": "rich",
                    "level": resolved,
                    "rich_tracebacks": debug_mode,
                    "show_path": False,
                },
            },
            "root": {"handlers": ["console"], "level": resolved},
        }
    )

    # HTTP client request logs are noise unless debugging.
    for noisy in ("httpx", "httpcore", "openai"):
        logging.getLogger(noisy).setLevel(logging.DEBUG if debug_mode else logging.WARNING)
