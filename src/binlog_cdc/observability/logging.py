"""structlog configuration for the CLI and long-running processes."""

from __future__ import annotations

import logging
from typing import Any

import structlog


def configure_logging(*, json: bool = False, level: str = "INFO") -> None:
    """Configure structlog processors; JSON lines when *json* is set."""
    logging.basicConfig(format="%(message)s", level=level.upper())
    processors: list[Any] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if json:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
