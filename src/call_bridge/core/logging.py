"""structlog configuration.

JSON lines in production, a console renderer in development. Every
entry carries the process instance id so logs from several workers can
be told apart when bridge claims move between them.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog


# Libraries that log every request or statement at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "aiosqlite")


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    instance_id: str | None = None,
) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        level: Log level name
        json_output: Render JSON lines instead of console output
        instance_id: Process identity stamped on every entry
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, numeric_level))

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if instance_id:
        processors.append(_InstanceIdAdder(instance_id))

    if json_output:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


class _InstanceIdAdder:
    """Processor stamping the process identity on every entry."""

    def __init__(self, instance_id: str) -> None:
        self.instance_id = instance_id

    def __call__(self, logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        event_dict.setdefault("instance_id", self.instance_id)
        return event_dict
