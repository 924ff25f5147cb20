"""devtrack logging configuration.

All modules log through structlog loggers obtained with
``get_logger(__name__)`` and use %-style positional arguments. The terminal
belongs to the UI, so records are rendered into a log file (default:
``~/.devtrack/logs/devtrack.log``).
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

import structlog

from devtrack.paths import DEFAULT_LOG_PATH


_SHARED_PROCESSORS: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
]


def _configure_structlog() -> None:
    structlog.configure(
        processors=[*_SHARED_PROCESSORS, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


# Records stay silent until setup_logging() attaches the file handler.
_configure_structlog()
logging.getLogger("devtrack").addHandler(logging.NullHandler())


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a named structlog logger bound to the stdlib logging tree."""
    return structlog.stdlib.get_logger(name)


def setup_logging(level: Optional[str] = None, log_file: Optional[Path] = None) -> None:
    """Configure devtrack logging.

    Args:
        level: Optional override for `DEVTRACK_LOG_LEVEL` (default INFO).
        log_file: Destination file; parent directories are created.
    """
    resolved_level = (level or os.getenv("DEVTRACK_LOG_LEVEL") or "INFO").upper()
    numeric_level = logging.getLevelName(resolved_level)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    target = log_file or DEFAULT_LOG_PATH
    target.parent.mkdir(parents=True, exist_ok=True)

    _configure_structlog()

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_SHARED_PROCESSORS,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
    )

    handler = logging.FileHandler(target, encoding="utf-8")
    handler.setFormatter(formatter)

    root = logging.getLogger("devtrack")
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric_level)
    root.propagate = False

    root.debug("Logging configured: level=%s file=%s", resolved_level, target)
