"""Log rendering for QualityPulse.

Every module logs through ``logging.getLogger(__name__)``; this module only
decides how records under the ``qualitypulse`` logger are rendered. JSON
lines suit CI log aggregation, the plain format suits local runs. Fields
bound with ``log_context`` (the run id during ``generate_report``) travel
with every record in both formats.

Example:
    >>> config = load_config("qualitypulse.yaml")
    >>> config.configure_logging()
    >>> with log_context(run_id="2026-10-18T10:00:00"):
    ...     tracker.generate_report(results)
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import IO, Any

_context_fields: ContextVar[dict[str, Any] | None] = ContextVar("qualitypulse_log_context", default=None)

ROOT_LOGGER_NAME = "qualitypulse"

LEVEL_COLORS = {
    "DEBUG": "\033[36m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[35m",
}
RESET = "\033[0m"


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, with the bound run context under ``context``."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = get_context()
        if context:
            log_data["context"] = context

        if record.exc_info and record.exc_info[0] is not None:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        return json.dumps(log_data, default=str, ensure_ascii=False)


class HumanReadableFormatter(logging.Formatter):
    """``time LEVEL [logger] message | context={...}`` lines."""

    def __init__(self, use_colors: bool = False) -> None:
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")
        level = f"{record.levelname:8}"
        if self.use_colors:
            level = f"{LEVEL_COLORS.get(record.levelname, '')}{level}{RESET}"

        line = f"{timestamp} {level} [{record.name}] {record.getMessage()}"

        context = get_context()
        if context:
            line += f" | context={json.dumps(context, default=str)}"
        if record.exc_info:
            line += f"\n{self.formatException(record.exc_info)}"
        return line


def configure_logging(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: IO[str] | None = None,
) -> logging.Logger:
    """Install a single handler on the ``qualitypulse`` logger.

    Calling it again replaces the previous handler.

    Args:
        level: Minimum log level, as a number or a name.
        json_format: Emit JSON lines instead of plain text.
        stream: Output stream, ``sys.stderr`` by default.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    stream = stream or sys.stderr
    handler = logging.StreamHandler(stream)
    handler.setLevel(level)
    if json_format:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(HumanReadableFormatter(use_colors=hasattr(stream, "isatty") and stream.isatty()))

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.handlers.clear()
    root_logger.propagate = False
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
    return root_logger


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Bind ``fields`` to every record emitted inside the block."""
    token = _context_fields.set({**get_context(), **fields})
    try:
        yield
    finally:
        _context_fields.reset(token)


def get_context() -> dict[str, Any]:
    return dict(_context_fields.get() or {})
