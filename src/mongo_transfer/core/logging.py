"""
Logging utilities for the transfer module.

Console output is human-readable; the log file receives JSON lines. While
progress bars are on screen, console records can be held back and flushed
afterwards as one "Operation Logs" block.
"""

import json
import logging
import logging.handlers
import sys
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

PACKAGE_LOGGER = "mongo_transfer"

_CONTEXT_FIELDS = ("unit", "run_id", "action")


class StructuredFormatter(logging.Formatter):
    """
    Formatter that outputs JSON-structured log lines.

    Each log line includes:
    - Standard log fields (timestamp, level, message, logger)
    - Context fields if present (unit, run_id, action)
    """

    def __init__(self, include_timestamp: bool = True):
        super().__init__()
        self.include_timestamp = include_timestamp

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as JSON."""
        log_entry = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if self.include_timestamp:
            log_entry["timestamp"] = datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat()

        for field in _CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Formatter that outputs human-readable log lines with unit context.

    Format: TIMESTAMP [LEVEL] LOGGER - MESSAGE [unit=X run_id=Y]
    """

    def __init__(self, include_timestamp: bool = True):
        if include_timestamp:
            fmt = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
        else:
            fmt = "[%(levelname)s] %(name)s - %(message)s"
        super().__init__(fmt, datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)

        context_parts = []
        for field in ("unit", "run_id"):
            value = getattr(record, field, None)
            if value is not None:
                context_parts.append(f"{field}={value}")

        if context_parts:
            return f"{base} [{' '.join(context_parts)}]"
        return base


class UnitContextFilter(logging.Filter):
    """Copies the active UnitContext onto every record passing the handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in UnitContext.get_current().items():
            if getattr(record, key, None) is None:
                setattr(record, key, value)
        return True


class UnitContext:
    """
    Context manager for tagging log records with the unit being processed.

    Example:
        >>> with UnitContext(unit="users.json", run_id="abc"):
        ...     logger.info("Decoding")  # Record carries unit and run_id
    """

    _local = threading.local()

    def __init__(self, unit: Optional[str] = None, run_id: Optional[str] = None, **extra: Any):
        self.context = {"unit": unit, "run_id": run_id, **extra}
        self.context = {k: v for k, v in self.context.items() if v is not None}
        self._previous: Optional["UnitContext"] = None

    def __enter__(self) -> "UnitContext":
        self._previous = getattr(UnitContext._local, "current", None)
        UnitContext._local.current = self
        return self

    def __exit__(self, *args) -> None:
        UnitContext._local.current = self._previous

    @classmethod
    def get_current(cls) -> Dict[str, Any]:
        """Get the current unit context."""
        current = getattr(cls._local, "current", None)
        if current is None:
            return {}
        return current.context.copy()


_buffer_handler: Optional[logging.handlers.MemoryHandler] = None


def parse_level(level: Any) -> int:
    """Accept a logging level as int or name ("debug", "INFO", ...)."""
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).upper())
    if isinstance(value, int):
        return value
    return logging.INFO


def configure_logging(
    level: Any = logging.INFO,
    log_file: Optional[str] = None,
    structured: bool = False,
    buffer_console: bool = False,
) -> logging.Logger:
    """
    Configure logging for the mongo_transfer package.

    Replaces any handlers previously installed by this function, so it can
    be called again (e.g. once per CLI invocation in tests).

    Args:
        level: Logging level for the package (int or level name)
        log_file: Optional path of a JSON-lines log file
        structured: If True, console output is JSON as well
        buffer_console: Hold console records until flush_logs() is called

    Returns:
        The package logger
    """
    global _buffer_handler

    level = parse_level(level)
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(level)
    package_logger.propagate = False

    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    _buffer_handler = None

    context_filter = UnitContextFilter()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(level)
    if structured:
        console.setFormatter(StructuredFormatter())
    else:
        console.setFormatter(HumanReadableFormatter())

    if buffer_console:
        # Held until flush_logs(); capacity only bounds memory.
        _buffer_handler = logging.handlers.MemoryHandler(
            capacity=100_000,
            flushLevel=logging.CRITICAL + 1,
            target=console,
            flushOnClose=True,
        )
        _buffer_handler.addFilter(context_filter)
        package_logger.addHandler(_buffer_handler)
    else:
        console.addFilter(context_filter)
        package_logger.addHandler(console)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(StructuredFormatter())
        file_handler.addFilter(context_filter)
        package_logger.addHandler(file_handler)

    return package_logger


def flush_logs() -> None:
    """Emit console records held back by configure_logging(buffer_console=True)."""
    if _buffer_handler is None or not _buffer_handler.buffer:
        return

    print("\n--- Operation Logs ---", file=sys.stderr)
    _buffer_handler.flush()
    print("----------------------\n", file=sys.stderr)

