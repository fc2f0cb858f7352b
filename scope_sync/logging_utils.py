"""
Structured JSON logging for the sync layer.

Sync components log through module loggers under the `scope_sync`
namespace. Hosts that ship logs to a collector can switch those loggers
to single-line JSON with `configure_structured_logging`; the scope and
key a message concerns travel as top-level fields.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import IO, Any

ROOT_LOGGER = "scope_sync"

# Fields every sync log line may carry, emitted right after the message
CONTEXT_FIELDS = ("scope", "key", "operation")

_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message"}


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


class StructuredJsonFormatter(logging.Formatter):
    """
    Formats records as one JSON object per line.

    Output fields:
    - timestamp: ISO 8601 in UTC
    - level, logger, message
    - scope / key / operation when the record carries them
    - any other `extra` values, stringified if not JSON serializable
    - exception: formatted traceback, if any
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for name in CONTEXT_FIELDS:
            if getattr(record, name, None) is not None:
                entry[name] = _jsonable(getattr(record, name))

        for name, value in record.__dict__.items():
            if name in _RECORD_ATTRS or name in entry or name.startswith("_"):
                continue
            entry[name] = _jsonable(value)

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def configure_structured_logging(
    level: int = logging.INFO,
    logger_name: str | None = ROOT_LOGGER,
    stream: IO[str] | None = None,
) -> logging.Logger:
    """
    Send a logger's output to a stream as structured JSON.

    Calling it again replaces the previous handlers instead of stacking
    new ones.

    Args:
        level: Logging level (default: INFO)
        logger_name: Logger to configure (default: the scope_sync package logger)
        stream: Output stream (default: stdout)

    Returns:
        The configured logger
    """
    logger = logging.getLogger(logger_name)
    logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(StructuredJsonFormatter())
    logger.addHandler(handler)
    logger.setLevel(level)
    return logger


def get_sync_logger(name: str) -> logging.Logger:
    """Logger named `scope_sync.<name>`, e.g. get_sync_logger("engine")."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


class ScopeLoggerAdapter(logging.LoggerAdapter):
    """
    Adds the scope (and optionally a key) to every record it logs.

    Example:
        >>> log = ScopeLoggerAdapter(logger, {"scope": "todonna"})
        >>> log.for_key("a1").warning("update failed")
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        # Call-site extra wins over the adapter's context
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs

    def for_key(self, key: str) -> "ScopeLoggerAdapter":
        return ScopeLoggerAdapter(self.logger, {**self.extra, "key": key})
