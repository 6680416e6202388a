"""Logging setup for riskgate.

One handler on the ``riskgate`` logger writes JSON lines or plain text,
depending on LOG_FORMAT. Module loggers are children named
``riskgate.<module>``. Structured context travels either per call in
``extra={"extra_fields": {...}}`` or through a ``ContextLogger`` bound to
fixed fields such as the instrument being replayed.
"""

import json
import logging
import sys
from collections.abc import MutableMapping
from datetime import UTC, datetime
from typing import IO, Any

from riskgate.config import get_config

ROOT_LOGGER_NAME = "riskgate"


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    fields = getattr(record, "extra_fields", None)
    return dict(fields) if isinstance(fields, dict) else {}


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_data.update(_extra_fields(record))

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class SimpleFormatter(logging.Formatter):
    """Human-readable lines with structured context appended as key=value."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = _extra_fields(record)
        if fields:
            line += " | " + " ".join(f"{k}={v}" for k, v in fields.items())
        return line


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter that stamps every record with fixed context fields.

    Per-call ``extra_fields`` are merged over the bound ones.
    """

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        fields = dict(self.extra or {})
        fields.update(extra.get("extra_fields") or {})
        extra["extra_fields"] = fields
        kwargs["extra"] = extra
        return msg, kwargs


_FORMATTERS: dict[str, type[logging.Formatter]] = {
    "json": JSONFormatter,
    "simple": SimpleFormatter,
}

_initialized = False


def setup_logging(
    level: str | None = None,
    format_type: str | None = None,
    stream: IO[str] | None = None,
) -> None:
    """Attach the riskgate handler once.

    Args:
        level: Log level name. Defaults to LOG_LEVEL.
        format_type: 'json' or 'simple'. Defaults to LOG_FORMAT; unknown
            values fall back to 'simple'.
        stream: Output stream. Defaults to stderr so that CLI output on
            stdout stays clean.
    """
    global _initialized
    if _initialized:
        return

    config = get_config()
    level = (level or config.logging.level).upper()
    format_type = (format_type or config.logging.format).lower()
    log_level = logging.getLevelName(level)
    if not isinstance(log_level, int):
        log_level = logging.INFO

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(log_level)
    handler.setFormatter(_FORMATTERS.get(format_type, SimpleFormatter)())

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    # Propagate so pytest's caplog sees records
    root_logger.propagate = True

    _initialized = True


def get_logger(name: str) -> logging.Logger:
    """Child logger ``riskgate.<name>``; sets up logging on first use."""
    setup_logging()

    if name.startswith(f"{ROOT_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def bind_logger(logger: logging.Logger, **fields: Any) -> ContextLogger:
    """Wrap ``logger`` so every record carries ``fields``."""
    return ContextLogger(logger, fields)


def reset_logging() -> None:
    """Drop the handler so the next setup_logging() reconfigures (tests)."""
    global _initialized
    _initialized = False
    logging.getLogger(ROOT_LOGGER_NAME).handlers.clear()
