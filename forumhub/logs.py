"""Process-wide structured logger with a development and a production flavour."""

from __future__ import annotations

import json
import logging
import sys
import threading

LOGGER_NAME = "forumhub"

_lock = threading.Lock()
_logger: logging.Logger | None = None
_development = False

_STANDARD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime"}


def _fields(record: logging.LogRecord) -> dict[str, object]:
    """Return the structured fields passed to a log call through ``extra``."""
    return {key: value for key, value in vars(record).items() if key not in _STANDARD_ATTRS}


class _JsonFormatter(logging.Formatter):
    """One JSON object per line, as production logs are written."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "level": record.levelname.lower(),
            "ts": record.created,
            "caller": f"{record.module}:{record.lineno}",
            "msg": record.getMessage(),
        }
        entry.update(_fields(record))
        if record.exc_info:
            entry["error"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class _ConsoleFormatter(logging.Formatter):
    """Tab-separated human-readable lines for development."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s\t%(levelname)s\t%(module)s:%(lineno)d\t%(message)s")

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        fields = _fields(record)
        if fields:
            text = f"{text}\t{json.dumps(fields, default=str)}"
        return text


def set_development_mode(dev: bool) -> None:
    """Choose the logger flavour; the shared logger is rebuilt on next use."""
    global _development, _logger
    with _lock:
        _development = dev
        _logger = None


def init_logger() -> logging.Logger:
    """Build a new logger for the current mode."""
    level = logging.DEBUG if _development else logging.INFO
    logger = logging.Logger(LOGGER_NAME, level)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_ConsoleFormatter() if _development else _JsonFormatter())
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def get_logger() -> logging.Logger:
    """Return the shared logger, building it on first use."""
    global _logger
    with _lock:
        if _logger is None:
            _logger = init_logger()
        return _logger