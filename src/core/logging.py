"""
Structured logging for the report cache.

Two line formats, chosen by ``LOG_FORMAT``:
  text  -- ``time | LEVEL | logger | [context] message``
  json  -- one JSON object per line (for log shippers)
"""
from __future__ import annotations

import json
import logging
import sys

from src.core.config import get_settings

_TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | [%(cache_context)s] %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class _ContextFilter(logging.Filter):
    """Stamps every record with the active cache context name."""

    def __init__(self, context: str):
        super().__init__()
        self.context = context

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "cache_context"):
            record.cache_context = self.context
        return True


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, _DATE_FORMAT),
            "level": record.levelname,
            "logger": record.name,
            "context": getattr(record, "cache_context", ""),
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def get_logger(name: str) -> logging.Logger:
    settings = get_settings()
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        if settings.log_format.lower() == "json":
            handler.setFormatter(_JsonFormatter())
        else:
            handler.setFormatter(logging.Formatter(_TEXT_FORMAT, datefmt=_DATE_FORMAT))
        handler.addFilter(_ContextFilter(settings.cache_context))
        logger.addHandler(handler)
    logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    return logger
