"""Logging setup for the overlay.

Rate-limit events carry a small set of context fields (bucket, status code,
retry-after, endpoint, league) through ``extra=``. The ``structured`` text
format prints them inline; the ``json`` format emits one object per line
for log files read back by tooling.
"""

import json
import logging
import logging.config
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from overlay.app.core.config import settings

CONTEXT_FIELDS = ("endpoint", "league", "status_code", "retry_after", "bucket")

TEXT_FORMATS = {
    "text": "%(asctime)s %(levelname)-7s [%(name)s] %(message)s",
    "structured": (
        "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"
        " bucket=%(bucket)s status=%(status_code)s retry_after=%(retry_after)s"
        " endpoint=%(endpoint)s"
    ),
}

_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """One JSON object per record.

    Context fields set to None are left out; any other ``extra=`` keys are
    grouped under ``"extra"``.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (field, getattr(record, field))
            for field in CONTEXT_FIELDS
            if getattr(record, field, None) is not None
        )

        extra = {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and key not in CONTEXT_FIELDS
        }
        if extra:
            entry["extra"] = extra

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str, ensure_ascii=False)


class ContextFilter(logging.Filter):
    """Fill in missing context fields so text formats can reference them."""

    def filter(self, record: logging.LogRecord) -> bool:
        for field in CONTEXT_FIELDS:
            if not hasattr(record, field):
                setattr(record, field, None)
        return True


def get_logging_config() -> Dict[str, Any]:
    """Build a ``dictConfig`` mapping from the current settings."""
    log_format = getattr(settings, "log_format", "text").lower()
    log_level = getattr(settings, "log_level", "INFO").upper()

    if log_format == "json":
        formatter: Dict[str, Any] = {"()": "overlay.app.core.logging.JSONFormatter"}
    else:
        formatter = {"format": TEXT_FORMATS.get(log_format, TEXT_FORMATS["text"])}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"overlay": formatter},
        "filters": {"context": {"()": "overlay.app.core.logging.ContextFilter"}},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level,
                "formatter": "overlay",
                "filters": ["context"],
                "stream": sys.stdout,
            },
        },
        "loggers": {
            "overlay": {"level": log_level, "handlers": ["console"], "propagate": False},
        },
        "root": {"level": "WARNING", "handlers": ["console"]},
    }


def setup_logging() -> None:
    logging.config.dictConfig(get_logging_config())


def get_logger(name: str = "overlay") -> logging.Logger:
    return logging.getLogger(name)


def get_log_context(
    endpoint: Optional[str] = None,
    league: Optional[str] = None,
    status_code: Optional[int] = None,
    retry_after: Optional[int] = None,
    bucket: Optional[str] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """Build an ``extra=`` mapping, dropping fields that are None.

    Example:
        >>> logger.warning(
        ...     "Trade API rate limited",
        ...     extra=get_log_context(status_code=429, retry_after=30)
        ... )
    """
    context = dict(zip(CONTEXT_FIELDS, (endpoint, league, status_code, retry_after, bucket)))
    context.update(extra)
    return {k: v for k, v in context.items() if v is not None}
