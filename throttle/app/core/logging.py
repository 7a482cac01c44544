"""Logging setup for the rate limiter.

Limiter records carry a few context attributes (which limiter, which
classification, which request) passed through ``extra=``. Text, structured
and JSON output are selected by ``settings.log_format``.
"""

import json
import logging
import logging.config
import sys
import traceback
from datetime import datetime
from typing import Any, Dict, Optional

from throttle.app.core.config import settings

# Attributes limiter log calls may attach to a record.
CONTEXT_FIELDS = ("limiter", "classification", "path", "method")


class JSONFormatter(logging.Formatter):
    """Render each record as one JSON object per line.

    Context fields go at the top level; any other ``extra=`` attributes
    are grouped under ``"extra"``.
    """

    # Attributes every LogRecord has, plus the keys written below.
    _RESERVED = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
        "message", "asctime", "timestamp", "logger", "level", "source",
    }

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now().astimezone().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
            "source": {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            },
        }

        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_data[field] = value

        for key, value in record.__dict__.items():
            if key in self._RESERVED or key in CONTEXT_FIELDS:
                continue
            log_data.setdefault("extra", {})[key] = value

        if record.exc_info and record.exc_info != (None, None, None):
            log_data["exception"] = traceback.format_exception(*record.exc_info)

        return json.dumps(log_data, default=str, ensure_ascii=False)


class ContextFilter(logging.Filter):
    """Default missing context fields to None so format strings can use them."""

    def filter(self, record: logging.LogRecord) -> bool:
        for field in CONTEXT_FIELDS:
            if not hasattr(record, field):
                setattr(record, field, None)
        return True


def get_logging_config() -> Dict[str, Any]:
    """Build the ``logging.config.dictConfig`` dict for the current settings."""
    log_format = getattr(settings, "log_format", "text").lower()
    log_level = getattr(settings, "log_level", "INFO").upper()

    formatters: Dict[str, Any] = {
        "standard": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        },
        "structured": {
            "format": (
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
                " - limiter=%(limiter)s - classification=%(classification)s"
            )
        },
    }
    if log_format == "json":
        formatters["json"] = {"()": "throttle.app.core.logging.JSONFormatter"}
        formatter = "json"
    elif log_format == "structured":
        formatter = "structured"
    else:
        formatter = "standard"

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "filters": {
            "context": {"()": "throttle.app.core.logging.ContextFilter"},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level,
                "formatter": formatter,
                "stream": sys.stdout,
                "filters": ["context"],
            },
            "error_console": {
                "class": "logging.StreamHandler",
                "level": "ERROR",
                "formatter": formatter,
                "stream": sys.stderr,
                "filters": ["context"],
            },
        },
        "loggers": {
            "throttle": {
                "level": log_level,
                "handlers": ["console", "error_console"],
                "propagate": False,
            },
            "uvicorn": {
                "level": log_level,
                "handlers": ["console"],
                "propagate": False,
            },
        },
        "root": {"level": log_level, "handlers": ["console"]},
    }


def setup_logging() -> None:
    logging.config.dictConfig(get_logging_config())
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str = "throttle") -> logging.Logger:
    return logging.getLogger(name)


def get_log_context(
    limiter: Optional[str] = None,
    classification: Optional[str] = None,
    path: Optional[str] = None,
    method: Optional[str] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """Build an ``extra=`` dict for a limiter log call, skipping None values.

    Example:
        >>> logger.warning(
        ...     "Counter backend unavailable",
        ...     extra=get_log_context(limiter="API", classification="10.0.0.1")
        ... )
    """
    context = {
        "limiter": limiter,
        "classification": classification,
        "path": path,
        "method": method,
        **extra,
    }
    return {k: v for k, v in context.items() if v is not None}
