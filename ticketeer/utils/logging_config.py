"""
Logging configuration for the Ticketeer booking backend.

Every record passes two filters before it is written: one stamps the id of
the HTTP request being served, the other masks tokens and card numbers.
Lifecycle transitions and rejected tokens go to the ``ticketeer.business``
and ``ticketeer.security`` loggers so they can be routed on their own.
"""

import json
import logging
import logging.config
import re
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

APP_LOGGER = "ticketeer"
BUSINESS_LOGGER = f"{APP_LOGGER}.business"
SECURITY_LOGGER = f"{APP_LOGGER}.security"

ROTATE_BYTES = 10 * 1024 * 1024

# Third-party loggers that are noisy at the application level.
LIBRARY_LEVELS = {
    "uvicorn": "INFO",
    "uvicorn.access": "INFO",
    "sqlalchemy.engine": "WARNING",
    "redis": "WARNING",
    "celery": "INFO",
    "botocore": "WARNING",
    "boto3": "WARNING",
}

_FILTERS = ["request_id", "sensitive_data"]


def _rotating_file(path: str, level: str, formatter: str, backups: int) -> Dict[str, Any]:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "level": level,
        "formatter": formatter,
        "filename": path,
        "maxBytes": ROTATE_BYTES,
        "backupCount": backups,
        "filters": _FILTERS,
    }


def build_logging_config(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    enable_json_logging: bool = False,
    environment: str = "development",
) -> Dict[str, Any]:
    """Return the ``dictConfig`` mapping for the given options."""
    formatter = "json" if enable_json_logging else "detailed"

    handlers: Dict[str, Any] = {
        "console": {
            "class": "logging.StreamHandler",
            "level": log_level,
            "formatter": formatter,
            "stream": sys.stdout,
            "filters": _FILTERS,
        }
    }
    shared: List[str] = ["console"]

    if log_file:
        handlers["file"] = _rotating_file(log_file, log_level, formatter, backups=5)
        shared.append("file")

    app_handlers = list(shared)
    if environment == "production":
        error_file = log_file.replace(".log", "_errors.log") if log_file else "logs/errors.log"
        handlers["error_file"] = _rotating_file(error_file, "ERROR", formatter, backups=10)
        app_handlers.append("error_file")

    loggers: Dict[str, Any] = {
        name: {"level": level, "handlers": list(shared), "propagate": False}
        for name, level in LIBRARY_LEVELS.items()
    }
    loggers[APP_LOGGER] = {"level": log_level, "handlers": app_handlers, "propagate": False}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "detailed": {
                "format": "%(asctime)s [%(levelname)s] %(name)s:%(lineno)d [%(request_id)s] %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "json": {"()": f"{__name__}.JSONFormatter"},
        },
        "filters": {
            "request_id": {"()": f"{__name__}.RequestIDFilter"},
            "sensitive_data": {"()": f"{__name__}.SensitiveDataFilter"},
        },
        "handlers": handlers,
        "loggers": loggers,
        "root": {"level": log_level, "handlers": list(shared)},
    }


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    enable_json_logging: bool = False,
    environment: str = "development",
) -> None:
    """
    Configure logging for the application process.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path, rotated at 10MB
        enable_json_logging: Emit one JSON object per record
        environment: Adds an error-only file handler in production
    """
    logging.config.dictConfig(build_logging_config(log_level, log_file, enable_json_logging, environment))


class RequestIDFilter(logging.Filter):
    """Stamp records with the id of the request being served, if any."""

    def filter(self, record):
        if not getattr(record, "request_id", None):
            from ticketeer.middleware.logging import request_id_var
            record.request_id = request_id_var.get() or "-"
        return True


class SensitiveDataFilter(logging.Filter):
    """Mask bearer tokens, secrets and card data."""

    SENSITIVE_KEYS = ("password", "token", "secret", "authorization", "cookie", "card_number", "cvv")

    _LONG_TOKEN = re.compile(r"\b[A-Za-z0-9_\-]{32,}\b")
    _CARD_NUMBER = re.compile(r"\b(?:\d[ -]?){13,19}\b")

    def filter(self, record):
        if isinstance(record.msg, str):
            record.msg = self.mask_text(record.msg)
        for key, value in list(record.__dict__.items()):
            if isinstance(value, dict):
                setattr(record, key, self.mask(value))
        return True

    def mask_text(self, text: str) -> str:
        return self._CARD_NUMBER.sub("***CARD***", self._LONG_TOKEN.sub("***MASKED***", text))

    def mask(self, value):
        if isinstance(value, dict):
            return {
                key: "***MASKED***" if self._is_sensitive(key) else self.mask(item)
                for key, item in value.items()
            }
        if isinstance(value, (list, tuple)):
            return type(value)(self.mask(item) for item in value)
        if isinstance(value, str):
            return self.mask_text(value)
        return value

    def _is_sensitive(self, key) -> bool:
        lowered = str(key).lower()
        return any(word in lowered for word in self.SENSITIVE_KEYS)


# Attributes every LogRecord has; anything else came in through ``extra``.
_STANDARD_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "request_id"}


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with ``extra`` fields nested under "extra"."""

    def format(self, record):
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
            "request_id": getattr(record, "request_id", None),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        extra = {key: value for key, value in vars(record).items() if key not in _STANDARD_ATTRS}
        if extra:
            entry["extra"] = extra

        return json.dumps(entry, default=str, ensure_ascii=False)


def log_business_event(event_type: str, details: Dict[str, Any], user_id: Optional[str] = None) -> None:
    """Record a booking lifecycle transition."""
    logging.getLogger(BUSINESS_LOGGER).info(
        "%s %s",
        event_type,
        " ".join(f"{key}={value}" for key, value in details.items()),
        extra={"event_type": event_type, "user_id": user_id, "details": details},
    )


def log_security_event(event_type: str, details: Dict[str, Any], severity: str = "WARNING") -> None:
    """Record an authentication failure or other security-relevant event."""
    level = logging.getLevelName(severity.upper())
    if not isinstance(level, int):
        level = logging.WARNING
    logging.getLogger(SECURITY_LOGGER).log(
        level,
        "Security event: %s",
        event_type,
        extra={"event_type": event_type, "details": details},
    )
