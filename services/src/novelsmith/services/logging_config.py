"""Structured logging helpers for Novelsmith services."""

from __future__ import annotations

import copy
import json
import logging
import logging.config
import re
from datetime import datetime, timezone
from typing import Any, Dict, Mapping

REDACTED = "[REDACTED]"

_SECRET_KEY_NAMES = {
    "api_key",
    "apikey",
    "authorization",
    "bearer",
    "openai_api_key",
    "secret",
    "token",
}
_SECRET_VALUE_RE = re.compile(r"sk-[A-Za-z0-9_-]{16,}|Bearer\s+\S+")


def _scrub_value(value: Any, *, key: str) -> Any:
    if key.lower() in _SECRET_KEY_NAMES:
        return REDACTED
    if isinstance(value, str):
        return _SECRET_VALUE_RE.sub(REDACTED, value)
    if isinstance(value, Mapping):
        return {str(k): _scrub_value(v, key=str(k)) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_scrub_value(item, key=key) for item in value]
    return value


def scrub(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Return a copy of ``payload`` with credentials redacted."""

    return {str(key): _scrub_value(value, key=str(key)) for key, value in payload.items()}


class JsonFormatter(logging.Formatter):
    """Simple JSON formatter for structured logs."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": _SECRET_VALUE_RE.sub(REDACTED, record.getMessage()),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        extra = getattr(record, "extra_payload", None)
        if isinstance(extra, dict):
            payload.update(scrub(extra))
        return json.dumps(payload, ensure_ascii=False, default=str)


LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "json": {
            "()": "novelsmith.services.logging_config.JsonFormatter",
        }
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json",
        }
    },
    "loggers": {
        "uvicorn.access": {"handlers": ["console"], "level": "INFO", "propagate": False},
        "uvicorn.error": {"handlers": ["console"], "level": "INFO", "propagate": False},
        "novelsmith.services": {"handlers": ["console"], "level": "INFO", "propagate": False},
    },
    "root": {
        "handlers": ["console"],
        "level": "WARNING",
    },
}


def configure_logging(level: str | None = None) -> None:
    """Apply the structured logging configuration."""

    config = copy.deepcopy(LOGGING_CONFIG)
    if level:
        config["loggers"]["novelsmith.services"]["level"] = level.upper()
    logging.config.dictConfig(config)


__all__ = ["JsonFormatter", "LOGGING_CONFIG", "configure_logging", "scrub"]
