"""Structured logging setup shared by the API, services and background jobs."""
from __future__ import annotations

import logging
import traceback
from typing import Any, Dict

import structlog

from .config import get_settings

_PII_KEYS = {"password", "secret", "token", "authorization", "email"}


def _redact_pii(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Mask values whose key looks like a credential or an address."""
    for key in list(event_dict.keys()):
        lower_key = key.lower()
        if any(pii in lower_key for pii in _PII_KEYS):
            value = event_dict[key]
            if isinstance(value, str) and len(value) > 4:
                event_dict[key] = value[:2] + "***" + value[-2:]
    return event_dict


def configure_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """Configure structlog processors and the output renderer."""

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _redact_pii,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_output:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=False),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


_settings = get_settings()
configure_logging(log_level=_settings.log_level, json_output=_settings.log_json)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a configured logger bound to ``name``."""
    return structlog.get_logger(name)


def log_error(error: BaseException, operation: str = "") -> None:
    """Record an unexpected failure with its stack and originating operation."""

    stack = "".join(
        traceback.format_exception(type(error), error, error.__traceback__)
    )
    get_logger("posthub.errors").error(
        "unexpected_error",
        operation=operation or None,
        error_type=type(error).__name__,
        error_message=str(error),
        stack=stack,
    )
