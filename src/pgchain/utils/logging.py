"""Structured logging framework using structlog.

This module provides centralized logging configuration with:
- ISO-8601 timestamps
- JSON rendering for structured logs
- Automatic sanitization of sensitive fields

Configuration:
- PGCHAIN_LOG_LEVEL: Set log level (DEBUG, INFO, WARNING, ERROR). Default: WARNING

Statement parameter values are never passed to the logger; events carry
parameter counts only.

Usage:
    >>> from pgchain.utils.logging import get_logger
    >>> logger = get_logger(__name__)
    >>> logger.info("query.executed", operation="select", rows=3)
"""

import logging
import os
from typing import Any, MutableMapping

import structlog
from pydantic import ValidationError
from structlog.types import EventDict, Processor

from pgchain.config.settings import get_settings
from pgchain.utils.redaction import REDACTED_VALUE, is_sensitive_key, sanitize_for_logging

_CONFIGURED = False


def sanitization_processor(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> MutableMapping[str, Any]:
    """Structlog processor that redacts sensitive fields in event_dict."""
    sanitized: MutableMapping[str, Any] = {}
    for key, value in event_dict.items():
        if is_sensitive_key(key):
            sanitized[key] = REDACTED_VALUE
        elif isinstance(value, dict):
            sanitized[key] = sanitize_for_logging(value)
        else:
            sanitized[key] = value
    return sanitized


def _get_log_level() -> int:
    """Resolve the log level from settings (``PGCHAIN_LOG_LEVEL`` or ``.env``).

    Falls back to the raw environment variable when settings fail to load.
    """
    try:
        level_name = get_settings().log_level.upper()
    except ValidationError:
        level_name = os.getenv("PGCHAIN_LOG_LEVEL", "WARNING").upper()
    return getattr(logging, level_name, logging.WARNING)


def _configure_structlog() -> None:
    """Configure structlog with JSON rendering and sanitization."""
    global _CONFIGURED
    if _CONFIGURED:
        return

    stdlib_logger = logging.getLogger("pgchain")
    stdlib_logger.setLevel(_get_log_level())
    if not stdlib_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(message)s"))
        stdlib_logger.addHandler(handler)

    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        sanitization_processor,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _CONFIGURED = True


# Configure structlog on module import
_configure_structlog()


def get_logger(name: str) -> Any:
    """Get a structlog BoundLogger instance.

    Args:
        name: Logger name (typically __name__ of the calling module)
    """
    return structlog.get_logger(name)

