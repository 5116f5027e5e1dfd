"""Redaction of secret-looking values before they reach observers or logs.

Used by the structlog sanitization processor and by the query hooks, which
see every bound parameter value before a statement is sent.
"""

import re
from typing import Any, Dict, List

# Sensitive key patterns for sanitization
SENSITIVE_PATTERNS = [
    re.compile(r".*password.*", re.IGNORECASE),
    re.compile(r"^(pass|pwd)$", re.IGNORECASE),
    re.compile(r".*token.*", re.IGNORECASE),
    re.compile(r".*api_?key.*", re.IGNORECASE),
    re.compile(r".*secret.*", re.IGNORECASE),
    re.compile(r"^DATABASE_URL$", re.IGNORECASE),
]

# Three base64url segments separated by dots
JWT_PATTERN = re.compile(r"[-A-Za-z0-9_=]+\.[-A-Za-z0-9_=]+\.[-A-Za-z0-9_=]+")

MAX_VISIBLE_STRING_LENGTH = 200

REDACTED_VALUE = "[REDACTED]"


def is_sensitive_key(key: Any) -> bool:
    """Return True when a mapping key names a credential-like field."""
    return isinstance(key, str) and any(pattern.match(key) for pattern in SENSITIVE_PATTERNS)


def redact_value(value: Any) -> Any:
    """Redact a single parameter value.

    Long strings and JWT-shaped strings are replaced; mappings have their
    sensitive keys replaced; lists and tuples are redacted element-wise.
    """
    if isinstance(value, str):
        if len(value) > MAX_VISIBLE_STRING_LENGTH or JWT_PATTERN.fullmatch(value):
            return REDACTED_VALUE
        return value
    if isinstance(value, dict):
        return {
            key: REDACTED_VALUE if is_sensitive_key(key) else redact_value(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact_value(item) for item in value]
    return value


def redact_params(params: List[Any]) -> List[Any]:
    """Redact a positional parameter list."""
    return [redact_value(param) for param in params or []]


def sanitize_for_logging(data: Dict[str, Any]) -> Dict[str, Any]:
    """Redact sensitive values from a dictionary before logging.

    Example:
        >>> sanitize_for_logging({"password": "secret123", "user": "admin"})
        {'password': '[REDACTED]', 'user': 'admin'}
    """
    sanitized: Dict[str, Any] = {}
    for key, value in data.items():
        if is_sensitive_key(key):
            sanitized[key] = REDACTED_VALUE
        elif isinstance(value, dict):
            sanitized[key] = sanitize_for_logging(value)
        else:
            sanitized[key] = value
    return sanitized
