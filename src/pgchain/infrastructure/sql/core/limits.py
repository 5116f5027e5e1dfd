"""Numeric range checks for ports, LIMIT and range() arguments."""

from typing import Any

from pgchain.errors import ErrorCode, create_error


def _is_int(value: Any) -> bool:
    # bool is an int subclass; True must not pass as LIMIT 1
    return isinstance(value, int) and not isinstance(value, bool)


def validate_port(port: Any) -> None:
    """Validate a TCP port number (1-65535)."""
    if not _is_int(port) or port < 1 or port > 65535:
        raise create_error(
            ErrorCode.VALIDATION,
            "Invalid port: must be a number between 1 and 65535",
        )


def validate_limit(count: Any) -> None:
    """Validate a LIMIT value (non-negative integer)."""
    if not _is_int(count) or count < 0:
        raise create_error(
            ErrorCode.VALIDATION, "Invalid limit: must be a non-negative integer"
        )


def validate_range(start: Any, end: Any) -> None:
    """Validate range(start, end) bounds: non-negative integers, start <= end."""
    if not _is_int(start) or start < 0:
        raise create_error(
            ErrorCode.VALIDATION, "Invalid range: from must be a non-negative integer"
        )
    if not _is_int(end) or end < 0:
        raise create_error(
            ErrorCode.VALIDATION, "Invalid range: to must be a non-negative integer"
        )
    if start > end:
        raise create_error(ErrorCode.VALIDATION, "Invalid range: from must be ≤ to")
