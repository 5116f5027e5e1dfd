"""Structured error values and retriability classification.

Every public call resolves to a ``QueryResponse`` whose ``error`` is a
``DbError``. The same type doubles as the exception raised synchronously by
the identifier validator and the SQL compiler, so the execution engine can
catch it and hand it back unchanged.

Usage:
    >>> from pgchain.errors import ErrorCode, create_error
    >>> err = create_error(ErrorCode.VALIDATION, "Invalid column")
    >>> err.code == "VALIDATION"
    True
"""

from __future__ import annotations

import errno
import socket
from enum import Enum
from typing import Any, Dict, Optional

import psycopg


class ErrorCode(str, Enum):
    """Taxonomy tags carried by ``DbError.code``."""

    VALIDATION = "VALIDATION"
    QUERY = "QUERY"
    CONNECTION = "CONNECTION"
    TRANSACTION = "TRANSACTION"
    NO_ROWS = "NO_ROWS"
    TOO_MANY_ROWS = "TOO_MANY_ROWS"
    HOOK = "HOOK"
    ABORTED = "ABORTED"


class DbError(Exception):
    """Uniform error value returned in responses and raised by the compiler.

    Attributes:
        code: Taxonomy tag (``ErrorCode`` member, compares equal to its string)
        message: Human-readable description
        details: Underlying cause (usually the driver exception), if any
        pg_code: PostgreSQL SQLSTATE when the failure came from the backend
    """

    def __init__(
        self,
        code: ErrorCode | str,
        message: str,
        details: Any = None,
        pg_code: Optional[str] = None,
    ):
        super().__init__(message)
        self.code = _coerce_code(code)
        self.message = message
        self.details = details
        self.pg_code = pg_code or None

    def __repr__(self) -> str:
        return f"DbError(code={_code_value(self.code)!r}, message={self.message!r})"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to structured dict for logging."""
        payload: Dict[str, Any] = {
            "code": _code_value(self.code),
            "message": self.message,
        }
        if self.pg_code:
            payload["pg_code"] = self.pg_code
        if isinstance(self.details, BaseException):
            payload["cause_type"] = type(self.details).__name__
        return payload


def _code_value(code: ErrorCode | str) -> str:
    return code.value if isinstance(code, ErrorCode) else code


def _coerce_code(code: ErrorCode | str) -> ErrorCode | str:
    if isinstance(code, ErrorCode):
        return code
    try:
        return ErrorCode(code)
    except ValueError:
        return code


def create_error(
    code: ErrorCode | str,
    message: str,
    details: Any = None,
    pg_code: Optional[str] = None,
) -> DbError:
    """Build a ``DbError``; an empty ``pg_code`` is dropped."""
    return DbError(code, message, details=details, pg_code=pg_code)


def extract_status_code(cause: Any) -> Optional[str]:
    """Return the backend status code (SQLSTATE) or low-level code of ``cause``.

    psycopg exposes SQLSTATE as ``sqlstate``; other drivers use ``pgcode`` or a
    string ``code``. For ``DbError`` causes the stored ``pg_code`` is used.
    """
    if cause is None:
        return None
    if isinstance(cause, DbError):
        return cause.pg_code
    for attr in ("sqlstate", "pgcode", "code"):
        value = getattr(cause, attr, None)
        if isinstance(value, str) and value:
            return value
    return None


def create_error_from_thrown(
    code: ErrorCode | str,
    fallback_message: str,
    cause: Any,
) -> DbError:
    """Build a ``DbError`` from a caught value, keeping its SQLSTATE if present."""
    if isinstance(cause, DbError):
        return cause
    message = str(cause) if isinstance(cause, BaseException) and str(cause) else fallback_message
    return create_error(code, message, details=cause, pg_code=extract_status_code(cause))


def is_db_error(value: Any) -> bool:
    """Type guard for ``DbError`` values."""
    return isinstance(value, DbError)


# SQLSTATE classes: 08 connection exception, 40 transaction rollback
RETRIABLE_SQLSTATE_CLASSES = frozenset({"08", "40"})

RETRIABLE_CONNECTION_CODES = frozenset(
    {
        "ECONNRESET",
        "ETIMEDOUT",
        "ECONNREFUSED",
        "ENOTFOUND",
        "EPIPE",
        "EAI_AGAIN",
    }
)


def _os_error_code(cause: OSError) -> Optional[str]:
    if isinstance(cause, socket.gaierror):
        if cause.errno == socket.EAI_AGAIN:
            return "EAI_AGAIN"
        if cause.errno == socket.EAI_NONAME:
            return "ENOTFOUND"
        return None
    if cause.errno is None:
        return None
    return errno.errorcode.get(cause.errno)


def is_retriable_error(cause: Any) -> bool:
    """Return True when ``cause`` is a transient failure worth retrying.

    Retriable: SQLSTATE class 08 or 40, one of ``RETRIABLE_CONNECTION_CODES``
    (as a string code or an ``OSError`` errno), or a psycopg
    ``OperationalError`` that carries no SQLSTATE (lost connection, pool
    timeout). Constraint violations and everything else are not retriable.
    """
    if cause is None:
        return False
    if isinstance(cause, DbError):
        if cause.code in (ErrorCode.VALIDATION, ErrorCode.ABORTED):
            return False
        if isinstance(cause.details, BaseException):
            return is_retriable_error(cause.details)
        return _is_retriable_code(cause.pg_code)

    code = extract_status_code(cause)
    if _is_retriable_code(code):
        return True
    if isinstance(cause, OSError) and _os_error_code(cause) in RETRIABLE_CONNECTION_CODES:
        return True
    if code is None and _is_operational_error(cause):
        return True
    return False


def _is_retriable_code(code: Optional[str]) -> bool:
    if not code:
        return False
    if code in RETRIABLE_CONNECTION_CODES:
        return True
    return len(code) == 5 and code[:2] in RETRIABLE_SQLSTATE_CLASSES


def _is_operational_error(cause: Any) -> bool:
    return isinstance(cause, psycopg.OperationalError)


__all__ = [
    "DbError",
    "ErrorCode",
    "RETRIABLE_CONNECTION_CODES",
    "RETRIABLE_SQLSTATE_CLASSES",
    "create_error",
    "create_error_from_thrown",
    "extract_status_code",
    "is_db_error",
    "is_retriable_error",
]
