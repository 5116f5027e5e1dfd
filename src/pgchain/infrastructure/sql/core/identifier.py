"""
SQL identifier validation and quoting.

Every table, schema, column and function name passes through
``validate_identifier`` before it is quoted into statement text. Values are
never embedded as text; they are always bound as parameters.
"""

import re
from typing import Literal, Optional

from pgchain.errors import ErrorCode, create_error

IdentifierKind = Literal["schema", "table", "column", "function"]

# Unquoted PostgreSQL style: letter or underscore, then letters/digits/underscore
IDENTIFIER_PATTERN = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

# PostgreSQL NAMEDATALEN - 1
MAX_IDENTIFIER_LENGTH = 63


def _preview(name: str) -> str:
    return name[:20] + ("…" if len(name) > 20 else "")


def validate_identifier(name: str, kind: IdentifierKind) -> None:
    """
    Validate a single identifier (schema, table, column, function name).

    Raises:
        DbError: VALIDATION when the name is empty, not a string, longer than
            63 characters, or contains anything other than ``[A-Za-z0-9_]``
            (and does not start with a digit)

    Examples:
        >>> validate_identifier("company_id", "column")
        >>> validate_identifier("1st", "column")
        Traceback (most recent call last):
        ...
        pgchain.errors.DbError: Invalid column: only letters, digits, and underscore allowed (got "1st")
    """
    if not isinstance(name, str) or not name:
        raise create_error(
            ErrorCode.VALIDATION, f"Invalid {kind}: must be a non-empty string"
        )
    if len(name) > MAX_IDENTIFIER_LENGTH:
        raise create_error(
            ErrorCode.VALIDATION,
            f"Invalid {kind}: PostgreSQL identifiers must be ≤{MAX_IDENTIFIER_LENGTH} characters",
        )
    if not IDENTIFIER_PATTERN.fullmatch(name):
        raise create_error(
            ErrorCode.VALIDATION,
            f'Invalid {kind}: only letters, digits, and underscore allowed (got "{_preview(name)}")',
        )


def split_column_list(columns: str) -> list[str]:
    """Split a comma-separated column list into trimmed, non-empty tokens."""
    return [part.strip() for part in columns.split(",") if part.strip()]


def validate_column_list(columns: str) -> None:
    """
    Validate a comma-separated column list such as ``"id, name"`` or ``"*"``.

    Raises:
        DbError: VALIDATION when the list is empty or any token is invalid
    """
    if not isinstance(columns, str) or not columns.strip():
        raise create_error(
            ErrorCode.VALIDATION, "Invalid columns: must be a non-empty string"
        )
    if columns.strip() == "*":
        return
    for column in split_column_list(columns):
        validate_identifier(column, "column")


def quote_identifier(name: str) -> str:
    """
    Quote a validated identifier with double quotes.

    Internal double quotes are doubled, although validated names never
    contain any.

    Examples:
        >>> quote_identifier("company_id")
        '"company_id"'
    """
    escaped = name.replace('"', '""')
    return f'"{escaped}"'


def quote_column_list(columns: str) -> str:
    """Validate and quote a column list; ``"*"`` passes through unquoted."""
    validate_column_list(columns)
    if columns.strip() == "*":
        return "*"
    return ", ".join(quote_identifier(column) for column in split_column_list(columns))


def qualify_table(table: str, schema: Optional[str] = None, kind: IdentifierKind = "table") -> str:
    """
    Validate and quote a (schema-qualified) relation or function name.

    Examples:
        >>> qualify_table("users", schema="public")
        '"public"."users"'
        >>> qualify_table("users")
        '"users"'
    """
    validate_identifier(table, kind)
    if schema is None:
        return quote_identifier(table)
    validate_identifier(schema, "schema")
    return f"{quote_identifier(schema)}.{quote_identifier(table)}"
