"""
SQL module for centralized SQL generation.

Identifier validation and quoting, parameter collection, the PostgreSQL
dialect and per-operation statement builders. ``compiler`` ties them
together; import it directly as ``pgchain.infrastructure.sql.compiler``.
"""

from .core.identifier import qualify_table, quote_identifier, validate_identifier
from .core.parameters import ParameterCollector
from .dialects.postgresql import PostgreSQLDialect

__all__ = [
    "quote_identifier",
    "qualify_table",
    "validate_identifier",
    "ParameterCollector",
    "PostgreSQLDialect",
]
