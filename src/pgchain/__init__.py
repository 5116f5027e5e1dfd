"""
pgchain - fluent, injection-safe PostgreSQL query builder.

Chained filter/operation calls compile to one parameterized statement that
runs through a pooled psycopg connection with retry, cancellation, streaming
and transactions. Every call resolves to ``QueryResponse(data, error, count)``.
"""

from pgchain.client import DbClient, create_client
from pgchain.config import (
    ConnectionConfig,
    PoolOptions,
    RetryOptions,
    SafetyOptions,
    Settings,
    get_settings,
)
from pgchain.errors import (
    DbError,
    ErrorCode,
    create_error,
    create_error_from_thrown,
    is_db_error,
    is_retriable_error,
)
from pgchain.infrastructure.hooks import ClientHooks
from pgchain.query import CompiledStatement, QueryBuilder, QueryResponse, RowStream

__version__ = "0.1.0"

__all__ = [
    "ClientHooks",
    "CompiledStatement",
    "ConnectionConfig",
    "DbClient",
    "DbError",
    "ErrorCode",
    "PoolOptions",
    "QueryBuilder",
    "QueryResponse",
    "RetryOptions",
    "RowStream",
    "SafetyOptions",
    "Settings",
    "create_client",
    "create_error",
    "create_error_from_thrown",
    "get_settings",
    "is_db_error",
    "is_retriable_error",
]
