"""
Client entry point: ``create_client`` and ``DbClient``.

A client owns (or borrows) a connection source and hands out query builders
that share its safety limits, retry policy and hooks. ``transaction()`` pins
one connection and gives the callback a scoped client bound to it.

Example:
    >>> async with create_client("postgresql://app@localhost/app") as db:
    ...     response = await db.from_("users").select().eq("id", 1).single()
    ...     if response.error:
    ...         ...
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, List, Optional, TypeVar, Union

from psycopg_pool import AsyncConnectionPool

from pgchain.config.options import PoolOptions, RetryOptions, SafetyOptions
from pgchain.config.settings import get_settings
from pgchain.errors import ErrorCode, create_error, extract_status_code
from pgchain.infrastructure.hooks import ClientHooks, HookDispatcher
from pgchain.io.connectors.postgres import (
    ConnectionInput,
    PsycopgConnectionSource,
    normalize_connection,
)
from pgchain.io.connectors.protocols import Connection, ConnectionSource
from pgchain.query.builder import QueryBuilder
from pgchain.query.execution import ExecutionContext, execute_raw, release_connection
from pgchain.query.response import QueryResponse
from pgchain.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

NESTED_TRANSACTION_MESSAGE = (
    "Nested transactions are not supported; use savepoints in raw SQL if needed"
)


class DbClient:
    """
    Query client over a connection source.

    Use ``create_client()`` rather than constructing this directly.
    """

    def __init__(self, context: ExecutionContext, schema: str, owns_source: bool = True):
        self._context = context
        self.schema = schema
        self._owns_source = owns_source

    @property
    def is_scoped(self) -> bool:
        """True for the client handed to a ``transaction()`` callback."""
        return self._context.scoped

    @property
    def safety(self) -> SafetyOptions:
        return self._context.safety

    @property
    def retries(self) -> RetryOptions:
        return self._context.retries

    def from_(self, table: str, schema: Optional[str] = None) -> QueryBuilder:
        """Start a builder on ``schema.table`` (client schema by default)."""
        return QueryBuilder(table, schema or self.schema, self._context)

    def rpc(self, fn: str, args: Optional[List[Any]] = None) -> QueryBuilder:
        """Start a builder calling function ``fn`` in the client schema."""
        return QueryBuilder(fn, self.schema, self._context).rpc(fn, args)

    async def sql(self, text: str, params: Optional[List[Any]] = None) -> QueryResponse:
        """Run a raw parameterized statement (``$1``-style placeholders)."""
        return await execute_raw(self._context, text, params)

    async def raw(self, text: str, params: Optional[List[Any]] = None) -> QueryResponse:
        """Alias of ``sql()``."""
        return await execute_raw(self._context, text, params)

    async def health_check(self) -> QueryResponse:
        return await execute_raw(self._context, "SELECT 1")

    async def transaction(self, callback: Callable[["DbClient"], Awaitable[T]]) -> QueryResponse:
        """
        Run ``callback`` inside BEGIN/COMMIT on one dedicated connection.

        Any exception raised by the callback, or a failed COMMIT, triggers
        ROLLBACK and resolves to a TRANSACTION error; the callback's return
        value becomes ``data`` on success. Query errors that the callback
        receives as responses do not roll back unless it raises.
        """
        hooks = self._context.hooks
        if self.is_scoped:
            return QueryResponse.failure(
                create_error(ErrorCode.VALIDATION, NESTED_TRANSACTION_MESSAGE)
            )

        source = self._context.source
        try:
            connection = await source.acquire()
        except Exception as exc:
            err = create_error(
                ErrorCode.CONNECTION,
                str(exc) or "Failed to get connection for transaction",
                details=exc,
                pg_code=extract_status_code(exc),
            )
            hooks.error(err)
            return QueryResponse.failure(err)

        try:
            try:
                await connection.begin()
                scoped = DbClient(self._context.bind(connection), self.schema, owns_source=False)
                value = await callback(scoped)
                await connection.commit()
            except Exception as exc:
                await _rollback_quietly(connection)
                err = create_error(
                    ErrorCode.TRANSACTION,
                    str(exc) or "Transaction failed",
                    details=exc,
                    pg_code=extract_status_code(exc),
                )
                logger.warning("transaction.rolled_back", **err.to_dict())
                hooks.error(err)
                return QueryResponse.failure(err)
            logger.debug("transaction.committed")
            return QueryResponse(data=value)
        finally:
            await release_connection(source, connection)

    async def close(self) -> None:
        """Close the owned pool; no-op on scoped clients and borrowed pools."""
        if self.is_scoped or not self._owns_source:
            return
        await self._context.source.close()
        await self._context.hooks.drain()

    end = close

    async def __aenter__(self) -> "DbClient":
        open_source = getattr(self._context.source, "open", None)
        if open_source is not None and not self.is_scoped:
            await open_source()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


async def _rollback_quietly(connection: Connection) -> None:
    try:
        await connection.rollback()
    except Exception as exc:
        logger.warning("transaction.rollback_failed", error=str(exc))


def create_client(
    connection: Union[ConnectionInput, None] = None,
    *,
    schema: Optional[str] = None,
    pool: Union[PoolOptions, AsyncConnectionPool, None] = None,
    hooks: Optional[ClientHooks] = None,
    retries: Optional[RetryOptions] = None,
    safety: Optional[SafetyOptions] = None,
    source: Optional[ConnectionSource] = None,
) -> DbClient:
    """
    Create a client.

    Args:
        connection: DSN string, ``ConnectionConfig`` or dict; falls back to
            ``PGCHAIN_DATABASE_URL`` when omitted
        schema: Default schema for ``from_()``/``rpc()`` (``PGCHAIN_SCHEMA_NAME``)
        pool: ``PoolOptions`` for the pool created here, or an existing
            ``AsyncConnectionPool`` that the client uses but never closes
        hooks: ``on_query`` / ``on_error`` observers
        retries: Retry policy (defaults from settings)
        safety: Resource ceilings (defaults from settings)
        source: Any ``ConnectionSource``; overrides ``connection``/``pool``

    Raises:
        DbError: VALIDATION when no usable connection is configured or the
            connection string is malformed
        pydantic.ValidationError: for invalid option values
    """
    settings = get_settings()
    owns_source = True

    if source is None:
        if isinstance(pool, AsyncConnectionPool):
            source = PsycopgConnectionSource(pool=pool)
            owns_source = False
        else:
            target = connection if connection is not None else settings.database_url
            if target is None:
                raise create_error(
                    ErrorCode.VALIDATION,
                    "No connection configured: pass a DSN or ConnectionConfig, "
                    "or set PGCHAIN_DATABASE_URL",
                )
            pool_options = pool if isinstance(pool, PoolOptions) else settings.pool_options()
            source = PsycopgConnectionSource(normalize_connection(target), pool_options)

    context = ExecutionContext(
        source=source,
        safety=safety or settings.safety_options(),
        retries=retries or settings.retry_options(),
        hooks=HookDispatcher(hooks),
    )
    logger.info(
        "client.created",
        schema=schema or settings.schema_name,
        retry_attempts=context.retries.attempts,
        statement_timeout_ms=context.safety.statement_timeout_ms,
    )
    return DbClient(context, schema or settings.schema_name, owns_source=owns_source)


__all__ = ["DbClient", "create_client", "NESTED_TRANSACTION_MESSAGE"]
