"""
psycopg 3 implementation of the connection collaborator.

``PsycopgConnectionSource`` wraps ``psycopg_pool.AsyncConnectionPool``;
connections run in autocommit mode with ``AsyncRawCursor`` (native
``$n`` placeholders) and ``dict_row`` rows, so BEGIN/COMMIT are always
explicit.
"""

from __future__ import annotations

from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Union

import psycopg
from psycopg import AsyncConnection, AsyncRawCursor
from psycopg.conninfo import conninfo_to_dict, make_conninfo
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from pgchain.config.options import ConnectionConfig, PoolOptions
from pgchain.config.settings import get_settings
from pgchain.errors import ErrorCode, create_error
from pgchain.infrastructure.sql.core.limits import validate_port
from pgchain.utils.logging import get_logger

logger = get_logger(__name__)

ConnectionInput = Union[str, ConnectionConfig, Dict[str, Any]]

_SSL_MODES = {True: "require", False: "disable"}


def _ssl_mode(ssl: Union[bool, str, None]) -> Optional[str]:
    if ssl is None:
        return None
    if isinstance(ssl, bool):
        return _SSL_MODES[ssl]
    return ssl


def normalize_connection(connection: ConnectionInput) -> str:
    """
    Normalize a DSN string, ``ConnectionConfig`` or plain dict into a conninfo.

    Raises:
        DbError: VALIDATION when the DSN cannot be parsed or the port is out
            of range. This is setup-time misconfiguration and is raised.
        pydantic.ValidationError: for an invalid dict/ConnectionConfig
    """
    if isinstance(connection, dict):
        connection = ConnectionConfig(**connection)

    if isinstance(connection, ConnectionConfig):
        params: Dict[str, Any] = {
            "host": connection.host,
            "port": connection.port,
            "user": connection.user,
            "dbname": connection.database,
        }
        if connection.password:
            params["password"] = connection.password
        sslmode = _ssl_mode(connection.ssl)
        if sslmode:
            params["sslmode"] = sslmode
        conninfo = make_conninfo(**params)
    elif isinstance(connection, str) and connection:
        try:
            parsed = conninfo_to_dict(connection)
        except psycopg.ProgrammingError as exc:
            raise create_error(
                ErrorCode.VALIDATION, "Invalid connection string", details=exc
            ) from exc
        port = parsed.get("port")
        if port:
            validate_port(int(port) if str(port).isdigit() else port)
        conninfo = connection
        sslmode = parsed.get("sslmode")
    else:
        raise create_error(
            ErrorCode.VALIDATION,
            "Invalid connection: expected a DSN string or ConnectionConfig",
        )

    if get_settings().environment == "prod" and sslmode in (None, "disable", "allow", "prefer"):
        logger.warning("connection.ssl_not_enforced", sslmode=sslmode)
    return conninfo


class PsycopgConnection:
    """
    ``Connection`` over one pooled ``psycopg.AsyncConnection``.

    Every statement runs on an ``AsyncRawCursor`` with ``dict_row`` created
    here, so caller-provided pools with default cursor settings behave the
    same as pools built by ``PsycopgConnectionSource``.
    """

    def __init__(self, raw: AsyncConnection):
        self.raw = raw
        self.in_transaction = False
        self.timeout_applied = False
        self.restore_autocommit = False

    def _cursor(self) -> AsyncRawCursor:
        return AsyncRawCursor(self.raw, row_factory=dict_row)

    async def _run(self, text: str, values: Optional[Sequence[Any]] = None) -> None:
        async with self._cursor() as cursor:
            await cursor.execute(text, list(values) if values is not None else None)

    async def execute(self, text: str, values: Sequence[Any]) -> List[Dict[str, Any]]:
        async with self._cursor() as cursor:
            await cursor.execute(text, list(values))
            if cursor.description is None:
                return []
            return await cursor.fetchall()

    async def stream(self, text: str, values: Sequence[Any]) -> AsyncIterator[Dict[str, Any]]:
        async with self._cursor() as cursor:
            async for row in cursor.stream(text, list(values)):
                yield row

    async def ensure_autocommit(self) -> None:
        """Switch a borrowed connection to autocommit; undone by ``reset()``."""
        if not self.raw.autocommit:
            await self.raw.set_autocommit(True)
            self.restore_autocommit = True

    async def begin(self) -> None:
        await self._run("BEGIN")
        self.in_transaction = True

    async def commit(self) -> None:
        try:
            await self._run("COMMIT")
        finally:
            self.in_transaction = False

    async def rollback(self) -> None:
        try:
            await self._run("ROLLBACK")
        finally:
            self.in_transaction = False

    async def set_statement_timeout(self, timeout_ms: int) -> None:
        """
        Apply ``statement_timeout`` to this connection.

        Inside a transaction the setting is transaction-local; otherwise it
        is set on the connection and reset when the connection is released.
        """
        await self._run(
            "SELECT set_config('statement_timeout', $1, $2)",
            [f"{int(timeout_ms)}ms", self.in_transaction],
        )
        if not self.in_transaction:
            self.timeout_applied = True

    async def cancel(self) -> None:
        await self.raw.cancel_safe()

    async def reset(self) -> None:
        """Undo connection-level state before the connection returns to the pool."""
        if self.timeout_applied:
            await self._run("RESET statement_timeout")
            self.timeout_applied = False
        if self.restore_autocommit:
            await self.raw.set_autocommit(False)
            self.restore_autocommit = False


class PsycopgConnectionSource:
    """
    ``ConnectionSource`` over ``psycopg_pool.AsyncConnectionPool``.

    Args:
        conninfo: Normalized connection string (see ``normalize_connection``)
        pool_options: Pool sizing; ignored when ``pool`` is given
        pool: An existing pool; its connections are switched to autocommit
            while borrowed, and it is not closed by ``close()``
    """

    def __init__(
        self,
        conninfo: Optional[str] = None,
        pool_options: Optional[PoolOptions] = None,
        pool: Optional[AsyncConnectionPool] = None,
    ):
        if pool is None and conninfo is None:
            raise create_error(
                ErrorCode.VALIDATION, "Either a connection string or a pool is required"
            )
        self._owns_pool = pool is None
        if pool is None:
            options = pool_options or PoolOptions()
            pool = AsyncConnectionPool(
                conninfo,
                min_size=options.min_size,
                max_size=options.max_size,
                timeout=options.timeout,
                max_idle=options.max_idle,
                kwargs={
                    "autocommit": True,
                    "row_factory": dict_row,
                    "cursor_factory": AsyncRawCursor,
                },
                open=False,
            )
        self.pool = pool
        self._opened = not self._owns_pool

    async def open(self) -> None:
        if not self._opened:
            await self.pool.open()
            self._opened = True
            logger.info("connection.pool.opened", max_size=self.pool.max_size)

    async def acquire(self) -> PsycopgConnection:
        await self.open()
        raw = await self.pool.getconn()
        connection = PsycopgConnection(raw)
        try:
            await connection.ensure_autocommit()
        except BaseException:
            await self.pool.putconn(raw)
            raise
        return connection

    async def release(self, connection: PsycopgConnection) -> None:
        try:
            if connection.in_transaction:
                await connection.rollback()
            await connection.reset()
        except psycopg.Error as exc:
            # The pool discards broken connections on putconn
            logger.debug("connection.reset_failed", error=str(exc))
        await self.pool.putconn(connection.raw)

    async def close(self) -> None:
        if self._owns_pool and self._opened:
            await self.pool.close()
            self._opened = False
            logger.info("connection.pool.closed")
