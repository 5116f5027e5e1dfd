"""
Row streaming for large selects.

``open_stream`` borrows one connection and returns a ``RowStream`` that holds
it until the rows are exhausted, a failure surfaces, or the consumer closes
the stream. The connection is released exactly once in every case.

Usage:
    >>> response = await db.from_("events").select().stream()
    >>> async with response.data as rows:
    ...     async for row in rows:
    ...         handle(row)
"""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Dict, Optional

from pgchain.errors import DbError, ErrorCode, create_error, create_error_from_thrown
from pgchain.infrastructure.sql.compiler import compile_statement
from pgchain.io.connectors.protocols import Connection
from pgchain.query.execution import (
    ExecutionContext,
    aborted_error,
    apply_statement_timeout,
    cancel_backend,
    release_connection,
)
from pgchain.query.response import QueryResponse
from pgchain.query.state import BuilderState
from pgchain.utils.logging import get_logger

logger = get_logger(__name__)


class RowStream:
    """Single-pass async iterator over the rows of one select."""

    def __init__(
        self,
        context: ExecutionContext,
        connection: Connection,
        rows: AsyncIterator[Dict[str, Any]],
        abort_event: Optional[asyncio.Event] = None,
    ):
        self._context = context
        self._connection: Optional[Connection] = connection
        self._rows: Optional[AsyncIterator[Dict[str, Any]]] = rows
        self._abort_event = abort_event
        self._started = False
        self.rows_read = 0

    @property
    def closed(self) -> bool:
        return self._connection is None

    def __aiter__(self) -> "RowStream":
        return self

    async def __anext__(self) -> Dict[str, Any]:
        if self._rows is None:
            raise StopAsyncIteration
        if self._abort_event is not None and self._abort_event.is_set():
            await self.aclose()
            raise self._report(aborted_error())

        self._started = True
        try:
            row = await self._rows.__anext__()
        except StopAsyncIteration:
            logger.debug("stream.completed", rows=self.rows_read)
            await self._finish()
            raise
        except Exception as exc:
            await self._finish()
            raise self._report(
                create_error_from_thrown(ErrorCode.QUERY, "Stream failed", exc)
            ) from exc
        self.rows_read += 1
        return row

    async def aclose(self) -> None:
        """Stop iterating; cancels the backend statement if rows are still pending."""
        if self._rows is None:
            return
        if self._started and self._connection is not None:
            await cancel_backend(self._connection)
            logger.debug("stream.closed", rows=self.rows_read)
        await self._finish()

    async def __aenter__(self) -> "RowStream":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def _finish(self) -> None:
        rows, self._rows = self._rows, None
        connection, self._connection = self._connection, None
        if rows is not None and hasattr(rows, "aclose"):
            try:
                await rows.aclose()
            except Exception as exc:
                logger.debug("stream.close_failed", error=str(exc))
        if connection is not None:
            await release_connection(self._context.source, connection)

    def _report(self, error: DbError) -> DbError:
        self._context.hooks.error(error)
        return error


async def open_stream(state: BuilderState, context: ExecutionContext) -> QueryResponse:
    """Start streaming a select; ``data`` is a ``RowStream`` on success."""
    if state.operation != "select":
        err = create_error(ErrorCode.VALIDATION, "stream() is only valid for select queries")
        context.hooks.error(err)
        return QueryResponse.failure(err)
    try:
        statement = compile_statement(state, context.safety)
    except DbError as err:
        context.hooks.error(err)
        return QueryResponse.failure(err)
    if state.abort_event is not None and state.abort_event.is_set():
        err = aborted_error()
        context.hooks.error(err)
        return QueryResponse.failure(err)

    try:
        connection = await context.source.acquire()
    except Exception as exc:
        err = create_error_from_thrown(ErrorCode.CONNECTION, "Failed to acquire connection", exc)
        context.hooks.error(err)
        return QueryResponse.failure(err)

    await apply_statement_timeout(connection, context.safety)
    context.hooks.query(statement.text, statement.values)
    rows = connection.stream(statement.text, statement.values)
    return QueryResponse(data=RowStream(context, connection, rows, state.abort_event))
