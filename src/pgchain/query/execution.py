"""
Execution engine.

Runs compiled statements against a ``ConnectionSource`` with retry/backoff,
statement timeouts, cancellation and row-shape post-processing, and always
resolves to a ``QueryResponse``. Errors never escape as exceptions, except
``asyncio.CancelledError``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, List, Optional

from pgchain.config.options import RetryOptions, SafetyOptions
from pgchain.errors import (
    DbError,
    ErrorCode,
    create_error,
    create_error_from_thrown,
    is_retriable_error,
)
from pgchain.infrastructure.hooks import HookDispatcher
from pgchain.infrastructure.sql.compiler import compile_count_statement, compile_statement
from pgchain.infrastructure.sql.core.parameters import adapt_param
from pgchain.infrastructure.sql.operations.select import parse_estimated_count
from pgchain.io.connectors.protocols import Connection, ConnectionSource
from pgchain.query.response import QueryResponse
from pgchain.query.state import BuilderState, CompiledStatement
from pgchain.utils.logging import get_logger

logger = get_logger(__name__)

RowHandler = Callable[[Connection, List[Any]], Awaitable[QueryResponse]]


class BoundConnectionSource:
    """
    ``ConnectionSource`` that always hands out one pre-acquired connection.

    Used for transaction-scoped clients: every statement goes through the
    same connection and ``release``/``close`` leave it alone; the owner of
    the transaction releases it.
    """

    def __init__(self, connection: Connection):
        self.connection = connection

    async def acquire(self) -> Connection:
        return self.connection

    async def release(self, connection: Connection) -> None:
        return None

    async def close(self) -> None:
        return None


@dataclass
class ExecutionContext:
    """Everything a builder needs to run: source, limits, retry policy, hooks."""

    source: ConnectionSource
    safety: SafetyOptions = field(default_factory=SafetyOptions)
    retries: RetryOptions = field(default_factory=RetryOptions)
    hooks: HookDispatcher = field(default_factory=HookDispatcher)
    scoped: bool = False

    def bind(self, connection: Connection) -> "ExecutionContext":
        """Context funnelling every statement through ``connection``; no retries."""
        return replace(self, source=BoundConnectionSource(connection), scoped=True)

    @property
    def max_attempts(self) -> int:
        # A failed statement aborts the surrounding transaction, so never retry there
        return 1 if self.scoped else self.retries.attempts


def aborted_error() -> DbError:
    return create_error(ErrorCode.ABORTED, "Query aborted")


async def apply_statement_timeout(connection: Connection, safety: SafetyOptions) -> None:
    """Apply ``statement_timeout_ms`` to the connection; failures are tolerated."""
    if safety.statement_timeout_ms is None:
        return
    try:
        await connection.set_statement_timeout(safety.statement_timeout_ms)
    except Exception as exc:
        logger.debug("query.statement_timeout_failed", error=str(exc))


async def cancel_backend(connection: Connection) -> None:
    try:
        await connection.cancel()
    except Exception as exc:
        logger.debug("query.cancel_failed", error=str(exc))


async def release_connection(source: ConnectionSource, connection: Connection) -> None:
    try:
        await source.release(connection)
    except Exception as exc:
        logger.warning("connection.release_failed", error=str(exc))


async def _execute_with_abort(
    connection: Connection,
    statement: CompiledStatement,
    abort_event: Optional[asyncio.Event],
) -> List[Any]:
    """
    Run the statement, racing it against ``abort_event`` when one is attached.

    If the calling task is cancelled, the backend statement is cancelled and
    the query task finishes before the cancellation propagates.
    """
    if abort_event is None:
        try:
            return await connection.execute(statement.text, statement.values)
        except asyncio.CancelledError:
            await cancel_backend(connection)
            raise
    if abort_event.is_set():
        raise aborted_error()

    query_task = asyncio.ensure_future(connection.execute(statement.text, statement.values))
    abort_task = asyncio.ensure_future(abort_event.wait())
    try:
        done, _ = await asyncio.wait(
            {query_task, abort_task}, return_when=asyncio.FIRST_COMPLETED
        )
    except BaseException:
        if not query_task.done():
            await _stop_statement(connection, query_task)
        raise
    finally:
        abort_task.cancel()

    if query_task in done:
        return query_task.result()

    await cancel_backend(connection)
    try:
        await query_task
    except Exception as exc:
        # Expected: the backend reports the cancelled statement as an error
        logger.debug("query.aborted_statement_finished", error=str(exc))
    raise aborted_error()


async def _stop_statement(connection: Connection, query_task: asyncio.Future) -> None:
    await cancel_backend(connection)
    query_task.cancel()
    await asyncio.wait({query_task})
    if not query_task.cancelled() and query_task.exception() is not None:
        logger.debug("query.aborted_statement_finished", error=str(query_task.exception()))


async def _return_rows(connection: Connection, rows: List[Any]) -> QueryResponse:
    return QueryResponse(data=rows)


async def run_statement(
    context: ExecutionContext,
    statement: CompiledStatement,
    abort_event: Optional[asyncio.Event] = None,
    on_rows: RowHandler = _return_rows,
) -> QueryResponse:
    """
    Run one compiled statement with the context's retry policy.

    Each attempt borrows a connection, applies the statement timeout, notifies
    ``on_query``, runs the statement and hands the rows to ``on_rows`` while
    the connection is still held. Failures are retried with
    ``backoff_ms * 2**attempt`` when ``is_retriable_error`` says so; aborted,
    validation and row-shape failures are final.
    """
    attempt = 0
    while True:
        response = await _attempt(context, statement, abort_event, on_rows)
        error = response.error
        if error is None:
            return response
        if attempt + 1 >= context.max_attempts or not is_retriable_error(error):
            break
        wait_ms = context.retries.backoff_ms * (2**attempt)
        logger.warning(
            "query.retrying",
            attempt=attempt + 1,
            max_attempts=context.max_attempts,
            wait_ms=wait_ms,
            code=error.code,
            pg_code=error.pg_code,
        )
        await asyncio.sleep(wait_ms / 1000)
        attempt += 1

    logger.info("query.failed", attempts=attempt + 1, **error.to_dict())
    context.hooks.error(error)
    return response


async def _attempt(
    context: ExecutionContext,
    statement: CompiledStatement,
    abort_event: Optional[asyncio.Event],
    on_rows: RowHandler,
) -> QueryResponse:
    if abort_event is not None and abort_event.is_set():
        return QueryResponse.failure(aborted_error())
    try:
        connection = await context.source.acquire()
    except Exception as exc:
        return QueryResponse.failure(
            create_error_from_thrown(ErrorCode.CONNECTION, "Failed to acquire connection", exc)
        )

    try:
        await apply_statement_timeout(connection, context.safety)
        context.hooks.query(statement.text, statement.values)
        rows = await _execute_with_abort(connection, statement, abort_event)
        logger.debug("query.executed", rows=len(rows), params=len(statement.values))
        return await on_rows(connection, rows)
    except DbError as err:
        return QueryResponse.failure(err)
    except Exception as exc:
        return QueryResponse.failure(
            create_error_from_thrown(ErrorCode.QUERY, "Unknown query error", exc)
        )
    finally:
        await release_connection(context.source, connection)


def shape_rows(state: BuilderState, rows: List[Any]) -> QueryResponse:
    """Apply ``single()`` / ``maybe_single()`` to the raw rows."""
    if state.single or state.maybe_single:
        label = "single()" if state.single else "maybe_single()"
        if len(rows) > 1:
            return QueryResponse.failure(
                create_error(ErrorCode.TOO_MANY_ROWS, f"Multiple rows returned for {label}")
            )
        if not rows:
            if state.single:
                return QueryResponse.failure(
                    create_error(ErrorCode.NO_ROWS, f"No rows returned for {label}")
                )
            return QueryResponse(data=None)
        return QueryResponse(data=rows[0])
    return QueryResponse(data=rows)


async def fetch_count(
    connection: Connection, state: BuilderState, context: ExecutionContext
) -> Optional[int]:
    """
    Run the count sub-query on the connection that served the select.

    Returns None on any failure; an estimate that cannot be parsed is also
    None.
    """
    try:
        statement = compile_count_statement(state, context.safety)
        context.hooks.query(statement.text, statement.values)
        rows = await connection.execute(statement.text, statement.values)
    except Exception as exc:
        logger.debug("query.count_failed", mode=state.count_mode, error=str(exc))
        return None
    if state.count_mode != "exact":
        return parse_estimated_count(rows)
    if not rows:
        return None
    count = rows[0].get("count")
    return count if isinstance(count, int) else None


async def execute_query(state: BuilderState, context: ExecutionContext) -> QueryResponse:
    """Compile and run a builder's state; the public path behind ``await builder``."""
    try:
        statement = compile_statement(state, context.safety)
    except DbError as err:
        logger.info(
            "query.rejected", table=state.table, operation=state.operation, **err.to_dict()
        )
        context.hooks.error(err)
        return QueryResponse.failure(err)

    async def on_rows(connection: Connection, rows: List[Any]) -> QueryResponse:
        response = shape_rows(state, rows)
        if response.ok and state.count_mode and state.operation == "select":
            response.count = await fetch_count(connection, state, context)
        return response

    return await run_statement(context, statement, state.abort_event, on_rows)


async def execute_raw(
    context: ExecutionContext, text: str, params: Optional[List[Any]] = None
) -> QueryResponse:
    """Run caller-written SQL with bound ``params``; same retry policy and hooks."""
    if not isinstance(text, str) or not text.strip():
        err = create_error(ErrorCode.VALIDATION, "Invalid SQL: must be a non-empty string")
        context.hooks.error(err)
        return QueryResponse.failure(err)
    values = tuple(adapt_param(value) for value in params or ())
    statement = CompiledStatement(text=text, values=values)
    return await run_statement(context, statement)
