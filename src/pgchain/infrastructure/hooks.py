"""
Query and error observers.

Observers are dispatched on a later event-loop turn and never awaited by the
query path, so a slow or failing observer cannot delay or break a query.
Bound values are redacted before ``on_query`` sees them.
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Set, Union

from pgchain.errors import DbError, ErrorCode, create_error
from pgchain.utils.logging import get_logger
from pgchain.utils.redaction import redact_params

logger = get_logger(__name__)

QueryObserver = Callable[[str, List[Any]], Union[None, Awaitable[None]]]
ErrorObserver = Callable[[DbError], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class ClientHooks:
    """
    Optional observers attached to a client.

    Attributes:
        on_query: Called with ``(text, redacted_values)`` before each send
        on_error: Called with the ``DbError`` after each failure, and with a
            HOOK error when ``on_query`` itself fails

    Either callable may be a plain function or a coroutine function.
    """

    on_query: Optional[QueryObserver] = None
    on_error: Optional[ErrorObserver] = None


class HookDispatcher:
    """Schedules observer calls without blocking the caller."""

    def __init__(self, hooks: Optional[ClientHooks] = None):
        self._hooks = hooks or ClientHooks()
        self._pending: Set[asyncio.Future] = set()

    @property
    def enabled(self) -> bool:
        return self._hooks.on_query is not None or self._hooks.on_error is not None

    def query(self, text: str, values: Sequence[Any]) -> None:
        """Schedule ``on_query`` with redacted values."""
        if self._hooks.on_query is None:
            return
        redacted = redact_params(list(values))
        self._schedule(self._run_on_query, text, redacted)

    def error(self, error: DbError) -> None:
        """Schedule ``on_error``."""
        if self._hooks.on_error is None:
            return
        self._schedule(self._run_on_error, error)

    async def drain(self) -> None:
        """Wait for observer coroutines already started; used on close."""
        await asyncio.sleep(0)
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _schedule(self, callback: Callable[..., None], *args: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            callback(*args)
            return
        loop.call_soon(callback, *args)

    def _track(self, awaitable: Awaitable[Any], on_failure: Callable[[BaseException], None]) -> None:
        future = asyncio.ensure_future(awaitable)
        self._pending.add(future)

        def _done(fut: asyncio.Future) -> None:
            self._pending.discard(fut)
            if fut.cancelled():
                return
            exc = fut.exception()
            if exc is not None:
                on_failure(exc)

        future.add_done_callback(_done)

    def _run_on_query(self, text: str, values: List[Any]) -> None:
        try:
            result = self._hooks.on_query(text, values)
        except Exception as exc:
            self._on_query_failed(exc)
            return
        if inspect.isawaitable(result):
            self._track(result, self._on_query_failed)

    def _run_on_error(self, error: DbError) -> None:
        try:
            result = self._hooks.on_error(error)
        except Exception as exc:
            self._on_error_failed(exc)
            return
        if inspect.isawaitable(result):
            self._track(result, self._on_error_failed)

    def _on_query_failed(self, exc: BaseException) -> None:
        logger.warning("hooks.on_query_failed", error=str(exc))
        self.error(create_error(ErrorCode.HOOK, f"on_query hook failed: {exc}", details=exc))

    def _on_error_failed(self, exc: BaseException) -> None:
        logger.warning("hooks.on_error_failed", error=str(exc))
