"""
Collaborator contracts required of the pool and its connections.

The execution engine only talks to these protocols; the psycopg-backed
implementation lives in ``postgres.py`` and tests supply in-memory fakes.
"""

from typing import Any, AsyncIterator, Dict, List, Protocol, Sequence, runtime_checkable

Row = Dict[str, Any]


@runtime_checkable
class Connection(Protocol):
    """
    One borrowed backend connection.

    ``cancel()`` is the narrow backend-cancel capability: it asks the server
    to abort whatever statement is currently running on this connection.
    """

    async def execute(self, text: str, values: Sequence[Any]) -> List[Row]:
        """Run one statement and return its rows (empty without a result set)."""
        ...

    def stream(self, text: str, values: Sequence[Any]) -> AsyncIterator[Row]:
        """Run one statement and yield rows as they arrive."""
        ...

    async def begin(self) -> None: ...

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...

    async def set_statement_timeout(self, timeout_ms: int) -> None:
        """Apply a statement timeout scoped to this connection (or transaction)."""
        ...

    async def cancel(self) -> None: ...


@runtime_checkable
class ConnectionSource(Protocol):
    """Pool facade: acquire, release, close."""

    async def acquire(self) -> Connection: ...

    async def release(self, connection: Connection) -> None: ...

    async def close(self) -> None: ...
