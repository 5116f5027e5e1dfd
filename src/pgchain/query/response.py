"""Uniform response returned by every public call."""

from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

from pgchain.errors import DbError

T = TypeVar("T")


@dataclass
class QueryResponse(Generic[T]):
    """
    ``{data, error, count}`` result of a query, write, rpc, raw statement or
    transaction. ``data`` and ``error`` are never both set; ``count`` is only
    filled for selects that asked for one.
    """

    data: Optional[T] = None
    error: Optional[DbError] = None
    count: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, error: DbError) -> "QueryResponse[Any]":
        return cls(data=None, error=error)
