"""Query layer: builder state, the fluent builder, execution and streaming."""

from .response import QueryResponse
from .state import BuilderState, CompiledStatement, OrderSpec
from .builder import QueryBuilder
from .stream import RowStream

__all__ = [
    "BuilderState",
    "CompiledStatement",
    "OrderSpec",
    "QueryBuilder",
    "QueryResponse",
    "RowStream",
]
