"""
Fluent query builder.

Each ``QueryBuilder`` owns one ``BuilderState``; chained calls mutate it and
return ``self``. Nothing touches the network until the builder is awaited
(or ``execute()`` / ``stream()`` is called).

Invalid input is caught when the call is made, remembered, and reported as
the VALIDATION error of the response, so a chain never raises:

    >>> response = await db.from_("users").select("id, name").eq("id", 1).single()
    >>> response.data, response.error
    ({'id': 1, 'name': 'Ada'}, None)
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, Generator, Iterable, List, Optional, Sequence, Tuple, Union

from pgchain.errors import DbError, ErrorCode, create_error
from pgchain.infrastructure.sql.compiler import compile_statement
from pgchain.infrastructure.sql.core.identifier import split_column_list, validate_column_list
from pgchain.infrastructure.sql.core.limits import validate_limit, validate_range
from pgchain.query.execution import ExecutionContext, execute_query
from pgchain.query.response import QueryResponse
from pgchain.query.state import (
    COUNT_MODES,
    BuilderState,
    CompiledStatement,
    ComparisonFilter,
    ContainmentFilter,
    DistinctFilter,
    IsFilter,
    MatchFilter,
    MembershipFilter,
    NotFilter,
    OrCondition,
    OrderSpec,
    OrFilter,
    PatternFilter,
    TextSearchFilter,
)
from pgchain.query.stream import open_stream

Record = Dict[str, Any]
OrEntry = Union[Tuple[str, str, Any], Dict[str, Any]]


class QueryBuilder:
    """Chainable builder for one select/insert/update/upsert/delete/rpc call."""

    def __init__(self, table: str, schema: str, context: ExecutionContext):
        self._state = BuilderState(table=table, schema=schema)
        self._context = context

    @property
    def state(self) -> BuilderState:
        return self._state

    def _guard(self, action: Callable[..., Any], *args: Any) -> Any:
        try:
            return action(*args)
        except DbError as err:
            self._state.record_error(err)
            return None

    def _check(self, validator: Callable[..., None], *args: Any) -> bool:
        try:
            validator(*args)
        except DbError as err:
            self._state.record_error(err)
            return False
        return True

    def _add_filter(self, factory: Callable[..., Any], *args: Any) -> "QueryBuilder":
        clause = self._guard(factory, *args)
        if clause is not None:
            self._state.filters.append(clause)
        return self

    # Operations

    def select(self, columns: str = "*", count: Optional[str] = None) -> "QueryBuilder":
        """
        Choose columns to read.

        After ``insert``/``update``/``upsert``/``delete`` this sets the
        RETURNING columns instead. ``count`` ("exact", "planned" or
        "estimated") adds a row count to the response.
        """
        self._check(validate_column_list, columns)
        if self._state.is_write:
            self._state.returning = columns
            return self
        if self._state.operation != "rpc":
            self._state.operation = "select"
        self._state.select_columns = columns
        if count is not None:
            if count in COUNT_MODES:
                self._state.count_mode = count
            else:
                self._state.record_error(
                    create_error(
                        ErrorCode.VALIDATION,
                        f"Invalid count mode: {count!r} (expected exact, planned or estimated)",
                    )
                )
        return self

    def insert(self, values: Union[Record, List[Record]]) -> "QueryBuilder":
        self._state.operation = "insert"
        self._state.insert_values = values
        return self

    def update(self, values: Record) -> "QueryBuilder":
        self._state.operation = "update"
        self._state.update_values = values
        return self

    def upsert(
        self,
        values: Union[Record, List[Record]],
        on_conflict: Union[str, Sequence[str]],
        ignore_duplicates: bool = False,
    ) -> "QueryBuilder":
        """
        INSERT ... ON CONFLICT.

        Args:
            values: One record or a list of records
            on_conflict: Conflict target columns, as a list or ``"a, b"``
            ignore_duplicates: ``DO NOTHING`` instead of updating the
                non-conflict columns
        """
        self._state.operation = "upsert"
        self._state.insert_values = values
        if isinstance(on_conflict, str):
            self._state.conflict_columns = split_column_list(on_conflict)
        else:
            self._state.conflict_columns = list(on_conflict or [])
        self._state.ignore_duplicates = bool(ignore_duplicates)
        return self

    def delete(self) -> "QueryBuilder":
        self._state.operation = "delete"
        return self

    def rpc(self, fn: str, args: Optional[Sequence[Any]] = None) -> "QueryBuilder":
        """Call a set-returning or scalar function with positional ``args``."""
        self._state.operation = "rpc"
        self._state.rpc_name = fn
        if args is not None and not isinstance(args, (list, tuple)):
            self._state.record_error(
                create_error(ErrorCode.VALIDATION, "Invalid rpc args: must be a list")
            )
            args = None
        self._state.rpc_args = list(args or [])
        return self

    def returning(self, columns: str = "*") -> "QueryBuilder":
        self._check(validate_column_list, columns)
        self._state.returning = columns
        return self

    # Filters

    def eq(self, column: str, value: Any) -> "QueryBuilder":
        return self._add_filter(ComparisonFilter, column, "eq", value)

    def neq(self, column: str, value: Any) -> "QueryBuilder":
        return self._add_filter(ComparisonFilter, column, "neq", value)

    def gt(self, column: str, value: Any) -> "QueryBuilder":
        return self._add_filter(ComparisonFilter, column, "gt", value)

    def gte(self, column: str, value: Any) -> "QueryBuilder":
        return self._add_filter(ComparisonFilter, column, "gte", value)

    def lt(self, column: str, value: Any) -> "QueryBuilder":
        return self._add_filter(ComparisonFilter, column, "lt", value)

    def lte(self, column: str, value: Any) -> "QueryBuilder":
        return self._add_filter(ComparisonFilter, column, "lte", value)

    def like(self, column: str, pattern: str) -> "QueryBuilder":
        return self._add_filter(PatternFilter, column, "like", pattern)

    def ilike(self, column: str, pattern: str) -> "QueryBuilder":
        return self._add_filter(PatternFilter, column, "ilike", pattern)

    def is_(self, column: str, value: Optional[bool]) -> "QueryBuilder":
        """``column IS NULL / TRUE / FALSE``."""
        return self._add_filter(IsFilter, column, value)

    def in_(self, column: str, values: Iterable[Any]) -> "QueryBuilder":
        return self._add_filter(self._membership, column, values, False)

    def not_in(self, column: str, values: Iterable[Any]) -> "QueryBuilder":
        return self._add_filter(self._membership, column, values, True)

    def is_distinct(self, column: str, value: Any) -> "QueryBuilder":
        return self._add_filter(DistinctFilter, column, value)

    def contains(self, column: str, value: Any) -> "QueryBuilder":
        return self._add_filter(ContainmentFilter, column, "contains", value)

    def contained_by(self, column: str, value: Any) -> "QueryBuilder":
        return self._add_filter(ContainmentFilter, column, "contained_by", value)

    def overlaps(self, column: str, value: Any) -> "QueryBuilder":
        return self._add_filter(ContainmentFilter, column, "overlaps", value)

    def not_(self, column: str, operator: str, value: Any) -> "QueryBuilder":
        """``NOT (column <operator> value)``; ``in`` takes a list."""
        if operator == "in" and isinstance(value, (set, frozenset)):
            value = list(value)
        return self._add_filter(NotFilter, column, operator, value)

    def text_search(
        self,
        column: str,
        query: str,
        config: Optional[str] = None,
        search_type: str = "plain",
    ) -> "QueryBuilder":
        """Full-text match; ``search_type`` is plain, phrase or websearch."""
        return self._add_filter(TextSearchFilter, column, query, config or "english", search_type)

    def match(self, record: Record) -> "QueryBuilder":
        """AND of ``column = value`` for every key of ``record``."""
        return self._add_filter(self._match, record)

    def or_(self, conditions: Sequence[OrEntry]) -> "QueryBuilder":
        """
        OR of comparisons.

        Each entry is ``(column, op, value)`` or ``{"column": ..., "op": ...,
        "value": ...}`` with op in eq/neq/gt/gte/lt/lte.
        """
        return self._add_filter(self._disjunction, conditions)

    @staticmethod
    def _membership(column: str, values: Iterable[Any], negated: bool) -> MembershipFilter:
        if isinstance(values, (str, bytes, dict)):
            raise create_error(ErrorCode.VALIDATION, "Invalid in() values: must be a list")
        try:
            items = tuple(values)
        except TypeError:
            raise create_error(
                ErrorCode.VALIDATION, "Invalid in() values: must be a list"
            ) from None
        return MembershipFilter(column, items, negated)

    @staticmethod
    def _match(record: Record) -> MatchFilter:
        if not isinstance(record, dict):
            raise create_error(ErrorCode.VALIDATION, "Invalid match(): record must be a dict")
        return MatchFilter(tuple(record.items()))

    @staticmethod
    def _disjunction(conditions: Sequence[OrEntry]) -> OrFilter:
        if not isinstance(conditions, (list, tuple)):
            raise create_error(ErrorCode.VALIDATION, "Invalid or(): conditions must be a list")
        parsed = []
        for entry in conditions:
            if isinstance(entry, dict):
                operator = entry.get("op", entry.get("operator"))
                parsed.append(OrCondition(entry.get("column"), operator, entry.get("value")))
            elif isinstance(entry, (list, tuple)) and len(entry) == 3:
                parsed.append(OrCondition(*entry))
            else:
                raise create_error(
                    ErrorCode.VALIDATION,
                    "Invalid or() condition: expected (column, op, value)",
                )
        return OrFilter(tuple(parsed))

    # Modifiers

    def order(
        self, column: str, ascending: bool = True, nulls_first: Optional[bool] = None
    ) -> "QueryBuilder":
        spec = self._guard(OrderSpec, column, ascending, nulls_first)
        if spec is not None:
            self._state.order_by.append(spec)
        return self

    def limit(self, count: int) -> "QueryBuilder":
        if self._check(validate_limit, count):
            self._state.limit_count = count
        return self

    def range(self, start: int, end: int) -> "QueryBuilder":
        """Rows ``start..end`` inclusive (LIMIT end-start+1 OFFSET start)."""
        if self._check(validate_range, start, end):
            self._state.range_start = start
            self._state.range_end = end
        return self

    def single(self) -> "QueryBuilder":
        """Require exactly one row; ``data`` becomes that row."""
        self._state.single = True
        return self

    def maybe_single(self) -> "QueryBuilder":
        """Allow zero or one row; zero rows gives ``data=None``."""
        self._state.maybe_single = True
        return self

    def abort_signal(self, event: asyncio.Event) -> "QueryBuilder":
        """Abort the query (backend cancel, ABORTED error) once ``event`` is set."""
        self._state.abort_event = event
        return self

    # Execution

    def to_sql(self) -> CompiledStatement:
        """
        Compile without executing.

        Raises:
            DbError: VALIDATION for any invalid input recorded in the chain
        """
        return compile_statement(self._state, self._context.safety)

    async def execute(self) -> QueryResponse:
        return await execute_query(self._state, self._context)

    async def stream(self) -> QueryResponse:
        """Stream a select; ``data`` is a ``RowStream`` that must be exhausted or closed."""
        return await open_stream(self._state, self._context)

    def __await__(self) -> Generator[Any, None, QueryResponse]:
        return self.execute().__await__()
