"""Builder state: the accumulated description of one logical query.

A ``BuilderState`` is owned by exactly one ``QueryBuilder``, mutated by its
chained calls and consumed by the compiler when the query runs. Filters are a
tagged union (one frozen dataclass per predicate kind) that the WHERE
assembler matches exhaustively.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pgchain.errors import DbError, ErrorCode, create_error
from pgchain.infrastructure.sql.core.identifier import validate_identifier

Operation = Literal["select", "insert", "update", "upsert", "delete", "rpc"]
CountMode = Literal["exact", "planned", "estimated"]
TextSearchType = Literal["plain", "phrase", "websearch"]

COMPARISON_OPERATORS = frozenset({"eq", "neq", "gt", "gte", "lt", "lte"})
PATTERN_OPERATORS = frozenset({"like", "ilike"})
CONTAINMENT_OPERATORS = frozenset({"contains", "contained_by", "overlaps"})
# Operators accepted by not_(column, operator, value)
NEGATABLE_OPERATORS = COMPARISON_OPERATORS | PATTERN_OPERATORS | {"is", "in"}
TEXT_SEARCH_TYPES = frozenset({"plain", "phrase", "websearch"})
COUNT_MODES = frozenset({"exact", "planned", "estimated"})

Row = Dict[str, Any]


def _require_operator(operator: str, allowed: frozenset, context: str) -> None:
    if operator not in allowed:
        raise create_error(
            ErrorCode.VALIDATION,
            f"Invalid operator for {context}: {operator!r} (expected one of {', '.join(sorted(allowed))})",
        )


def _require_is_operand(value: Any) -> None:
    if value is not None and not isinstance(value, bool):
        raise create_error(
            ErrorCode.VALIDATION, "Invalid is() value: must be None, True or False"
        )


@dataclass(frozen=True)
class ComparisonFilter:
    """``col = $n`` and friends (eq, neq, gt, gte, lt, lte)."""

    column: str
    operator: str
    value: Any

    def __post_init__(self) -> None:
        validate_identifier(self.column, "column")
        _require_operator(self.operator, COMPARISON_OPERATORS, "comparison")


@dataclass(frozen=True)
class PatternFilter:
    """``col LIKE $n`` / ``col ILIKE $n``."""

    column: str
    operator: str
    pattern: str

    def __post_init__(self) -> None:
        validate_identifier(self.column, "column")
        _require_operator(self.operator, PATTERN_OPERATORS, "pattern match")


@dataclass(frozen=True)
class IsFilter:
    """``col IS NOT DISTINCT FROM $n`` for NULL / boolean tests."""

    column: str
    value: Optional[bool]

    def __post_init__(self) -> None:
        validate_identifier(self.column, "column")
        _require_is_operand(self.value)


@dataclass(frozen=True)
class MembershipFilter:
    """``col IN (...)`` or, when negated, ``col NOT IN (...)``."""

    column: str
    values: Tuple[Any, ...]
    negated: bool = False

    def __post_init__(self) -> None:
        validate_identifier(self.column, "column")


@dataclass(frozen=True)
class DistinctFilter:
    """``col IS DISTINCT FROM $n``."""

    column: str
    value: Any

    def __post_init__(self) -> None:
        validate_identifier(self.column, "column")


@dataclass(frozen=True)
class ContainmentFilter:
    """Array / JSONB / range operators: contains, contained_by, overlaps."""

    column: str
    operator: str
    value: Any

    def __post_init__(self) -> None:
        validate_identifier(self.column, "column")
        _require_operator(self.operator, CONTAINMENT_OPERATORS, "containment")


@dataclass(frozen=True)
class NotFilter:
    """``NOT (col OP $n)`` for any negatable operator."""

    column: str
    operator: str
    value: Any

    def __post_init__(self) -> None:
        validate_identifier(self.column, "column")
        _require_operator(self.operator, NEGATABLE_OPERATORS, "not()")
        if self.operator == "is":
            _require_is_operand(self.value)
        if self.operator == "in" and not isinstance(self.value, (list, tuple)):
            raise create_error(
                ErrorCode.VALIDATION, "Invalid not() value: 'in' requires a list"
            )


@dataclass(frozen=True)
class TextSearchFilter:
    """Full-text match of ``to_tsvector(config, col)`` against a tsquery."""

    column: str
    query: str
    config: str = "english"
    search_type: str = "plain"

    def __post_init__(self) -> None:
        validate_identifier(self.column, "column")
        _require_operator(self.search_type, TEXT_SEARCH_TYPES, "text_search type")
        if not isinstance(self.config, str) or not self.config:
            raise create_error(
                ErrorCode.VALIDATION, "Invalid text_search config: must be a non-empty string"
            )


@dataclass(frozen=True)
class MatchFilter:
    """Parenthesized AND of equalities, one per key of the matched record."""

    pairs: Tuple[Tuple[str, Any], ...]

    def __post_init__(self) -> None:
        if not self.pairs:
            raise create_error(
                ErrorCode.VALIDATION, "Invalid match(): record must not be empty"
            )
        for column, _ in self.pairs:
            validate_identifier(column, "column")


@dataclass(frozen=True)
class OrCondition:
    """One branch of an ``or_()`` disjunction."""

    column: str
    operator: str
    value: Any

    def __post_init__(self) -> None:
        validate_identifier(self.column, "column")
        _require_operator(self.operator, COMPARISON_OPERATORS, "or()")


@dataclass(frozen=True)
class OrFilter:
    """Parenthesized OR of comparisons."""

    conditions: Tuple[OrCondition, ...]

    def __post_init__(self) -> None:
        if not self.conditions:
            raise create_error(
                ErrorCode.VALIDATION, "Invalid or(): at least one condition is required"
            )


FilterClause = Union[
    ComparisonFilter,
    PatternFilter,
    IsFilter,
    MembershipFilter,
    DistinctFilter,
    ContainmentFilter,
    NotFilter,
    TextSearchFilter,
    MatchFilter,
    OrFilter,
]


@dataclass(frozen=True)
class OrderSpec:
    """ORDER BY entry; ``nulls_first=None`` keeps the backend default."""

    column: str
    ascending: bool = True
    nulls_first: Optional[bool] = None

    def __post_init__(self) -> None:
        validate_identifier(self.column, "column")


@dataclass
class BuilderState:
    """Mutable per-query state consumed by the compiler."""

    table: str
    schema: str
    operation: Operation = "select"
    select_columns: Optional[str] = None
    insert_values: Union[Row, List[Row], None] = None
    update_values: Optional[Row] = None
    conflict_columns: List[str] = field(default_factory=list)
    ignore_duplicates: bool = False
    rpc_name: Optional[str] = None
    rpc_args: List[Any] = field(default_factory=list)
    filters: List[FilterClause] = field(default_factory=list)
    order_by: List[OrderSpec] = field(default_factory=list)
    limit_count: Optional[int] = None
    range_start: Optional[int] = None
    range_end: Optional[int] = None
    single: bool = False
    maybe_single: bool = False
    returning: Optional[str] = None
    count_mode: Optional[CountMode] = None
    abort_event: Optional[asyncio.Event] = None
    # First add-time validation failure; raised again at compile time
    pending_error: Optional[DbError] = None

    @property
    def is_write(self) -> bool:
        return self.operation in ("insert", "update", "upsert", "delete")

    def record_error(self, error: DbError) -> None:
        if self.pending_error is None:
            self.pending_error = error


@dataclass(frozen=True)
class CompiledStatement:
    """Parameterized SQL text plus its ordered bound values."""

    text: str
    values: Tuple[Any, ...] = ()

    @property
    def parameter_count(self) -> int:
        return len(self.values)
