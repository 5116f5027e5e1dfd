"""
WHERE clause assembly.

Filters are rendered in insertion order and AND-joined. Every value,
including each IN-list element, is bound through the statement's shared
``ParameterCollector``.
"""

from typing import List

from pgchain.config.options import SafetyOptions
from pgchain.errors import ErrorCode, create_error
from pgchain.query.state import (
    ComparisonFilter,
    ContainmentFilter,
    DistinctFilter,
    FilterClause,
    IsFilter,
    MatchFilter,
    MembershipFilter,
    NotFilter,
    OrFilter,
    PatternFilter,
    TextSearchFilter,
)

from ..core.parameters import ParameterCollector
from ..dialects.postgresql import PostgreSQLDialect


def _check_in_list(values, safety: SafetyOptions) -> None:
    if len(values) > safety.max_in_elements:
        raise create_error(
            ErrorCode.VALIDATION,
            f"IN list too large: {len(values)} elements exceeds max_in_elements "
            f"({safety.max_in_elements})",
        )


def _membership(
    dialect: PostgreSQLDialect,
    column: str,
    values,
    negated: bool,
    params: ParameterCollector,
    safety: SafetyOptions,
) -> str:
    _check_in_list(values, safety)
    if not values:
        # x IN () is a syntax error in PostgreSQL
        return "TRUE" if negated else "FALSE"
    placeholders = ", ".join(params.add_many(list(values)))
    keyword = "NOT IN" if negated else "IN"
    return f"{dialect.quote(column)} {keyword} ({placeholders})"


def build_filter(
    clause: FilterClause,
    dialect: PostgreSQLDialect,
    params: ParameterCollector,
    safety: SafetyOptions,
) -> str:
    """Render one filter clause, binding its values."""
    if isinstance(clause, (ComparisonFilter, ContainmentFilter)):
        return f"{dialect.quote(clause.column)} {dialect.operator(clause.operator)} {params.add(clause.value)}"
    if isinstance(clause, PatternFilter):
        return f"{dialect.quote(clause.column)} {dialect.operator(clause.operator)} {params.add(clause.pattern)}"
    if isinstance(clause, IsFilter):
        return f"{dialect.quote(clause.column)} {dialect.operator('is')} {params.add(clause.value)}"
    if isinstance(clause, MembershipFilter):
        return _membership(dialect, clause.column, clause.values, clause.negated, params, safety)
    if isinstance(clause, DistinctFilter):
        return f"{dialect.quote(clause.column)} IS DISTINCT FROM {params.add(clause.value)}"
    if isinstance(clause, NotFilter):
        if clause.operator == "in":
            inner = _membership(dialect, clause.column, clause.value, False, params, safety)
        else:
            inner = f"{dialect.quote(clause.column)} {dialect.operator(clause.operator)} {params.add(clause.value)}"
        return f"NOT ({inner})"
    if isinstance(clause, TextSearchFilter):
        config = params.add(clause.config)
        query = params.add(clause.query)
        return dialect.build_text_search(clause.column, config, query, clause.search_type)
    if isinstance(clause, MatchFilter):
        parts = [f"{dialect.quote(column)} = {params.add(value)}" for column, value in clause.pairs]
        return f"({' AND '.join(parts)})"
    if isinstance(clause, OrFilter):
        parts = [
            f"{dialect.quote(c.column)} {dialect.operator(c.operator)} {params.add(c.value)}"
            for c in clause.conditions
        ]
        return f"({' OR '.join(parts)})"
    raise create_error(ErrorCode.VALIDATION, f"Unsupported filter: {type(clause).__name__}")


def build_where(
    filters: List[FilterClause],
    dialect: PostgreSQLDialect,
    params: ParameterCollector,
    safety: SafetyOptions,
) -> str:
    """Return `` WHERE a AND b ...`` or an empty string when there are no filters."""
    if not filters:
        return ""
    fragments = [build_filter(clause, dialect, params, safety) for clause in filters]
    return " WHERE " + " AND ".join(fragments)
