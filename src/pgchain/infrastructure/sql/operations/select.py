"""
SELECT, COUNT and planner-estimate statement builders.
"""

import json
from typing import Any, List, Optional

from pgchain.config.options import SafetyOptions
from pgchain.infrastructure.sql.core.identifier import validate_column_list
from pgchain.query.state import BuilderState

from ..core.parameters import ParameterCollector
from ..dialects.postgresql import PostgreSQLDialect
from .where import build_where


def build_limit_offset(state: BuilderState, params: ParameterCollector) -> str:
    """
    Bind LIMIT/OFFSET for a select.

    ``range(a, b)`` wins over ``limit(n)``; without either, ``single()`` and
    ``maybe_single()`` bind an implicit LIMIT 1.
    """
    if state.range_start is not None and state.range_end is not None:
        limit = params.add(state.range_end - state.range_start + 1)
        offset = params.add(state.range_start)
        return f" LIMIT {limit} OFFSET {offset}"
    if state.limit_count is not None:
        return f" LIMIT {params.add(state.limit_count)}"
    if state.single or state.maybe_single:
        return f" LIMIT {params.add(1)}"
    return ""


def build_select_statement(
    state: BuilderState,
    dialect: PostgreSQLDialect,
    params: ParameterCollector,
    safety: SafetyOptions,
) -> str:
    columns = state.select_columns or "*"
    validate_column_list(columns)
    where = build_where(state.filters, dialect, params, safety)
    sql = dialect.build_select(state.table, columns, where, state.schema)
    sql += dialect.build_order_by(
        [(o.column, o.ascending, o.nulls_first) for o in state.order_by]
    )
    return sql + build_limit_offset(state, params)


def build_count_statement(
    state: BuilderState,
    dialect: PostgreSQLDialect,
    params: ParameterCollector,
    safety: SafetyOptions,
) -> str:
    """``SELECT COUNT(*)::int AS count`` over the same table and filters."""
    where = build_where(state.filters, dialect, params, safety)
    return dialect.build_count(state.table, where, state.schema)


def build_estimate_statement(
    state: BuilderState,
    dialect: PostgreSQLDialect,
    params: ParameterCollector,
    safety: SafetyOptions,
) -> str:
    """``EXPLAIN (FORMAT JSON)`` over the filtered select, without ORDER BY/LIMIT."""
    columns = state.select_columns or "*"
    validate_column_list(columns)
    where = build_where(state.filters, dialect, params, safety)
    return dialect.build_explain(dialect.build_select(state.table, columns, where, state.schema))


def parse_estimated_count(rows: List[Any]) -> Optional[int]:
    """
    Extract the planner's row estimate from ``EXPLAIN (FORMAT JSON)`` output.

    Returns:
        ``Plan Rows`` of the top plan node rounded to an int, or None when the
        output has an unexpected shape
    """
    try:
        plan = rows[0]["QUERY PLAN"]
        if isinstance(plan, (str, bytes)):
            plan = json.loads(plan)
        estimate = plan[0]["Plan"]["Plan Rows"]
    except (IndexError, KeyError, TypeError, ValueError):
        return None
    if isinstance(estimate, bool) or not isinstance(estimate, (int, float)):
        return None
    return int(round(estimate))
