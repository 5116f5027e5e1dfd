"""
Builder state to SQL compilation.

``compile_statement`` is pure: the same state and safety options always yield
the same text and values, and nothing here performs I/O. Validation failures
raise ``DbError`` (VALIDATION) synchronously; the execution engine catches
them and returns them as response errors.

Example:
    >>> from pgchain.query.state import BuilderState, ComparisonFilter
    >>> state = BuilderState(table="users", schema="public")
    >>> state.filters.append(ComparisonFilter("id", "eq", 1))
    >>> state.single = True
    >>> compile_statement(state).text
    'SELECT * FROM "public"."users" WHERE "id" = $1 LIMIT $2'
"""

from typing import Optional

from pgchain.config.options import SafetyOptions
from pgchain.errors import ErrorCode, create_error
from pgchain.query.state import BuilderState, CompiledStatement

from .core.parameters import ParameterCollector
from .dialects.postgresql import PostgreSQLDialect
from .operations.insert import build_insert_statement
from .operations.mutate import build_delete_statement, build_update_statement
from .operations.rpc import build_rpc_statement
from .operations.select import (
    build_count_statement,
    build_estimate_statement,
    build_select_statement,
)

_DIALECT = PostgreSQLDialect()
_DEFAULT_SAFETY = SafetyOptions()


def _prepare(state: BuilderState) -> None:
    if state.pending_error is not None:
        raise state.pending_error


def compile_statement(
    state: BuilderState, safety: Optional[SafetyOptions] = None
) -> CompiledStatement:
    """
    Compile the state's active operation.

    Args:
        state: Accumulated builder state
        safety: Resource ceilings; defaults apply when omitted

    Returns:
        CompiledStatement with ``$1..$N`` placeholders and N values

    Raises:
        DbError: VALIDATION for any bad identifier, oversized IN list or bulk
            write, or malformed payload
    """
    _prepare(state)
    safety = safety or _DEFAULT_SAFETY
    params = ParameterCollector()
    operation = state.operation

    if operation == "select":
        text = build_select_statement(state, _DIALECT, params, safety)
    elif operation in ("insert", "upsert"):
        text = build_insert_statement(state, _DIALECT, params, safety)
    elif operation == "update":
        text = build_update_statement(state, _DIALECT, params, safety)
    elif operation == "delete":
        text = build_delete_statement(state, _DIALECT, params, safety)
    elif operation == "rpc":
        text = build_rpc_statement(state, _DIALECT, params)
    else:
        raise create_error(ErrorCode.VALIDATION, f"Unsupported operation: {operation!r}")

    return CompiledStatement(text=text, values=tuple(params.values))


def compile_count_statement(
    state: BuilderState, safety: Optional[SafetyOptions] = None
) -> CompiledStatement:
    """
    Compile the count sub-query for a select.

    ``exact`` counts with ``COUNT(*)``; ``planned`` and ``estimated`` ask the
    planner via ``EXPLAIN (FORMAT JSON)``.
    """
    _prepare(state)
    safety = safety or _DEFAULT_SAFETY
    params = ParameterCollector()
    if state.count_mode == "exact":
        text = build_count_statement(state, _DIALECT, params, safety)
    else:
        text = build_estimate_statement(state, _DIALECT, params, safety)
    return CompiledStatement(text=text, values=tuple(params.values))
