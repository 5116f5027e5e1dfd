"""
UPDATE and DELETE statement builders.

SET values are bound before WHERE values, so placeholder numbers follow
reading order.
"""

from pgchain.config.options import SafetyOptions
from pgchain.errors import ErrorCode, create_error
from pgchain.infrastructure.sql.core.identifier import validate_identifier
from pgchain.query.state import BuilderState

from ..core.parameters import ParameterCollector
from ..dialects.postgresql import PostgreSQLDialect
from .where import build_where


def build_update_statement(
    state: BuilderState,
    dialect: PostgreSQLDialect,
    params: ParameterCollector,
    safety: SafetyOptions,
) -> str:
    values = state.update_values
    if not isinstance(values, dict) or not values:
        raise create_error(ErrorCode.VALIDATION, "Update requires at least one column")
    assignments = []
    for column, value in values.items():
        validate_identifier(column, "column")
        assignments.append((column, params.add(value)))
    where = build_where(state.filters, dialect, params, safety)
    sql = dialect.build_update(state.table, assignments, where, state.schema)
    return sql + dialect.build_returning(state.returning)


def build_delete_statement(
    state: BuilderState,
    dialect: PostgreSQLDialect,
    params: ParameterCollector,
    safety: SafetyOptions,
) -> str:
    where = build_where(state.filters, dialect, params, safety)
    sql = dialect.build_delete(state.table, where, state.schema)
    return sql + dialect.build_returning(state.returning)
