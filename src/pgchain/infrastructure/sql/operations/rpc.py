"""Stored function calls: ``SELECT cols FROM "schema"."fn"($1, ...)``."""

from pgchain.errors import ErrorCode, create_error
from pgchain.query.state import BuilderState

from ..core.parameters import ParameterCollector
from ..dialects.postgresql import PostgreSQLDialect


def build_rpc_statement(
    state: BuilderState,
    dialect: PostgreSQLDialect,
    params: ParameterCollector,
) -> str:
    if not state.rpc_name:
        raise create_error(ErrorCode.VALIDATION, "Invalid function: must be a non-empty string")
    placeholders = params.add_many(list(state.rpc_args))
    columns = state.select_columns or "*"
    return dialect.build_function_call(state.rpc_name, placeholders, state.schema, columns)
