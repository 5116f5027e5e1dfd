"""
SQL INSERT statement builders.

Provides multi-row INSERT and upsert (INSERT ... ON CONFLICT) with the bulk
parameter ceiling enforced before any SQL is produced.
"""

from typing import Any, Dict, List, Union

from pgchain.config.options import SafetyOptions
from pgchain.errors import ErrorCode, create_error
from pgchain.infrastructure.sql.core.identifier import split_column_list, validate_identifier
from pgchain.query.state import BuilderState

from ..core.parameters import ParameterCollector
from ..dialects.postgresql import PostgreSQLDialect


def normalize_rows(values: Union[Dict[str, Any], List[Dict[str, Any]], None], label: str) -> List[Dict[str, Any]]:
    """Turn a single record or a list of records into a non-empty row list."""
    rows = [values] if isinstance(values, dict) else values
    if not isinstance(rows, (list, tuple)) or not rows:
        raise create_error(ErrorCode.VALIDATION, f"{label} requires at least one row")
    for row in rows:
        if not isinstance(row, dict):
            raise create_error(ErrorCode.VALIDATION, f"{label} rows must be dicts")
    if not rows[0]:
        raise create_error(ErrorCode.VALIDATION, f"{label} requires at least one column")
    return list(rows)


def normalize_conflict_columns(on_conflict: Union[str, List[str], None]) -> List[str]:
    """Accept ``"a, b"`` or ``["a", "b"]``; every name is validated."""
    if isinstance(on_conflict, str):
        columns = split_column_list(on_conflict)
    elif isinstance(on_conflict, (list, tuple)):
        columns = list(on_conflict)
    else:
        columns = []
    if not columns:
        raise create_error(
            ErrorCode.VALIDATION, "Upsert requires at least one conflict column"
        )
    for column in columns:
        validate_identifier(column, "column")
    return columns


def build_insert_statement(
    state: BuilderState,
    dialect: PostgreSQLDialect,
    params: ParameterCollector,
    safety: SafetyOptions,
) -> str:
    """
    Build INSERT or upsert SQL from ``state.insert_values``.

    Every row is bound with the first row's column set; keys missing from a
    later row bind NULL.

    Raises:
        DbError: VALIDATION for bad columns, empty input or a statement whose
            rows x columns exceeds ``max_total_params``
    """
    upsert = state.operation == "upsert"
    label = "Upsert" if upsert else "Insert"
    rows = normalize_rows(state.insert_values, label)
    columns = list(rows[0].keys())
    for column in columns:
        validate_identifier(column, "column")

    total = len(rows) * len(columns)
    if total > safety.max_total_params:
        raise create_error(
            ErrorCode.VALIDATION,
            f"{label} too large: {len(rows)} rows x {len(columns)} columns = {total} "
            f"parameters exceeds max_total_params ({safety.max_total_params})",
        )

    conflict_columns = normalize_conflict_columns(state.conflict_columns) if upsert else []
    placeholders = [[params.add(row.get(column)) for column in columns] for row in rows]
    sql = dialect.build_insert(state.table, columns, placeholders, state.schema)

    if upsert:
        update_columns = [c for c in columns if c not in conflict_columns]
        if state.ignore_duplicates or not update_columns:
            sql += dialect.build_on_conflict_do_nothing(conflict_columns)
        else:
            sql += dialect.build_on_conflict_do_update(conflict_columns, update_columns)
    return sql + dialect.build_returning(state.returning)
