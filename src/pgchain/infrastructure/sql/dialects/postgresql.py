"""
PostgreSQL-specific SQL dialect implementation.

Provides PostgreSQL syntax for SELECT/INSERT/UPDATE/DELETE statements,
conflict handling, operator tokens and identifier quoting. Callers pass
already-allocated ``$n`` placeholders; the dialect never sees values.
"""

from typing import Dict, List, Optional

from ..core.identifier import (
    qualify_table,
    quote_column_list,
    quote_identifier,
    validate_identifier,
)

COMPARISON_TOKENS: Dict[str, str] = {
    "eq": "=",
    "neq": "<>",
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
}

PATTERN_TOKENS: Dict[str, str] = {"like": "LIKE", "ilike": "ILIKE"}

CONTAINMENT_TOKENS: Dict[str, str] = {
    "contains": "@>",
    "contained_by": "<@",
    "overlaps": "&&",
}

TSQUERY_FUNCTIONS: Dict[str, str] = {
    "plain": "plainto_tsquery",
    "phrase": "phraseto_tsquery",
    "websearch": "websearch_to_tsquery",
}


class PostgreSQLDialect:
    """PostgreSQL SQL dialect implementation."""

    name = "postgresql"

    def quote(self, identifier: str) -> str:
        """Quote an identifier using PostgreSQL syntax (double quotes)."""
        validate_identifier(identifier, "column")
        return quote_identifier(identifier)

    def qualify(self, table: str, schema: Optional[str] = None) -> str:
        """Create a fully qualified table reference."""
        return qualify_table(table, schema)

    def operator(self, name: str) -> str:
        """Map a builder operator name (eq, like, is, contains, ...) to SQL."""
        if name == "is":
            # Bound form of IS NULL / IS TRUE / IS FALSE
            return "IS NOT DISTINCT FROM"
        for table in (COMPARISON_TOKENS, PATTERN_TOKENS, CONTAINMENT_TOKENS):
            if name in table:
                return table[name]
        raise KeyError(name)

    def build_select(
        self,
        table: str,
        columns: str,
        where: str = "",
        schema: Optional[str] = None,
    ) -> str:
        """Build ``SELECT cols FROM "schema"."table" [WHERE ...]``."""
        sql = f"SELECT {quote_column_list(columns)} FROM {self.qualify(table, schema)}"
        return f"{sql}{where}"

    def build_order_by(self, entries: List[tuple]) -> str:
        """
        Build an ORDER BY clause.

        Args:
            entries: ``(column, ascending, nulls_first)`` tuples; ``nulls_first``
                of None leaves null placement to the backend

        Returns:
            `` ORDER BY ...`` or an empty string
        """
        if not entries:
            return ""
        parts = []
        for column, ascending, nulls_first in entries:
            part = f"{self.quote(column)} {'ASC' if ascending else 'DESC'}"
            if nulls_first is not None:
                part += " NULLS FIRST" if nulls_first else " NULLS LAST"
            parts.append(part)
        return " ORDER BY " + ", ".join(parts)

    def build_insert(
        self,
        table: str,
        columns: List[str],
        rows: List[List[str]],
        schema: Optional[str] = None,
    ) -> str:
        """
        Build a multi-row INSERT statement.

        Args:
            table: Table name
            columns: List of column names
            rows: One list of parameter placeholders per row
            schema: Optional schema name

        Returns:
            INSERT SQL statement
        """
        qualified_table = self.qualify(table, schema)
        quoted_cols = ", ".join(self.quote(c) for c in columns)
        values = ", ".join(f"({', '.join(placeholders)})" for placeholders in rows)
        return f"INSERT INTO {qualified_table} ({quoted_cols}) VALUES {values}"

    def build_on_conflict_do_nothing(self, conflict_columns: List[str]) -> str:
        conflict_cols = ", ".join(self.quote(c) for c in conflict_columns)
        return f" ON CONFLICT ({conflict_cols}) DO NOTHING"

    def build_on_conflict_do_update(
        self, conflict_columns: List[str], update_columns: List[str]
    ) -> str:
        """Build ``ON CONFLICT (...) DO UPDATE SET col = EXCLUDED.col, ...``."""
        conflict_cols = ", ".join(self.quote(c) for c in conflict_columns)
        update_set = ", ".join(
            f"{self.quote(col)} = EXCLUDED.{self.quote(col)}" for col in update_columns
        )
        return f" ON CONFLICT ({conflict_cols}) DO UPDATE SET {update_set}"

    def build_update(
        self,
        table: str,
        assignments: List[tuple],
        where: str = "",
        schema: Optional[str] = None,
    ) -> str:
        """Build ``UPDATE ... SET col = $n, ...`` from ``(column, placeholder)`` pairs."""
        set_clause = ", ".join(f"{self.quote(col)} = {ph}" for col, ph in assignments)
        return f"UPDATE {self.qualify(table, schema)} SET {set_clause}{where}"

    def build_delete(self, table: str, where: str = "", schema: Optional[str] = None) -> str:
        return f"DELETE FROM {self.qualify(table, schema)}{where}"

    def build_returning(self, columns: Optional[str]) -> str:
        if not columns:
            return ""
        return f" RETURNING {quote_column_list(columns)}"

    def build_count(self, table: str, where: str = "", schema: Optional[str] = None) -> str:
        return f"SELECT COUNT(*)::int AS count FROM {self.qualify(table, schema)}{where}"

    def build_explain(self, statement: str) -> str:
        return f"EXPLAIN (FORMAT JSON) {statement}"

    def build_function_call(
        self,
        function: str,
        placeholders: List[str],
        schema: Optional[str] = None,
        columns: str = "*",
    ) -> str:
        """Build ``SELECT * FROM "schema"."fn"($1, ...)``."""
        qualified = qualify_table(function, schema, kind="function")
        return f"SELECT {quote_column_list(columns)} FROM {qualified}({', '.join(placeholders)})"

    def build_text_search(
        self, column: str, config_placeholder: str, query_placeholder: str, search_type: str
    ) -> str:
        function = TSQUERY_FUNCTIONS[search_type]
        return (
            f"to_tsvector({config_placeholder}::regconfig, {self.quote(column)}) @@ "
            f"{function}({config_placeholder}::regconfig, {query_placeholder})"
        )
