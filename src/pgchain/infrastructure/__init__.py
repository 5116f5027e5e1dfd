"""
Infrastructure Layer

Reusable services behind the query builder that hold no query semantics of
their own.

Components:
- sql: identifier validation, parameter collection, PostgreSQL dialect and
  the statement compiler
- hooks: fire-and-forget query/error observers with value redaction

Usage:
    from pgchain.infrastructure.sql.compiler import compile_statement
    from pgchain.infrastructure.hooks import ClientHooks
"""

__all__: list[str] = []
