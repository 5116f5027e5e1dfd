"""Connection collaborators: the pool/connection contract and its psycopg implementation."""

from .postgres import PsycopgConnection, PsycopgConnectionSource, normalize_connection
from .protocols import Connection, ConnectionSource

__all__ = [
    "Connection",
    "ConnectionSource",
    "PsycopgConnection",
    "PsycopgConnectionSource",
    "normalize_connection",
]
