"""Shared pytest fixtures: settings isolation and in-memory connection fakes.

The fakes stand in for the pool/connection collaborator, so no test here needs
a running PostgreSQL server.
"""

from __future__ import annotations

import os
from typing import Any, Iterable, List
from unittest.mock import AsyncMock, MagicMock

import pytest

from pgchain.client import create_client
from pgchain.config.settings import get_settings

# Keep developer environment variables out of Settings() during tests
for _key in list(os.environ):
    if _key.startswith("PGCHAIN_") and not _key.startswith("PGCHAIN_TEST_"):
        os.environ.pop(_key)


@pytest.fixture(autouse=True)
def _fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def make_stream(rows: Iterable[Any], fail_after: int | None = None, error: Exception | None = None):
    """Build a ``Connection.stream`` side effect yielding ``rows``.

    With ``fail_after`` set, ``error`` is raised once that many rows were yielded.
    """
    rows = list(rows)

    def _stream(text: str, values: Any):
        async def _gen():
            for index, row in enumerate(rows):
                if fail_after is not None and index == fail_after:
                    raise error
                yield row
            if fail_after is not None and fail_after >= len(rows):
                raise error

        return _gen()

    return _stream


def make_connection(results: List[Any] | None = None) -> MagicMock:
    """Fake ``Connection``; ``results`` feeds successive ``execute`` calls."""
    connection = MagicMock(name="connection")
    if results is None:
        connection.execute = AsyncMock(return_value=[])
    else:
        connection.execute = AsyncMock(side_effect=results)
    connection.stream = MagicMock(side_effect=make_stream([]))
    connection.begin = AsyncMock()
    connection.commit = AsyncMock()
    connection.rollback = AsyncMock()
    connection.set_statement_timeout = AsyncMock()
    connection.cancel = AsyncMock()
    return connection


def make_source(connection: MagicMock) -> MagicMock:
    """Fake ``ConnectionSource`` that always lends ``connection``."""
    source = MagicMock(name="source")
    source.acquire = AsyncMock(return_value=connection)
    source.release = AsyncMock()
    source.open = AsyncMock()
    source.close = AsyncMock()
    return source


@pytest.fixture
def connection():
    return make_connection()


@pytest.fixture
def source(connection):
    return make_source(connection)


@pytest.fixture
def db(source):
    """Client over the fake source with default options."""
    return create_client(source=source)


@pytest.fixture
def connection_factory():
    return make_connection


@pytest.fixture
def source_factory():
    return make_source


@pytest.fixture
def stream_factory():
    return make_stream
