"""
Unit tests for the psycopg-backed connection and connection source.
"""

import logging
from unittest.mock import AsyncMock, MagicMock, patch

import psycopg
import pytest
from psycopg.conninfo import conninfo_to_dict
from psycopg.rows import dict_row

from pgchain.config.options import ConnectionConfig
from pgchain.errors import DbError, ErrorCode
from pgchain.io.connectors.postgres import (
    PsycopgConnection,
    PsycopgConnectionSource,
    normalize_connection,
)

pytestmark = pytest.mark.unit


class _Cursor:
    def __init__(self, rows, description=("col",)):
        self.rows = rows
        self.description = description
        self.execute = AsyncMock()

    async def fetchall(self):
        return self.rows

    async def stream(self, text, values):
        for row in self.rows:
            yield row

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return None


def make_raw(autocommit=True):
    raw = MagicMock(name="raw")
    raw.autocommit = autocommit
    raw.cursor = MagicMock()
    raw.execute = AsyncMock()
    raw.set_autocommit = AsyncMock()
    raw.cancel_safe = AsyncMock()
    return raw


class TestNormalizeConnection:
    def test_dsn_passes_through(self):
        dsn = "postgresql://app@localhost:5432/app"
        assert normalize_connection(dsn) == dsn

    def test_keyword_dsn(self):
        dsn = "host=localhost port=5432 dbname=app"
        assert normalize_connection(dsn) == dsn

    def test_config_object(self):
        conninfo = normalize_connection(
            ConnectionConfig(host="db", port=6543, user="app", database="main", password="pw", ssl=True)
        )
        parsed = conninfo_to_dict(conninfo)
        assert parsed["host"] == "db"
        assert parsed["port"] == "6543"
        assert parsed["dbname"] == "main"
        assert parsed["password"] == "pw"
        assert parsed["sslmode"] == "require"

    def test_dict_input(self):
        parsed = conninfo_to_dict(normalize_connection({"host": "db"}))
        assert parsed["host"] == "db"
        assert parsed["port"] == "5432"
        assert "sslmode" not in parsed

    def test_ssl_false(self):
        conninfo = normalize_connection(ConnectionConfig(host="db", ssl=False))
        assert conninfo_to_dict(conninfo)["sslmode"] == "disable"

    @pytest.mark.parametrize(
        "dsn", ["host=db port=0", "host=db port=65536", "host=db port=abc"]
    )
    def test_bad_port(self, dsn):
        with pytest.raises(DbError) as exc_info:
            normalize_connection(dsn)
        assert exc_info.value.code == ErrorCode.VALIDATION

    def test_unparseable_dsn(self):
        with pytest.raises(DbError, match="Invalid connection string"):
            normalize_connection("host='unterminated")

    @pytest.mark.parametrize("value", ["", 42, None])
    def test_unsupported_input(self, value):
        with pytest.raises(DbError):
            normalize_connection(value)

    def test_prod_without_ssl_warns(self, monkeypatch, caplog):
        monkeypatch.setenv("PGCHAIN_ENVIRONMENT", "prod")
        caplog.set_level(logging.WARNING, logger="pgchain")
        normalize_connection("host=db dbname=app")
        assert any("connection.ssl_not_enforced" in r.message for r in caplog.records)


@pytest.fixture
def cursor():
    """Patch the cursor class the connection builds; yields the shared fake."""
    fake = _Cursor([])
    with patch("pgchain.io.connectors.postgres.AsyncRawCursor", return_value=fake) as cursor_cls:
        fake.cls = cursor_cls
        yield fake


def executed(cursor):
    return [c.args for c in cursor.execute.await_args_list]


class TestPsycopgConnection:
    @pytest.mark.asyncio
    async def test_execute_returns_rows(self, cursor):
        cursor.rows = [{"id": 1}]
        raw = make_raw()
        connection = PsycopgConnection(raw)

        rows = await connection.execute("SELECT $1", (1,))

        assert rows == [{"id": 1}]
        assert executed(cursor) == [("SELECT $1", [1])]

    @pytest.mark.asyncio
    async def test_cursor_settings_do_not_depend_on_pool(self, cursor):
        """Raw cursor and dict rows are chosen per statement, not by the pool."""
        raw = make_raw()
        connection = PsycopgConnection(raw)

        await connection.execute("SELECT $1", (1,))
        await connection.begin()

        for call in cursor.cls.call_args_list:
            assert call.args == (raw,)
            assert call.kwargs == {"row_factory": dict_row}
        raw.cursor.assert_not_called()
        raw.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_execute_without_result_set(self, cursor):
        cursor.description = None
        connection = PsycopgConnection(make_raw())
        assert await connection.execute("DELETE FROM t", ()) == []

    @pytest.mark.asyncio
    async def test_stream(self, cursor):
        cursor.rows = [{"id": 1}, {"id": 2}]
        connection = PsycopgConnection(make_raw())
        rows = [row async for row in connection.stream("SELECT 1", ())]
        assert rows == [{"id": 1}, {"id": 2}]

    @pytest.mark.asyncio
    async def test_transaction_flags(self, cursor):
        connection = PsycopgConnection(make_raw())

        await connection.begin()
        assert connection.in_transaction
        await connection.commit()
        assert not connection.in_transaction

        await connection.begin()
        await connection.rollback()
        assert not connection.in_transaction
        assert [args[0] for args in executed(cursor)] == [
            "BEGIN",
            "COMMIT",
            "BEGIN",
            "ROLLBACK",
        ]

    @pytest.mark.asyncio
    async def test_statement_timeout_session_level(self, cursor):
        connection = PsycopgConnection(make_raw())

        await connection.set_statement_timeout(1500)

        assert executed(cursor) == [
            ("SELECT set_config('statement_timeout', $1, $2)", ["1500ms", False])
        ]
        assert connection.timeout_applied

        await connection.reset()
        assert executed(cursor)[-1] == ("RESET statement_timeout", None)
        assert not connection.timeout_applied

    @pytest.mark.asyncio
    async def test_statement_timeout_transaction_local(self, cursor):
        connection = PsycopgConnection(make_raw())
        await connection.begin()

        await connection.set_statement_timeout(200)

        assert executed(cursor)[-1] == (
            "SELECT set_config('statement_timeout', $1, $2)",
            ["200ms", True],
        )
        assert not connection.timeout_applied

    @pytest.mark.asyncio
    async def test_reset_without_timeout_is_noop(self, cursor):
        raw = make_raw()
        await PsycopgConnection(raw).reset()
        cursor.execute.assert_not_awaited()
        raw.set_autocommit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancel(self):
        raw = make_raw()
        await PsycopgConnection(raw).cancel()
        raw.cancel_safe.assert_awaited_once()


def make_pool(raw):
    pool = MagicMock(name="pool")
    pool.getconn = AsyncMock(return_value=raw)
    pool.putconn = AsyncMock()
    pool.open = AsyncMock()
    pool.close = AsyncMock()
    return pool


class TestPsycopgConnectionSource:
    def test_requires_conninfo_or_pool(self):
        with pytest.raises(DbError):
            PsycopgConnectionSource()

    @pytest.mark.asyncio
    async def test_creates_closed_pool(self):
        source = PsycopgConnectionSource("host=localhost dbname=app")
        assert source.pool.closed
        assert source.pool.kwargs["autocommit"] is True
        assert source.pool.kwargs["cursor_factory"] is psycopg.AsyncRawCursor

    @pytest.mark.asyncio
    async def test_acquire_and_release(self, cursor):
        raw = make_raw()
        pool = make_pool(raw)
        source = PsycopgConnectionSource(pool=pool)

        connection = await source.acquire()
        assert connection.raw is raw
        await source.release(connection)

        pool.open.assert_not_awaited()
        raw.set_autocommit.assert_not_awaited()
        pool.putconn.assert_awaited_once_with(raw)

    @pytest.mark.asyncio
    async def test_borrowed_connection_switched_to_autocommit(self, cursor):
        """A pool built without autocommit is switched while borrowed and restored."""
        raw = make_raw(autocommit=False)
        pool = make_pool(raw)
        source = PsycopgConnectionSource(pool=pool)

        connection = await source.acquire()
        raw.set_autocommit.assert_awaited_once_with(True)

        await source.release(connection)
        assert raw.set_autocommit.await_args_list[-1].args == (False,)
        pool.putconn.assert_awaited_once_with(raw)

    @pytest.mark.asyncio
    async def test_autocommit_failure_returns_connection(self):
        raw = make_raw(autocommit=False)
        raw.set_autocommit.side_effect = psycopg.OperationalError("connection lost")
        pool = make_pool(raw)
        source = PsycopgConnectionSource(pool=pool)

        with pytest.raises(psycopg.OperationalError):
            await source.acquire()
        pool.putconn.assert_awaited_once_with(raw)

    @pytest.mark.asyncio
    async def test_release_rolls_back_open_transaction(self, cursor):
        raw = make_raw()
        source = PsycopgConnectionSource(pool=make_pool(raw))
        connection = await source.acquire()
        await connection.begin()

        await source.release(connection)

        assert executed(cursor)[-1] == ("ROLLBACK", None)
        assert not connection.in_transaction

    @pytest.mark.asyncio
    async def test_release_returns_broken_connection(self, cursor):
        raw = make_raw()
        pool = make_pool(raw)
        source = PsycopgConnectionSource(pool=pool)
        connection = await source.acquire()
        await connection.set_statement_timeout(100)
        cursor.execute.side_effect = psycopg.OperationalError("connection lost")

        await source.release(connection)

        pool.putconn.assert_awaited_once_with(raw)

    @pytest.mark.asyncio
    async def test_borrowed_pool_not_closed(self):
        pool = make_pool(make_raw())
        await PsycopgConnectionSource(pool=pool).close()
        pool.close.assert_not_awaited()
