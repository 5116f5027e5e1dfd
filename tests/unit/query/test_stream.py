"""
Unit tests for RowStream / stream().
"""

import asyncio

import psycopg
import pytest

from pgchain.errors import DbError, ErrorCode
from pgchain.query.stream import RowStream

ROWS = [{"id": 1}, {"id": 2}, {"id": 3}]

pytestmark = pytest.mark.unit


class TestOpenStream:
    """stream() responses."""

    @pytest.mark.asyncio
    async def test_rows_in_arrival_order(self, db, source, connection, stream_factory):
        """All rows are yielded in order and the connection is released once."""
        connection.stream.side_effect = stream_factory(ROWS)
        response = await db.from_("events").select().stream()
        assert isinstance(response.data, RowStream)

        rows = [row async for row in response.data]

        assert rows == ROWS
        assert response.data.rows_read == 3
        assert response.data.closed
        source.release.assert_awaited_once_with(connection)
        connection.stream.assert_called_once_with('SELECT * FROM "public"."events"', ())

    @pytest.mark.asyncio
    async def test_single_pass(self, db, connection, stream_factory):
        """A second iteration yields nothing."""
        connection.stream.side_effect = stream_factory(ROWS)
        stream = (await db.from_("events").select().stream()).data
        assert len([row async for row in stream]) == 3
        assert [row async for row in stream] == []

    @pytest.mark.asyncio
    async def test_non_select_rejected(self, db, source):
        """Only selects can be streamed."""
        response = await db.from_("events").delete().stream()
        assert response.data is None
        assert response.error.code == ErrorCode.VALIDATION
        source.acquire.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_compile_error(self, db, source):
        """Compile errors come back as responses."""
        response = await db.from_("events").select("id;").stream()
        assert response.error.code == ErrorCode.VALIDATION
        source.acquire.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_acquire_failure(self, db, source):
        """Pool failures are CONNECTION errors."""
        source.acquire.side_effect = psycopg.OperationalError("pool exhausted")
        response = await db.from_("events").select().stream()
        assert response.error.code == ErrorCode.CONNECTION

    @pytest.mark.asyncio
    async def test_already_aborted(self, db, source):
        """A set abort event stops the stream before it starts."""
        event = asyncio.Event()
        event.set()
        response = await db.from_("events").select().abort_signal(event).stream()
        assert response.error.code == ErrorCode.ABORTED
        source.acquire.assert_not_awaited()


class TestRowStreamLifecycle:
    """Closing, failures and cancellation."""

    @pytest.mark.asyncio
    async def test_close_mid_iteration(self, db, source, connection, stream_factory):
        """aclose() cancels the backend statement and releases once."""
        connection.stream.side_effect = stream_factory(ROWS)
        stream = (await db.from_("events").select().stream()).data

        first = await stream.__anext__()
        await stream.aclose()
        await stream.aclose()

        assert first == {"id": 1}
        connection.cancel.assert_awaited_once()
        source.release.assert_awaited_once_with(connection)
        with pytest.raises(StopAsyncIteration):
            await stream.__anext__()

    @pytest.mark.asyncio
    async def test_close_before_iteration(self, db, source, connection, stream_factory):
        """Closing an unstarted stream releases without cancelling."""
        connection.stream.side_effect = stream_factory(ROWS)
        stream = (await db.from_("events").select().stream()).data
        await stream.aclose()
        connection.cancel.assert_not_awaited()
        source.release.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_after_exhaustion_is_noop(self, db, source, connection, stream_factory):
        """Closing a finished stream does nothing."""
        connection.stream.side_effect = stream_factory(ROWS)
        stream = (await db.from_("events").select().stream()).data
        async for _ in stream:
            pass
        await stream.aclose()
        connection.cancel.assert_not_awaited()
        source.release.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_context_manager_closes(self, db, source, connection, stream_factory):
        """async with releases on early exit."""
        connection.stream.side_effect = stream_factory(ROWS)
        stream = (await db.from_("events").select().stream()).data
        async with stream as rows:
            async for row in rows:
                break
        assert stream.closed
        source.release.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_mid_stream_failure(self, db, source, connection, stream_factory):
        """A driver failure surfaces as QUERY on the next pull."""
        connection.stream.side_effect = stream_factory(
            ROWS, fail_after=2, error=psycopg.OperationalError("connection lost")
        )
        stream = (await db.from_("events").select().stream()).data
        received = []
        with pytest.raises(DbError) as exc_info:
            async for row in stream:
                received.append(row)

        assert received == ROWS[:2]
        assert exc_info.value.code == ErrorCode.QUERY
        assert "connection lost" in exc_info.value.message
        source.release.assert_awaited_once_with(connection)

    @pytest.mark.asyncio
    async def test_abort_during_iteration(self, db, source, connection, stream_factory):
        """Setting the abort event stops the stream on the next pull."""
        connection.stream.side_effect = stream_factory(ROWS)
        event = asyncio.Event()
        stream = (await db.from_("events").select().abort_signal(event).stream()).data

        await stream.__anext__()
        event.set()
        with pytest.raises(DbError) as exc_info:
            await stream.__anext__()

        assert exc_info.value.code == ErrorCode.ABORTED
        connection.cancel.assert_awaited_once()
        source.release.assert_awaited_once()
