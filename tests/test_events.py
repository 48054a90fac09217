"""
Event Sink Tests

Event construction, metadata filtering and the bundled sinks.
"""

import asyncio
import logging
import threading
import time

import pytest
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from ingestion_engine.events import (
    FanOutEventSink,
    IngestionEvent,
    IngestionEventType,
    LoggingEventSink,
    MemoryEventSink,
    PostgresEventSink,
    emit,
)


class FakeConnection:
    """psycopg2 connection stand-in that records inserted rows and the calling thread."""

    def __init__(self, delay=0.0):
        self.delay = delay
        self.rows = []
        self.thread = None
        self.closed = False

    def connect(self, dsn):
        self.thread = threading.get_ident()
        time.sleep(self.delay)
        return self

    def cursor(self):
        return FakeCursor(self)

    def commit(self):
        pass

    def close(self):
        self.closed = True


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=None):
        pass

    def executemany(self, sql, rows):
        self.conn.rows.extend(rows)


@pytest.fixture
def sink():
    return MemoryEventSink()


class TestIngestionEvent:

    def test_enum_stored_as_value(self):
        event = IngestionEvent(event_type=IngestionEventType.FALLBACK_USED, context="File extraction")
        assert event.event_type == "FALLBACK_USED"
        assert event.created_at.tzinfo is not None

    def test_safe_metadata_drops_record_payloads(self):
        event = IngestionEvent(
            event_type=IngestionEventType.RECORD_INSERT_FAILED,
            context="Biomarker storage",
            metadata={"tier": 3, "table": "user_biomarkers", "record": {"value": 42}},
        )
        assert event.safe_metadata() == {"tier": 3, "table": "user_biomarkers"}


class TestMemorySink:

    def test_emit_records_event(self, sink):
        emit(sink, IngestionEventType.RETRY_ATTEMPT_FAILED, "Report parsing", "timeout", attempt=1)
        emit(sink, IngestionEventType.RETRY_SUCCEEDED, "Report parsing", attempt=2)

        failed = sink.of_type(IngestionEventType.RETRY_ATTEMPT_FAILED)
        assert len(failed) == 1
        assert failed[0].message == "timeout"
        assert failed[0].metadata == {"attempt": 1}

    def test_clear(self, sink):
        emit(sink, IngestionEventType.STAGE_FAILED, "parsing")
        sink.clear()
        assert sink.events == []


class TestLoggingSink:

    def test_failures_logged_as_warning(self, caplog):
        sink = LoggingEventSink()
        with caplog.at_level(logging.INFO, logger="ingestion_engine.events"):
            emit(sink, IngestionEventType.WRITE_TIER_FAILED, "SNP storage", "conflict", tier=1)
            emit(sink, IngestionEventType.WRITE_TIER_SUCCEEDED, "SNP storage", tier=2)

        levels = [r.levelno for r in caplog.records]
        assert levels == [logging.WARNING, logging.INFO]
        assert "[WRITE_TIER_FAILED] SNP storage: conflict" in caplog.records[0].getMessage()


class TestPostgresSink:

    def test_disabled_sink_is_noop(self):
        sink = PostgresEventSink(database_url="postgresql://nowhere/db", enabled=False)
        sink.record(IngestionEvent(event_type=IngestionEventType.STAGE_FAILED, context="parsing"))

    def test_missing_database_url_is_noop(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        sink = PostgresEventSink(enabled=True)
        sink.record(IngestionEvent(event_type=IngestionEventType.STAGE_FAILED, context="parsing"))

    def test_record_on_loop_writes_off_the_loop_thread(self, monkeypatch):
        conn = FakeConnection(delay=0.2)
        monkeypatch.setattr("ingestion_engine.events.psycopg2.connect", conn.connect)
        sink = PostgresEventSink(database_url="postgresql://events/db", enabled=True)

        async def scenario():
            started = time.monotonic()
            sink.record(IngestionEvent(event_type=IngestionEventType.STAGE_FAILED, context="parsing"))
            elapsed = time.monotonic() - started
            await sink.drain()
            return elapsed, threading.get_ident()

        elapsed, loop_thread = asyncio.run(scenario())

        assert elapsed < 0.1
        assert conn.thread is not None
        assert conn.thread != loop_thread
        assert [row[1] for row in conn.rows] == ["STAGE_FAILED"]
        assert conn.closed

    def test_record_without_loop_writes_inline(self, monkeypatch):
        conn = FakeConnection()
        monkeypatch.setattr("ingestion_engine.events.psycopg2.connect", conn.connect)
        sink = PostgresEventSink(database_url="postgresql://events/db", enabled=True)

        sink.record(IngestionEvent(
            event_type=IngestionEventType.RECORD_INSERT_FAILED,
            context="Biomarker storage",
            metadata={"tier": 3, "record": {"value": 42}},
        ))

        assert conn.thread == threading.get_ident()
        assert len(conn.rows) == 1
        assert conn.rows[0][4] == '{"tier": 3}'

    def test_full_buffer_drops_oldest(self, monkeypatch):
        conn = FakeConnection()
        monkeypatch.setattr("ingestion_engine.events.psycopg2.connect", conn.connect)
        sink = PostgresEventSink(database_url="postgresql://events/db", enabled=True)
        sink._max_buffer = 2
        # A write is already pending, so record only buffers
        sink._flush_scheduled = True

        for context in ("first", "second", "third"):
            sink.record(IngestionEvent(event_type=IngestionEventType.STAGE_FAILED, context=context))

        assert sink.flush() == 2
        assert [row[2] for row in conn.rows] == ["second", "third"]


class TestFanOut:

    def test_every_sink_receives_event(self):
        a, b = MemoryEventSink(), MemoryEventSink()
        emit(FanOutEventSink(a, b), IngestionEventType.INGESTION_COMPLETED, "labs.txt", biomarkers=3)
        assert len(a.events) == len(b.events) == 1
