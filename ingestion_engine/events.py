"""
SupplementScribe Ingestion Events
=================================
Structured event sink injected into the retry executor, the bulk writer and
the orchestrator.

Every sink exposes a single `record(event)` method. Sinks must never raise:
event recording has zero effect on ingestion decisions.

Usage:
    from ingestion_engine.events import MemoryEventSink

    sink = MemoryEventSink()
    result = await with_retry(op, context="File extraction", sink=sink)
    sink.of_type(IngestionEventType.RETRY_ATTEMPT_FAILED)
"""

import asyncio
import json
import logging
import os
from datetime import datetime, timezone
from enum import Enum
from threading import Lock
from typing import Any, Dict, List, Optional, Protocol

import psycopg2
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class IngestionEventType(str, Enum):
    """Event types emitted by the ingestion core."""
    RETRY_ATTEMPT_FAILED = "RETRY_ATTEMPT_FAILED"
    RETRY_SUCCEEDED = "RETRY_SUCCEEDED"
    FALLBACK_USED = "FALLBACK_USED"
    FALLBACK_FAILED = "FALLBACK_FAILED"
    OPERATION_FAILED = "OPERATION_FAILED"
    WRITE_TIER_FAILED = "WRITE_TIER_FAILED"
    WRITE_TIER_SUCCEEDED = "WRITE_TIER_SUCCEEDED"
    RECORD_INSERT_FAILED = "RECORD_INSERT_FAILED"
    BEST_EFFORT_FAILED = "BEST_EFFORT_FAILED"
    STAGE_FAILED = "STAGE_FAILED"
    INGESTION_COMPLETED = "INGESTION_COMPLETED"


# Events at these types are logged at warning level by LoggingEventSink
_WARNING_TYPES = frozenset(t.value for t in (
    IngestionEventType.RETRY_ATTEMPT_FAILED,
    IngestionEventType.FALLBACK_FAILED,
    IngestionEventType.OPERATION_FAILED,
    IngestionEventType.WRITE_TIER_FAILED,
    IngestionEventType.RECORD_INSERT_FAILED,
    IngestionEventType.BEST_EFFORT_FAILED,
    IngestionEventType.STAGE_FAILED,
))

# Only these metadata keys leave the process. Record payloads carry health data.
SAFE_METADATA_KEYS = frozenset({
    "attempt", "max_retries", "delay_ms", "tier", "table", "count",
    "failed", "total", "stage", "error_type", "biomarkers", "snps", "recovered",
})


class IngestionEvent(BaseModel):
    """A single structured event."""
    event_type: IngestionEventType
    context: str
    message: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Config:
        use_enum_values = True

    def safe_metadata(self) -> Dict[str, Any]:
        return {k: v for k, v in self.metadata.items() if k in SAFE_METADATA_KEYS}


class EventSink(Protocol):
    def record(self, event: IngestionEvent) -> None:
        ...


# ============================================================
# SINK IMPLEMENTATIONS
# ============================================================

class LoggingEventSink:
    """Default sink: forwards events to the module logger."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self._logger = log or logger

    def record(self, event: IngestionEvent) -> None:
        level = logging.WARNING if event.event_type in _WARNING_TYPES else logging.INFO
        self._logger.log(
            level,
            f"[{event.event_type}] {event.context}: {event.message or ''}",
            extra={"ingestion_event": event.safe_metadata()},
        )


class MemoryEventSink:
    """Keeps events in a list. Used by tests and debug endpoints."""

    def __init__(self):
        self.events: List[IngestionEvent] = []
        self._lock = Lock()

    def record(self, event: IngestionEvent) -> None:
        with self._lock:
            self.events.append(event)

    def of_type(self, event_type: IngestionEventType) -> List[IngestionEvent]:
        wanted = event_type.value if isinstance(event_type, IngestionEventType) else event_type
        return [e for e in self.events if e.event_type == wanted]

    def clear(self) -> None:
        with self._lock:
            self.events.clear()


class PostgresEventSink:
    """
    Persists events to the ingestion_events table.

    `record` only buffers. When called on a running event loop the buffer is
    written from the loop's default executor, so the psycopg2 connection never
    blocks ingestion; outside a loop it is written inline. Connection or
    insert failures are logged and the batch is dropped.
    """

    def __init__(self, database_url: Optional[str] = None, enabled: Optional[bool] = None):
        self._db_url = database_url or os.getenv("DATABASE_URL")
        if enabled is None:
            enabled = os.getenv("INGESTION_EVENTS_ENABLED", "false").lower() == "true"
        self._enabled = enabled
        self._tables_ready = False
        self._buffer: List[IngestionEvent] = []
        self._buffer_lock = Lock()
        self._max_buffer = 100
        self._flush_scheduled = False
        self._pending: Optional[asyncio.Future] = None

    def _get_conn(self):
        if not self._db_url:
            return None
        try:
            return psycopg2.connect(self._db_url)
        except psycopg2.Error as e:
            logger.warning(f"Event sink DB connection failed: {e}")
            return None

    def _ensure_table(self, conn) -> None:
        if self._tables_ready:
            return
        with conn.cursor() as cur:
            cur.execute("""
                CREATE TABLE IF NOT EXISTS ingestion_events (
                    id BIGSERIAL PRIMARY KEY,
                    created_at TIMESTAMPTZ DEFAULT NOW(),
                    event_type VARCHAR(50) NOT NULL,
                    context VARCHAR(255) NOT NULL,
                    message TEXT,
                    metadata JSONB
                );

                CREATE INDEX IF NOT EXISTS idx_ingestion_events_type
                    ON ingestion_events(event_type);
                CREATE INDEX IF NOT EXISTS idx_ingestion_events_created_at
                    ON ingestion_events(created_at);
            """)
        conn.commit()
        self._tables_ready = True

    def record(self, event: IngestionEvent) -> None:
        if not self._enabled:
            return

        with self._buffer_lock:
            self._buffer.append(event)
            if len(self._buffer) > self._max_buffer:
                dropped = self._buffer.pop(0)
                logger.warning(f"Event buffer full, dropping {dropped.event_type} event")
            if self._flush_scheduled:
                return
            self._flush_scheduled = True

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.flush()
            return
        self._pending = loop.run_in_executor(None, self.flush)

    async def drain(self) -> None:
        """Wait for the scheduled background write, if any."""
        if self._pending is not None:
            await self._pending

    def flush(self) -> int:
        """Write all buffered events in one transaction. Returns rows written."""
        with self._buffer_lock:
            events, self._buffer = self._buffer, []
            self._flush_scheduled = False
        if not events:
            return 0

        conn = self._get_conn()
        if conn is None:
            return 0

        try:
            self._ensure_table(conn)
            rows = []
            for event in events:
                safe = event.safe_metadata()
                rows.append((
                    event.created_at,
                    event.event_type,
                    event.context[:255],
                    event.message,
                    json.dumps(safe) if safe else None,
                ))
            with conn.cursor() as cur:
                cur.executemany("""
                    INSERT INTO ingestion_events
                    (created_at, event_type, context, message, metadata)
                    VALUES (%s, %s, %s, %s, %s)
                """, rows)
            conn.commit()
            return len(rows)
        except psycopg2.Error as e:
            logger.warning(f"Event sink insert failed, dropped {len(events)} events: {e}")
            return 0
        finally:
            conn.close()


class FanOutEventSink:
    """Sends each event to several sinks."""

    def __init__(self, *sinks: EventSink):
        self._sinks = sinks

    def record(self, event: IngestionEvent) -> None:
        for sink in self._sinks:
            sink.record(event)


_default_sink: Optional[EventSink] = None


def get_default_sink() -> EventSink:
    """Get the process-wide default sink (logging, plus Postgres when enabled)."""
    global _default_sink
    if _default_sink is None:
        _default_sink = FanOutEventSink(LoggingEventSink(), PostgresEventSink())
    return _default_sink


def emit(
    sink: Optional[EventSink],
    event_type: IngestionEventType,
    context: str,
    message: Optional[str] = None,
    **metadata: Any,
) -> None:
    """Build an event and hand it to the sink (or the default sink)."""
    (sink or get_default_sink()).record(
        IngestionEvent(event_type=event_type, context=context, message=message, metadata=metadata)
    )
