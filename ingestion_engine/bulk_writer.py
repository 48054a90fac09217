"""
SupplementScribe Conflict-Aware Bulk Writer
===========================================
Persists a batch of records with a three-tier degrading strategy:

1. Batch insert (one call)
2. Upsert on the conflict key (one call, only if a key is given)
3. Per-record inserts, sequential, collecting successes and failures

The first tier that succeeds wins. Partial success at tier 3 is reported as
success; the shortfall only shows up in the message.

Returned data is always what the backend confirmed, never the input.
"""

import logging
from typing import List, Optional, Sequence

from .errors import StorageError
from .events import EventSink, IngestionEventType, emit
from .models import Record, RecoveryResult
from .retry import with_retry
from .storage import StorageBackend, StorageResult

logger = logging.getLogger(__name__)


def _unwrap(result: StorageResult):
    """Turn an error StorageResult into an exception for the retry executor."""
    if not isinstance(result, StorageResult):
        raise StorageError(f"Backend returned {type(result).__name__}, expected StorageResult")
    if not result.ok:
        raise StorageError(result.error)
    return result.data


async def write_with_recovery(
    backend: StorageBackend,
    table: str,
    records: Sequence[Record],
    conflict_key: Optional[str] = None,
    batch_size: int = 50,
    context: str = "insert",
    sink: Optional[EventSink] = None,
) -> RecoveryResult:
    """
    Write `records` to `table`, degrading through the three tiers.

    Args:
        backend: Storage backend.
        table: Target table name.
        records: Opaque column -> value mappings.
        conflict_key: Comma-separated uniqueness columns for the upsert tier.
        batch_size: Chunk size for the per-record tier (values below 1 mean 1).
        context: Human-readable name used in messages and events.
        sink: Event sink (defaults to the process-wide sink).

    Returns:
        RecoveryResult whose data is the list of persisted rows.
    """
    records = list(records)
    if not records:
        return RecoveryResult.ok([])

    # --- Tier 1: batch insert ---
    batch = await with_retry(
        lambda: _insert_many(backend, table, records),
        max_retries=1,
        backoff_ms=0,
        context=f"Batch {context}",
        sink=sink,
    )
    if batch.success:
        emit(sink, IngestionEventType.WRITE_TIER_SUCCEEDED, context, tier=1, table=table, count=len(batch.data))
        return RecoveryResult.ok(batch.data)

    emit(sink, IngestionEventType.WRITE_TIER_FAILED, context, batch.message, tier=1, table=table)

    # --- Tier 2: upsert on conflict ---
    if conflict_key:
        try:
            upserted = _unwrap(await backend.upsert_many(table, records, conflict_key))
        except Exception as e:
            logger.warning(f"Upsert {context} failed, trying individual inserts: {e}")
            emit(sink, IngestionEventType.WRITE_TIER_FAILED, context, str(e), tier=2, table=table)
        else:
            upserted = list(upserted or [])
            logger.info(f"{context} succeeded with upsert recovery")
            emit(sink, IngestionEventType.WRITE_TIER_SUCCEEDED, context, tier=2, table=table, count=len(upserted))
            return RecoveryResult.ok(
                upserted,
                recovered=True,
                message=f"{context} resolved conflicts automatically",
            )

    # --- Tier 3: individual inserts ---
    batch_size = max(1, batch_size)
    successful: List[Record] = []
    failed: List[Record] = []

    for start in range(0, len(records), batch_size):
        for record in records[start:start + batch_size]:
            try:
                row = _unwrap(await backend.insert_one(table, record))
            except Exception as e:
                failed.append(record)
                logger.warning(f"Individual {context} failed: {e}")
                emit(
                    sink, IngestionEventType.RECORD_INSERT_FAILED, context, str(e),
                    tier=3, table=table, error_type=type(e).__name__,
                )
                continue
            if row:
                successful.append(row)
            else:
                failed.append(record)

    if successful:
        logger.info(
            f"{context} partial success: {len(successful)}/{len(records)} items "
            f"({round(len(successful) / len(records) * 100)}%)"
        )
        emit(
            sink, IngestionEventType.WRITE_TIER_SUCCEEDED, context,
            tier=3, table=table, count=len(successful), failed=len(failed), total=len(records),
        )
        if failed:
            message = f"{context} completed with {len(failed)} items needing review"
        else:
            message = f"{context} completed successfully"
        return RecoveryResult.ok(successful, recovered=True, message=message)

    emit(sink, IngestionEventType.WRITE_TIER_FAILED, context, tier=3, table=table, total=len(records))
    return RecoveryResult.failed(f"{context} failed completely")


async def _insert_many(backend: StorageBackend, table: str, records: List[Record]) -> List[Record]:
    return list(_unwrap(await backend.insert_many(table, records)) or [])
