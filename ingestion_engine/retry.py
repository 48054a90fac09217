"""
SupplementScribe Retry Executor
===============================
Bounded retries with linear backoff and a single optional fallback.

Contract:
- Never raises. Every failure mode is encoded in the returned RecoveryResult.
- Backoff is linear in the attempt number: delay = backoff_ms * attempt.
- The fallback runs exactly once, after the last primary attempt, and is
  never retried.
- Errors are not classified; any exception takes the same retry path.

Usage:
    from ingestion_engine.retry import with_retry

    result = await with_retry(
        lambda: parser.parse(text, "lab_report"),
        max_retries=2,
        context="Report parsing",
    )
    if result.success:
        report = result.data
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, List, Optional, TypeVar, Union

from .events import EventSink, IngestionEventType, emit
from .models import RecoveryResult
from .storage import StorageResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[], Union[T, Awaitable[T]]]
SleepFn = Callable[[float], Awaitable[Any]]


async def _call(operation: Callable[[], Any]) -> Any:
    """Run a sync or async zero-argument callable."""
    result = operation()
    if inspect.isawaitable(result):
        result = await result
    return result


async def with_retry(
    operation: Operation,
    max_retries: int = 3,
    backoff_ms: int = 1000,
    fallback: Optional[Operation] = None,
    context: str = "operation",
    sink: Optional[EventSink] = None,
    sleep: SleepFn = asyncio.sleep,
) -> RecoveryResult:
    """
    Execute `operation` with up to `max_retries` attempts.

    Args:
        operation: Zero-argument callable, sync or async.
        max_retries: Total primary attempts (values below 1 mean 1).
        backoff_ms: Base delay; attempt N waits backoff_ms * N before attempt N+1.
        fallback: Optional zero-argument callable tried once after the last failure.
        context: Human-readable name used in messages and events.
        sink: Event sink (defaults to the process-wide sink).
        sleep: Awaitable sleep taking seconds; injectable for tests.

    Returns:
        RecoveryResult with data on success, or success=False and data=None.
    """
    max_retries = max(1, max_retries)

    for attempt in range(1, max_retries + 1):
        try:
            data = await _call(operation)
        except Exception as e:
            logger.warning(f"{context} attempt {attempt}/{max_retries} failed: {type(e).__name__}: {e}")
            emit(
                sink, IngestionEventType.RETRY_ATTEMPT_FAILED, context, str(e),
                attempt=attempt, max_retries=max_retries, error_type=type(e).__name__,
            )
            if attempt < max_retries:
                delay_ms = backoff_ms * attempt
                await sleep(delay_ms / 1000.0)
            continue

        if attempt > 1:
            emit(sink, IngestionEventType.RETRY_SUCCEEDED, context, attempt=attempt)
            return RecoveryResult.ok(
                data,
                recovered=True,
                message=f"{context} succeeded after {attempt} attempts",
                attempts=attempt,
            )
        return RecoveryResult.ok(data, attempts=attempt)

    if fallback is not None:
        try:
            data = await _call(fallback)
        except Exception as e:
            logger.error(f"{context} fallback also failed: {type(e).__name__}: {e}")
            emit(
                sink, IngestionEventType.FALLBACK_FAILED, context, str(e),
                error_type=type(e).__name__,
            )
        else:
            logger.info(f"{context} fallback successful")
            emit(sink, IngestionEventType.FALLBACK_USED, context, attempt=max_retries)
            return RecoveryResult.ok(
                data,
                recovered=True,
                message=f"{context} completed using fallback method",
                attempts=max_retries,
                used_fallback=True,
            )

    emit(sink, IngestionEventType.OPERATION_FAILED, context, max_retries=max_retries)
    return RecoveryResult.failed(
        f"{context} failed after all retry attempts",
        attempts=max_retries,
    )


# ============================================================
# BEST-EFFORT SIDE EFFECTS
# ============================================================

async def run_best_effort(
    operation: Operation,
    issues: List[str],
    context: str,
    sink: Optional[EventSink] = None,
) -> bool:
    """
    Run a non-critical side effect once.

    A raised exception or an unsuccessful StorageResult is logged, recorded on
    the sink and appended to `issues`. Nothing is raised and no caller result
    flag is touched. Returns True when the side effect went through.
    """
    try:
        outcome = await _call(operation)
    except Exception as e:
        error = f"{type(e).__name__}: {e}"
    else:
        if not isinstance(outcome, StorageResult) or outcome.ok:
            return True
        error = outcome.error

    logger.warning(f"{context} failed (non-critical): {error}")
    emit(sink, IngestionEventType.BEST_EFFORT_FAILED, context, error)
    issues.append(f"{context} failed: {error}")
    return False
