"""
SupplementScribe Ingestion Orchestrator
=======================================
Drives one uploaded report through the pipeline:

1. Extraction       (retry + plain-text fallback; hard stop on failure)
2. Parsing          (retry, no fallback; hard stop on failure)
3. Biomarker storage (bulk writer; shortfalls become issues)
4. SNP storage      (reference matching + bulk writer)
5. Status update    (best effort)

Stages run strictly in this order. `ingest` never raises; everything that
went wrong is in FileProcessingResult.issues.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

from .bulk_writer import write_with_recovery
from .events import EventSink, IngestionEventType, emit
from .extraction import read_as_plain_text
from .mapping import (
    BIOMARKER_CONFLICT_KEY,
    SNP_CONFLICT_KEY,
    SnpReferenceIndex,
    map_biomarkers,
    map_snps,
)
from .models import FileProcessingResult, IngestionMetadata, ParsedReport, SourceDocument
from .parser_client import MAX_INPUT_CHARS, ReportParser
from .retry import SleepFn, run_best_effort, with_retry
from .storage import StorageBackend

logger = logging.getLogger(__name__)

MIN_CONTENT_LENGTH = 10

BIOMARKER_TABLE = "user_biomarkers"
SNP_TABLE = "user_snps"
SUPPORTED_SNP_TABLE = "supported_snps"
REPORT_TABLE = "user_lab_reports"

ISSUE_EXTRACTION_FALLBACK = "File extraction required fallback method"
ISSUE_EMPTY_CONTENT = "File appears to be empty or corrupted"

ExtractFn = Callable[[SourceDocument], Any]


async def ingest(
    document: SourceDocument,
    metadata: IngestionMetadata,
    extract_fn: ExtractFn,
    *,
    backend: StorageBackend,
    parser: ReportParser,
    fallback_fn: Optional[ExtractFn] = read_as_plain_text,
    sink: Optional[EventSink] = None,
    backoff_ms: int = 1000,
    batch_size: int = 50,
    sleep: SleepFn = asyncio.sleep,
) -> FileProcessingResult:
    """
    Ingest one document for one user.

    Args:
        document: Uploaded file.
        metadata: user_id, report_id and report_type.
        extract_fn: Content extraction capability, sync or async.
        backend: Storage backend.
        parser: Parsing capability.
        fallback_fn: Lossy extraction tried once after extract_fn gives up;
            None disables the fallback.
        sink: Event sink (defaults to the process-wide sink).
        backoff_ms: Base retry delay for extraction and parsing.
        batch_size: Chunk size for the bulk writer's per-record tier.
        sleep: Awaitable sleep, injectable for tests.

    Returns:
        FileProcessingResult with stored counts, recovery flag and issues.
    """
    result = FileProcessingResult()

    # --- Stage 1: Extraction ---
    extraction = await with_retry(
        lambda: extract_fn(document),
        max_retries=2,
        backoff_ms=backoff_ms,
        fallback=(lambda: fallback_fn(document)) if fallback_fn is not None else None,
        context="File extraction",
        sink=sink,
        sleep=sleep,
    )
    result.recovered = result.recovered or extraction.recovered
    if extraction.used_fallback:
        result.add_issue(ISSUE_EXTRACTION_FALLBACK)

    if not extraction.success:
        result.add_issue(extraction.message)
        _stage_failed(sink, "extraction", extraction.message)
        return result

    content = extraction.data if isinstance(extraction.data, str) else ""
    if len(content.strip()) < MIN_CONTENT_LENGTH:
        result.add_issue(ISSUE_EMPTY_CONTENT)
        _stage_failed(sink, "extraction", ISSUE_EMPTY_CONTENT)
        return result

    if len(content) > MAX_INPUT_CHARS:
        result.add_issue(
            f"Report text truncated to {MAX_INPUT_CHARS} of {len(content)} characters before parsing; "
            "later results may be missing"
        )

    # --- Stage 2: Parsing ---
    parsing = await with_retry(
        lambda: parser.parse(content, metadata.report_type),
        max_retries=2,
        backoff_ms=backoff_ms,
        context="Report parsing",
        sink=sink,
        sleep=sleep,
    )
    if not parsing.success or not isinstance(parsing.data, ParsedReport):
        message = parsing.message or "Report parsing returned an unusable result"
        result.add_issue(message)
        _stage_failed(sink, "parsing", message)
        return result
    result.recovered = result.recovered or parsing.recovered
    report: ParsedReport = parsing.data

    # --- Stage 3: Biomarker storage ---
    biomarker_records = map_biomarkers(report.biomarkers, metadata.user_id, metadata.report_id)
    if biomarker_records:
        written = await write_with_recovery(
            backend,
            BIOMARKER_TABLE,
            biomarker_records,
            conflict_key=BIOMARKER_CONFLICT_KEY,
            batch_size=batch_size,
            context="Biomarker storage",
            sink=sink,
        )
        if written.success:
            result.biomarkers = len(written.data)
        if written.recovered or not written.success:
            result.add_issue(written.message)
        result.recovered = result.recovered or written.recovered

    # --- Stage 4: SNP storage ---
    if report.snps:
        index = await _load_reference_index(backend, result, sink)
        snp_records, skipped = map_snps(report.snps, metadata.user_id, metadata.report_id, index)
        if skipped:
            result.add_issue(f"{skipped} genetic variants skipped: missing genotype")
        if snp_records:
            written = await write_with_recovery(
                backend,
                SNP_TABLE,
                snp_records,
                conflict_key=SNP_CONFLICT_KEY,
                batch_size=batch_size,
                context="SNP storage",
                sink=sink,
            )
            if written.success:
                result.snps = len(written.data)
            if written.recovered or not written.success:
                result.add_issue(written.message)
            result.recovered = result.recovered or written.recovered

    # --- Stage 5: Status update ---
    await run_best_effort(
        lambda: backend.update(
            REPORT_TABLE,
            {"status": "parsed"},
            {"id": metadata.report_id},
        ),
        result.issues,
        context="Report status update",
        sink=sink,
    )

    emit(
        sink, IngestionEventType.INGESTION_COMPLETED, document.filename,
        biomarkers=result.biomarkers, snps=result.snps, recovered=result.recovered,
    )
    return result


async def _load_reference_index(
    backend: StorageBackend,
    result: FileProcessingResult,
    sink: Optional[EventSink],
) -> SnpReferenceIndex:
    """Query supported_snps once. A failed lookup means every SNP is unmatched."""
    issue = "Supported SNP lookup failed; variants stored without reference match"
    try:
        rows = await backend.select(SUPPORTED_SNP_TABLE, columns=("id", "rsid", "gene"))
    except Exception as e:
        logger.warning(f"Supported SNP lookup raised: {e}")
        result.add_issue(issue)
        _stage_failed(sink, "snp_reference", str(e))
        return SnpReferenceIndex()

    if not rows.ok:
        logger.warning(f"Supported SNP lookup failed: {rows.error}")
        result.add_issue(issue)
        _stage_failed(sink, "snp_reference", rows.error)
        return SnpReferenceIndex()

    return SnpReferenceIndex.from_rows(rows.data or [])


def _stage_failed(sink: Optional[EventSink], stage: str, message: Optional[str]) -> None:
    emit(sink, IngestionEventType.STAGE_FAILED, stage, message, stage=stage)


# ============================================================
# USER-FACING MESSAGE
# ============================================================

def generate_success_message(result: FileProcessingResult) -> str:
    """
    Optimistic message for the end user.

    Any stored record counts as success; issues are for operators and never
    appear here.
    """
    if result.total_records == 0:
        return (
            "We couldn't find any biomarkers or genetic variants in this file. "
            "Please check the file and try again."
        )

    parts = []
    if result.biomarkers:
        noun = "biomarker" if result.biomarkers == 1 else "biomarkers"
        parts.append(f"{result.biomarkers} {noun}")
    if result.snps:
        noun = "genetic variant" if result.snps == 1 else "genetic variants"
        parts.append(f"{result.snps} {noun}")
    return f"Successfully processed {' and '.join(parts)}"
