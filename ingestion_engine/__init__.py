"""
SupplementScribe Ingestion Engine v1.0
======================================
Resilient ingestion and storage of parsed lab and genetic reports.

Usage:
    from ingestion_engine import ingest, with_retry, write_with_recovery
    from ingestion_engine.api import register_ingestion_endpoints
"""

from ingestion_engine.models import (
    FileProcessingResult,
    IngestionMetadata,
    ParsedReport,
    RecoveryResult,
    SourceDocument,
    SupportedSnp,
)
from ingestion_engine.errors import (
    ExtractionError,
    IngestionError,
    ParsingError,
    StorageError,
)
from ingestion_engine.events import (
    EventSink,
    IngestionEvent,
    IngestionEventType,
    LoggingEventSink,
    MemoryEventSink,
    PostgresEventSink,
)
from ingestion_engine.storage import AsyncpgBackend, StorageBackend, StorageResult
from ingestion_engine.retry import run_best_effort, with_retry
from ingestion_engine.bulk_writer import write_with_recovery
from ingestion_engine.biomarker_names import canonical_marker_name
from ingestion_engine.extraction import extract_text, read_as_plain_text
from ingestion_engine.parser_client import LLMReportParser, ReportParser
from ingestion_engine.orchestrator import generate_success_message, ingest

__version__ = "1.0.0"
__all__ = [
    "FileProcessingResult",
    "IngestionMetadata",
    "ParsedReport",
    "RecoveryResult",
    "SourceDocument",
    "SupportedSnp",
    "ExtractionError",
    "IngestionError",
    "ParsingError",
    "StorageError",
    "EventSink",
    "IngestionEvent",
    "IngestionEventType",
    "LoggingEventSink",
    "MemoryEventSink",
    "PostgresEventSink",
    "AsyncpgBackend",
    "StorageBackend",
    "StorageResult",
    "run_best_effort",
    "with_retry",
    "write_with_recovery",
    "extract_text",
    "read_as_plain_text",
    "LLMReportParser",
    "ReportParser",
    "canonical_marker_name",
    "generate_success_message",
    "ingest",
]
