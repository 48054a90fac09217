"""
SupplementScribe Ingestion - API Endpoints
==========================================
FastAPI endpoints for uploading a report and running it through the
ingestion pipeline.

Register on the main app:
    from ingestion_engine.api import register_ingestion_endpoints
    register_ingestion_endpoints(app)

Collaborators are resolved through FastAPI dependencies so tests can swap
them with `app.dependency_overrides`.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from pydantic import BaseModel, Field

from .config import IngestionSettings, get_settings
from .events import EventSink, get_default_sink
from .extraction import extract_text
from .models import IngestionMetadata, SourceDocument
from .orchestrator import generate_success_message, ingest
from .parser_client import LLMReportParser, ReportParser
from .storage import AsyncpgBackend, StorageBackend

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/ingest", tags=["Ingestion"])

REPORT_TYPES = {"lab_report", "genetic_report"}


# ============================================================
# RESPONSE MODELS
# ============================================================

class IngestionResponse(BaseModel):
    """Result of one upload."""
    success: bool = Field(..., description="True when at least one record was stored")
    message: str = Field(..., description="User-facing summary")
    biomarkers: int = 0
    snps: int = 0
    recovered: bool = False
    issues: List[str] = Field(default_factory=list, description="Operator-facing warnings")


# ============================================================
# DEPENDENCIES
# ============================================================

def get_backend(request: Request) -> StorageBackend:
    pool = getattr(request.app.state, "db_pool", None)
    if pool is None:
        raise HTTPException(503, "Database not configured")
    return AsyncpgBackend(pool)


def get_parser(settings: IngestionSettings = Depends(get_settings)) -> ReportParser:
    return LLMReportParser(
        api_key=settings.anthropic_api_key,
        model=settings.parser_model,
        timeout=settings.parser_timeout,
    )


def get_sink() -> EventSink:
    return get_default_sink()


# ============================================================
# ENDPOINTS
# ============================================================

@router.post("/upload", response_model=IngestionResponse)
async def upload_report(
    file: UploadFile = File(...),
    user_id: str = Form(...),
    report_id: str = Form(...),
    report_type: str = Form("lab_report"),
    settings: IngestionSettings = Depends(get_settings),
    backend: StorageBackend = Depends(get_backend),
    parser: ReportParser = Depends(get_parser),
    sink: EventSink = Depends(get_sink),
):
    """
    Upload a lab or genetic report and store its biomarkers and SNPs.

    Partial storage still answers 200 with success=True; shortfalls are
    listed in `issues`.
    """
    if report_type not in REPORT_TYPES:
        raise HTTPException(400, f"Invalid report_type. Allowed: {', '.join(sorted(REPORT_TYPES))}")

    content_type = (file.content_type or "application/octet-stream").split(";")[0].strip()
    if content_type not in settings.allowed_content_types:
        raise HTTPException(415, f"Unsupported file type: {content_type}")

    content = await file.read()
    if len(content) > settings.max_file_size:
        raise HTTPException(413, f"File too large. Max size: {settings.max_file_size // 1024 // 1024}MB")

    document = SourceDocument(
        filename=file.filename or "upload",
        content=content,
        content_type=content_type,
    )
    metadata = IngestionMetadata(user_id=user_id, report_id=report_id, report_type=report_type)

    result = await ingest(
        document,
        metadata,
        extract_text,
        backend=backend,
        parser=parser,
        sink=sink,
        backoff_ms=settings.backoff_ms,
        batch_size=settings.batch_size,
    )

    if result.issues:
        logger.info(f"Ingestion of {document.filename} finished with {len(result.issues)} issues")

    return IngestionResponse(
        success=result.total_records > 0,
        message=generate_success_message(result),
        **result.to_dict(),
    )


@router.get("/health")
async def ingestion_health(request: Request, settings: IngestionSettings = Depends(get_settings)):
    """Health check for the ingestion endpoints."""
    checks = {
        "parser_api": bool(settings.anthropic_api_key),
        "database": getattr(request.app.state, "db_pool", None) is not None,
        "events_enabled": settings.events_enabled,
    }
    return {
        "status": "healthy" if checks["parser_api"] and checks["database"] else "degraded",
        "checks": checks,
    }


def register_ingestion_endpoints(app: FastAPI) -> None:
    """Register ingestion endpoints on the main FastAPI app."""
    app.include_router(router)
