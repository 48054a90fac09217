"""
SupplementScribe Ingestion Data Models
======================================
Result wrappers and input/record models for the ingestion pipeline.

RecoveryResult and FileProcessingResult are plain dataclasses (returned by
the core, never persisted). Inputs coming from the outside world are pydantic
models so the HTTP layer can validate them.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")

# Storage records are opaque column -> value mappings
Record = Dict[str, Any]


# ============================================================
# RESULT WRAPPERS
# ============================================================

@dataclass
class RecoveryResult(Generic[T]):
    """
    Outcome of a resilient operation.

    Invariants:
    - success == False implies data is None
    - recovered == True implies success == True
    """
    success: bool
    data: Optional[T] = None
    recovered: bool = False
    message: Optional[str] = None
    attempts: int = 0
    used_fallback: bool = False

    def __post_init__(self):
        if not self.success:
            if self.data is not None:
                raise ValueError("A failed RecoveryResult cannot carry data")
            if self.recovered:
                raise ValueError("A failed RecoveryResult cannot be marked recovered")

    @classmethod
    def ok(cls, data: T, recovered: bool = False, message: Optional[str] = None, **kwargs) -> "RecoveryResult[T]":
        return cls(success=True, data=data, recovered=recovered, message=message, **kwargs)

    @classmethod
    def failed(cls, message: str, **kwargs) -> "RecoveryResult[T]":
        return cls(success=False, data=None, recovered=False, message=message, **kwargs)


@dataclass
class FileProcessingResult:
    """Aggregate report for one ingestion run. Issues are append-only."""
    biomarkers: int = 0
    snps: int = 0
    recovered: bool = False
    issues: List[str] = field(default_factory=list)

    def add_issue(self, issue: str) -> None:
        self.issues.append(issue)

    @property
    def total_records(self) -> int:
        return self.biomarkers + self.snps

    def to_dict(self) -> Dict[str, Any]:
        return {
            "biomarkers": self.biomarkers,
            "snps": self.snps,
            "recovered": self.recovered,
            "issues": list(self.issues),
        }


# ============================================================
# PIPELINE INPUTS
# ============================================================

class SourceDocument(BaseModel):
    """An uploaded report as received from the client."""
    filename: str
    content: bytes
    content_type: str = "text/plain"

    @property
    def size(self) -> int:
        return len(self.content)


class IngestionMetadata(BaseModel):
    """Who the document belongs to and what kind of report it is."""
    user_id: str
    report_id: str
    report_type: str = Field(
        default="lab_report",
        description="lab_report or genetic_report"
    )


class ParsedReport(BaseModel):
    """
    Structure returned by the parsing capability.

    Entries are kept as loose dicts: field names vary between parsers
    (marker_name/test/name, rsid/snp_id, genotype/allele, ...).
    """
    biomarkers: List[Dict[str, Any]] = Field(default_factory=list)
    snps: List[Dict[str, Any]] = Field(default_factory=list)

    class Config:
        extra = "ignore"


class SupportedSnp(BaseModel):
    """Row of the supported_snps reference table."""
    id: int
    rsid: Optional[str] = None
    gene: Optional[str] = None

    class Config:
        extra = "ignore"
