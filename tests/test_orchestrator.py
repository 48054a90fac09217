"""
Ingestion Orchestrator Tests
============================
End-to-end runs of ingest() against in-memory collaborators.

Test Categories:
1. Happy path and the three reference scenarios
2. Stage hard stops
3. Storage shortfalls surfacing as issues
4. SNP reference matching
5. Status update side effect
6. User-facing success message
"""

import asyncio
import pytest
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from ingestion_engine.errors import ExtractionError
from ingestion_engine.events import IngestionEventType, MemoryEventSink
from ingestion_engine.models import (
    FileProcessingResult,
    IngestionMetadata,
    ParsedReport,
    SourceDocument,
)
from ingestion_engine.orchestrator import generate_success_message, ingest
from ingestion_engine.parser_client import MAX_INPUT_CHARS

from fakes import FakeBackend, FakeParser, no_sleep

REPORT_TEXT = "Vitamin D 32 ng/mL (30-100)\nFerritin 85 ng/mL (30-400)\n" * 4


def five_biomarkers():
    return ParsedReport(biomarkers=[
        {"marker_name": f"Marker {i}", "value": i, "unit": "mg/dL"} for i in range(5)
    ])


def run(backend, parser, extract_fn=lambda doc: REPORT_TEXT, document=None, sink=None, **kwargs):
    document = document or SourceDocument(filename="labs.txt", content=REPORT_TEXT.encode())
    metadata = IngestionMetadata(user_id="user-1", report_id="report-1")
    return asyncio.run(ingest(
        document,
        metadata,
        extract_fn,
        backend=backend,
        parser=parser,
        sink=sink or MemoryEventSink(),
        backoff_ms=0,
        sleep=no_sleep,
        **kwargs,
    ))


class FailingExtractor:
    def __init__(self, failures, text=REPORT_TEXT):
        self.failures = failures
        self.text = text
        self.calls = 0

    def __call__(self, document):
        self.calls += 1
        if self.calls <= self.failures:
            raise ExtractionError("garbled upload")
        return self.text


# ============================================================
# TEST: REFERENCE SCENARIOS
# ============================================================

class TestScenarios:

    def test_scenario_a_clean_run(self):
        backend = FakeBackend()
        result = run(backend, FakeParser(five_biomarkers()))

        assert result.biomarkers == 5
        assert result.snps == 0
        assert result.recovered is False
        assert result.issues == []
        assert len(backend.tables["user_biomarkers"]) == 5

    def test_scenario_b_extraction_fallback(self):
        extractor = FailingExtractor(failures=100)
        document = SourceDocument(filename="labs.bin", content=b"x" * 200)
        parser = FakeParser(five_biomarkers())
        result = run(FakeBackend(), parser, extract_fn=extractor, document=document)

        assert extractor.calls == 2
        assert "File extraction required fallback method" in result.issues
        assert result.recovered is True
        assert parser.calls == [("x" * 200, "lab_report")]
        assert result.biomarkers == 5

    def test_scenario_c_short_content_stops(self):
        parser = FakeParser(five_biomarkers())
        backend = FakeBackend()
        result = run(backend, parser, extract_fn=lambda doc: "hello")

        assert result.to_dict() == {
            "biomarkers": 0,
            "snps": 0,
            "recovered": False,
            "issues": ["File appears to be empty or corrupted"],
        }
        assert parser.calls == []
        assert backend.calls == []

    def test_extraction_retry_success_is_recovered(self):
        result = run(FakeBackend(), FakeParser(five_biomarkers()), extract_fn=FailingExtractor(failures=1))
        assert result.recovered is True
        assert "File extraction required fallback method" not in result.issues


# ============================================================
# TEST: HARD STOPS
# ============================================================

class TestHardStops:

    def test_empty_file_after_fallback_stops(self):
        def extractor(doc):
            raise ExtractionError("unreadable")

        document = SourceDocument(filename="empty.pdf", content=b"")
        backend = FakeBackend()
        result = run(backend, FakeParser(), extract_fn=extractor, document=document)

        assert result.total_records == 0
        assert "File appears to be empty or corrupted" in result.issues
        assert backend.calls == []

    def test_extraction_and_fallback_both_fail(self):
        def extractor(doc):
            raise ExtractionError("unreadable")

        def fallback(doc):
            raise ExtractionError("still unreadable")

        parser = FakeParser(five_biomarkers())
        backend = FakeBackend()
        sink = MemoryEventSink()
        result = run(backend, parser, extract_fn=extractor, fallback_fn=fallback, sink=sink)

        assert result.to_dict() == {
            "biomarkers": 0,
            "snps": 0,
            "recovered": False,
            "issues": ["File extraction failed after all retry attempts"],
        }
        assert parser.calls == []
        assert backend.calls == []
        assert sink.of_type(IngestionEventType.STAGE_FAILED)[0].metadata["stage"] == "extraction"

    def test_extraction_without_fallback(self):
        def extractor(doc):
            raise ExtractionError("unreadable")

        result = run(FakeBackend(), FakeParser(), extract_fn=extractor, fallback_fn=None)
        assert result.issues == ["File extraction failed after all retry attempts"]

    def test_parsing_failure_stops(self):
        parser = FakeParser(five_biomarkers(), failures=2)
        backend = FakeBackend()
        sink = MemoryEventSink()
        result = run(backend, parser, sink=sink)

        assert len(parser.calls) == 2
        assert result.issues == ["Report parsing failed after all retry attempts"]
        assert result.total_records == 0
        assert result.recovered is False
        assert backend.calls == []
        assert sink.of_type(IngestionEventType.STAGE_FAILED)[0].metadata["stage"] == "parsing"

    def test_parsing_retry_success(self):
        result = run(FakeBackend(), FakeParser(five_biomarkers(), failures=1))
        assert result.biomarkers == 5
        assert result.recovered is True

    def test_long_report_notes_truncation(self):
        long_text = REPORT_TEXT * 200
        parser = FakeParser(five_biomarkers())
        result = run(FakeBackend(), parser, extract_fn=lambda doc: long_text)

        assert result.issues == [
            f"Report text truncated to {MAX_INPUT_CHARS} of {len(long_text)} characters before parsing; "
            "later results may be missing"
        ]
        assert len(parser.calls) == 1
        assert result.biomarkers == 5

    def test_report_at_limit_has_no_issue(self):
        text = REPORT_TEXT * (MAX_INPUT_CHARS // len(REPORT_TEXT))
        assert len(text) <= MAX_INPUT_CHARS
        result = run(FakeBackend(), FakeParser(five_biomarkers()), extract_fn=lambda doc: text)
        assert result.issues == []


# ============================================================
# TEST: STORAGE SHORTFALLS
# ============================================================

class TestStorageIssues:

    def test_upsert_recovery_is_an_issue(self):
        backend = FakeBackend(fail={"insert_many": "error"})
        result = run(backend, FakeParser(five_biomarkers()))

        assert result.biomarkers == 5
        assert result.recovered is True
        assert result.issues == ["Biomarker storage resolved conflicts automatically"]

    def test_storage_failure_is_soft(self):
        backend = FakeBackend(fail={"insert_many": "error", "upsert_many": "error", "insert_one": "error"})
        result = run(backend, FakeParser(five_biomarkers()))

        assert result.biomarkers == 0
        assert "Biomarker storage failed completely" in result.issues
        # The run still reaches the status update
        assert backend.count("update", "user_lab_reports") == 1


# ============================================================
# TEST: SNP STORAGE
# ============================================================

class TestSnpStorage:

    def test_matched_and_unmatched_snps(self):
        backend = FakeBackend(supported_snps=[{"id": 7, "rsid": "rs1801133", "gene": "MTHFR"}])
        report = ParsedReport(snps=[
            {"rsid": "RS1801133", "gene": "mthfr", "genotype": "CT"},
            {"rsid": "rs999999", "gene": "NOVEL", "genotype": "AA"},
        ])
        result = run(backend, FakeParser(report))

        assert result.snps == 2
        stored = backend.tables["user_snps"]
        matched = [r for r in stored if r.get("supported_snp_id") == 7]
        assert len(matched) == 1
        assert matched[0].get("snp_id") is None
        assert matched[0].get("gene_name") is None
        unmatched = [r for r in stored if "supported_snp_id" not in r][0]
        assert unmatched["snp_id"] == "rs999999"
        assert unmatched["gene_name"] == "NOVEL"

    def test_reference_loaded_once(self):
        backend = FakeBackend()
        report = ParsedReport(snps=[{"rsid": f"rs{i}", "genotype": "GG"} for i in range(4)])
        run(backend, FakeParser(report))
        assert backend.count("select", "supported_snps") == 1

    def test_reference_lookup_failure(self):
        backend = FakeBackend(fail={"select": "raise"})
        report = ParsedReport(snps=[{"rsid": "rs1801133", "genotype": "CT"}])
        result = run(backend, FakeParser(report))

        assert result.snps == 1
        assert "Supported SNP lookup failed; variants stored without reference match" in result.issues
        assert backend.tables["user_snps"][0]["snp_id"] == "rs1801133"

    def test_missing_genotype_skipped(self):
        report = ParsedReport(snps=[{"rsid": "rs1"}, {"rsid": "rs2", "genotype": "TT"}])
        result = run(FakeBackend(), FakeParser(report))

        assert result.snps == 1
        assert "1 genetic variants skipped: missing genotype" in result.issues


# ============================================================
# TEST: STATUS UPDATE
# ============================================================

class TestStatusUpdate:

    def test_status_marked_parsed(self):
        backend = FakeBackend()
        run(backend, FakeParser(five_biomarkers()))
        assert ("update", "user_lab_reports") in backend.calls

    @pytest.mark.parametrize("mode", ["error", "raise"])
    def test_status_failure_only_adds_issue(self, mode):
        backend = FakeBackend(fail={"update": mode})
        result = run(backend, FakeParser(five_biomarkers()))

        assert result.biomarkers == 5
        assert result.recovered is False
        assert len(result.issues) == 1
        assert result.issues[0].startswith("Report status update failed:")

    def test_completion_event(self):
        sink = MemoryEventSink()
        run(FakeBackend(), FakeParser(five_biomarkers()), sink=sink)
        completed = sink.of_type(IngestionEventType.INGESTION_COMPLETED)
        assert len(completed) == 1
        assert completed[0].metadata["biomarkers"] == 5


# ============================================================
# TEST: SUCCESS MESSAGE
# ============================================================

class TestSuccessMessage:

    def test_both_kinds(self):
        result = FileProcessingResult(biomarkers=5, snps=2, issues=["something odd"])
        message = generate_success_message(result)
        assert message == "Successfully processed 5 biomarkers and 2 genetic variants"
        assert "odd" not in message

    def test_singular_and_single_kind(self):
        assert generate_success_message(FileProcessingResult(biomarkers=1)) == \
            "Successfully processed 1 biomarker"
        assert generate_success_message(FileProcessingResult(snps=1)) == \
            "Successfully processed 1 genetic variant"

    def test_nothing_found(self):
        assert generate_success_message(FileProcessingResult()).startswith("We couldn't find")
