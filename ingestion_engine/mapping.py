"""
SupplementScribe Record Mapping
===============================
Converts parsed biomarkers and SNPs into storage records.

Parsers are inconsistent about field names, so each field is read from a
list of aliases (first non-empty wins):

    biomarker name      marker_name | test | name
    biomarker value     value | result | amount
    biomarker unit      unit | units
    reference range     reference_range | ref_range
    SNP identifier      rsid | snp_id
    SNP gene            gene | gene_name
    SNP genotype        genotype | allele
"""

import logging
import math
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .biomarker_names import canonical_marker_name
from .models import Record, SupportedSnp

logger = logging.getLogger(__name__)

_DECIMAL_COMMA = re.compile(r"^[-+]?\d+,\d{1,2}$")
_THOUSANDS_GROUPING = re.compile(r"^[-+]?\d{1,3}(,\d{3})+(\.\d+)?$")

# Column limits in user_snps
MAX_SNP_TEXT_LENGTH = 50
MAX_GENOTYPE_LENGTH = 10

DEFAULT_MARKER_NAME = "Unknown Marker"
DEFAULT_UNIT = "not specified"

BIOMARKER_CONFLICT_KEY = "user_id,report_id,marker_name"
SNP_CONFLICT_KEY = "user_id,supported_snp_id,snp_id,gene_name"

NAME_ALIASES = ("marker_name", "test", "name")
VALUE_ALIASES = ("value", "result", "amount")
UNIT_ALIASES = ("unit", "units")
RANGE_ALIASES = ("reference_range", "ref_range")
RSID_ALIASES = ("rsid", "snp_id")
GENE_ALIASES = ("gene", "gene_name")
GENOTYPE_ALIASES = ("genotype", "allele")


def first_present(entry: Dict[str, Any], aliases: Iterable[str]) -> Optional[Any]:
    """Return the first alias value that is not None or blank."""
    for key in aliases:
        value = entry.get(key)
        if value is None:
            continue
        if isinstance(value, str):
            value = value.strip()
            if not value:
                continue
        return value
    return None


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def coerce_value(raw: Any) -> Optional[float]:
    """
    Numeric strings become floats ("5.2" -> 5.2, "1,200" -> 1200.0).

    A single comma followed by one or two digits is a decimal comma
    ("5,2" -> 5.2). Any other comma must be thousands grouping; otherwise the
    value is ambiguous and becomes None, like non-numeric results ("<0.5",
    "Negative").
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        value = float(raw)
        return value if math.isfinite(value) else None

    text = str(raw).strip()
    if "," in text:
        if _DECIMAL_COMMA.match(text):
            text = text.replace(",", ".")
        elif _THOUSANDS_GROUPING.match(text):
            text = text.replace(",", "")
        else:
            return None
    try:
        value = float(text)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


# ============================================================
# BIOMARKERS
# ============================================================

def map_biomarker(entry: Dict[str, Any], user_id: str, report_id: str) -> Record:
    """
    Map one parsed biomarker to a user_biomarkers row.

    marker_name is the canonical code when the printed name is a known alias,
    so the same test under different lab spellings shares one conflict key.
    original_name keeps the name as printed.
    """
    original_name = _text(first_present(entry, NAME_ALIASES))
    return {
        "user_id": user_id,
        "report_id": report_id,
        "marker_name": canonical_marker_name(original_name) or original_name or DEFAULT_MARKER_NAME,
        "original_name": original_name,
        "value": coerce_value(first_present(entry, VALUE_ALIASES)),
        "unit": _text(first_present(entry, UNIT_ALIASES)) or DEFAULT_UNIT,
        "reference_range": _text(first_present(entry, RANGE_ALIASES)),
    }


def map_biomarkers(entries: Sequence[Dict[str, Any]], user_id: str, report_id: str) -> List[Record]:
    return [
        map_biomarker(entry, user_id, report_id)
        for entry in entries
        if isinstance(entry, dict)
    ]


# ============================================================
# SNPS
# ============================================================

class SnpReferenceIndex:
    """
    Case-insensitive lookup over the supported_snps table.

    A parsed SNP with an rsid matches on the rsid alone. Only entries without
    an rsid fall back to the gene; when several reference rows share a gene,
    the first one loaded wins.
    """

    def __init__(self, supported: Iterable[SupportedSnp] = ()):
        self._by_rsid: Dict[str, SupportedSnp] = {}
        self._by_gene: Dict[str, SupportedSnp] = {}
        for snp in supported:
            if snp.rsid:
                self._by_rsid.setdefault(snp.rsid.strip().lower(), snp)
            if snp.gene:
                self._by_gene.setdefault(snp.gene.strip().lower(), snp)

    @classmethod
    def from_rows(cls, rows: Iterable[Dict[str, Any]]) -> "SnpReferenceIndex":
        supported = []
        for row in rows:
            try:
                supported.append(SupportedSnp(**row))
            except (TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed supported_snps row {row!r}: {e}")
        return cls(supported)

    def __len__(self) -> int:
        return len({s.id for s in self._by_rsid.values()} | {s.id for s in self._by_gene.values()})

    def match(self, rsid: Optional[str], gene: Optional[str]) -> Optional[SupportedSnp]:
        # An rsid missing from the table stays unmatched even when its gene is known
        if rsid:
            return self._by_rsid.get(rsid.strip().lower())
        if gene:
            return self._by_gene.get(gene.strip().lower())
        return None


def map_snp(
    entry: Dict[str, Any],
    user_id: str,
    report_id: str,
    index: SnpReferenceIndex,
) -> Optional[Record]:
    """
    Map one parsed SNP to a user_snps row.

    Matched variants carry only supported_snp_id; unmatched ones carry the raw
    snp_id / gene_name text. Returns None when there is no genotype.
    """
    genotype = _text(first_present(entry, GENOTYPE_ALIASES))
    if not genotype:
        return None

    rsid = _text(first_present(entry, RSID_ALIASES))
    gene = _text(first_present(entry, GENE_ALIASES))

    record: Record = {
        "user_id": user_id,
        "report_id": report_id,
        "genotype": genotype[:MAX_GENOTYPE_LENGTH],
    }

    supported = index.match(rsid, gene)
    if supported is not None:
        record["supported_snp_id"] = supported.id
    else:
        record["snp_id"] = rsid[:MAX_SNP_TEXT_LENGTH] if rsid else None
        record["gene_name"] = gene[:MAX_SNP_TEXT_LENGTH] if gene else None
    return record


def map_snps(
    entries: Sequence[Dict[str, Any]],
    user_id: str,
    report_id: str,
    index: SnpReferenceIndex,
) -> Tuple[List[Record], int]:
    """Map parsed SNPs. Returns (records, skipped_count)."""
    records: List[Record] = []
    skipped = 0
    for entry in entries:
        record = map_snp(entry, user_id, report_id, index) if isinstance(entry, dict) else None
        if record is None:
            skipped += 1
            continue
        records.append(record)
    return records, skipped
