"""
SupplementScribe Report Parser Client
=====================================
Sends extracted report text to an LLM and returns structured biomarkers and
SNPs as a ParsedReport.

Any HTTP failure, non-200 answer or unparseable payload raises ParsingError
so the retry executor can try again.

Usage:
    parser = LLMReportParser(api_key=settings.anthropic_api_key)
    report = await parser.parse(text, report_type="lab_report")
"""

import json
import logging
from typing import Any, Dict, Optional, Protocol

import httpx

from .errors import ParsingError
from .models import ParsedReport

logger = logging.getLogger(__name__)

ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"

# Input beyond this is cut before sending
MAX_INPUT_CHARS = 15000


class ReportParser(Protocol):
    async def parse(self, text: str, report_type: str) -> ParsedReport:
        ...


# ============================================================================
# PROMPT
# ============================================================================

PARSING_PROMPT = """You are a medical report parser. The document below is a {report_type}.

Extract every biomarker and every genetic variant (SNP) you can find.

Return ONE JSON object with exactly two keys:
- "biomarkers": array of {{"marker_name", "value", "unit", "reference_range"}}
- "snps": array of {{"rsid", "gene", "genotype"}}

Rules:
- value: numeric value only when the report shows a number, otherwise the printed text
- reference_range: as printed (e.g. "30-100"), or null
- rsid: the rs identifier (e.g. "rs1801133"), or null if only a gene is given
- genotype: the reported alleles (e.g. "CT"), never an interpretation
- Use an empty array when a category is absent
- Return ONLY the JSON object, no other text

Report text:
"""


def strip_code_fences(content: str) -> str:
    """Remove a ```json ... ``` wrapper if the model added one."""
    if "```json" in content:
        return content.split("```json", 1)[1].split("```", 1)[0]
    if "```" in content:
        return content.split("```", 1)[1].split("```", 1)[0]
    return content


def parse_model_output(content: str) -> ParsedReport:
    """Turn the model's text answer into a ParsedReport."""
    try:
        payload = json.loads(strip_code_fences(content).strip())
    except json.JSONDecodeError as e:
        raise ParsingError(f"Parser returned invalid JSON: {e.msg}") from e

    # Older prompts returned a bare array of biomarkers
    if isinstance(payload, list):
        payload = {"biomarkers": payload, "snps": []}
    if not isinstance(payload, dict):
        raise ParsingError(f"Parser returned {type(payload).__name__}, expected object")

    return ParsedReport(
        biomarkers=[b for b in payload.get("biomarkers") or [] if isinstance(b, dict)],
        snps=[s for s in payload.get("snps") or [] if isinstance(s, dict)],
    )


# ============================================================================
# CLIENT
# ============================================================================

class LLMReportParser:
    """Anthropic Messages API parser."""

    DEFAULT_TIMEOUT = 60.0
    MAX_TOKENS = 4096

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-20250514",
        timeout: float = DEFAULT_TIMEOUT,
        url: str = ANTHROPIC_MESSAGES_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.url = url
        self._transport = transport

        if not self.api_key:
            logger.warning("ANTHROPIC_API_KEY not configured")

    def _get_headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }

    def _build_body(self, text: str, report_type: str) -> Dict[str, Any]:
        readable_type = report_type.replace("_", " ")
        return {
            "model": self.model,
            "max_tokens": self.MAX_TOKENS,
            "messages": [{
                "role": "user",
                "content": PARSING_PROMPT.format(report_type=readable_type) + text[:MAX_INPUT_CHARS],
            }],
        }

    async def parse(self, text: str, report_type: str) -> ParsedReport:
        if not self.api_key:
            raise ParsingError("ANTHROPIC_API_KEY not configured")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    self.url,
                    headers=self._get_headers(),
                    json=self._build_body(text, report_type),
                )
        except httpx.HTTPError as e:
            raise ParsingError(f"Parser request failed: {e}") from e

        if response.status_code != 200:
            raise ParsingError(
                f"Parser returned HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            content = response.json()["content"][0]["text"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ParsingError(f"Unexpected parser response shape: {e}") from e

        report = parse_model_output(content)
        logger.info(f"Parsed {len(report.biomarkers)} biomarkers and {len(report.snps)} SNPs")
        return report
