"""
DocketWatch AI summarization

Builds a structured prompt from filing metadata and extracted document text,
calls the Gemini REST API through the shared circuit breaker, and parses the
labeled sections of the reply into an ``AISummary``. Parsing never raises:
missing sections fall back to the ``AISummary`` defaults.
"""

import logging
import re
from typing import Any, Dict, List, Optional

import requests

from docketwatch.circuit_breaker import CircuitBreaker, ErrorClassification
from docketwatch.models import AISummary, Filing

logger = logging.getLogger(__name__)

DEGRADED_SUMMARY = "AI processing temporarily unavailable due to service issues"
RESTRICTED_SUMMARY = (
    "This filing is marked confidential or restricted and is not publicly analyzable."
)
TRUNCATION_MARKER = "\n... [truncated]"

SECTION_MARKERS = [
    "SUMMARY",
    "KEY_POINTS",
    "STAKEHOLDERS",
    "REGULATORY_IMPACT",
    "DOCUMENT_ANALYSIS",
    "CONFIDENCE",
]
_SECTION_PATTERN = re.compile(
    r"^\s*\**(" + "|".join(SECTION_MARKERS) + r"):\**\s*", re.MULTILINE
)

RESPONSE_FORMAT = """
Respond using exactly these section labels, each on its own line:

SUMMARY:
A 2-3 sentence plain-language summary of what this filing asks for or argues.

KEY_POINTS:
- Up to five bullet points with the most important arguments or requests

STAKEHOLDERS:
Who is affected and who is filing, and their apparent interests.

REGULATORY_IMPACT:
The likely effect on the proceeding or on FCC policy.

DOCUMENT_ANALYSIS:
Notes on the attached documents, or "None" if no document text was provided.

CONFIDENCE:
High, Medium or Low.
"""


class SummarizationError(Exception):
    """Raised when the summarization provider call fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def build_prompt(filing: Filing, document_text: str = "", char_budget: int = 8000) -> str:
    """Compose the analysis prompt for one filing."""
    date = filing.date_received.isoformat() if filing.date_received else "Unknown"
    lines = [
        "Analyze this FCC filing and provide a regulatory intelligence summary.",
        "",
        "FILING METADATA:",
        f"- ID: {filing.id}",
        f"- Docket: {filing.docket_number}",
        f"- Title: {filing.title}",
        f"- Author/Filer: {filing.author}",
        f"- Filing Type: {filing.filing_type}",
        f"- Date: {date}",
        "",
    ]

    if document_text:
        body = document_text[:char_budget]
        if len(document_text) > char_budget:
            body += TRUNCATION_MARKER
        lines.extend(
            [
                "DOCUMENT CONTENT:",
                "The following text was extracted from the filing's documents:",
                "",
                body,
                "",
            ]
        )
    else:
        lines.extend(
            [
                "No document text could be extracted. Base the analysis on the",
                "metadata only and say so in DOCUMENT_ANALYSIS.",
                "",
            ]
        )

    return "\n".join(lines) + RESPONSE_FORMAT


def _split_sections(text: str) -> Dict[str, str]:
    sections: Dict[str, str] = {}
    matches = list(_SECTION_PATTERN.finditer(text or ""))
    for index, match in enumerate(matches):
        end = matches[index + 1].start() if index + 1 < len(matches) else len(text)
        sections.setdefault(match.group(1), text[match.end() : end].strip())
    return sections


def _parse_key_points(block: str) -> List[str]:
    points = []
    for line in block.splitlines():
        stripped = line.strip()
        if stripped[:1] in ("-", "•", "*"):
            point = stripped[1:].strip()
            if point:
                points.append(point)
    return points


def parse_structured_summary(text: str) -> AISummary:
    """Parse labeled sections into an ``AISummary``; absent sections get defaults."""
    sections = _split_sections(text)
    summary = AISummary()

    if sections.get("SUMMARY"):
        summary.summary = sections["SUMMARY"]
    if sections.get("KEY_POINTS"):
        summary.key_points = _parse_key_points(sections["KEY_POINTS"])
    if sections.get("STAKEHOLDERS"):
        summary.stakeholders = sections["STAKEHOLDERS"]
    if sections.get("REGULATORY_IMPACT"):
        summary.regulatory_impact = sections["REGULATORY_IMPACT"]
    analysis = sections.get("DOCUMENT_ANALYSIS")
    if analysis and analysis.lower() != "none":
        summary.document_analysis = analysis
    if sections.get("CONFIDENCE"):
        summary.confidence = sections["CONFIDENCE"].splitlines()[0].strip()

    return summary


def degraded_summary() -> AISummary:
    """Placeholder used when the provider is unavailable."""
    return AISummary(summary=DEGRADED_SUMMARY, confidence="Low", degraded=True)


def restricted_summary() -> AISummary:
    """Fixed response for filings the source marks confidential."""
    return AISummary(
        summary=RESTRICTED_SUMMARY,
        stakeholders="Not available for restricted filings",
        regulatory_impact="Not available for restricted filings",
        confidence="N/A",
    )


class GeminiSummarizer:
    """Gemini ``generateContent`` client guarded by a circuit breaker."""

    def __init__(
        self,
        api_key: str,
        breaker: CircuitBreaker,
        model: str = "gemini-1.5-flash",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        char_budget: int = 8000,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.breaker = breaker
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.char_budget = char_budget
        self.timeout = timeout
        self.session = session or requests.Session()
        self.last_error: Optional[ErrorClassification] = None

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    def _generate(self, prompt: str) -> str:
        """Single provider call; raises ``SummarizationError``."""
        payload: Dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {"temperature": 0.2, "maxOutputTokens": 1024},
        }
        try:
            response = self.session.post(
                self.endpoint,
                params={"key": self.api_key},
                json=payload,
                timeout=self.timeout,
            )
        except requests.Timeout as exc:
            raise SummarizationError(f"Gemini request timeout: {exc}") from exc
        except requests.RequestException as exc:
            raise SummarizationError(f"Gemini network error: {exc}") from exc

        if response.status_code >= 400:
            detail = response.text[:300]
            raise SummarizationError(
                f"Gemini HTTP {response.status_code}: {detail}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise SummarizationError(f"Gemini returned malformed JSON: {exc}") from exc

        block_reason = (data.get("promptFeedback") or {}).get("blockReason")
        if block_reason:
            raise SummarizationError(f"Gemini blocked content for safety: {block_reason}")

        try:
            parts = data["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError) as exc:
            raise SummarizationError(f"Gemini response missing candidates: {exc}") from exc

        text = "".join(str(part.get("text", "")) for part in parts if isinstance(part, dict))
        if not text.strip():
            raise SummarizationError("Gemini returned no text")
        return text

    def summarize(self, filing: Filing, document_text: str = "") -> AISummary:
        """Summarize a filing, or return the degraded summary.

        Never raises: an open breaker or a failed call yields
        ``degraded_summary()`` and the failure is recorded on the breaker.
        """
        if not self.breaker.allow_request():
            logger.info(f"Circuit open, skipping AI summary for {filing.id}")
            return degraded_summary()

        prompt = build_prompt(filing, document_text, self.char_budget)
        try:
            text = self._generate(prompt)
        except Exception as e:
            self.last_error = self.breaker.record_failure(e)
            logger.error(
                f"AI summary failed for {filing.id} "
                f"({self.last_error.error_type.value}, retry hint "
                f"{self.last_error.backoff_seconds}s): {e}"
            )
            return degraded_summary()

        self.breaker.record_success()
        self.last_error = None
        return parse_structured_summary(text)
