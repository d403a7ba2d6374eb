"""Tests for AI summarization."""

from typing import Any, Dict

import requests
import requests_mock

from docketwatch.circuit_breaker import CircuitBreaker, ErrorType
from docketwatch.summarizer import (
    DEGRADED_SUMMARY,
    TRUNCATION_MARKER,
    GeminiSummarizer,
    build_prompt,
    parse_structured_summary,
)

ENDPOINT = (
    "https://generativelanguage.googleapis.com/v1beta/models/"
    "gemini-1.5-flash:generateContent"
)

STRUCTURED_REPLY = """SUMMARY:
Acme asks the Commission to extend the comment deadline by 30 days.

KEY_POINTS:
- Deadline extension of 30 days
• Cites complexity of the cost model
* Supported by two trade associations

STAKEHOLDERS:
Rural carriers and consumer groups.

REGULATORY_IMPACT:
Delays the reply cycle of the proceeding.

DOCUMENT_ANALYSIS:
None

CONFIDENCE:
High
"""


def _gemini_reply(text: str) -> Dict[str, Any]:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


class TestParsing:
    """Section parsing."""

    def test_all_sections(self) -> None:
        summary = parse_structured_summary(STRUCTURED_REPLY)

        assert summary.summary.startswith("Acme asks the Commission")
        assert summary.key_points == [
            "Deadline extension of 30 days",
            "Cites complexity of the cost model",
            "Supported by two trade associations",
        ]
        assert summary.stakeholders == "Rural carriers and consumer groups."
        assert summary.regulatory_impact == "Delays the reply cycle of the proceeding."
        assert summary.document_analysis is None
        assert summary.confidence == "High"
        assert summary.degraded is False

    def test_missing_sections_get_defaults(self) -> None:
        summary = parse_structured_summary("SUMMARY:\nOnly a summary here.")

        assert summary.summary == "Only a summary here."
        assert summary.key_points == []
        assert summary.stakeholders == "Stakeholder analysis not available"
        assert summary.regulatory_impact == "Impact analysis not available"
        assert summary.confidence == "Medium"

    def test_unlabeled_text_never_raises(self) -> None:
        summary = parse_structured_summary("The model ignored the format.")
        assert summary.summary == "Summary not available"

    def test_bold_labels_accepted(self) -> None:
        summary = parse_structured_summary("**SUMMARY:** Short.\n**CONFIDENCE:** Low")
        assert summary.summary == "Short."
        assert summary.confidence == "Low"


class TestPrompt:
    """Prompt construction."""

    def test_document_text_truncated_to_budget(self, make_filing: Any) -> None:
        prompt = build_prompt(make_filing("1"), "x" * 50, char_budget=20)

        assert "x" * 20 + TRUNCATION_MARKER in prompt
        assert "x" * 21 not in prompt
        assert "- Docket: 11-42" in prompt
        assert "KEY_POINTS:" in prompt

    def test_metadata_only_prompt(self, make_filing: Any) -> None:
        prompt = build_prompt(make_filing("1"), "")
        assert "No document text could be extracted" in prompt


class TestGeminiSummarizer:
    """Provider calls through the breaker."""

    def _summarizer(self, threshold: int = 3) -> GeminiSummarizer:
        return GeminiSummarizer(api_key="g-key", breaker=CircuitBreaker(failure_threshold=threshold))

    def test_success(self, make_filing: Any) -> None:
        summarizer = self._summarizer()
        with requests_mock.Mocker() as m:
            m.post(ENDPOINT, json=_gemini_reply(STRUCTURED_REPLY))

            summary = summarizer.summarize(make_filing("1"), "Document body")

            assert m.last_request.qs["key"] == ["g-key"]
            body = m.last_request.json()
            assert "Document body" in body["contents"][0]["parts"][0]["text"]

        assert summary.confidence == "High"
        assert summarizer.last_error is None

    def test_http_error_degrades(self, make_filing: Any) -> None:
        summarizer = self._summarizer()
        with requests_mock.Mocker() as m:
            m.post(ENDPOINT, status_code=429, text="Resource has been exhausted")

            summary = summarizer.summarize(make_filing("1"))

        assert summary.summary == DEGRADED_SUMMARY
        assert summary.degraded is True
        assert summarizer.last_error.error_type == ErrorType.RATE_LIMIT

    def test_blocked_prompt_is_content_policy(self, make_filing: Any) -> None:
        summarizer = self._summarizer()
        with requests_mock.Mocker() as m:
            m.post(ENDPOINT, json={"promptFeedback": {"blockReason": "SAFETY"}})
            summarizer.summarize(make_filing("1"))

        assert summarizer.last_error.error_type == ErrorType.CONTENT_POLICY

    def test_timeout_is_network(self, make_filing: Any) -> None:
        summarizer = self._summarizer()
        with requests_mock.Mocker() as m:
            m.post(ENDPOINT, exc=requests.exceptions.ConnectTimeout)
            summarizer.summarize(make_filing("1"))

        assert summarizer.last_error.error_type == ErrorType.NETWORK

    def test_open_breaker_skips_provider(self, make_filing: Any) -> None:
        summarizer = self._summarizer(threshold=2)
        with requests_mock.Mocker() as m:
            m.post(ENDPOINT, status_code=500, text="internal")

            for _ in range(5):
                summary = summarizer.summarize(make_filing("1"))

            assert m.call_count == 2

        assert summary.degraded is True
        assert summarizer.breaker.is_open
