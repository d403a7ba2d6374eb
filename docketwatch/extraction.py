"""
DocketWatch document text extraction

Extracts attachment text through the Jina reader with an ordered fallback
chain. Each strategy maps a document URL to text or raises
``ExtractionError``; the chain stops at the first strategy whose sanitized
output clears that strategy's minimum length. Short output is treated as a
failure because JavaScript-gated viewer pages come back near-empty.

Provider responses arrive as JSON, as an event stream, or as plain text;
``classify_response`` maps each to one ``ResponseKind`` and
``response_text`` reads text out of each variant.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional
from urllib.parse import urlparse

import requests

from docketwatch.models import Attachment, Filing

logger = logging.getLogger(__name__)

PLACEHOLDER_ARTIFACT = "undefined"
JAVASCRIPT_GATE = "You need to enable JavaScript"
_WHITESPACE_RUN = re.compile(r"[ \t]{2,}")


class ExtractionError(Exception):
    """A single extraction strategy failed."""


class ResponseKind(Enum):
    """Shapes a reader response can take."""

    JSON = "json"
    EVENT_STREAM = "event_stream"
    PLAIN_TEXT = "plain_text"


def classify_response(content_type: Optional[str], body: str = "") -> ResponseKind:
    """Classify a provider response by content type, then by body shape."""
    content_type = (content_type or "").lower()
    if "application/json" in content_type:
        return ResponseKind.JSON
    if "text/event-stream" in content_type:
        return ResponseKind.EVENT_STREAM
    if body.lstrip().startswith("data:"):
        return ResponseKind.EVENT_STREAM
    return ResponseKind.PLAIN_TEXT


def parse_event_stream(lines: Iterable[str]) -> str:
    """Concatenate the ``text`` of every ``data: {json}`` event.

    Raises:
        ExtractionError: If no event carried text
    """
    parts: List[str] = []
    events = 0
    for line in lines:
        if isinstance(line, bytes):
            line = line.decode("utf-8", errors="replace")
        if not line or not line.startswith("data:"):
            continue
        payload = line[5:].strip()
        if not payload:
            continue
        events += 1
        try:
            parsed = json.loads(payload)
        except ValueError:
            logger.debug(f"Skipping unparsable stream event: {payload[:100]}")
            continue
        if isinstance(parsed, dict) and parsed.get("text"):
            parts.append(str(parsed["text"]))

    if not parts:
        raise ExtractionError(f"No text parsed from {events} stream events")
    return "".join(parts)


def _json_text(data: Any) -> str:
    if not isinstance(data, dict):
        return ""
    nested = data.get("data")
    if isinstance(nested, dict):
        text = nested.get("content") or nested.get("text")
        if text:
            return str(text)
    return str(data.get("content") or data.get("text") or "")


def response_text(kind: ResponseKind, body: str) -> str:
    """Read the extracted text out of a classified response body."""
    if kind == ResponseKind.JSON:
        try:
            return _json_text(json.loads(body))
        except ValueError as exc:
            raise ExtractionError(f"Invalid JSON from reader: {exc}") from exc
    if kind == ResponseKind.EVENT_STREAM:
        return parse_event_stream(body.splitlines())
    return body


def sanitize_text(text: str) -> str:
    """Strip the reader's placeholder artifacts and tidy whitespace."""
    cleaned = (text or "").replace(PLACEHOLDER_ARTIFACT, "")
    cleaned = _WHITESPACE_RUN.sub(" ", cleaned)
    return cleaned.strip()


def route_document_url(src: Optional[str]) -> Optional[str]:
    """Map an attachment URL to the URL to extract, or None to skip it.

    - docs.fcc.gov attachments are used directly
    - ECFS viewer URLs (``/ecfs/document/``) become ``/ecfs/documents/``
    - other fcc.gov URLs are attempted as-is
    - non-FCC URLs are skipped
    """
    if not src:
        return None
    parsed = urlparse(src)
    host = parsed.netloc.lower()

    if host == "docs.fcc.gov" and parsed.path.startswith("/public/attachments/"):
        return src
    if host in ("www.fcc.gov", "fcc.gov") and "/ecfs/document/" in parsed.path:
        return src.replace("/ecfs/document/", "/ecfs/documents/", 1)
    if host == "fcc.gov" or host.endswith(".fcc.gov"):
        return src
    return None


@dataclass
class ExtractionStrategy:
    """One step of the fallback chain."""

    name: str
    run: Callable[[str], str]
    min_chars: int


@dataclass
class ExtractionResult:
    """Outcome of the whole chain for one document."""

    url: str
    text: Optional[str] = None
    strategy: Optional[str] = None
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.text is not None


class DocumentExtractor:
    """Runs the reader fallback chain over filing attachments."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = "https://r.jina.ai",
        stream_timeout: float = 30.0,
        simple_timeout: float = 20.0,
        basic_timeout: float = 15.0,
        stream_min_chars: int = 100,
        simple_min_chars: int = 50,
        basic_min_chars: int = 20,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.stream_timeout = stream_timeout
        self.simple_timeout = simple_timeout
        self.basic_timeout = basic_timeout
        self.session = session or requests.Session()
        self.strategies: List[ExtractionStrategy] = [
            ExtractionStrategy("streaming", self._streaming, stream_min_chars),
            ExtractionStrategy("simple", self._simple, simple_min_chars),
            ExtractionStrategy("basic_post", self._basic_post, basic_min_chars),
        ]

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {"User-Agent": "DocketWatch/1.0 (FCC Docket Monitor)"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        headers.update(extra or {})
        return headers

    # ------------------------------------------------------------------
    # Strategies: url -> text, raising ExtractionError
    # ------------------------------------------------------------------

    def _streaming(self, url: str) -> str:
        headers = self._headers(
            {
                "Accept": "text/event-stream",
                "X-Return-Format": "text",
                "X-Engine": "browser",
                "X-Timeout": str(int(self.stream_timeout)),
            }
        )
        try:
            with self.session.get(
                f"{self.base_url}/{url}",
                headers=headers,
                stream=True,
                timeout=self.stream_timeout,
            ) as response:
                response.raise_for_status()
                return parse_event_stream(response.iter_lines(decode_unicode=True))
        except requests.RequestException as exc:
            raise ExtractionError(f"streaming request failed: {exc}") from exc

    def _simple(self, url: str) -> str:
        headers = self._headers(
            {
                "X-Return-Format": "text",
                "X-Engine": "browser",
                "X-Timeout": str(int(self.simple_timeout)),
            }
        )
        try:
            response = self.session.get(
                f"{self.base_url}/{url}", headers=headers, timeout=self.simple_timeout
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            raise ExtractionError(f"simple request failed: {exc}") from exc

        body = response.text
        kind = classify_response(response.headers.get("Content-Type"), body)
        text = response_text(kind, body)
        if not text:
            raise ExtractionError("simple reader returned empty content")
        if JAVASCRIPT_GATE in text:
            raise ExtractionError("simple reader hit a JavaScript-gated page")
        return text

    def _basic_post(self, url: str) -> str:
        payload = {
            "url": url,
            "options": {"engine": "browser", "timeout": int(self.basic_timeout)},
        }
        try:
            response = self.session.post(
                f"{self.base_url}/",
                json=payload,
                headers=self._headers({"Content-Type": "application/json"}),
                timeout=self.basic_timeout,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            raise ExtractionError(f"basic POST failed: {exc}") from exc

        body = response.text
        text = response_text(classify_response(response.headers.get("Content-Type"), body), body)
        if not text:
            raise ExtractionError("basic POST returned empty content")
        return text

    # ------------------------------------------------------------------
    # Chain
    # ------------------------------------------------------------------

    def extract_text(self, url: str) -> ExtractionResult:
        """Try each strategy in order; failures are collected, never raised."""
        result = ExtractionResult(url=url)
        for strategy in self.strategies:
            try:
                text = sanitize_text(strategy.run(url))
            except ExtractionError as e:
                result.errors.append(f"{strategy.name}: {e}")
                continue
            except Exception as e:
                result.errors.append(f"{strategy.name}: unexpected {type(e).__name__}: {e}")
                continue

            if len(text) <= strategy.min_chars:
                result.errors.append(
                    f"{strategy.name}: output too short ({len(text)} chars)"
                )
                continue

            result.text = text
            result.strategy = strategy.name
            logger.info(f"Extracted {len(text)} chars from {url} via {strategy.name}")
            return result

        logger.warning(f"All extraction strategies failed for {url}: {'; '.join(result.errors)}")
        return result

    def process_filing_documents(self, filing: Filing) -> List[Attachment]:
        """Extract text for every processable attachment of a filing.

        Each attachment gets an ``extraction_status`` of processed, failed or
        skipped. Returns the attachments that yielded text.
        """
        processed: List[Attachment] = []
        for attachment in filing.attachments:
            if attachment.file_type != "pdf" or not attachment.src:
                attachment.extraction_status = "skipped"
                continue

            target = route_document_url(attachment.src)
            if target is None:
                logger.debug(f"Skipping non-FCC document {attachment.src}")
                attachment.extraction_status = "skipped"
                continue

            result = self.extract_text(target)
            if result.success:
                attachment.text = result.text
                attachment.extraction_status = "processed"
                attachment.extraction_strategy = result.strategy
                processed.append(attachment)
            else:
                attachment.extraction_status = "failed"
                attachment.extraction_error = "; ".join(result.errors)[:1000]

        return processed
