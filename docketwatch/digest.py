"""
DocketWatch digest rendering

Builds the subject, plain-text and lightweight HTML bodies for filing alerts,
daily/weekly digests, seed (welcome) digests and the high-activity notice.
AI content is gated by the recipient's tier:

- free: a short summary preview followed by an upgrade prompt
- trial: full AI content plus a trial reminder
- pro: full AI content
"""

import html
import re
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from itertools import groupby
from typing import Dict, List, Optional
from urllib.parse import quote

from docketwatch.models import DigestType, Filing, UserTier
from docketwatch.utils import truncate

RESTRICTED_NOTICE = "This filing is marked confidential or restricted and is not publicly analyzable."
DIGEST_LABELS = {DigestType.DAILY: "Daily", DigestType.WEEKLY: "Weekly"}


@dataclass
class EmailContent:
    """A rendered email ready for a notifier."""

    subject: str
    text: str
    html: str


INLINE_MARKUP = re.compile(r"\[(?P<label>[^\]]+)\]\((?P<url>[^)]+)\)|\*\*(?P<bold>.+?)\*\*")
BULLETS = ("• ", "- ")
WRAPPER_STYLE = (
    "font-family: 'Segoe UI', 'Helvetica Neue', Arial, sans-serif; "
    "font-size: 14px; line-height: 1.5; color: #111;"
)


def _inline_html(segment: str) -> str:
    parts: List[str] = []
    pos = 0
    for match in INLINE_MARKUP.finditer(segment):
        parts.append(html.escape(segment[pos : match.start()]))
        if match.group("bold") is not None:
            parts.append(f"<strong>{_inline_html(match.group('bold'))}</strong>")
        else:
            url = html.escape(match.group("url"), quote=True)
            parts.append(f'<a href="{url}">{html.escape(match.group("label"))}</a>')
        pos = match.end()
    parts.append(html.escape(segment[pos:]))
    return "".join(parts)


def _line_kind(line: str) -> str:
    if not line:
        return "blank"
    if line.startswith(BULLETS):
        return "item"
    if line.endswith(":") and len(line) < 80:
        return "heading"
    return "text"


def plain_text_to_html(text: str) -> str:
    """Render digest text as HTML.

    Runs of bullet lines become one list, consecutive text lines one paragraph
    (a filing's title, byline and link stay together), and short lines ending
    in a colon become section headings. Blank lines only separate blocks.
    """
    blocks: List[str] = []
    lines = (line.strip() for line in (text or "").splitlines())
    for kind, grouped in groupby(lines, key=_line_kind):
        run = list(grouped)
        if kind == "item":
            items = "".join(f"<li>{_inline_html(line[2:].strip())}</li>" for line in run)
            blocks.append(f"<ul>{items}</ul>")
        elif kind == "heading":
            blocks.extend(f'<h3 style="margin:12px 0 4px;">{_inline_html(line)}</h3>' for line in run)
        elif kind == "text":
            blocks.append("<p>" + "<br/>".join(_inline_html(line) for line in run) + "</p>")
    return f'<div style="{WRAPPER_STYLE}">' + "\n".join(blocks) + "</div>"


def summary_preview(summary: str, limit: int = 70) -> str:
    """Visible part of an AI summary for free-tier recipients."""
    return (summary or "")[:limit].strip()


class DigestRenderer:
    """Renders notification emails for one brand."""

    def __init__(
        self, brand_name: str = "DocketWatch", app_url: str = "", preview_chars: int = 70
    ):
        self.brand_name = brand_name
        self.app_url = app_url.rstrip("/")
        self.preview_chars = preview_chars

    # ------------------------------------------------------------------
    # Shared blocks
    # ------------------------------------------------------------------

    def _format_date(self, value: Optional[datetime]) -> str:
        return value.strftime("%b %d, %Y") if value else "Date unknown"

    def _ai_block(self, filing: Filing, tier: UserTier) -> List[str]:
        if filing.is_restricted:
            return [f"_{RESTRICTED_NOTICE}_"]

        summary = filing.ai_summary
        if summary is None or not summary.summary:
            return ["AI summary pending."]

        if tier == UserTier.FREE:
            preview = summary_preview(summary.summary, self.preview_chars)
            return [
                "AI Summary Preview:",
                f"{preview}... [Upgrade to Pro for the full summary]({self.app_url}/pricing)",
            ]

        lines = ["AI Summary:", summary.summary]
        if summary.key_points:
            lines.append("Key Points:")
            lines.extend(f"- {point}" for point in summary.key_points)
        if not summary.degraded:
            lines.append(f"**Stakeholders:** {summary.stakeholders}")
            lines.append(f"**Regulatory impact:** {summary.regulatory_impact}")
        return lines

    def _filing_block(self, filing: Filing, tier: UserTier) -> List[str]:
        lines = [
            f"**{filing.title}**",
            f"Filed by {filing.author} · {filing.filing_type} · "
            f"{self._format_date(filing.date_received)}",
        ]
        lines.extend(self._ai_block(filing, tier))
        lines.append(f"[View filing]({filing.filing_url})")
        lines.append("")
        return lines

    def _tier_footer(self, tier: UserTier) -> List[str]:
        if tier == UserTier.FREE:
            return [
                f"Upgrade to Pro for complete AI analysis: [{self.app_url}/pricing]"
                f"({self.app_url}/pricing)",
                "",
            ]
        if tier == UserTier.TRIAL:
            return [
                "**Trial Active:** you are seeing full AI analysis during your trial. "
                f"[Keep it with Pro]({self.app_url}/pricing)",
                "",
            ]
        return []

    def _footer(self, email: str, docket_numbers: List[str]) -> List[str]:
        lines = [f"[Manage subscriptions]({self.app_url}/manage)"]
        for docket in docket_numbers:
            lines.append(
                f"[Unsubscribe from {docket}]({self.app_url}/unsubscribe?"
                f"email={quote(email)}&docket={quote(docket)})"
            )
        return lines

    def _finish(self, subject: str, lines: List[str]) -> EmailContent:
        text = "\n".join(lines).strip() + "\n"
        return EmailContent(subject=subject, text=text, html=plain_text_to_html(text))

    # ------------------------------------------------------------------
    # Email types
    # ------------------------------------------------------------------

    def render_filing_alert(self, email: str, filing: Filing, tier: UserTier) -> EmailContent:
        title = truncate(filing.title, 60)
        subject = f"New Filing Alert: {filing.docket_number} - {title}"
        lines = [f"NEW FILING ALERT - {self.brand_name}", "", f"Docket {filing.docket_number}:"]
        lines.extend(self._filing_block(filing, tier))
        lines.extend(self._tier_footer(tier))
        lines.extend(self._footer(email, [filing.docket_number]))
        return self._finish(subject, lines)

    def render_seed_digest(self, email: str, filings: List[Filing], tier: UserTier) -> EmailContent:
        """Welcome email covering every docket the recipient just subscribed to."""
        latest: Dict[str, Filing] = OrderedDict()
        for filing in filings:
            latest.setdefault(filing.docket_number, filing)
        dockets = list(latest)

        if len(dockets) == 1:
            subject = (
                f"Welcome to {self.brand_name}! Your monitoring for docket "
                f"{dockets[0]} starts now"
            )
            intro = (
                f"You are now monitoring FCC docket {dockets[0]}. "
                "Here is the most recent filing:"
            )
        else:
            listed = ", ".join(dockets[:-1]) + f" and {dockets[-1]}"
            subject = (
                f"Welcome to {self.brand_name}! Your monitoring for dockets "
                f"{listed} starts now"
            )
            intro = (
                f"You are now monitoring FCC dockets {listed}. "
                "Here is the most recent filing in each:"
            )

        lines = [f"Welcome to {self.brand_name}.", intro, ""]
        for docket_number, filing in latest.items():
            if len(dockets) > 1:
                lines.append(f"Docket {docket_number}:")
            lines.extend(self._filing_block(filing, tier))
        lines.extend(self._tier_footer(tier))
        lines.extend(self._footer(email, dockets))
        return self._finish(subject, lines)

    def render_digest(
        self,
        email: str,
        filings: List[Filing],
        tier: UserTier,
        digest_type: DigestType,
        now: datetime,
    ) -> EmailContent:
        by_docket: Dict[str, List[Filing]] = OrderedDict()
        for filing in filings:
            by_docket.setdefault(filing.docket_number, []).append(filing)

        total = len(filings)
        dockets = len(by_docket)
        label = DIGEST_LABELS.get(digest_type, "Filing")
        subject = (
            f"{self.brand_name}: {total} new filing{'s' if total != 1 else ''} "
            f"across {dockets} docket{'s' if dockets != 1 else ''} - "
            f"{now.strftime('%b %d, %Y')}"
        )

        lines = [f"{label} Digest - {self.brand_name}", ""]
        for docket_number, docket_filings in by_docket.items():
            lines.append(f"Docket {docket_number} ({len(docket_filings)}):")
            for filing in docket_filings:
                lines.extend(self._filing_block(filing, tier))
        lines.extend(self._tier_footer(tier))
        lines.extend(self._footer(email, list(by_docket)))
        return self._finish(subject, lines)

    def render(
        self,
        email: str,
        digest_type: DigestType,
        filings: List[Filing],
        tier: UserTier,
        now: datetime,
    ) -> EmailContent:
        """Render the email for one recipient group."""
        if not filings:
            raise ValueError("Cannot render a notification without filings")

        if digest_type == DigestType.SEED_DIGEST:
            return self.render_seed_digest(email, filings, tier)
        if digest_type == DigestType.IMMEDIATE and len(filings) == 1:
            return self.render_filing_alert(email, filings[0], tier)
        return self.render_digest(email, filings, tier, digest_type, now)

    def render_high_activity(self, docket_number: str) -> EmailContent:
        """Notice sent once when a docket is suspended for abnormal volume."""
        subject = f"High Activity Alert - Docket {docket_number}"
        search_url = (
            "https://www.fcc.gov/ecfs/search/search-filings/results?"
            f"q=%28proceedings.name:%28%22{quote(docket_number)}%22%29%29"
        )
        lines = [
            f"High Activity Alert - Docket {docket_number}:",
            "",
            f"Docket {docket_number} is receiving an unusually high volume of filings.",
            "To protect your inbox, individual filing alerts for this docket are paused "
            "until tomorrow's reset. Monitoring resumes automatically.",
            "",
            f"[Browse the latest filings on ECFS]({search_url})",
            "",
            f"[Manage subscriptions]({self.app_url}/manage)",
        ]
        return self._finish(subject, lines)
