"""Utility functions for DocketWatch."""

import re
from datetime import datetime, timezone
from typing import Any, Optional

_WHITESPACE = re.compile(r"\s+")
DOCKET_PATTERN = re.compile(r"^\d{1,3}-\d{1,3}$")


def clean_text(value: Any, max_length: int = 500) -> str:
    """Trim, collapse whitespace and cap a text field from the source API.

    Args:
        value: Raw field value (non-strings yield an empty string)
        max_length: Maximum number of characters kept

    Returns:
        Cleaned text
    """
    if not isinstance(value, str):
        return ""
    return _WHITESPACE.sub(" ", value.strip())[:max_length]


def is_valid_docket_number(docket_number: str) -> bool:
    """Check a proceeding number such as ``11-42`` or ``02-278``."""
    return bool(docket_number and DOCKET_PATTERN.match(docket_number.strip()))


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (``Z`` suffix allowed) into an aware UTC datetime."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_storage_timestamp(value: datetime) -> str:
    """Format a datetime as the fixed-width UTC string used in storage.

    The fixed width keeps lexical and chronological ordering identical.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def truncate(text: str, limit: int, suffix: str = "...") -> str:
    """Cut ``text`` to ``limit`` characters, adding ``suffix`` when shortened."""
    if not text or len(text) <= limit:
        return text or ""
    return text[:limit].rstrip() + suffix
