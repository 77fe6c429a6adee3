"""Timestamp parsing and cursor encoding."""
from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Optional

_FRACTION_RE = re.compile(r"(T|\s)(\d{2}:\d{2}:\d{2})\.(\d+)")
_SHORT_OFFSET_RE = re.compile(r"(\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?)([+-]\d{2})$")


def _normalize_iso(value: str) -> str:
    text = value.strip()
    if text[-1:] in {"Z", "z"}:
        text = text[:-1] + "+00:00"
    # Postgres emits "+00" style offsets and 1-9 fractional digits.
    text = _SHORT_OFFSET_RE.sub(r"\1\2:00", text)

    def _pad(match: re.Match) -> str:
        digits = match.group(3)[:6].ljust(6, "0")
        return f"{match.group(1)}{match.group(2)}.{digits}"

    return _FRACTION_RE.sub(_pad, text, count=1)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a store or caller timestamp into an aware UTC datetime.

    Returns None for missing or unparseable values; naive values are read as UTC.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        if not value.strip():
            return None
        try:
            parsed = datetime.fromisoformat(_normalize_iso(value))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    try:
        return parsed.astimezone(timezone.utc)
    except OverflowError:
        # e.g. 0001-01-01T00:00:00+05:00 has no UTC representation
        return None


def format_cursor(value: datetime) -> str:
    """Encode a timestamp as the opaque cursor handed back to clients."""
    utc_value = value.astimezone(timezone.utc) if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return utc_value.isoformat(timespec="microseconds").replace("+00:00", "Z")
