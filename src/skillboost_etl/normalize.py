"""Normalization functions for skills-progress CSV ingestion.

Most functions accept str | None and return the appropriate type or a
neutral value; none of them raise on malformed input.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta

NAME_LIST_DELIMITER = "|"

_LEADING_INT_RE = re.compile(r"^[+-]?\d+")
_DATE_FORMAT = "%Y-%m-%d"


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = value.strip()
    return v if v else None


def trim_text(value: str | None) -> str:
    """Like trim, but absent or blank values become ''."""
    return trim(value) or ""


# ---------------------------------------------------------------------------
# Rule 2: parse_count
# ---------------------------------------------------------------------------

def parse_count(value: str | None) -> int:
    """Parse a completion count as a non-negative integer.

    A leading integer prefix is honoured ("7 badges" -> 7).  Missing,
    non-numeric and negative values all normalize to 0.
    """
    v = trim(value)
    if v is None:
        return 0
    m = _LEADING_INT_RE.match(v)
    if not m:
        return 0
    n = int(m.group(0))
    return n if n > 0 else 0


# ---------------------------------------------------------------------------
# Rule 3: name lists
# ---------------------------------------------------------------------------

def split_names(value: str | None) -> list[str]:
    """Split a '|'-joined name list into trimmed, non-empty names (order kept)."""
    v = trim(value)
    if v is None:
        return []
    return [n.strip() for n in v.split(NAME_LIST_DELIMITER) if n.strip()]


# ---------------------------------------------------------------------------
# Rule 4: dates
# ---------------------------------------------------------------------------

def parse_upload_date(value: str | None) -> date | None:
    """Parse an ISO 'YYYY-MM-DD' operator date, or None."""
    v = trim(value)
    if v is None:
        return None
    try:
        return datetime.strptime(v, _DATE_FORMAT).date()
    except ValueError:
        return None


def report_date_for(upload_date: date) -> date:
    """An export taken on day D reflects standing as of midnight D-1."""
    if isinstance(upload_date, datetime):
        upload_date = upload_date.date()
    return upload_date - timedelta(days=1)
