"""
Deadline Normalizer

Extracted deadlines arrive as free text. A deadline is accepted only when it
parses to a date within one year in the past and five years in the future;
otherwise a synthetic deadline is derived from the URL so that repeated
extraction of the same page converges on the same date.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Optional

import dateutil.parser
from dateutil.relativedelta import relativedelta

logger = logging.getLogger(__name__)

PAST_WINDOW_YEARS = 1
FUTURE_WINDOW_YEARS = 5
SYNTHETIC_MIN_DAYS = 30
SYNTHETIC_SPAN_DAYS = 335  # synthetic deadlines fall in [30, 365) days

# Fields missing from the text: day 1, and a year far outside any window
_PARSE_DEFAULT = datetime(1900, 1, 1)


def parse_deadline(raw: Optional[str]) -> Optional[date]:
    """
    Parse a free-text deadline into a date.

    ISO dates and timestamps first, then fuzzy parsing for everything else
    ("March 15th, 2026", "Mon, Mar. 15, 2026 at 11:59 PM", "March 2026").
    A month without a day means the 1st; text without a year parses into
    1900 and so never passes the window check.

    Returns:
        Parsed date or None if the text is not a recognisable date
    """
    if not raw or not isinstance(raw, str):
        return None

    text = raw.strip()
    if not text:
        return None

    try:
        return datetime.fromisoformat(text.replace('Z', '+00:00')).date()
    except ValueError:
        pass

    try:
        return dateutil.parser.parse(text, fuzzy=True, default=_PARSE_DEFAULT).date()
    except (ValueError, OverflowError):
        return None


def url_hash(url: str) -> int:
    """Stable 32-bit hash of a URL's characters (independent of PYTHONHASHSEED)."""
    value = 0
    for char in url or '':
        value = (value * 31 + ord(char)) & 0xFFFFFFFF
    return value


def synthetic_deadline(url: str, today: Optional[date] = None) -> date:
    """Deterministic fallback deadline between 30 and 364 days from today."""
    today = today or datetime.now(timezone.utc).date()
    offset = SYNTHETIC_MIN_DAYS + url_hash(url) % SYNTHETIC_SPAN_DAYS
    return today + timedelta(days=offset)


def is_within_window(value: date, today: Optional[date] = None) -> bool:
    """Calendar-year window: [today - 1 year, today + 5 years], both ends included."""
    today = today or datetime.now(timezone.utc).date()
    earliest = today - relativedelta(years=PAST_WINDOW_YEARS)
    latest = today + relativedelta(years=FUTURE_WINDOW_YEARS)
    return earliest <= value <= latest


def normalize_deadline(raw: Optional[str], url: str, today: Optional[date] = None) -> str:
    """
    Normalize an extracted deadline to a YYYY-MM-DD string.

    Args:
        raw: Deadline text from extraction (may be None)
        url: Source URL, seed for the synthetic fallback
        today: Reference date (defaults to today in UTC)

    Returns:
        Calendar date string
    """
    today = today or datetime.now(timezone.utc).date()
    parsed = parse_deadline(raw)

    if parsed and is_within_window(parsed, today):
        return parsed.isoformat()

    fallback = synthetic_deadline(url, today)
    if raw:
        logger.debug(f"Deadline '{raw}' for {url} rejected, using synthetic {fallback.isoformat()}")
    return fallback.isoformat()
