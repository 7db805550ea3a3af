"""
Strict calendar-date parsing for voice input.

Only explicit calendar dates are accepted ("October 16, 2025", "16th of
October", "2025-10-16", "10/16/2025"). Relative expressions ("tomorrow",
"next Tuesday") are rejected, since over a phone line they are easy to
mishear and ambiguous around midnight and weekends.
"""

import logging
import re
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from voice_agent.config import settings
from .types import DateParseResult, DateRejection

logger = logging.getLogger(__name__)

MONTHS = {
    "january": 1, "jan": 1,
    "february": 2, "feb": 2,
    "march": 3, "mar": 3,
    "april": 4, "apr": 4,
    "may": 5,
    "june": 6, "jun": 6,
    "july": 7, "jul": 7,
    "august": 8, "aug": 8,
    "september": 9, "sept": 9, "sep": 9,
    "october": 10, "oct": 10,
    "november": 11, "nov": 11,
    "december": 12, "dec": 12,
}

# Longest names first so "sept" wins over "sep"
_MONTH_RE = "|".join(sorted(MONTHS, key=len, reverse=True))

_ORDINAL_UNITS = {
    "first": 1, "second": 2, "third": 3, "fourth": 4, "fifth": 5,
    "sixth": 6, "seventh": 7, "eighth": 8, "ninth": 9,
}
_ORDINAL_WORDS = {
    **_ORDINAL_UNITS,
    "tenth": 10, "eleventh": 11, "twelfth": 12, "thirteenth": 13,
    "fourteenth": 14, "fifteenth": 15, "sixteenth": 16, "seventeenth": 17,
    "eighteenth": 18, "nineteenth": 19, "twentieth": 20, "thirtieth": 30,
}
_COMPOUND_ORDINAL = re.compile(
    r"\b(twenty|thirty)[\s-](" + "|".join(_ORDINAL_UNITS) + r")\b"
)
_SIMPLE_ORDINAL = re.compile(r"\b(" + "|".join(sorted(_ORDINAL_WORDS, key=len, reverse=True)) + r")\b")

ISO_PATTERN = re.compile(r"\b(\d{4})-(\d{1,2})-(\d{1,2})\b")
US_PATTERN = re.compile(r"\b(\d{1,2})/(\d{1,2})/(\d{4})\b")
MONTH_DAY_PATTERN = re.compile(
    rf"\b({_MONTH_RE})\.?\s+(?:the\s+)?(\d{{1,2}})(?:st|nd|rd|th)?\b(?:\s+(\d{{4}})\b)?"
)
DAY_MONTH_PATTERN = re.compile(
    rf"\b(?:the\s+)?(\d{{1,2}})(?:st|nd|rd|th)?\s+(?:of\s+)?({_MONTH_RE})\b\.?(?:\s+(\d{{4}})\b)?"
)

RELATIVE_PATTERN = re.compile(
    r"\b(today|tonight|tomorrow|yesterday|day after|"
    r"monday|tuesday|wednesday|thursday|friday|saturday|sunday|weekend|"
    r"(?:next|this|coming)\s+(?:week|month)|in\s+\w+\s+(?:days?|weeks?))\b"
)


def business_today(tz_name: Optional[str] = None) -> date:
    """Today's date in the business timezone."""
    return datetime.now(ZoneInfo(tz_name or settings.business_timezone)).date()


def normalize_date_text(text: str) -> str:
    """Lowercase and rewrite spoken forms into parseable ones.

    - "twenty first" -> "21st", "twentieth" -> "20th"
    - "2025 dash 12 dash 15" -> "2025-12-15"
    - commas dropped, whitespace collapsed
    """
    text = text.lower()
    text = _COMPOUND_ORDINAL.sub(
        lambda m: f"{(20 if m.group(1) == 'twenty' else 30) + _ORDINAL_UNITS[m.group(2)]}th",
        text,
    )
    text = _SIMPLE_ORDINAL.sub(lambda m: f"{_ORDINAL_WORDS[m.group(1)]}th", text)
    text = re.sub(r"\s+(?:dash|hyphen)\s+", "-", text)
    text = re.sub(r"\s+slash\s+", "/", text)
    text = text.replace(",", " ")
    return re.sub(r"\s+", " ", text).strip()


def format_date(value: date) -> str:
    """Spoken form of a date: 'Thursday, October 16, 2025'."""
    return f"{value:%A}, {value:%B} {value.day}, {value.year}"


def is_weekend(value: date) -> bool:
    """Saturday or Sunday."""
    return value.weekday() >= 5


def next_business_day(value: date) -> date:
    """First weekday strictly after the given date."""
    candidate = value + timedelta(days=1)
    while is_weekend(candidate):
        candidate += timedelta(days=1)
    return candidate


def _find_explicit(text: str) -> Optional[tuple[int, int, Optional[int], str]]:
    """Locate an explicit date. Returns (month, day, year or None, matched text)."""
    match = ISO_PATTERN.search(text)
    if match:
        return int(match.group(2)), int(match.group(3)), int(match.group(1)), match.group(0)

    match = US_PATTERN.search(text)
    if match:
        return int(match.group(1)), int(match.group(2)), int(match.group(3)), match.group(0)

    match = MONTH_DAY_PATTERN.search(text)
    if match:
        year = int(match.group(3)) if match.group(3) else None
        return MONTHS[match.group(1)], int(match.group(2)), year, match.group(0)

    match = DAY_MONTH_PATTERN.search(text)
    if match:
        year = int(match.group(3)) if match.group(3) else None
        return MONTHS[match.group(2)], int(match.group(1)), year, match.group(0)

    return None


def parse_strict_date(text: str, today: Optional[date] = None) -> DateParseResult:
    """Parse an explicit calendar date from an utterance.

    A date without a year resolves to its next occurrence on or after today.

    Args:
        text: Caller utterance
        today: Reference date (defaults to today in the business timezone)

    Returns:
        DateParseResult; on failure, rejection says why
    """
    today = today or business_today()
    normalized = normalize_date_text(text)

    found = _find_explicit(normalized)
    if found is None:
        if RELATIVE_PATTERN.search(normalized):
            logger.debug(f"Rejected relative date expression: {text!r}")
            return DateParseResult(success=False, rejection=DateRejection.RELATIVE)
        return DateParseResult(success=False, rejection=DateRejection.UNRECOGNIZED)

    month, day, year, matched = found
    year_inferred = year is None

    try:
        if year is None:
            parsed = date(today.year, month, day)
            if parsed < today:
                parsed = date(today.year + 1, month, day)
        else:
            parsed = date(year, month, day)
    except ValueError:
        return DateParseResult(
            success=False,
            rejection=DateRejection.INVALID,
            matched_text=matched,
        )

    if parsed < today:
        return DateParseResult(
            success=False,
            date=parsed,
            formatted=format_date(parsed),
            rejection=DateRejection.PAST,
            matched_text=matched,
        )

    return DateParseResult(
        success=True,
        date=parsed,
        formatted=format_date(parsed),
        matched_text=matched,
        year_inferred=year_inferred,
    )


def has_explicit_date(text: str) -> bool:
    """Check whether an utterance names an explicit calendar date."""
    return _find_explicit(normalize_date_text(text)) is not None


def looks_like_date(text: str) -> bool:
    """Check whether an utterance is about a date rather than a time of day."""
    normalized = normalize_date_text(text)
    return _find_explicit(normalized) is not None or bool(RELATIVE_PATTERN.search(normalized))
