"""
Utterance patterns for the appointment flow.

Pure functions that read caller intent inside the booking state machine:
calendar choice, confirmation and cancellation, two-turn change requests,
and value-bearing direct changes ("change the date to November 3, 2025").
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from voice_agent.core.intelligence.slots.datetime_parser import has_explicit_date

logger = logging.getLogger(__name__)

CHANGEABLE_FIELDS = ("service", "date", "time", "name", "email")


def _compile(patterns: list[str]) -> list[re.Pattern]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


CALENDAR_KEYWORDS = {
    "google": re.compile(r"\b(?:google|gmail)\b", re.IGNORECASE),
    "microsoft": re.compile(r"\b(?:microsoft|outlook|office|teams)\b", re.IGNORECASE),
}

CONFIRMATION_PATTERNS = _compile([
    r"\bsounds good\b",
    r"\bgood\b",
    r"\bcorrect\b",
    r"\byes\b",
    r"\byeah\b",
    r"\byep\b",
    r"\bconfirm\b",
    r"\bschedule\b",
    r"\bbook\b",
    r"\bgo ahead\b",
    r"\blooks good\b",
    r"\bperfect\b",
])

# Any of these cancels a confirmation ("no", "not correct", "doesn't look good")
CONFIRMATION_BLOCKERS = _compile([
    r"^\s*no\b",
    r"\bnot\b",
    r"n't\b",
    r"\bwrong\b",
    r"\bincorrect\b",
])

# Replies accepting a spelled-back value
READBACK_ACCEPT_PATTERNS = CONFIRMATION_PATTERNS + _compile([
    r"\bthat'?s\s+(?:right|it)\b",
    r"\bright\b",
    r"\bexactly\b",
    r"\bok(?:ay)?\b",
])

# Replies rejecting a spelled-back value ("no", "that's wrong", "let me spell it again")
READBACK_DENY_PATTERNS = _compile([
    r"^\s*(?:no|nope|nah)\b",
    r"\bnot\s+(?:right|correct|it)\b",
    r"n't\b",
    r"\bwrong\b",
    r"\bincorrect\b",
    r"\b(?:change|fix|update|different)\b",
    r"\bspell\b.*\bagain\b",
])

CANCELLATION_PATTERNS = _compile([
    r"^\s*no\b",
    r"^\s*nope\b",
    r"\bcancel\b",
    r"\bstart over\b",
    r"\bnever\s?mind\b",
    r"\bforget it\b",
])

CHANGE_REQUEST_PATTERNS: dict[str, list[re.Pattern]] = {
    "service": _compile([r"\bchange\b.*\bservice\b", r"\bdifferent\s+service\b"]),
    "date": _compile([r"\bchange\b.*\b(?:date|day)\b", r"\bdifferent\s+(?:date|day)\b"]),
    "time": _compile([r"\bchange\b.*\btime\b", r"\bdifferent\s+time\b"]),
    "name": _compile([r"\bchange\b.*\bname\b", r"\bwrong\b.*\bname\b", r"\bfix\b.*\bname\b"]),
    "email": _compile([
        r"\bchange\b.*\bemail\b",
        r"\bupdate\b.*\bemail\b",
        r"\bwrong\b.*\bemail\b",
        r"\bcorrect\b.*\bemail\b",
        r"\bfix\b.*\bemail\b",
    ]),
}

DIRECT_CHANGE_PATTERNS: dict[str, list[re.Pattern]] = {
    "service": _compile([
        r"\bchange\b.*?\bservice\b.*?\bto\s+(.+)",
        r"\bservice\b.*?\bshould\b.*?\bbe\s+(.+)",
    ]),
    "date": _compile([
        r"\bchange\b.*?\b(?:date|day)\b.*?\bto\s+(.+)",
        r"\b(?:date|day)\b.*?\bshould\b.*?\bbe\s+(.+)",
        r"\b(?:move|switch|reschedule)\b.*?\bto\s+(.+)",
    ]),
    "time": _compile([
        r"\bchange\b.*?\btime\b.*?\bto\s+(.+)",
        r"\btime\b.*?\bshould\b.*?\bbe\s+(.+)",
    ]),
    "name": _compile([
        r"\bchange\b.*?\bname\b.*?\bto\s+(.+)",
        r"\bname\b.*?\bshould\b.*?\bbe\s+(.+)",
        r"\bcall me\s+(.+)",
    ]),
    "email": _compile([
        r"\bchange\b.*?\bemail\b.*?\bto\s+(.+)",
        r"\bemail\b.*?\bshould\b.*?\bbe\s+(.+)",
        r"\bmy email\b.*?\bis\s+(.+)",
        r"\bemail address\b.*?\bis\s+(.+)",
        r"\bthe email\b.*?\bis\s+(.+)",
    ]),
}

# Value-bearing requests that do not name the field ("make it 3 PM instead")
UNNAMED_CHANGE_PATTERNS = _compile([
    r"\bmake\s+it\s+(.+?)\s+instead\b",
    r"\b(?:can|could)\s+we\s+(?:do|make\s+it)\s+(.+?)(?:\s+instead)?[.?!]*$",
    r"\b(?:how|what)\s+about\s+(.+?)(?:\s+instead)?[.?!]*$",
    r"\blet'?s\s+(?:do|make\s+it)\s+(.+?)(?:\s+instead)?[.?!]*$",
])

DATE_CORRECTION_CUE = re.compile(r"\b(?:actually|instead|change|move|switch|rather)\b", re.IGNORECASE)

# Clauses that start a second change in the same utterance
_CLAUSE_SPLIT = re.compile(r"\s+(?:and|but|also)\s+(?=(?:the|my|change|make|it)\b)|[;]", re.IGNORECASE)


@dataclass
class DirectChange:
    """One value-bearing change request.

    field is None when the caller did not say which field ("make it 3 PM
    instead"); the engine infers it from the value.
    """

    field: Optional[str]
    value: str


def detect_calendar(text: str) -> Optional[str]:
    """Calendar named in an utterance: 'google', 'microsoft' or None."""
    found = []
    for calendar_type, pattern in CALENDAR_KEYWORDS.items():
        match = pattern.search(text)
        if match:
            found.append((match.start(), calendar_type))
    return min(found)[1] if found else None


def is_confirmation(text: str) -> bool:
    """Caller accepts the reviewed booking."""
    if any(p.search(text) for p in CONFIRMATION_BLOCKERS):
        return False
    if detect_change_request(text):
        return False
    return any(p.search(text) for p in CONFIRMATION_PATTERNS)


def is_readback_denial(text: str) -> bool:
    """Caller rejects a value that was spelled back to them."""
    return any(p.search(text) for p in READBACK_DENY_PATTERNS)


def is_readback_accepted(text: str) -> bool:
    """Caller accepts a value that was spelled back to them."""
    if is_readback_denial(text):
        return False
    return any(p.search(text) for p in READBACK_ACCEPT_PATTERNS)


def is_cancellation(text: str) -> bool:
    """Caller abandons the booking at the confirm step."""
    return any(p.search(text) for p in CANCELLATION_PATTERNS)


def detect_change_request(text: str) -> Optional[str]:
    """Field named in a two-turn change request, or None."""
    for field_name in CHANGEABLE_FIELDS:
        if any(p.search(text) for p in CHANGE_REQUEST_PATTERNS[field_name]):
            return field_name
    return None


def _clean_value(value: str) -> str:
    value = _CLAUSE_SPLIT.split(value)[0]
    value = re.sub(r"\s+instead\b.*$", "", value, flags=re.IGNORECASE)
    return value.strip(" .,!?\"'")


def detect_direct_changes(text: str) -> list[DirectChange]:
    """Find every value-bearing change in an utterance.

    Named-field patterns run first, one change per field. Unnamed
    "make it V instead" forms are only considered when nothing named
    matched. An explicit calendar date next to a correction cue counts as a
    date change even without other phrasing.
    """
    changes: list[DirectChange] = []
    seen: set[str] = set()

    for field_name in CHANGEABLE_FIELDS:
        for pattern in DIRECT_CHANGE_PATTERNS[field_name]:
            match = pattern.search(text)
            if match:
                value = _clean_value(match.group(1))
                if value:
                    changes.append(DirectChange(field=field_name, value=value))
                    seen.add(field_name)
                break

    if not changes:
        for pattern in UNNAMED_CHANGE_PATTERNS:
            match = pattern.search(text)
            if match:
                value = _clean_value(match.group(1))
                if value:
                    changes.append(DirectChange(field=None, value=value))
                break

    if "date" not in seen and not any(c.field is None for c in changes):
        if has_explicit_date(text) and DATE_CORRECTION_CUE.search(text):
            changes.append(DirectChange(field="date", value=text))

    if changes:
        logger.debug(f"Direct changes detected: {[(c.field, c.value) for c in changes]}")
    return changes
