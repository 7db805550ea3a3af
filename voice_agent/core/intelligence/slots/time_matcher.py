"""
Match a spoken time against the slots offered for a day.

Tiers, first hit wins:
1. exact display string ("2:30 PM")
2. parsed canonical time ("2:30 pm", "14:30", "two thirty pm", "noon")
3. partial / hour-only match, checked for AM/PM consistency
"""

import logging
import re
from typing import Optional, Sequence

from .types import ParsedTime, TimeSlot

logger = logging.getLogger(__name__)

_HOUR_WORDS = {
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "six": 6,
    "seven": 7, "eight": 8, "nine": 9, "ten": 10, "eleven": 11, "twelve": 12,
}
_MINUTE_WORDS = {
    "oh five": 5, "ten": 10, "fifteen": 15, "twenty": 20, "thirty": 30,
    "forty five": 45, "forty-five": 45, "forty": 40, "fifty": 50,
}

_SPOKEN_TIME = re.compile(
    r"\b(" + "|".join(_HOUR_WORDS) + r")"
    r"(?:\s+(" + "|".join(sorted(_MINUTE_WORDS, key=len, reverse=True)) + r"))?\b"
)

TIME_PATTERN = re.compile(
    r"(?<![\d:/-])(\d{1,2})(?::(\d{2}))?\s*(am|pm)?(?![\d/-])"
)
COMPACT_TIME_PATTERN = re.compile(r"(?<![\d:/-])([01]\d|2[0-3])([0-5]\d)(?![\d/-])")

# Bookable hours run 12:00-16:00, so a bare "1".."4" means afternoon
AFTERNOON_HOURS = {1, 2, 3, 4}


def _normalize(text: str) -> str:
    text = text.lower()
    text = re.sub(r"\bp\.?\s?m\.?", "pm", text)
    text = re.sub(r"\ba\.?\s?m\.?(?=\s|$|[,.!?])", "am", text)
    text = re.sub(r"\b(?:noon|midday)\b", "12:00 pm", text)

    def _spoken(match: re.Match) -> str:
        hour = _HOUR_WORDS[match.group(1)]
        if match.group(2):
            return f"{hour}:{_MINUTE_WORDS[match.group(2)]:02d}"
        # A lone number word is only a time next to a clock cue ("at two", "two pm")
        before = match.string[:match.start()]
        after = match.string[match.end():]
        if re.search(r"\b(?:at|around|about|by)\s*$", before) or re.match(r"\s*(?:am|pm|o'?\s?clock)\b", after):
            return str(hour)
        return match.group(0)

    text = _SPOKEN_TIME.sub(_spoken, text)
    return re.sub(r"\s*o'?\s?clock\b", "", text)


def parse_spoken_time(text: str) -> Optional[ParsedTime]:
    """Extract the first time of day from an utterance."""
    normalized = _normalize(text)

    for match in TIME_PATTERN.finditer(normalized):
        hour = int(match.group(1))
        minute = int(match.group(2)) if match.group(2) else None
        meridiem = match.group(3)

        if hour > 23 or (minute is not None and minute > 59):
            continue
        if meridiem and not 1 <= hour <= 12:
            continue
        # Bare numbers only count when they could be a clock hour
        if minute is None and meridiem is None and hour > 12:
            continue
        return ParsedTime(hour=hour, minute=minute, meridiem=meridiem, raw=match.group(0).strip())

    match = COMPACT_TIME_PATTERN.search(normalized)
    if match:
        return ParsedTime(
            hour=int(match.group(1)),
            minute=int(match.group(2)),
            raw=match.group(0),
        )

    return None


def _match_display(text: str, slots: Sequence[TimeSlot]) -> Optional[TimeSlot]:
    lowered = text.lower().strip()
    for slot in slots:
        display = slot.display.lower()
        if lowered == display or re.search(rf"(?<!\d){re.escape(display)}", lowered):
            return slot
    return None


def _match_partial(parsed: ParsedTime, slots: Sequence[TimeSlot]) -> Optional[TimeSlot]:
    candidates = [
        slot for slot in slots
        if slot.hour % 12 == parsed.hour % 12
        and (parsed.minute is None or slot.minute == parsed.minute)
    ]
    if not candidates:
        return None

    if parsed.meridiem:
        wants_pm = parsed.meridiem == "pm"
        candidates = [slot for slot in candidates if (slot.hour >= 12) == wants_pm]
    elif parsed.hour in AFTERNOON_HOURS or parsed.hour == 12:
        candidates = [slot for slot in candidates if slot.hour >= 12]

    return candidates[0] if candidates else None


def match_time_slot(text: str, slots: Sequence[TimeSlot]) -> Optional[TimeSlot]:
    """Find the offered slot a caller is asking for.

    Args:
        text: Caller utterance
        slots: Slots offered for the currently held date, in order

    Returns:
        The matching slot, or None when nothing offered fits
    """
    if not slots:
        return None

    slot = _match_display(text, slots)
    if slot:
        logger.debug(f"Time matched on display: {slot.display}")
        return slot

    parsed = parse_spoken_time(text)
    if parsed is None:
        return None

    canonical = parsed.canonical()
    if canonical:
        for slot in slots:
            if slot.start == canonical:
                logger.debug(f"Time matched on canonical value: {canonical}")
                return slot

    slot = _match_partial(parsed, slots)
    if slot:
        logger.debug(f"Time matched on partial hour: {parsed.raw} -> {slot.start}")
    return slot


def repair_time(value: Optional[str]) -> Optional[str]:
    """Coerce a stored time into strict HH:MM.

    Four digits without a colon ("1430") are repaired to "14:30"; anything
    else that is not already HH:MM is refused with None.
    """
    if not value:
        return None
    value = value.strip()
    if re.fullmatch(r"\d{2}:\d{2}", value):
        hour, minute = int(value[:2]), int(value[3:])
        return value if hour < 24 and minute < 60 else None
    if re.fullmatch(r"\d{4}", value):
        hour, minute = int(value[:2]), int(value[2:])
        if hour < 24 and minute < 60:
            return f"{value[:2]}:{value[2:]}"
    return None
