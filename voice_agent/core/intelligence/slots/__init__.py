"""Slot extraction module."""

from .types import (
    DateParseResult,
    DateRejection,
    ExtractedIdentity,
    Extraction,
    ExtractionSource,
    ParsedTime,
    SlotField,
    TimeSlot,
)
from .extractor import (
    ExtractionContext,
    Extractor,
    ExtractorChain,
    SlotExtractor,
    get_slot_extractor,
)
from .datetime_parser import (
    format_date,
    has_explicit_date,
    is_weekend,
    looks_like_date,
    parse_strict_date,
)
from .time_matcher import match_time_slot, parse_spoken_time, repair_time
from .spelling import is_valid_email, normalize_email, spell_email

__all__ = [
    # Types
    "DateParseResult",
    "DateRejection",
    "ExtractedIdentity",
    "Extraction",
    "ExtractionSource",
    "ParsedTime",
    "SlotField",
    "TimeSlot",
    # Extractor
    "ExtractionContext",
    "Extractor",
    "ExtractorChain",
    "SlotExtractor",
    "get_slot_extractor",
    # Dates and times
    "format_date",
    "has_explicit_date",
    "is_weekend",
    "looks_like_date",
    "parse_strict_date",
    "match_time_slot",
    "parse_spoken_time",
    "repair_time",
    # Spelling
    "is_valid_email",
    "normalize_email",
    "spell_email",
]
