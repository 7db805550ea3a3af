"""Slot types for entity extraction."""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class SlotField(str, Enum):
    """Fields an extractor can fill."""

    NAME = "name"
    EMAIL = "email"
    SERVICE = "service"


class ExtractionSource(str, Enum):
    """Which strategy produced an extracted value."""

    PRIMARY = "primary"      # LLM-backed
    FALLBACK = "fallback"    # Deterministic rules
    NONE = "none"            # Nothing usable found


@dataclass
class Extraction(Generic[T]):
    """Result of running an extractor chain over one utterance."""

    field: SlotField
    value: Optional[T] = None
    source: ExtractionSource = ExtractionSource.NONE
    primary_error: Optional[str] = None

    @property
    def found(self) -> bool:
        """Check if a usable value was extracted."""
        return self.value is not None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "field": self.field.value,
            "value": self.value,
            "source": self.source.value,
            "primary_error": self.primary_error,
        }


@dataclass(frozen=True)
class TimeSlot:
    """One bookable slot on a given day.

    start is canonical 24-hour "HH:MM", display is what the caller hears
    ("2:30 PM").
    """

    start: str
    display: str
    end: Optional[str] = None

    @property
    def hour(self) -> int:
        return int(self.start.split(":")[0])

    @property
    def minute(self) -> int:
        return int(self.start.split(":")[1])

    @classmethod
    def from_dict(cls, data: dict) -> "TimeSlot":
        """Create from API response dict."""
        return cls(
            start=data.get("start", data.get("start_time", "")),
            display=data.get("display", data.get("start", "")),
            end=data.get("end", data.get("end_time")),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        result = {"start": self.start, "display": self.display}
        if self.end:
            result["end"] = self.end
        return result


class DateRejection(str, Enum):
    """Why a date utterance was not accepted."""

    UNRECOGNIZED = "unrecognized"   # No strict calendar date found
    RELATIVE = "relative"           # "tomorrow", "next Tuesday"
    INVALID = "invalid"             # "February 30"
    PAST = "past"                   # Before today in the business timezone


@dataclass
class DateParseResult:
    """Outcome of strict date parsing."""

    success: bool
    date: Optional[date] = None
    formatted: Optional[str] = None
    rejection: Optional[DateRejection] = None
    matched_text: Optional[str] = None
    year_inferred: bool = False

    @property
    def iso(self) -> Optional[str]:
        """ISO YYYY-MM-DD form of the parsed date."""
        return self.date.isoformat() if self.date else None


@dataclass
class ParsedTime:
    """A time of day as heard in an utterance."""

    hour: int
    minute: Optional[int] = None
    meridiem: Optional[str] = None   # "am" | "pm"
    raw: str = ""

    def canonical(self) -> Optional[str]:
        """Unambiguous 24-hour HH:MM, or None when AM/PM cannot be known."""
        minute = self.minute or 0
        if self.meridiem == "pm":
            hour = self.hour % 12 + 12
        elif self.meridiem == "am":
            hour = self.hour % 12
        elif self.hour >= 13 or self.hour == 0:
            hour = self.hour
        else:
            return None
        return f"{hour:02d}:{minute:02d}"


@dataclass
class ExtractedIdentity:
    """Name and email found in a single utterance."""

    name: Optional[str] = None
    email: Optional[str] = None
    sources: dict = field(default_factory=dict)

    def has_any(self) -> bool:
        """Check if anything was extracted."""
        return any([self.name, self.email])
