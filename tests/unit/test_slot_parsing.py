"""Tests for deterministic date, time, spelling and fallback parsing."""

from datetime import date

import pytest

from voice_agent.core.intelligence.slots.datetime_parser import (
    format_date,
    has_explicit_date,
    looks_like_date,
    next_business_day,
    parse_strict_date,
)
from voice_agent.core.intelligence.slots.fallback import (
    extract_bare_name,
    extract_email,
    extract_name,
    extract_service,
)
from voice_agent.core.intelligence.slots.spelling import (
    is_valid_email,
    normalize_email,
    spell_email,
)
from voice_agent.core.intelligence.slots.time_matcher import (
    match_time_slot,
    parse_spoken_time,
    repair_time,
)
from voice_agent.core.intelligence.slots.types import DateRejection, TimeSlot
from voice_agent.core.tenants import default_profile

TODAY = date(2025, 10, 1)


class TestParseStrictDate:
    """Test explicit calendar date parsing."""

    @pytest.mark.parametrize("text", [
        "October 16, 2025",
        "october 16th 2025",
        "the 16th of October 2025",
        "sixteenth of October 2025",
        "2025-10-16",
        "10/16/2025",
        "2025 dash 10 dash 16",
    ])
    def test_accepted_forms(self, text):
        """Test every explicit form resolves to the same day."""
        result = parse_strict_date(text, today=TODAY)

        assert result.success is True
        assert result.date == date(2025, 10, 16)
        assert result.iso == "2025-10-16"

    def test_formatted_for_speech(self):
        """Test spoken format includes the weekday."""
        result = parse_strict_date("October 16, 2025", today=TODAY)

        assert result.formatted == "Thursday, October 16, 2025"
        assert format_date(date(2025, 10, 16)) == "Thursday, October 16, 2025"

    def test_compound_ordinal(self):
        """Test 'twenty first' becomes the 21st."""
        result = parse_strict_date("the twenty first of October", today=TODAY)

        assert result.success is True
        assert result.date == date(2025, 10, 21)

    @pytest.mark.parametrize("text", ["tomorrow", "next Tuesday", "sometime next week"])
    def test_relative_rejected(self, text):
        """Test relative expressions are refused."""
        result = parse_strict_date(text, today=TODAY)

        assert result.success is False
        assert result.rejection == DateRejection.RELATIVE

    def test_unrecognized(self):
        """Test text without a date."""
        result = parse_strict_date("whenever works for you", today=TODAY)

        assert result.success is False
        assert result.rejection == DateRejection.UNRECOGNIZED

    def test_invalid_day(self):
        """Test impossible calendar dates."""
        result = parse_strict_date("February 30, 2026", today=TODAY)

        assert result.success is False
        assert result.rejection == DateRejection.INVALID

    def test_past_date(self):
        """Test dates before today are rejected but still reported."""
        result = parse_strict_date("September 15, 2025", today=TODAY)

        assert result.success is False
        assert result.rejection == DateRejection.PAST
        assert result.date == date(2025, 9, 15)

    def test_today_is_accepted(self):
        """Test today itself is not in the past."""
        result = parse_strict_date("October 1, 2025", today=TODAY)

        assert result.success is True

    def test_missing_year_rolls_forward(self):
        """Test a year-less date that already passed means next year."""
        result = parse_strict_date("January 5", today=TODAY)

        assert result.success is True
        assert result.date == date(2026, 1, 5)
        assert result.year_inferred is True

    def test_missing_year_this_year(self):
        """Test a year-less upcoming date stays in the current year."""
        result = parse_strict_date("December 1st", today=TODAY)

        assert result.date == date(2025, 12, 1)

    def test_date_detection_helpers(self):
        """Test the date-vs-time helpers."""
        assert has_explicit_date("how about October 20") is True
        assert has_explicit_date("2 PM please") is False
        assert looks_like_date("tomorrow") is True
        assert looks_like_date("2:30") is False

    def test_next_business_day_skips_weekend(self):
        """Test Friday rolls to Monday."""
        assert next_business_day(date(2025, 10, 17)) == date(2025, 10, 20)


class TestTimeMatching:
    """Test matching spoken times against offered slots."""

    @pytest.fixture
    def slots(self):
        return [
            TimeSlot(start="12:00", display="12:00 PM"),
            TimeSlot(start="12:30", display="12:30 PM"),
            TimeSlot(start="14:00", display="2:00 PM"),
            TimeSlot(start="14:30", display="2:30 PM"),
        ]

    def test_display_match(self, slots):
        """Test exact display string."""
        assert match_time_slot("2:30 PM", slots).start == "14:30"

    def test_twenty_four_hour(self, slots):
        """Test canonical 24-hour form."""
        assert match_time_slot("14:00", slots).start == "14:00"

    def test_spoken_words(self, slots):
        """Test 'two thirty' with no AM/PM means the afternoon slot."""
        assert match_time_slot("two thirty", slots).start == "14:30"

    def test_noon(self, slots):
        """Test noon."""
        assert match_time_slot("noon works", slots).start == "12:00"

    def test_hour_only(self, slots):
        """Test a bare hour picks the first slot in that hour."""
        assert match_time_slot("at 2", slots).start == "14:00"

    def test_meridiem_mismatch(self, slots):
        """Test '2 AM' does not match a 2 PM slot."""
        assert match_time_slot("2 am", slots) is None

    def test_not_offered(self, slots):
        """Test a time outside the offered list."""
        assert match_time_slot("9 am", slots) is None

    def test_empty_slots(self):
        """Test no slots means no match."""
        assert match_time_slot("2 PM", []) is None

    def test_parse_compact(self):
        """Test four digits without a colon."""
        parsed = parse_spoken_time("1430")

        assert parsed.hour == 14
        assert parsed.minute == 30
        assert parsed.canonical() == "14:30"

    def test_ambiguous_has_no_canonical(self):
        """Test '3' alone cannot be pinned to AM or PM."""
        assert parse_spoken_time("at 3").canonical() is None

    @pytest.mark.parametrize("value,expected", [
        ("14:30", "14:30"),
        ("1430", "14:30"),
        (" 09:00 ", "09:00"),
        ("2:30", None),
        ("2500", None),
        ("25:00", None),
        (None, None),
    ])
    def test_repair_time(self, value, expected):
        """Test strict HH:MM repair."""
        assert repair_time(value) == expected


class TestSpelling:
    """Test spoken-email helpers."""

    def test_spelled_email(self):
        """Test letter-by-letter with spoken symbols."""
        assert normalize_email("j-o-h-n at g-m-a-i-l dot com") == "john@gmail.com"

    def test_spoken_email(self):
        """Test spoken dots and underscores."""
        assert normalize_email("john underscore doe at example dot org") == "john_doe@example.org"

    def test_valid_email(self):
        """Test syntactic check."""
        assert is_valid_email("john@gmail.com") is True
        assert is_valid_email("john@gmail") is False
        assert is_valid_email("john at gmail") is False
        assert is_valid_email(None) is False

    def test_spell_for_readback(self):
        """Test confirmation rendering."""
        assert spell_email("john@gmail.com") == "j-o-h-n at gmail.com"


class TestFallbackExtraction:
    """Test rule-based extractors."""

    @pytest.fixture
    def tenant(self):
        return default_profile("acme")

    def test_name_intro(self):
        """Test 'my name is' with trailing words."""
        assert extract_name("Hi, my name is John Smith and I need a demo") == "John Smith"

    def test_name_spelled(self):
        """Test spelled name after an introduction."""
        assert extract_name("my name is j-o-h-n") == "John"

    def test_name_rejects_non_names(self):
        """Test 'I'm calling' is not a name."""
        assert extract_name("I'm calling about pricing") is None

    def test_last_name_wins(self):
        """Test a correction overrides the first name given."""
        assert extract_name("my name is Jon, sorry, call me John") == "John"

    def test_email_written(self):
        """Test written addresses, trailing period dropped."""
        assert extract_email("my email is john.smith@example.com.") == "john.smith@example.com"

    def test_email_spoken(self):
        """Test spoken address."""
        assert extract_email("it's john dot smith at gmail dot com") == "john.smith@gmail.com"

    def test_email_missing(self):
        """Test no email in utterance."""
        assert extract_email("I'd like a demo please") is None

    def test_service_requires_all_keywords(self, tenant):
        """Test an all-keywords service."""
        assert extract_service("show me the call automation", tenant) == "Call automation demo"

    def test_service_any_keyword(self, tenant):
        """Test an any-keyword service."""
        assert extract_service("I have a pricing question", tenant) == "Pricing consultation"

    def test_service_default(self, tenant):
        """Test the default service when nothing matches."""
        assert extract_service("something else entirely", tenant) == "Product demo"

    @pytest.mark.parametrize("text,expected", [
        ("John Smith", "John Smith"),
        ("j-o-h-n", "John"),
        ("mary-kate o'neil", "Mary-Kate O'neil"),
        ("yes", None),
        ("I want to book an appointment", None),
        ("john@example.com", None),
    ])
    def test_bare_name(self, text, expected):
        """Test short plain answers to 'what's your name?'."""
        assert extract_bare_name(text) == expected
