"""Tests for the appointment flow engine."""

import pytest
from unittest.mock import AsyncMock

from voice_agent.core.intelligence.session.models import Session, UserInfo
from voice_agent.core.intelligence.session.state import FlowStep
from voice_agent.core.intelligence.slots.extractor import SlotExtractor
from voice_agent.core.intelligence.slots.types import TimeSlot
from voice_agent.core.scheduling.calendar_client import (
    AvailabilityResult,
    BookingResult,
    CalendarAgentClient,
    NextAvailableResult,
)
from voice_agent.core.scheduling.engine import AppointmentFlowEngine
from voice_agent.core.scheduling.response import ResponseGenerator
from voice_agent.core.tenants import default_profile

# 2099-12-15 is a Tuesday; 2099-12-19 a Saturday; 2099-12-21 a Monday
SLOTS = [
    TimeSlot(start="12:00", display="12:00 PM"),
    TimeSlot(start="12:30", display="12:30 PM"),
    TimeSlot(start="14:00", display="2:00 PM"),
    TimeSlot(start="14:30", display="2:30 PM"),
]


@pytest.fixture
def calendar():
    client = AsyncMock(spec=CalendarAgentClient)
    client.find_available_slots.return_value = AvailabilityResult(
        success=True, date="2099-12-15", available_slots=SLOTS
    )
    client.find_next_available_slot.return_value = NextAvailableResult(
        success=True,
        date="2099-12-21",
        formatted_date="Monday, December 21, 2099",
        available_slots=SLOTS,
        days_from_start=0,
    )
    client.create_appointment.return_value = BookingResult(
        success=True, event_id="evt-1", event_link="https://calendar.test/evt-1"
    )
    return client


@pytest.fixture
def engine(calendar):
    return AppointmentFlowEngine(
        calendar_client=calendar,
        slot_extractor=SlotExtractor(use_llm=False),
        response_generator=ResponseGenerator(),
    )


@pytest.fixture
def tenant():
    return default_profile("acme")


@pytest.fixture
def session():
    return Session(
        session_id="call-1",
        tenant_id="acme",
        user_info=UserInfo(name="Jane Doe", email="jane@example.com"),
    )


async def drive(engine, session, tenant, *utterances):
    """Start a booking and feed utterances, returning the last result."""
    result = engine.initialize_flow(session, tenant)
    for text in utterances:
        result = await engine.process(session, text, tenant)
    return result


async def to_date_step(engine, session, tenant):
    return await drive(engine, session, tenant, "Google please", "a product demo")


async def to_review(engine, session, tenant):
    return await drive(engine, session, tenant, "Google please", "a product demo", "December 15, 2099", "2:30 PM")


class TestHappyPath:
    """Calendar, service, date, time, review, booked."""

    @pytest.mark.asyncio
    async def test_full_booking(self, engine, session, tenant, calendar):
        result = engine.initialize_flow(session, tenant)
        assert result.step == FlowStep.SELECT_CALENDAR

        result = await engine.process(session, "Google please", tenant)
        assert result.step == FlowStep.COLLECT_TITLE
        assert session.appointment_flow.calendar_type == "google"

        result = await engine.process(session, "I'd like a pricing consultation", tenant)
        assert result.step == FlowStep.COLLECT_DATE
        assert session.appointment_flow.details.title == "Pricing consultation"

        result = await engine.process(session, "December 15, 2099", tenant)
        assert result.step == FlowStep.COLLECT_TIME
        assert "Tuesday, December 15, 2099 has 4 available" in result.response
        calendar.find_available_slots.assert_awaited_once_with("2099-12-15", "google", "acme")

        result = await engine.process(session, "2:30 PM", tenant)
        assert result.step == FlowStep.REVIEW
        assert session.appointment_flow.details.time == "14:30"

        result = await engine.process(session, "sounds good", tenant)
        assert result.booked is True
        assert result.step == FlowStep.NONE
        assert result.calendar_link == "https://calendar.test/evt-1"
        assert result.appointment_details["time_display"] == "2:30 PM"
        assert "scheduled successfully in Google Calendar" in result.response

    @pytest.mark.asyncio
    async def test_booking_payload_and_reset(self, engine, session, tenant, calendar):
        await to_review(engine, session, tenant)

        await engine.process(session, "yes, book it", tenant)

        calendar.create_appointment.assert_awaited_once()
        args, kwargs = calendar.create_appointment.call_args
        assert args[0]["date"] == "2099-12-15"
        assert args[0]["time"] == "14:30"
        assert args[0]["duration_minutes"] == 30
        assert kwargs["customer_email"] == "jane@example.com"
        assert kwargs["calendar_type"] == "google"
        assert session.appointment_flow.active is False
        assert session.appointment_flow.details.is_empty
        assert session.last_appointment.event_id == "evt-1"

    @pytest.mark.asyncio
    async def test_unclear_calendar(self, engine, session, tenant):
        result = await drive(engine, session, tenant, "whatever you think")

        assert result.step == FlowStep.SELECT_CALENDAR
        assert "Google" in result.response

    @pytest.mark.asyncio
    async def test_tenant_default_calendar(self, engine, session, tenant):
        tenant.default_calendar = "microsoft"

        result = engine.initialize_flow(session, tenant)

        assert result.step == FlowStep.COLLECT_TITLE
        assert session.appointment_flow.calendar_type == "microsoft"


class TestDateStep:
    """Date rules: strict parsing, weekends, empty days."""

    @pytest.mark.asyncio
    async def test_relative_date_rejected(self, engine, session, tenant, calendar):
        await to_date_step(engine, session, tenant)

        result = await engine.process(session, "tomorrow", tenant)

        assert result.step == FlowStep.COLLECT_DATE
        assert "full calendar date" in result.response
        calendar.find_available_slots.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_past_date_rejected(self, engine, session, tenant):
        await to_date_step(engine, session, tenant)

        result = await engine.process(session, "January 3, 2000", tenant)

        assert result.step == FlowStep.COLLECT_DATE
        assert "already passed" in result.response

    @pytest.mark.asyncio
    async def test_weekend_moves_to_next_business_day(self, engine, session, tenant, calendar):
        await to_date_step(engine, session, tenant)

        result = await engine.process(session, "December 19, 2099", tenant)

        assert result.step == FlowStep.COLLECT_TIME
        assert "falls on a weekend" in result.response
        assert session.appointment_flow.details.date == "2099-12-21"
        calendar.find_next_available_slot.assert_awaited_once_with("2099-12-21", "google", "acme")
        calendar.find_available_slots.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_full_weekday_searches_forward(self, engine, session, tenant, calendar):
        calendar.find_available_slots.return_value = AvailabilityResult(success=True, date="2099-12-15")
        await to_date_step(engine, session, tenant)

        result = await engine.process(session, "December 15, 2099", tenant)

        assert result.step == FlowStep.COLLECT_TIME
        assert "has no available appointment slots" in result.response
        calendar.find_next_available_slot.assert_awaited_once_with("2099-12-16", "google", "acme")

    @pytest.mark.asyncio
    async def test_nothing_open_in_horizon(self, engine, session, tenant, calendar):
        calendar.find_available_slots.return_value = AvailabilityResult(success=True, date="2099-12-15")
        calendar.find_next_available_slot.return_value = NextAvailableResult(
            success=False, message="No available slots found in the next 14 days."
        )
        await to_date_step(engine, session, tenant)

        result = await engine.process(session, "December 15, 2099", tenant)

        assert result.step == FlowStep.COLLECT_DATE
        assert "couldn't find any open appointment slots" in result.response

    @pytest.mark.asyncio
    async def test_calendar_down(self, engine, session, tenant, calendar):
        calendar.find_available_slots.return_value = AvailabilityResult(success=False, message="timeout")
        await to_date_step(engine, session, tenant)

        result = await engine.process(session, "December 15, 2099", tenant)

        assert result.step == FlowStep.COLLECT_DATE
        assert "trouble checking the calendar" in result.response


class TestTimeStep:
    """Time matching and the date redirect."""

    @pytest.mark.asyncio
    async def test_time_not_offered(self, engine, session, tenant):
        await drive(engine, session, tenant, "Google", "demo", "December 15, 2099")

        result = await engine.process(session, "9 am", tenant)

        assert result.step == FlowStep.COLLECT_TIME
        assert "2:30 PM" in result.response

    @pytest.mark.asyncio
    async def test_date_given_at_time_step(self, engine, session, tenant, calendar):
        await drive(engine, session, tenant, "Google", "demo", "December 15, 2099")

        result = await engine.process(session, "actually can we do December 16, 2099", tenant)

        assert result.step == FlowStep.COLLECT_TIME
        assert session.appointment_flow.details.date == "2099-12-16"
        assert session.appointment_flow.details.title == "Product demo"

    @pytest.mark.asyncio
    async def test_relative_date_at_time_step(self, engine, session, tenant):
        await drive(engine, session, tenant, "Google", "demo", "December 15, 2099")

        result = await engine.process(session, "what about tomorrow", tenant)

        assert result.step == FlowStep.COLLECT_DATE
        assert session.appointment_flow.details.date is None


class TestReviewChanges:
    """Changes requested from the review step."""

    @pytest.mark.asyncio
    async def test_direct_time_change(self, engine, session, tenant):
        await to_review(engine, session, tenant)

        result = await engine.process(session, "change the time to 12 PM", tenant)

        assert result.step == FlowStep.REVIEW
        assert session.appointment_flow.details.time == "12:00"
        assert "time to 12:00 PM" in result.response

    @pytest.mark.asyncio
    async def test_direct_date_change_keeps_offered_time(self, engine, session, tenant):
        await to_review(engine, session, tenant)

        result = await engine.process(session, "change the date to December 16, 2099", tenant)

        assert result.step == FlowStep.REVIEW
        assert session.appointment_flow.details.date == "2099-12-16"
        assert session.appointment_flow.details.time == "14:30"

    @pytest.mark.asyncio
    async def test_direct_date_change_clears_unavailable_time(self, engine, session, tenant, calendar):
        await to_review(engine, session, tenant)
        calendar.find_available_slots.return_value = AvailabilityResult(
            success=True, date="2099-12-16", available_slots=[TimeSlot(start="13:00", display="1:00 PM")]
        )

        result = await engine.process(session, "change the date to December 16, 2099", tenant)

        assert result.step == FlowStep.COLLECT_TIME
        assert session.appointment_flow.details.time is None
        assert "previous time isn't available" in result.response

    @pytest.mark.asyncio
    async def test_direct_date_change_to_full_day_keeps_original(self, engine, session, tenant, calendar):
        await to_review(engine, session, tenant)
        calendar.find_available_slots.return_value = AvailabilityResult(success=True, date="2099-12-16")

        result = await engine.process(session, "change the date to December 16, 2099", tenant)

        assert result.step == FlowStep.REVIEW
        assert session.appointment_flow.details.date == "2099-12-15"
        assert "kept your original date" in result.response
        calendar.find_next_available_slot.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_direct_email_change(self, engine, session, tenant):
        await to_review(engine, session, tenant)

        result = await engine.process(session, "my email is john at example dot com", tenant)

        assert result.step == FlowStep.REVIEW
        assert result.user_info_changed is True
        assert session.user_info.email == "john@example.com"

    @pytest.mark.asyncio
    async def test_two_turn_date_change(self, engine, session, tenant):
        await to_review(engine, session, tenant)

        result = await engine.process(session, "I want to change the date", tenant)

        assert result.step == FlowStep.COLLECT_DATE
        assert session.appointment_flow.details.title == "Product demo"
        assert session.appointment_flow.details.date is None

    @pytest.mark.asyncio
    async def test_time_change_without_slots_goes_to_date(self, engine, session, tenant):
        await to_review(engine, session, tenant)
        session.appointment_flow.details.available_slots = []

        result = await engine.process(session, "I'd like a different time", tenant)

        assert result.step == FlowStep.COLLECT_DATE

    @pytest.mark.asyncio
    async def test_unclear_reply_reprompts(self, engine, session, tenant, calendar):
        await to_review(engine, session, tenant)

        result = await engine.process(session, "hmm", tenant)

        assert result.step == FlowStep.REVIEW
        calendar.create_appointment.assert_not_awaited()

    @pytest.mark.parametrize("text", ["what about parking?", "can we do that?"])
    @pytest.mark.asyncio
    async def test_question_is_not_a_service_change(self, engine, session, tenant, calendar, text):
        await to_review(engine, session, tenant)

        result = await engine.process(session, text, tenant)

        assert result.step == FlowStep.REVIEW
        assert session.appointment_flow.details.title == "Product demo"
        assert "updated" not in result.response
        calendar.create_appointment.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unnamed_catalog_service_change(self, engine, session, tenant):
        await to_review(engine, session, tenant)

        result = await engine.process(session, "how about a pricing consultation instead", tenant)

        assert result.step == FlowStep.REVIEW
        assert session.appointment_flow.details.title == "Pricing consultation"

    @pytest.mark.asyncio
    async def test_unnamed_time_change(self, engine, session, tenant):
        await to_review(engine, session, tenant)

        result = await engine.process(session, "make it 12 PM instead", tenant)

        assert session.appointment_flow.details.time == "12:00"


class TestConfirmVariant:
    """Tenants using the explicit confirm step."""

    @pytest.fixture
    def tenant(self):
        profile = default_profile("acme")
        profile.booking_variant = "confirm"
        return profile

    @pytest.mark.asyncio
    async def test_reaches_confirm(self, engine, session, tenant):
        result = await to_review(engine, session, tenant)

        assert result.step == FlowStep.CONFIRM
        assert "Shall I book it?" in result.response

    @pytest.mark.asyncio
    async def test_cancel_clears_details(self, engine, session, tenant, calendar):
        await to_review(engine, session, tenant)

        result = await engine.process(session, "cancel", tenant)

        assert result.step == FlowStep.COLLECT_TITLE
        assert session.appointment_flow.details.is_empty
        calendar.create_appointment.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_yes_books(self, engine, session, tenant):
        await to_review(engine, session, tenant)

        result = await engine.process(session, "yes", tenant)

        assert result.booked is True


class TestIdentityInFlow:
    """Identity collected inside the booking flow."""

    @pytest.mark.asyncio
    async def test_missing_name_asked_first(self, engine, tenant):
        session = Session(session_id="call-2")

        result = engine.initialize_flow(session, tenant)
        assert result.step == FlowStep.COLLECT_NAME

        result = await engine.process(session, "Jane Doe", tenant)
        assert result.step == FlowStep.COLLECT_EMAIL
        assert session.user_info.name == "Jane Doe"

    @pytest.mark.asyncio
    async def test_email_gate(self, engine, tenant):
        session = Session(session_id="call-3", user_info=UserInfo(name="Jane"))

        result = engine.initialize_flow(session, tenant)
        assert result.step == FlowStep.COLLECT_EMAIL

        result = await engine.process(session, "it's jane at example", tenant)
        assert result.step == FlowStep.COLLECT_EMAIL

        result = await engine.process(session, "it's jane at example dot com", tenant)
        assert result.step == FlowStep.CONFIRM_EMAIL
        assert session.user_info.collected is False
        assert "j-a-n-e at example.com" in result.response

        result = await engine.process(session, "yes", tenant)
        assert result.step == FlowStep.SELECT_CALENDAR
        assert result.user_info_changed is True
        assert session.user_info.email == "jane@example.com"

    @pytest.mark.asyncio
    async def test_rejected_readback_asks_again(self, engine, tenant):
        session = Session(session_id="call-4", user_info=UserInfo(name="Jane"))
        engine.initialize_flow(session, tenant)
        await engine.process(session, "jame at example dot com", tenant)

        result = await engine.process(session, "no, that's not right", tenant)

        assert result.step == FlowStep.COLLECT_EMAIL
        assert session.user_info.email is None
        assert session.user_info.pending_email is None

        await engine.process(session, "j-a-n-e at example dot com", tenant)
        result = await engine.process(session, "correct", tenant)

        assert result.step == FlowStep.SELECT_CALENDAR
        assert session.user_info.email == "jane@example.com"

    @pytest.mark.asyncio
    async def test_unclear_readback_reply(self, engine, tenant):
        session = Session(session_id="call-5", user_info=UserInfo(name="Jane"))
        engine.initialize_flow(session, tenant)
        await engine.process(session, "jane at example dot com", tenant)

        result = await engine.process(session, "hmm", tenant)

        assert result.step == FlowStep.CONFIRM_EMAIL
        assert session.user_info.pending_email == "jane@example.com"


class TestCreateAppointment:
    """Booking validation and failures."""

    @pytest.mark.asyncio
    async def test_refuses_without_identity(self, engine, session, tenant, calendar):
        await to_review(engine, session, tenant)
        session.user_info.email = None

        result = await engine.process(session, "sounds good", tenant)

        assert result.booked is False
        assert result.step == FlowStep.NONE
        assert "incomplete" in result.response
        calendar.create_appointment.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_repairs_compact_time(self, engine, session, tenant, calendar):
        await to_review(engine, session, tenant)
        session.appointment_flow.details.time = "1430"

        await engine.process(session, "sounds good", tenant)

        assert calendar.create_appointment.call_args.args[0]["time"] == "14:30"

    @pytest.mark.asyncio
    async def test_calendar_rejects(self, engine, session, tenant, calendar):
        calendar.create_appointment.return_value = BookingResult(success=False, error_code="slot_taken")
        await to_review(engine, session, tenant)

        result = await engine.process(session, "sounds good", tenant)

        assert result.booked is False
        assert result.step == FlowStep.NONE
        assert "issue creating your calendar appointment" in result.response
        assert session.last_appointment is None
        calendar.create_appointment.assert_awaited_once()
