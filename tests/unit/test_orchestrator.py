"""Tests for the dialogue orchestrator's routing and session lifecycle."""

import asyncio
from datetime import timedelta

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from voice_agent.core.agent.dispatch import DialogueOrchestrator, SideEffects, TurnResult
from voice_agent.core.agent.identity import IdentityCollector
from voice_agent.core.agent.knowledge import REPHRASE_RESPONSE, KnowledgeAgent, KnowledgeAnswer
from voice_agent.core.intelligence.intent import IntentClassifier
from voice_agent.core.intelligence.session import FlowStep, SessionStore, UserInfo
from voice_agent.core.intelligence.slots.extractor import SlotExtractor
from voice_agent.core.intelligence.slots.types import TimeSlot
from voice_agent.core.scheduling.calendar_client import (
    AvailabilityResult,
    BookingResult,
    CalendarAgentClient,
)
from voice_agent.core.scheduling.engine import AppointmentFlowEngine
from voice_agent.core.scheduling.response import ResponseGenerator
from voice_agent.core.tenants import TenantProfile, TenantRegistry, default_profile

SESSION_ID = "call-1"
SLOTS = [
    TimeSlot(start="12:00", display="12:00 PM"),
    TimeSlot(start="14:30", display="2:30 PM"),
]


@pytest.fixture
def calendar():
    client = AsyncMock(spec=CalendarAgentClient)
    client.find_available_slots.return_value = AvailabilityResult(
        success=True, date="2099-12-15", available_slots=SLOTS
    )
    client.create_appointment.return_value = BookingResult(
        success=True, event_id="evt-1", event_link="https://calendar.test/evt-1"
    )
    return client


@pytest.fixture
def knowledge():
    agent = MagicMock(spec=KnowledgeAgent)
    agent.answer = AsyncMock(
        return_value=KnowledgeAnswer("We build voice agents.", answered=True, source="knowledge")
    )
    return agent


@pytest.fixture
def orchestrator(calendar, knowledge):
    responses = ResponseGenerator()
    extractor = SlotExtractor(use_llm=False)
    tenants = TenantRegistry([
        default_profile("acme"),
        TenantProfile(tenant_id="plumbing", company_name="Pipes", phone="555-0100", emergency_enabled=True),
        TenantProfile(
            tenant_id="fencing",
            company_name="Superior Fence",
            email="office@fence.test",
            emergency_enabled=True,
            lead_intake_enabled=True,
        ),
    ])
    return DialogueOrchestrator(
        store=SessionStore(max_sessions=100),
        tenants=tenants,
        classifier=IntentClassifier(),
        engine=AppointmentFlowEngine(calendar, extractor, responses),
        identity=IdentityCollector(extractor, responses),
        knowledge=knowledge,
        response_generator=responses,
    )


@pytest.fixture
def known_caller(orchestrator):
    """A session whose identity is already collected."""
    session = orchestrator.store.get(SESSION_ID, "acme")
    session.user_info = UserInfo(name="Jane Doe", email="jane@example.com")
    return session


@pytest.fixture
def summary():
    with patch("voice_agent.core.agent.dispatch.dispatch_summary", return_value=MagicMock()) as dispatch:
        yield dispatch


async def say(orchestrator, *utterances, tenant_id="acme") -> TurnResult:
    result = None
    for text in utterances:
        result = await orchestrator.handle_utterance(SESSION_ID, text, tenant_id)
    return result


class TestIdentityGate:
    """Identity comes before questions and bookings."""

    @pytest.mark.asyncio
    async def test_first_turn_asks_for_identity(self, orchestrator, knowledge):
        result = await say(orchestrator, "hi, what do you do?")

        assert result.response_text == ResponseGenerator().ask_name_and_email()
        assert result.step == "none"
        knowledge.answer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_identity_collected_after_readback(self, orchestrator):
        first = await say(orchestrator, "I'm Jane Doe and my email is jane@example.com")

        assert first.side_effects.user_info["name"] == "Jane Doe"
        assert first.side_effects.user_info["collected"] is False
        assert "j-a-n-e at example.com" in first.response_text

        result = await say(orchestrator, "yes")

        assert result.side_effects.user_info["email"] == "jane@example.com"
        assert result.side_effects.user_info["collected"] is True

    @pytest.mark.asyncio
    async def test_rejected_readback_stays_in_identity(self, orchestrator, knowledge):
        """Test "that's wrong" after the spell-back asks for the email again."""
        await say(orchestrator, "I'm Jane Doe and my email is jame@example.com")

        result = await say(orchestrator, "no, that's wrong")

        assert result.response_text == ResponseGenerator().email_respell()
        assert orchestrator.get_session(SESSION_ID).user_info.email is None
        knowledge.answer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_email_change_read_back_before_use(self, orchestrator, known_caller, knowledge):
        await say(orchestrator, "please change my email to john at example dot com")

        assert known_caller.user_info.email == "jane@example.com"

        result = await say(orchestrator, "yes")

        assert known_caller.user_info.email == "john@example.com"
        assert result.side_effects.user_info["collected"] is True
        knowledge.answer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_booking_request_before_identity(self, orchestrator):
        """Test identity is still collected first."""
        result = await say(orchestrator, "I'd like to book an appointment")

        assert result.step == "none"
        assert orchestrator.get_session(SESSION_ID).appointment_flow.active is False

    @pytest.mark.asyncio
    async def test_history_logged(self, orchestrator):
        await say(orchestrator, "hello")

        history = orchestrator.get_session(SESSION_ID).recent_history(10)
        assert [m["role"] for m in history] == ["user", "assistant"]
        assert history[0]["content"] == "hello"


class TestQuestions:
    """Knowledge answers and the follow-up question."""

    @pytest.mark.asyncio
    async def test_answer_sets_follow_up(self, orchestrator, known_caller, knowledge):
        result = await say(orchestrator, "what does your company do")

        assert result.response_text.startswith("We build voice agents. ")
        assert known_caller.awaiting_follow_up is True
        knowledge.answer.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_rephrase_does_not_set_follow_up(self, orchestrator, known_caller, knowledge):
        knowledge.answer.return_value = KnowledgeAnswer(REPHRASE_RESPONSE, answered=False)

        result = await say(orchestrator, "what is the meaning of life")

        assert result.response_text == REPHRASE_RESPONSE
        assert known_caller.awaiting_follow_up is False

    @pytest.mark.asyncio
    async def test_follow_up_decline(self, orchestrator, known_caller):
        await say(orchestrator, "what does your company do")

        result = await say(orchestrator, "no thanks")

        assert result.response_text.startswith("No problem, Jane Doe!")
        assert known_caller.awaiting_follow_up is False

    @pytest.mark.asyncio
    async def test_follow_up_more_questions(self, orchestrator, known_caller):
        await say(orchestrator, "what does your company do")

        result = await say(orchestrator, "yes, I have another question")

        assert result.response_text == ResponseGenerator().more_questions()

    @pytest.mark.asyncio
    async def test_follow_up_booking_word(self, orchestrator, known_caller):
        """Test a bare 'book it' after the follow-up starts the flow."""
        await say(orchestrator, "what does your company do")

        result = await say(orchestrator, "book it")

        assert result.step == FlowStep.SELECT_CALENDAR.value

    @pytest.mark.asyncio
    async def test_follow_up_new_question(self, orchestrator, known_caller, knowledge):
        await say(orchestrator, "what does your company do")

        await say(orchestrator, "do you integrate with my phone system")

        assert knowledge.answer.await_count == 2
        assert known_caller.awaiting_follow_up is True


class TestBooking:
    """Booking through the orchestrator."""

    @pytest.mark.asyncio
    async def test_full_booking(self, orchestrator, known_caller, calendar):
        result = await say(
            orchestrator,
            "I'd like to book an appointment",
            "Google please",
            "a product demo",
            "December 15, 2099",
            "2:30 PM",
            "sounds good",
        )

        assert result.side_effects.calendar_link == "https://calendar.test/evt-1"
        assert result.side_effects.appointment_details["time"] == "14:30"
        assert result.step == "none"
        assert "\n" not in result.response_text
        assert known_caller.last_appointment.event_id == "evt-1"

    @pytest.mark.asyncio
    async def test_flow_turns_skip_knowledge(self, orchestrator, known_caller, knowledge):
        await say(orchestrator, "I'd like to book an appointment", "what is the price")

        knowledge.answer.assert_not_awaited()
        assert known_caller.appointment_flow.active is True

    @pytest.mark.asyncio
    async def test_name_change_outside_flow(self, orchestrator, known_caller):
        result = await say(orchestrator, "please change my name to John Smith")

        assert known_caller.user_info.name == "John Smith"
        assert result.side_effects.user_info["name"] == "John Smith"


class TestGoodbyeAndEmergency:
    """Turns that preempt everything else."""

    @pytest.mark.asyncio
    async def test_goodbye_mid_flow(self, orchestrator, known_caller, summary):
        await say(orchestrator, "I'd like to book an appointment", "Google please")

        result = await say(orchestrator, "actually never mind, goodbye")

        assert result.response_text.startswith("Thank you, Jane Doe!")
        assert known_caller.appointment_flow.active is False
        assert known_caller.summary_sent is True
        summary.assert_called_once()
        assert orchestrator.get_session(SESSION_ID) is known_caller

    @pytest.mark.asyncio
    async def test_summary_sent_once(self, orchestrator, known_caller, summary):
        await say(orchestrator, "goodbye", "bye")

        summary.assert_called_once()

    @pytest.mark.asyncio
    async def test_summary_not_marked_when_skipped(self, orchestrator, summary):
        summary.return_value = None

        await say(orchestrator, "goodbye")

        assert orchestrator.get_session(SESSION_ID).summary_sent is False

    @pytest.mark.asyncio
    async def test_emergency(self, orchestrator):
        result = await say(orchestrator, "this is an emergency, water everywhere", tenant_id="plumbing")

        assert result.side_effects.emergency is True
        assert result.intent == "emergency"
        assert "call 555-0100" in result.response_text

    @pytest.mark.asyncio
    async def test_emergency_disabled_for_tenant(self, orchestrator):
        result = await say(orchestrator, "this is an emergency")

        assert result.side_effects.emergency is False


class TestLeadIntake:
    """After-hours tenants collect a callback lead on every call."""

    @pytest.fixture
    def lead_email(self):
        with patch("voice_agent.core.agent.dispatch.dispatch_lead") as dispatch:
            yield dispatch

    @pytest.mark.asyncio
    async def test_full_intake(self, orchestrator, knowledge, lead_email):
        greeting = await say(orchestrator, "hello?", tenant_id="fencing")
        assert "Superior Fence" in greeting.response_text
        assert greeting.step == "collect_name"

        await say(orchestrator, "John Smith", "yes", "it's 555 123 4567", "my gate is broken", tenant_id="fencing")
        lead_email.assert_not_called()

        result = await say(orchestrator, "call me back asap", tenant_id="fencing")

        assert result.side_effects.emergency is False
        assert result.side_effects.lead == {
            "step": "completed",
            "name": "John Smith",
            "phone": "(555) 123-4567",
            "reason": "my gate is broken",
            "urgency": "call back asap",
        }
        assert result.step == "completed"
        lead_email.assert_called_once()
        knowledge.answer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_identity_or_booking(self, orchestrator, calendar, lead_email):
        """Test booking words are just a reason for the callback."""
        await say(orchestrator, "hi", "Jane Doe", "yes", "5551234567", tenant_id="fencing")

        result = await say(orchestrator, "I want to book an appointment for a quote", tenant_id="fencing")

        assert "call you back" in result.response_text
        assert orchestrator.get_session(SESSION_ID).appointment_flow.active is False
        calendar.find_available_slots.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_emergency_still_wins(self, orchestrator, lead_email):
        await say(orchestrator, "hi", tenant_id="fencing")

        result = await say(orchestrator, "this is an emergency, the fence fell on my car", tenant_id="fencing")

        assert result.side_effects.emergency is True
        assert orchestrator.get_session(SESSION_ID).lead.step.value == "collect_name"

    @pytest.mark.asyncio
    async def test_completed_lead_sent_once(self, orchestrator, lead_email):
        await say(orchestrator, "hi", "Jane Doe", "yes", "5551234567", "new fence", "no rush", tenant_id="fencing")

        result = await say(orchestrator, "thanks", tenant_id="fencing")

        assert result.response_text.startswith("Thank you for your call")
        assert result.side_effects.lead is None
        lead_email.assert_called_once()


class TestErrors:
    """Unexpected handler failures."""

    @pytest.mark.asyncio
    async def test_handler_exception(self, orchestrator, known_caller, knowledge):
        knowledge.answer.side_effect = RuntimeError("boom")

        result = await say(orchestrator, "what does your company do")

        assert "technical difficulties" in result.response_text
        assert known_caller.awaiting_follow_up is False
        assert known_caller.recent_history(1)[0]["role"] == "assistant"

    @pytest.mark.asyncio
    async def test_flow_reset_on_error(self, orchestrator, known_caller, calendar):
        calendar.find_available_slots.side_effect = RuntimeError("boom")

        result = await say(
            orchestrator, "I'd like to book an appointment", "Google", "demo", "December 15, 2099"
        )

        assert result.step == "none"
        assert known_caller.appointment_flow.details.is_empty


class TestSessionLifecycle:
    """Close, sweep and concurrent turns."""

    @pytest.mark.asyncio
    async def test_close_session(self, orchestrator, known_caller, summary):
        await say(orchestrator, "what does your company do")

        assert await orchestrator.close_session(SESSION_ID) is True
        assert orchestrator.get_session(SESSION_ID) is None
        summary.assert_called_once()

    @pytest.mark.asyncio
    async def test_close_unknown_session(self, orchestrator):
        assert await orchestrator.close_session("missing") is False

    @pytest.mark.asyncio
    async def test_sweep_sends_summary(self, orchestrator, known_caller, summary):
        await say(orchestrator, "what does your company do")
        known_caller.created_at -= timedelta(hours=2)

        assert orchestrator.sweep_expired(max_age_seconds=60) == [SESSION_ID]
        summary.assert_called_once()

    @pytest.mark.asyncio
    async def test_concurrent_turns_serialized(self, orchestrator, known_caller):
        await asyncio.gather(
            orchestrator.handle_utterance(SESSION_ID, "what does your company do"),
            orchestrator.handle_utterance(SESSION_ID, "do you have an API"),
        )

        roles = [m["role"] for m in known_caller.recent_history(10)]
        assert roles == ["user", "assistant", "user", "assistant"]

    @pytest.mark.asyncio
    async def test_turn_after_close_never_overlaps(self, orchestrator, known_caller, knowledge, summary):
        """Test turns queued around a close still run one at a time."""
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_answer(*args, **kwargs):
            started.set()
            await release.wait()
            return KnowledgeAnswer("We build voice agents.", answered=True, source="knowledge")

        knowledge.answer.side_effect = slow_answer
        active = 0
        max_active = 0
        route = orchestrator._route

        async def counted_route(*args):
            nonlocal active, max_active
            active += 1
            max_active = max(max_active, active)
            try:
                await asyncio.sleep(0)
                return await route(*args)
            finally:
                active -= 1

        orchestrator._route = counted_route

        first = asyncio.create_task(orchestrator.handle_utterance(SESSION_ID, "what does your company do"))
        await started.wait()
        closing = asyncio.create_task(orchestrator.close_session(SESSION_ID))
        queued = asyncio.create_task(orchestrator.handle_utterance(SESSION_ID, "hello again", "acme"))
        await asyncio.sleep(0)
        release.set()
        assert await closing is True
        late = asyncio.create_task(orchestrator.handle_utterance(SESSION_ID, "are you there", "acme"))
        await asyncio.gather(first, queued, late)

        assert max_active == 1
        assert orchestrator.store._locks == {}


class TestTurnResult:
    """Test API serialization."""

    def test_to_dict(self):
        result = TurnResult(
            response_text="Hi",
            session_id="s1",
            side_effects=SideEffects(emergency=True),
            intent="emergency",
            confidence=0.9,
            step="none",
        )

        assert result.to_dict() == {
            "response_text": "Hi",
            "session_id": "s1",
            "side_effects": {"emergency": True},
            "intent": "emergency",
            "confidence": 0.9,
            "step": "none",
        }
