"""
Dialogue Orchestrator.

Routes each utterance of a session to exactly one handler, in a fixed
order:

1. Goodbye (always wins, even mid-booking)
2. Emergency (tenants with emergency handling only)
3. Lead intake (after-hours tenants only; takes every remaining turn)
4. Appointment flow already in progress
5. Identity collection
6. New appointment request
7. Name/email change
8. Answer to "anything else, or book an appointment?"
9. Knowledge search

The whole turn runs under the session's lock, so overlapping requests for
one caller are handled one after the other.
"""

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Optional

from voice_agent.core.agent.handlers.emergency import EmergencyHandler
from voice_agent.core.agent.handlers.lead_intake import LeadIntakeHandler
from voice_agent.core.agent.identity import IdentityCollector, get_identity_collector
from voice_agent.core.agent.knowledge import KnowledgeAgent, get_knowledge_agent
from voice_agent.core.intelligence.intent.classifier import IntentClassifier, get_intent_classifier
from voice_agent.core.intelligence.intent.types import Intent, IntentResult
from voice_agent.core.intelligence.session.models import Session
from voice_agent.core.intelligence.session.state import LeadStep
from voice_agent.core.intelligence.session.store import SessionStore, get_session_store
from voice_agent.core.scheduling.engine import AppointmentFlowEngine, get_appointment_engine
from voice_agent.core.scheduling.response import ResponseGenerator, format_for_speech, get_response_generator
from voice_agent.core.tenants import TenantProfile, TenantRegistry, get_tenant_registry
from voice_agent.infra.notifications import dispatch_lead, dispatch_summary

logger = logging.getLogger(__name__)

# Short "no thanks" answers to the follow-up question
DECLINE_PATTERN = re.compile(
    r"^\s*(?:no|nope|nah)\b|\bnothing else\b|\bi'?m good\b|\bno thanks?\b|\bnot (?:right )?now\b|\bi'?m all set\b",
    re.IGNORECASE,
)
MAX_DECLINE_WORDS = 6


@dataclass
class SideEffects:
    """Payloads the transport may act on besides speaking the reply."""

    calendar_link: Optional[str] = None
    appointment_details: Optional[dict] = None
    user_info: Optional[dict] = None
    emergency: bool = False
    lead: Optional[dict] = None

    def to_dict(self) -> dict:
        """Convert to dictionary, omitting empty entries."""
        result: dict = {}
        if self.calendar_link:
            result["calendar_link"] = self.calendar_link
        if self.appointment_details:
            result["appointment_details"] = self.appointment_details
        if self.user_info:
            result["user_info"] = self.user_info
        if self.emergency:
            result["emergency"] = True
        if self.lead:
            result["lead"] = self.lead
        return result


@dataclass
class TurnResult:
    """Response for one utterance."""

    response_text: str
    session_id: str
    side_effects: SideEffects = field(default_factory=SideEffects)
    intent: Optional[str] = None
    confidence: Optional[float] = None
    step: Optional[str] = None
    processing_time_ms: Optional[float] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        result = {
            "response_text": self.response_text,
            "session_id": self.session_id,
            "side_effects": self.side_effects.to_dict(),
        }
        if self.intent:
            result["intent"] = self.intent
        if self.confidence is not None:
            result["confidence"] = self.confidence
        if self.step:
            result["step"] = self.step
        if self.processing_time_ms is not None:
            result["processing_time_ms"] = self.processing_time_ms
        return result


@dataclass
class _Reply:
    text: str
    effects: SideEffects = field(default_factory=SideEffects)


class DialogueOrchestrator:
    """
    Session-scoped dispatcher for the voice agent.

    Flow per turn:
    1. Lock and load the session
    2. Log the caller utterance
    3. Classify intent
    4. Route to one handler
    5. Flatten the reply for speech and log it
    """

    def __init__(
        self,
        store: Optional[SessionStore] = None,
        tenants: Optional[TenantRegistry] = None,
        classifier: Optional[IntentClassifier] = None,
        engine: Optional[AppointmentFlowEngine] = None,
        identity: Optional[IdentityCollector] = None,
        knowledge: Optional[KnowledgeAgent] = None,
        response_generator: Optional[ResponseGenerator] = None,
    ):
        """Initialize orchestrator with lazy-loaded components."""
        self._store = store
        self._tenants = tenants
        self._classifier = classifier
        self._engine = engine
        self._identity = identity
        self._knowledge = knowledge
        self._response_generator = response_generator

        # Deterministic handlers (always available)
        self._emergency_handler = EmergencyHandler()
        self._lead_handler = LeadIntakeHandler()

    # === Lazy Initialization ===

    @property
    def store(self) -> SessionStore:
        if self._store is None:
            self._store = get_session_store()
        if self._store.on_expire is None:
            self._store.on_expire = self._on_session_expired
        return self._store

    @property
    def tenants(self) -> TenantRegistry:
        if self._tenants is None:
            self._tenants = get_tenant_registry()
        return self._tenants

    def _get_classifier(self) -> IntentClassifier:
        """Get intent classifier."""
        if self._classifier is None:
            self._classifier = get_intent_classifier()
        return self._classifier

    def _get_engine(self) -> AppointmentFlowEngine:
        """Get appointment flow engine."""
        if self._engine is None:
            self._engine = get_appointment_engine()
        return self._engine

    def _get_identity(self) -> IdentityCollector:
        """Get identity collector."""
        if self._identity is None:
            self._identity = get_identity_collector()
        return self._identity

    def _get_knowledge(self) -> KnowledgeAgent:
        """Get knowledge agent."""
        if self._knowledge is None:
            self._knowledge = get_knowledge_agent()
        return self._knowledge

    @property
    def responses(self) -> ResponseGenerator:
        if self._response_generator is None:
            self._response_generator = get_response_generator()
        return self._response_generator

    # === Main Processing ===

    async def handle_utterance(
        self,
        session_id: str,
        text: str,
        tenant_id: Optional[str] = None,
    ) -> TurnResult:
        """
        Process one caller utterance.

        Args:
            session_id: Caller session identifier
            text: Transcribed utterance
            tenant_id: Tenant for a new session (ignored for existing ones)

        Returns:
            TurnResult with the reply to speak and any side effects
        """
        start_time = time.time()
        store = self.store

        async with store.lock(session_id):
            session = store.get(session_id, tenant_id)
            tenant = self.tenants.get(session.tenant_id or tenant_id)
            intent: Optional[IntentResult] = None

            store.append_message(session_id, "user", text)

            try:
                intent = self._get_classifier().classify(text, tenant)
                reply = await self._route(session, text, tenant, intent)

            except Exception as e:
                logger.exception(f"Error processing turn for session {session_id}: {e}")
                session.appointment_flow.reset()
                session.awaiting_follow_up = False
                reply = _Reply(self.responses.general_error(tenant))

            response_text = format_for_speech(reply.text)
            store.append_message(session_id, "assistant", response_text)

            return TurnResult(
                response_text=response_text,
                session_id=session_id,
                side_effects=reply.effects,
                intent=intent.primary_intent.value if intent else None,
                confidence=intent.confidence if intent else None,
                step=session.lead.step.value if tenant.lead_intake_enabled else session.appointment_flow.step.value,
                processing_time_ms=(time.time() - start_time) * 1000,
            )

    async def _route(
        self,
        session: Session,
        text: str,
        tenant: TenantProfile,
        intent: IntentResult,
    ) -> _Reply:
        """Pick the single handler for this utterance."""
        flow = session.appointment_flow

        if intent.is_goodbye:
            return self._handle_goodbye(session, tenant)

        # Urgency words ("asap") answer the callback question here
        answering_urgency = tenant.lead_intake_enabled and session.lead.step == LeadStep.COLLECT_URGENCY

        if intent.primary_intent == Intent.EMERGENCY and not answering_urgency:
            session.awaiting_follow_up = False
            return _Reply(
                self._emergency_handler.respond(text, tenant, session),
                SideEffects(emergency=True),
            )

        if tenant.lead_intake_enabled:
            return self._handle_lead_intake(session, text, tenant)

        if flow.active:
            return await self._handle_appointment(session, text, tenant)

        if not session.user_info.collected or session.user_info.pending_email:
            result = await self._get_identity().process(session, text, tenant)
            return _Reply(result.response, self._user_info_effects(session, result.user_info_changed))

        if intent.has(Intent.APPOINTMENT) or (session.awaiting_follow_up and intent.wants_appointment):
            result = self._get_engine().initialize_flow(session, tenant)
            logger.info(f"Appointment flow started for session {session.session_id}")
            return _Reply(result.response)

        if intent.primary_intent in (Intent.NAME_CHANGE, Intent.EMAIL_CHANGE):
            session.awaiting_follow_up = False
            field_name = "name" if intent.primary_intent == Intent.NAME_CHANGE else "email"
            result = await self._get_identity().apply_change(session, text, field_name, tenant)
            return _Reply(result.response, self._user_info_effects(session, result.user_info_changed))

        if session.awaiting_follow_up:
            return await self._handle_follow_up(session, text, tenant, intent)

        return await self._handle_question(session, text, tenant)

    # === Handlers ===

    def _handle_goodbye(self, session: Session, tenant: TenantProfile) -> _Reply:
        session.appointment_flow.reset()
        session.awaiting_follow_up = False
        self._send_summary(session, tenant)
        return _Reply(self.responses.goodbye(session.user_info.name, tenant))

    def _handle_lead_intake(self, session: Session, text: str, tenant: TenantProfile) -> _Reply:
        session.awaiting_follow_up = False
        result = self._lead_handler.process(session, text, tenant)
        if not result.completed:
            return _Reply(result.response)

        dispatch_lead(session, tenant)
        return _Reply(result.response, SideEffects(lead=session.lead.to_dict()))

    async def _handle_appointment(self, session: Session, text: str, tenant: TenantProfile) -> _Reply:
        result = await self._get_engine().process(session, text, tenant)
        effects = SideEffects(
            calendar_link=result.calendar_link,
            appointment_details=result.appointment_details,
        )
        if result.user_info_changed:
            effects.user_info = session.user_info.to_dict()
        return _Reply(result.response, effects)

    async def _handle_follow_up(
        self,
        session: Session,
        text: str,
        tenant: TenantProfile,
        intent: IntentResult,
    ) -> _Reply:
        session.awaiting_follow_up = False

        if intent.wants_more:
            return _Reply(self.responses.more_questions())

        if DECLINE_PATTERN.search(text) and len(text.split()) <= MAX_DECLINE_WORDS:
            return _Reply(self.responses.decline_close(session.user_info.name))

        return await self._handle_question(session, text, tenant)

    async def _handle_question(self, session: Session, text: str, tenant: TenantProfile) -> _Reply:
        answer = await self._get_knowledge().answer(text, session, tenant)
        if not answer.answered:
            session.awaiting_follow_up = False
            return _Reply(answer.text)

        session.awaiting_follow_up = True
        return _Reply(self.responses.follow_up(answer.text))

    def _user_info_effects(self, session: Session, changed: bool) -> SideEffects:
        return SideEffects(user_info=session.user_info.to_dict() if changed else None)

    # === Session lifecycle ===

    def _send_summary(self, session: Session, tenant: Optional[TenantProfile] = None) -> None:
        """Fire-and-forget summary, at most once per session."""
        if session.summary_sent:
            return
        task = dispatch_summary(session, tenant or self.tenants.get(session.tenant_id))
        if task is not None:
            session.summary_sent = True

    def _on_session_expired(self, session: Session) -> None:
        self._send_summary(session)

    async def close_session(self, session_id: str) -> bool:
        """
        End a call: dispatch the summary and delete the session.

        Returns:
            True if the session existed
        """
        store = self.store
        async with store.lock(session_id):
            session = store.peek(session_id)
            if session is None:
                return False
            self._send_summary(session)
            deleted = store.delete(session_id)
        logger.info(f"Session closed: {session_id}")
        return deleted

    def sweep_expired(self, max_age_seconds: Optional[float] = None) -> list[str]:
        """Delete aged sessions; each one gets its summary first."""
        return self.store.sweep(max_age_seconds)

    def get_session(self, session_id: str) -> Optional[Session]:
        """Get a session without creating it."""
        return self.store.peek(session_id)


# Singleton
_orchestrator: Optional[DialogueOrchestrator] = None


def get_orchestrator() -> DialogueOrchestrator:
    """Get singleton DialogueOrchestrator."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = DialogueOrchestrator()
    return _orchestrator
