"""
Appointment Flow Engine.

The booking state machine. Each call to process() handles one utterance at
the session's current FlowStep, mutates the session's appointment flow and
identity, and returns the reply to speak. Calendar reads may be retried by
the client; appointment creation is attempted once per confirmation and the
flow is always reset afterwards.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from voice_agent.config import settings
from voice_agent.core.intelligence.session.models import AppointmentRecord, Session
from voice_agent.core.intelligence.session.state import FlowStep, InvalidTransitionError
from voice_agent.core.intelligence.slots.datetime_parser import (
    format_date,
    is_weekend,
    looks_like_date,
    next_business_day,
    parse_strict_date,
)
from voice_agent.core.intelligence.slots.extractor import SlotExtractor, get_slot_extractor
from voice_agent.core.intelligence.slots.fallback import extract_bare_name, extract_email, match_service
from voice_agent.core.intelligence.slots.time_matcher import match_time_slot, repair_time
from voice_agent.core.intelligence.slots.types import DateParseResult, DateRejection, TimeSlot
from voice_agent.core.scheduling.calendar_client import CalendarAgentClient, get_calendar_client
from voice_agent.core.scheduling.flow import (
    DirectChange,
    detect_calendar,
    detect_change_request,
    detect_direct_changes,
    is_cancellation,
    is_confirmation,
    is_readback_accepted,
    is_readback_denial,
)
from voice_agent.core.scheduling.response import ResponseGenerator, get_response_generator
from voice_agent.core.tenants import TenantProfile

logger = logging.getLogger(__name__)

_REJECTION_TOPICS = {
    DateRejection.RELATIVE: "relative_date",
    DateRejection.PAST: "past_date",
    DateRejection.INVALID: "invalid_date",
    DateRejection.UNRECOGNIZED: "date",
}

_CHANGE_ORDER = {"service": 0, "date": 1, "time": 2, "name": 3, "email": 4}


@dataclass
class FlowResult:
    """Outcome of one appointment-flow turn."""

    response: str
    step: FlowStep
    calendar_link: Optional[str] = None
    appointment_details: Optional[dict] = None
    user_info_changed: bool = False
    booked: bool = False


@dataclass
class _DateLookup:
    """Slots found for a requested date, or the reply explaining why not."""

    date: Optional[str] = None
    formatted: Optional[str] = None
    slots: Optional[list[TimeSlot]] = None
    substituted: bool = False
    failure: Optional[str] = None


class AppointmentFlowEngine:
    """
    Booking state machine.

    Steps: SELECT_CALENDAR -> COLLECT_TITLE -> COLLECT_DATE -> COLLECT_TIME
    -> REVIEW (or CONFIRM), with COLLECT_NAME / COLLECT_EMAIL / CONFIRM_EMAIL
    entered before SELECT_CALENDAR when identity is incomplete or on change
    requests.
    """

    def __init__(
        self,
        calendar_client: Optional[CalendarAgentClient] = None,
        slot_extractor: Optional[SlotExtractor] = None,
        response_generator: Optional[ResponseGenerator] = None,
    ):
        """Initialize engine with optional dependencies.

        Args:
            calendar_client: Calendar Agent client
            slot_extractor: Name/email/service extractor
            response_generator: Response templates
        """
        self._calendar_client = calendar_client
        self._slot_extractor = slot_extractor
        self._response_generator = response_generator

    def _get_calendar_client(self) -> CalendarAgentClient:
        """Get calendar client."""
        if self._calendar_client is None:
            self._calendar_client = get_calendar_client()
        return self._calendar_client

    def _get_slot_extractor(self) -> SlotExtractor:
        """Get slot extractor."""
        if self._slot_extractor is None:
            self._slot_extractor = get_slot_extractor()
        return self._slot_extractor

    @property
    def responses(self) -> ResponseGenerator:
        if self._response_generator is None:
            self._response_generator = get_response_generator()
        return self._response_generator

    # === Entry points ===

    def initialize_flow(self, session: Session, tenant: TenantProfile) -> FlowResult:
        """Start a booking: pick the first step and prompt for it.

        Identity is collected first when incomplete. A tenant with a pinned
        calendar skips calendar selection.
        """
        flow = session.appointment_flow
        flow.reset()
        session.awaiting_follow_up = False

        user = session.user_info
        if not user.name:
            flow.move_to(FlowStep.COLLECT_NAME)
            return FlowResult(self.responses.flow_ask_name(), flow.step)

        if not user.collected:
            flow.move_to(FlowStep.COLLECT_EMAIL)
            return FlowResult(self.responses.flow_ask_email(user.name), flow.step)

        step, prompt = self._calendar_entry(session, tenant)
        flow.move_to(step)
        logger.info(f"Appointment flow started for session {session.session_id} at {step.value}")
        return FlowResult(prompt, step)

    async def process(self, session: Session, text: str, tenant: TenantProfile) -> FlowResult:
        """
        Handle one utterance at the current step.

        Args:
            session: Caller session (mutated)
            text: Caller utterance
            tenant: Tenant profile

        Returns:
            FlowResult with the reply and the step after this turn
        """
        flow = session.appointment_flow
        history = session.recent_history(settings.history_context_messages)

        try:
            match flow.step:
                case FlowStep.SELECT_CALENDAR:
                    return self._handle_calendar_selection(session, text, tenant)
                case FlowStep.COLLECT_TITLE:
                    return await self._handle_service(session, text, tenant, history)
                case FlowStep.COLLECT_DATE:
                    return await self._handle_date(session, text, tenant)
                case FlowStep.COLLECT_TIME:
                    return await self._handle_time(session, text, tenant)
                case FlowStep.REVIEW:
                    return await self._handle_review(session, text, tenant, history)
                case FlowStep.CONFIRM:
                    return await self._handle_confirm(session, text, tenant)
                case FlowStep.COLLECT_NAME:
                    return await self._handle_name(session, text, tenant, history)
                case FlowStep.COLLECT_EMAIL:
                    return await self._handle_email(session, text, tenant, history)
                case FlowStep.CONFIRM_EMAIL:
                    return await self._handle_email_confirmation(session, text, tenant, history)
                case _:
                    logger.error(f"Unknown appointment step {flow.step!r} in session {session.session_id}")
                    flow.reset()
                    return FlowResult(self.responses.flow_error(), flow.step)

        except InvalidTransitionError as e:
            logger.error(f"Invalid appointment transition in session {session.session_id}: {e}")
            flow.reset()
            return FlowResult(self.responses.flow_error(), flow.step)

    # === Step handlers ===

    def _handle_calendar_selection(self, session: Session, text: str, tenant: TenantProfile) -> FlowResult:
        flow = session.appointment_flow
        calendar_type = detect_calendar(text)

        if calendar_type is None:
            return FlowResult(self.responses.clarification("calendar"), flow.step)

        flow.calendar_type = calendar_type
        flow.move_to(FlowStep.COLLECT_TITLE)
        return FlowResult(self.responses.ask_service(tenant, calendar_type), flow.step)

    async def _handle_service(
        self,
        session: Session,
        text: str,
        tenant: TenantProfile,
        history: list[dict],
    ) -> FlowResult:
        flow = session.appointment_flow
        extraction = await self._get_slot_extractor().extract_service(text, tenant, history)
        flow.details.set_service(extraction.value)
        logger.debug(f"Service for session {session.session_id}: {extraction.value} ({extraction.source.value})")

        if flow.details.is_complete:
            return self._to_confirmation(session, tenant)

        flow.move_to(FlowStep.COLLECT_DATE)
        return FlowResult(self.responses.service_collected(extraction.value), flow.step)

    async def _handle_date(self, session: Session, text: str, tenant: TenantProfile) -> FlowResult:
        flow = session.appointment_flow
        parsed = parse_strict_date(text)

        if not parsed.success:
            logger.debug(f"Date rejected ({parsed.rejection.value}): {text!r}")
            return FlowResult(self.responses.clarification(_REJECTION_TOPICS[parsed.rejection]), flow.step)

        return await self._collect_date(session, parsed, tenant)

    async def _collect_date(self, session: Session, parsed: DateParseResult, tenant: TenantProfile) -> FlowResult:
        """Look up slots for a parsed date and advance to COLLECT_TIME."""
        flow = session.appointment_flow
        lookup = await self._lookup_date(session, parsed, tenant, search_forward=True)

        if lookup.failure:
            return FlowResult(lookup.failure, flow.step)

        flow.details.set_date(lookup.date, lookup.slots)
        flow.details.clear_time()
        flow.move_to(FlowStep.COLLECT_TIME)

        if lookup.substituted and is_weekend(parsed.date):
            response = self.responses.weekend_substitution(parsed.formatted, lookup.formatted, lookup.slots)
        elif lookup.substituted:
            response = self.responses.no_availability(parsed.formatted, lookup.formatted, lookup.slots)
        else:
            response = self.responses.date_availability(lookup.formatted, lookup.slots)
        return FlowResult(response, flow.step)

    async def _handle_time(self, session: Session, text: str, tenant: TenantProfile) -> FlowResult:
        flow = session.appointment_flow
        details = flow.details

        if looks_like_date(text):
            title = details.title
            details.reset(keep_title=True)
            flow.move_to(FlowStep.COLLECT_DATE)
            logger.debug(f"Time step redirected to date for session {session.session_id}")

            parsed = parse_strict_date(text)
            if parsed.success:
                return await self._collect_date(session, parsed, tenant)
            if parsed.rejection in (DateRejection.RELATIVE, DateRejection.PAST, DateRejection.INVALID):
                return FlowResult(self.responses.clarification(_REJECTION_TOPICS[parsed.rejection]), flow.step)
            return FlowResult(self.responses.date_redirect(title), flow.step)

        slot = match_time_slot(text, details.available_slots)
        if slot is None:
            return FlowResult(self.responses.time_options(details.available_slots), flow.step)

        details.set_time(slot)
        return self._to_confirmation(session, tenant)

    async def _handle_review(
        self,
        session: Session,
        text: str,
        tenant: TenantProfile,
        history: list[dict],
    ) -> FlowResult:
        flow = session.appointment_flow

        changes = detect_direct_changes(text)
        if changes:
            result = await self._apply_direct_changes(session, changes, tenant, history)
            if result is not None:
                return result

        if is_confirmation(text):
            return await self._create_appointment(session, tenant)

        field_name = detect_change_request(text)
        if field_name:
            return self._route_change(session, field_name, tenant)

        return FlowResult(self.responses.review_reprompt(), flow.step)

    async def _handle_confirm(self, session: Session, text: str, tenant: TenantProfile) -> FlowResult:
        flow = session.appointment_flow

        if is_cancellation(text):
            flow.details.reset()
            flow.move_to(FlowStep.COLLECT_TITLE)
            return FlowResult(self.responses.booking_cancelled(), flow.step)

        if is_confirmation(text):
            return await self._create_appointment(session, tenant)

        return FlowResult(self.responses.confirm_reprompt(), flow.step)

    async def _handle_name(
        self,
        session: Session,
        text: str,
        tenant: TenantProfile,
        history: list[dict],
    ) -> FlowResult:
        flow = session.appointment_flow
        extraction = await self._get_slot_extractor().extract_name(text, tenant, history)
        name = extraction.value or extract_bare_name(text)

        if not name:
            return FlowResult(self.responses.clarification("name"), flow.step)

        session.user_info.name = name
        step, prompt = self._after_identity(session, tenant)
        flow.move_to(step)
        return FlowResult(prompt, step, user_info_changed=True)

    async def _handle_email(
        self,
        session: Session,
        text: str,
        tenant: TenantProfile,
        history: list[dict],
    ) -> FlowResult:
        flow = session.appointment_flow
        extraction = await self._get_slot_extractor().extract_email(text, tenant, history)

        if not extraction.found or not session.user_info.propose_email(extraction.value):
            return FlowResult(self.responses.invalid_email(), flow.step)

        flow.move_to(FlowStep.CONFIRM_EMAIL)
        return FlowResult(self.responses.email_readback(session.user_info.pending_email), flow.step)

    async def _handle_email_confirmation(
        self,
        session: Session,
        text: str,
        tenant: TenantProfile,
        history: list[dict],
    ) -> FlowResult:
        flow = session.appointment_flow
        user = session.user_info

        extraction = await self._get_slot_extractor().extract_email(text, tenant, history)
        if extraction.found and extraction.value != user.pending_email and user.propose_email(extraction.value):
            return FlowResult(self.responses.email_readback(user.pending_email), flow.step)

        if is_readback_accepted(text) and user.confirm_email():
            step, prompt = self._after_identity(session, tenant)
            flow.move_to(step)
            return FlowResult(prompt, step, user_info_changed=True)

        if is_readback_denial(text) or user.pending_email is None:
            user.reject_email()
            flow.move_to(FlowStep.COLLECT_EMAIL)
            return FlowResult(self.responses.email_respell(), flow.step, user_info_changed=True)

        return FlowResult(self.responses.email_readback_reprompt(user.pending_email), flow.step)

    # === Transitions ===

    def _confirmation_step(self, tenant: TenantProfile) -> FlowStep:
        return FlowStep.CONFIRM if tenant.booking_variant == "confirm" else FlowStep.REVIEW

    def _to_confirmation(self, session: Session, tenant: TenantProfile) -> FlowResult:
        flow = session.appointment_flow
        step = self._confirmation_step(tenant)
        flow.move_to(step)
        if step == FlowStep.CONFIRM:
            return FlowResult(self.responses.confirm_prompt(flow.details, session.user_info), step)
        return FlowResult(self.responses.review(flow.details, session.user_info), step)

    def _calendar_entry(self, session: Session, tenant: TenantProfile) -> tuple[FlowStep, str]:
        """First booking step once identity is complete."""
        flow = session.appointment_flow
        if flow.calendar_type is None and tenant.default_calendar:
            flow.calendar_type = tenant.default_calendar
        if flow.calendar_type:
            return FlowStep.COLLECT_TITLE, self.responses.ask_service(tenant)
        return FlowStep.SELECT_CALENDAR, self.responses.appointment_start()

    def _after_identity(self, session: Session, tenant: TenantProfile) -> tuple[FlowStep, str]:
        """Next step after a name or email was stored."""
        user = session.user_info
        details = session.appointment_flow.details

        if not user.collected:
            return FlowStep.COLLECT_EMAIL, self.responses.flow_ask_email(user.name)

        if details.is_complete:
            step = self._confirmation_step(tenant)
            if step == FlowStep.CONFIRM:
                return step, self.responses.confirm_prompt(details, user)
            return step, self.responses.review(details, user)

        return self._calendar_entry(session, tenant)

    def _route_change(self, session: Session, field_name: str, tenant: TenantProfile) -> FlowResult:
        """Two-turn change: go to the field's step, keeping unrelated fields."""
        flow = session.appointment_flow
        details = flow.details

        match field_name:
            case "service":
                flow.move_to(FlowStep.COLLECT_TITLE)
            case "date":
                details.reset(keep_title=True)
                flow.move_to(FlowStep.COLLECT_DATE)
            case "time":
                details.clear_time()
                if details.available_slots:
                    flow.move_to(FlowStep.COLLECT_TIME)
                else:
                    details.reset(keep_title=True)
                    flow.move_to(FlowStep.COLLECT_DATE)
                    return FlowResult(self.responses.change_prompt("date", details), flow.step)
            case "name":
                flow.move_to(FlowStep.COLLECT_NAME)
            case "email":
                flow.move_to(FlowStep.COLLECT_EMAIL)
            case _:
                return FlowResult(self.responses.review_reprompt(), flow.step)

        logger.debug(f"Change request for {field_name} in session {session.session_id}")
        return FlowResult(self.responses.change_prompt(field_name, details), flow.step)

    # === Direct changes ===

    def _infer_field(self, change: DirectChange, session: Session, tenant: TenantProfile) -> Optional[str]:
        """Decide which field an unnamed change ("make it V instead") targets.

        Returns None when the value is not a date, an offered time, an email
        or a catalog service ("what about parking?").
        """
        if parse_strict_date(change.value).date is not None or looks_like_date(change.value):
            return "date"
        if match_time_slot(change.value, session.appointment_flow.details.available_slots):
            return "time"
        if extract_email(change.value):
            return "email"
        if match_service(change.value, tenant):
            return "service"
        return None

    async def _apply_direct_changes(
        self,
        session: Session,
        changes: list[DirectChange],
        tenant: TenantProfile,
        history: list[dict],
    ) -> Optional[FlowResult]:
        """
        Apply every value-bearing change in one pass.

        Returns:
            FlowResult summarizing the changes, or None when nothing in the
            utterance was usable as a change
        """
        flow = session.appointment_flow
        details = flow.details
        user = session.user_info
        extractor = self._get_slot_extractor()

        applied: list[str] = []
        rejected: list[str] = []
        needs_time: Optional[tuple[str, list[TimeSlot]]] = None

        resolved = [
            DirectChange(field=change.field or self._infer_field(change, session, tenant), value=change.value)
            for change in changes
        ]
        resolved = [change for change in resolved if change.field is not None]
        if not resolved:
            return None
        resolved.sort(key=lambda change: _CHANGE_ORDER[change.field])

        for change in resolved:
            match change.field:
                case "service":
                    extraction = await extractor.extract_service(change.value, tenant, history)
                    details.set_service(extraction.value)
                    applied.append(f"service to {extraction.value}")

                case "date":
                    parsed = parse_strict_date(change.value)
                    if not parsed.success:
                        rejected.append(self.responses.clarification(_REJECTION_TOPICS[parsed.rejection]))
                        continue
                    lookup = await self._lookup_date(session, parsed, tenant, search_forward=False)
                    if lookup.failure:
                        rejected.append(lookup.failure)
                        continue
                    if details.set_date(lookup.date, lookup.slots):
                        applied.append(f"date to {lookup.formatted}")
                    else:
                        needs_time = (lookup.formatted, lookup.slots)

                case "time":
                    slot = match_time_slot(change.value, details.available_slots)
                    if slot is None:
                        rejected.append(self.responses.time_options(details.available_slots))
                        continue
                    details.set_time(slot)
                    applied.append(f"time to {slot.display}")
                    needs_time = None

                case "name":
                    extraction = await extractor.extract_name(f"my name is {change.value}", tenant, history)
                    name = extraction.value or extract_bare_name(change.value)
                    if not name:
                        rejected.append(self.responses.clarification("name"))
                        continue
                    user.name = name
                    applied.append(f"name to {name}")

                case "email":
                    extraction = await extractor.extract_email(change.value, tenant, history)
                    if not extraction.found or not user.set_email(extraction.value):
                        rejected.append(self.responses.invalid_email())
                        continue
                    applied.append(f"email to {user.email}")

        if needs_time is not None:
            formatted, slots = needs_time
            flow.move_to(FlowStep.COLLECT_TIME)
            logger.info(f"Date changed in review for session {session.session_id}; time cleared")
            return FlowResult(
                self.responses.date_change_needs_time(formatted, slots, applied),
                flow.step,
                user_info_changed=any(a.startswith(("name", "email")) for a in applied),
            )

        if applied:
            logger.info(f"Applied direct changes in session {session.session_id}: {applied}")
            return FlowResult(
                self.responses.multiple_changes(applied, details, user),
                flow.step,
                user_info_changed=any(a.startswith(("name", "email")) for a in applied),
            )

        if rejected:
            return FlowResult(rejected[0], flow.step)

        return None

    # === Calendar ===

    async def _lookup_date(
        self,
        session: Session,
        parsed: DateParseResult,
        tenant: TenantProfile,
        search_forward: bool,
    ) -> _DateLookup:
        """Find slots for a requested date.

        Weekends always move to the next business day. A weekday with no
        slots moves forward only when search_forward is set.
        """
        flow = session.appointment_flow
        calendar = self._get_calendar_client()
        requested: date = parsed.date

        if is_weekend(requested):
            nxt = await calendar.find_next_available_slot(
                next_business_day(requested).isoformat(), flow.calendar_type, session.tenant_id
            )
            if not nxt.success:
                return _DateLookup(failure=self._no_slots_reply(nxt.message, parsed, tenant))
            logger.info(f"Weekend date {parsed.iso} replaced by {nxt.date}")
            return _DateLookup(nxt.date, nxt.formatted_date, nxt.available_slots, substituted=True)

        availability = await calendar.find_available_slots(parsed.iso, flow.calendar_type, session.tenant_id)
        if not availability.success:
            return _DateLookup(failure=self.responses.calendar_unavailable(tenant))

        if availability.available_slots:
            return _DateLookup(parsed.iso, parsed.formatted, availability.available_slots)

        if not search_forward:
            return _DateLookup(failure=self.responses.date_change_unavailable(parsed.formatted))

        nxt = await calendar.find_next_available_slot(
            next_business_day(requested).isoformat(), flow.calendar_type, session.tenant_id
        )
        if not nxt.success:
            return _DateLookup(failure=self._no_slots_reply(nxt.message, parsed, tenant))
        return _DateLookup(nxt.date, nxt.formatted_date, nxt.available_slots, substituted=True)

    def _no_slots_reply(self, message: Optional[str], parsed: DateParseResult, tenant: TenantProfile) -> str:
        if message == "Calendar unavailable":
            return self.responses.calendar_unavailable(tenant)
        return self.responses.nothing_available(parsed.formatted or format_date(parsed.date))

    async def _create_appointment(self, session: Session, tenant: TenantProfile) -> FlowResult:
        """Validate and book. The flow is reset whatever the outcome."""
        flow = session.appointment_flow
        details = flow.details
        user = session.user_info
        time_value = repair_time(details.time)

        if not (details.title and details.date and time_value) or not user.collected:
            logger.warning(
                f"Refusing to book for session {session.session_id}: "
                f"missing={details.missing_fields()}, time={details.time!r}, identity={user.collected}"
            )
            flow.reset()
            return FlowResult(self.responses.validation_error(), flow.step)

        if time_value != details.time:
            logger.info(f"Repaired appointment time {details.time!r} -> {time_value!r}")
        details.time = time_value

        payload = {
            "title": details.title,
            "description": (
                f"{details.title} with {user.name}.\n\n"
                f"Customer Contact: {user.email}\nCustomer Name: {user.name}\n\n"
                f"Scheduled through the {tenant.company_name} voice assistant."
            ),
            "date": details.date,
            "time": time_value,
            "duration_minutes": settings.appointment_duration_minutes,
        }
        snapshot = {
            "title": details.title,
            "date": details.date,
            "time": time_value,
            "time_display": details.time_display,
            "duration_minutes": settings.appointment_duration_minutes,
            "calendar_type": flow.calendar_type,
        }
        calendar_type = flow.calendar_type

        result = await self._get_calendar_client().create_appointment(
            payload,
            customer_email=user.email,
            customer_name=user.name,
            calendar_type=calendar_type,
            tenant_id=session.tenant_id,
        )
        flow.reset()

        if not result.success:
            logger.error(f"Booking failed for session {session.session_id}: {result.error_code} {result.message}")
            return FlowResult(self.responses.appointment_error(snapshot["title"], tenant), flow.step)

        session.last_appointment = AppointmentRecord(
            calendar_link=result.event_link,
            event_id=result.event_id,
            details=snapshot,
        )
        logger.info(f"Booked {snapshot['title']} on {snapshot['date']} {snapshot['time']} for session {session.session_id}")

        return FlowResult(
            self.responses.confirmation(snapshot, user, calendar_type),
            flow.step,
            calendar_link=result.event_link,
            appointment_details=snapshot,
            booked=True,
        )


# Singleton
_engine: Optional[AppointmentFlowEngine] = None


def get_appointment_engine() -> AppointmentFlowEngine:
    """Get singleton AppointmentFlowEngine."""
    global _engine
    if _engine is None:
        _engine = AppointmentFlowEngine()
    return _engine
