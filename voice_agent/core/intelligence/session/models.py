"""
Session data models.

A Session holds everything the dialogue core knows about one caller:
identity, the append-only conversation log, the follow-up flag, the
appointment flow with its slot bag, and the last booking. Sessions live
in memory only; see store.SessionStore.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal, Optional, Sequence

from voice_agent.core.intelligence.slots.spelling import is_valid_email
from voice_agent.core.intelligence.slots.types import TimeSlot
from .state import FlowStep, InvalidTransitionError, LeadStep, can_transition

logger = logging.getLogger(__name__)

CalendarType = Literal["google", "microsoft"]


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


@dataclass
class UserInfo:
    """Caller identity. collected is derived, never set directly.

    A newly heard email waits in pending_email until the caller accepts the
    spelled-back value; only then does it become email.
    """

    name: Optional[str] = None
    email: Optional[str] = None
    pending_email: Optional[str] = None

    @property
    def collected(self) -> bool:
        """Both fields present and the email passes the syntax check."""
        return bool(self.name) and is_valid_email(self.email)

    def set_email(self, email: str) -> bool:
        """Store an email only if it is syntactically valid.

        Returns:
            True if stored
        """
        if not is_valid_email(email):
            return False
        self.email = email
        return True

    def propose_email(self, email: str) -> bool:
        """Hold a valid email for read-back confirmation.

        Returns:
            True if held
        """
        if not is_valid_email(email):
            return False
        self.pending_email = email
        return True

    def confirm_email(self) -> bool:
        """Accept the pending email. Returns False when nothing is pending."""
        if self.pending_email is None:
            return False
        self.email, self.pending_email = self.pending_email, None
        return True

    def reject_email(self) -> None:
        """Drop the pending email and the stored one so it is collected again."""
        self.pending_email = None
        self.email = None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {"name": self.name, "email": self.email, "collected": self.collected}


@dataclass
class ConversationTurn:
    """One message in the conversation log."""

    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class SlotBag:
    """
    Appointment details accumulated across turns.

    Invariant: time and time_display are only held together with a date,
    and whenever the date changes the time is cleared unless its start is
    still one of the new date's available_slots.
    """

    title: Optional[str] = None
    date: Optional[str] = None           # YYYY-MM-DD
    time: Optional[str] = None           # HH:MM, 24-hour
    time_display: Optional[str] = None   # "2:30 PM"
    available_slots: list[TimeSlot] = field(default_factory=list)

    def set_service(self, title: str) -> None:
        """Set the service label. Date and time are unaffected."""
        self.title = title

    def set_date(self, date: str, slots: Sequence[TimeSlot]) -> bool:
        """Set the date together with the slots offered for it.

        Returns:
            True if a previously chosen time is still offered and was kept
        """
        self.date = date
        self.available_slots = list(slots)
        if self.time and any(slot.start == self.time for slot in self.available_slots):
            return True
        self.clear_time()
        return False

    def set_time(self, slot: TimeSlot) -> None:
        """Choose one of the offered slots."""
        self.time = slot.start
        self.time_display = slot.display

    def clear_time(self) -> None:
        self.time = None
        self.time_display = None

    def reset(self, keep_title: bool = False) -> None:
        """Clear everything, optionally keeping the service label."""
        title = self.title if keep_title else None
        self.title = title
        self.date = None
        self.available_slots = []
        self.clear_time()

    @property
    def is_complete(self) -> bool:
        """Title, date and time all held."""
        return bool(self.title and self.date and self.time)

    @property
    def is_empty(self) -> bool:
        return not (self.title or self.date or self.time or self.available_slots)

    def missing_fields(self) -> list[str]:
        """Names of the fields still needed, in collection order."""
        missing = []
        if not self.title:
            missing.append("title")
        if not self.date:
            missing.append("date")
        if not self.time:
            missing.append("time")
        return missing

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "title": self.title,
            "date": self.date,
            "time": self.time,
            "time_display": self.time_display,
            "available_slots": [slot.to_dict() for slot in self.available_slots],
        }


@dataclass
class AppointmentFlow:
    """Booking state machine position plus collected details."""

    active: bool = False
    step: FlowStep = FlowStep.NONE
    details: SlotBag = field(default_factory=SlotBag)
    calendar_type: Optional[CalendarType] = None

    def move_to(self, step: FlowStep) -> None:
        """Advance to a step through the transition table.

        Raises:
            InvalidTransitionError: If the table forbids the move
        """
        if not can_transition(self.step, step):
            raise InvalidTransitionError(f"{self.step.value} -> {step.value}")
        if step != self.step:
            logger.debug(f"Appointment flow: {self.step.value} -> {step.value}")
        self.step = step
        self.active = step != FlowStep.NONE

    def reset(self) -> None:
        """Back to idle with no details. Always allowed."""
        self.active = False
        self.step = FlowStep.NONE
        self.details = SlotBag()
        self.calendar_type = None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "active": self.active,
            "step": self.step.value,
            "details": self.details.to_dict(),
            "calendar_type": self.calendar_type,
        }


@dataclass
class LeadIntake:
    """Details a lead-intake tenant collects for a callback."""

    step: LeadStep = LeadStep.GREETING
    name: Optional[str] = None
    phone: Optional[str] = None
    reason: Optional[str] = None
    urgency: Optional[str] = None

    @property
    def completed(self) -> bool:
        return self.step == LeadStep.COMPLETED

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "step": self.step.value,
            "name": self.name,
            "phone": self.phone,
            "reason": self.reason,
            "urgency": self.urgency,
        }


@dataclass
class AppointmentRecord:
    """A booking the calendar collaborator accepted."""

    calendar_link: Optional[str]
    event_id: Optional[str]
    details: dict = field(default_factory=dict)
    created_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "calendar_link": self.calendar_link,
            "event_id": self.event_id,
            "details": self.details,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class Session:
    """Dialogue state for one caller."""

    session_id: str
    tenant_id: Optional[str] = None
    user_info: UserInfo = field(default_factory=UserInfo)
    conversation_history: list[ConversationTurn] = field(default_factory=list)
    awaiting_follow_up: bool = False
    appointment_flow: AppointmentFlow = field(default_factory=AppointmentFlow)
    last_appointment: Optional[AppointmentRecord] = None
    lead: LeadIntake = field(default_factory=LeadIntake)
    summary_sent: bool = False
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def add_message(self, role: Literal["user", "assistant"], content: str) -> None:
        """Append to the conversation log. The log is never truncated."""
        self.conversation_history.append(ConversationTurn(role=role, content=content))
        self.updated_at = _utcnow()

    def recent_history(self, limit: int) -> list[dict]:
        """Bounded suffix of the log for prompts: [{"role", "content"}, ...]."""
        if limit <= 0:
            return []
        return [
            {"role": turn.role, "content": turn.content}
            for turn in self.conversation_history[-limit:]
        ]

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        """Seconds since creation."""
        return ((now or _utcnow()) - self.created_at).total_seconds()

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "session_id": self.session_id,
            "tenant_id": self.tenant_id,
            "user_info": self.user_info.to_dict(),
            "conversation_history": [turn.to_dict() for turn in self.conversation_history],
            "awaiting_follow_up": self.awaiting_follow_up,
            "appointment_flow": self.appointment_flow.to_dict(),
            "last_appointment": self.last_appointment.to_dict() if self.last_appointment else None,
            "lead": self.lead.to_dict(),
            "summary_sent": self.summary_sent,
            "message_count": len(self.conversation_history),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
