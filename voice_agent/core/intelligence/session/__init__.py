"""
Session management module.

Sessions are in-memory only. The appointment flow is an explicit state
machine (FlowStep + VALID_TRANSITIONS); slot details are mutated through
SlotBag methods that keep date and time consistent.
"""

from .state import (
    FlowStep,
    InvalidTransitionError,
    LeadStep,
    VALID_TRANSITIONS,
    can_transition,
    is_confirmation_step,
)
from .models import (
    AppointmentFlow,
    AppointmentRecord,
    ConversationTurn,
    LeadIntake,
    Session,
    SlotBag,
    UserInfo,
)
from .store import SessionStore, get_session_store

__all__ = [
    # State
    "FlowStep",
    "InvalidTransitionError",
    "LeadStep",
    "VALID_TRANSITIONS",
    "can_transition",
    "is_confirmation_step",
    # Models
    "AppointmentFlow",
    "AppointmentRecord",
    "ConversationTurn",
    "LeadIntake",
    "Session",
    "SlotBag",
    "UserInfo",
    # Store
    "SessionStore",
    "get_session_store",
]
