"""Appointment flow state machine."""

from enum import Enum
from typing import Set


class InvalidTransitionError(Exception):
    """Raised when the appointment flow is moved along an edge the table forbids."""


class FlowStep(str, Enum):
    """Steps in the appointment booking flow."""

    # Idle
    NONE = "none"

    # Identity (only when not collected before booking, or on change requests)
    COLLECT_NAME = "collect_name"
    COLLECT_EMAIL = "collect_email"
    CONFIRM_EMAIL = "confirm_email"

    # Booking details
    SELECT_CALENDAR = "select_calendar"
    COLLECT_TITLE = "collect_title"
    COLLECT_DATE = "collect_date"
    COLLECT_TIME = "collect_time"

    # Confirmation
    REVIEW = "review"
    CONFIRM = "confirm"


# Valid step transitions. Staying on the same step is always allowed.
VALID_TRANSITIONS: dict[FlowStep, Set[FlowStep]] = {
    FlowStep.NONE: {
        FlowStep.COLLECT_NAME,
        FlowStep.COLLECT_EMAIL,
        FlowStep.SELECT_CALENDAR,
        FlowStep.COLLECT_TITLE,
    },
    FlowStep.COLLECT_NAME: {
        FlowStep.COLLECT_EMAIL,
        FlowStep.SELECT_CALENDAR,
        FlowStep.COLLECT_TITLE,
        FlowStep.REVIEW,
        FlowStep.CONFIRM,
        FlowStep.NONE,
    },
    FlowStep.COLLECT_EMAIL: {
        FlowStep.CONFIRM_EMAIL,
        FlowStep.NONE,
    },
    FlowStep.CONFIRM_EMAIL: {
        FlowStep.COLLECT_EMAIL,
        FlowStep.COLLECT_NAME,
        FlowStep.SELECT_CALENDAR,
        FlowStep.COLLECT_TITLE,
        FlowStep.REVIEW,
        FlowStep.CONFIRM,
        FlowStep.NONE,
    },
    FlowStep.SELECT_CALENDAR: {
        FlowStep.COLLECT_TITLE,
        FlowStep.NONE,
    },
    FlowStep.COLLECT_TITLE: {
        FlowStep.COLLECT_DATE,
        FlowStep.REVIEW,
        FlowStep.CONFIRM,
        FlowStep.NONE,
    },
    FlowStep.COLLECT_DATE: {
        FlowStep.COLLECT_TIME,
        FlowStep.NONE,
    },
    FlowStep.COLLECT_TIME: {
        FlowStep.COLLECT_DATE,
        FlowStep.REVIEW,
        FlowStep.CONFIRM,
        FlowStep.NONE,
    },
    FlowStep.REVIEW: {
        FlowStep.COLLECT_NAME,
        FlowStep.COLLECT_EMAIL,
        FlowStep.COLLECT_TITLE,
        FlowStep.COLLECT_DATE,
        FlowStep.COLLECT_TIME,
        FlowStep.CONFIRM,
        FlowStep.NONE,
    },
    FlowStep.CONFIRM: {
        FlowStep.COLLECT_TITLE,
        FlowStep.NONE,
    },
}


def can_transition(from_step: FlowStep, to_step: FlowStep) -> bool:
    """Check if a step transition is valid."""
    return from_step == to_step or to_step in VALID_TRANSITIONS.get(from_step, set())


def is_confirmation_step(step: FlowStep) -> bool:
    """Check if step waits for the caller to confirm a booking."""
    return step in {FlowStep.REVIEW, FlowStep.CONFIRM}


class LeadStep(str, Enum):
    """Steps in the after-hours lead intake flow. Strictly linear."""

    GREETING = "greeting"
    COLLECT_NAME = "collect_name"
    CONFIRM_NAME = "confirm_name"
    COLLECT_PHONE = "collect_phone"
    COLLECT_REASON = "collect_reason"
    COLLECT_URGENCY = "collect_urgency"
    COMPLETED = "completed"
