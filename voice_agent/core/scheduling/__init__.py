"""
Scheduling Module

Provides the appointment flow engine, calendar integration, utterance
patterns and response templates for the voice agent.

Usage:
    from voice_agent.core.scheduling import get_appointment_engine

    engine = get_appointment_engine()
    result = engine.initialize_flow(session, tenant)
    result = await engine.process(session, "Google, please", tenant)
    print(result.response)  # What to say next
    print(result.step)      # FlowStep after this turn
"""

# Calendar Client
from voice_agent.core.scheduling.calendar_client import (
    AvailabilityResult,
    BookingResult,
    CalendarAgentClient,
    CalendarClientError,
    NextAvailableResult,
    get_calendar_client,
)

# Response Generator
from voice_agent.core.scheduling.response import (
    ResponseGenerator,
    format_for_speech,
    get_response_generator,
)

# Flow Patterns
from voice_agent.core.scheduling.flow import (
    DirectChange,
    detect_calendar,
    detect_change_request,
    detect_direct_changes,
    is_cancellation,
    is_confirmation,
)

# Appointment Flow Engine
from voice_agent.core.scheduling.engine import (
    AppointmentFlowEngine,
    FlowResult,
    get_appointment_engine,
)

__all__ = [
    # Calendar Client
    "AvailabilityResult",
    "BookingResult",
    "CalendarAgentClient",
    "CalendarClientError",
    "NextAvailableResult",
    "get_calendar_client",
    # Response Generator
    "ResponseGenerator",
    "format_for_speech",
    "get_response_generator",
    # Flow Patterns
    "DirectChange",
    "detect_calendar",
    "detect_change_request",
    "detect_direct_changes",
    "is_cancellation",
    "is_confirmation",
    # Appointment Flow Engine
    "AppointmentFlowEngine",
    "FlowResult",
    "get_appointment_engine",
]
