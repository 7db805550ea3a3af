"""
Deterministic Handlers.

These handlers do NOT use AI - they return fixed, safe responses.
Used for cases where AI variability is unacceptable (e.g., emergencies,
after-hours lead intake).
"""

from voice_agent.core.agent.handlers.emergency import EmergencyHandler
from voice_agent.core.agent.handlers.lead_intake import LeadIntakeHandler, LeadTurn, lead_greeting

__all__ = ["EmergencyHandler", "LeadIntakeHandler", "LeadTurn", "lead_greeting"]
