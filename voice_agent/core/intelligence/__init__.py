"""
Intelligence Layer Module

Provides intent classification, slot extraction and session state for the
dialogue core.

Usage:
    from voice_agent.core.intelligence import (
        classify_intent,
        get_slot_extractor,
        get_session_store,
    )

    # Classify intent
    result = classify_intent("I'd like to book an appointment")
    print(result.primary_intent)  # Intent.APPOINTMENT

    # Extract a slot
    extraction = await get_slot_extractor().extract_email(
        "it's j-o-h-n at gmail dot com", tenant
    )
    print(extraction.value)  # "john@gmail.com"

    # Sessions
    session = get_session_store().get("call-123")
"""

# Intent Classification
from voice_agent.core.intelligence.intent.types import Intent, IntentResult, INTENT_PRIORITY
from voice_agent.core.intelligence.intent.classifier import (
    IntentClassifier,
    get_intent_classifier,
    classify_intent,
)

# Slot Extraction
from voice_agent.core.intelligence.slots.types import Extraction, ExtractionSource, SlotField, TimeSlot
from voice_agent.core.intelligence.slots.extractor import SlotExtractor, get_slot_extractor

# Session Management
from voice_agent.core.intelligence.session.state import (
    FlowStep,
    InvalidTransitionError,
    can_transition,
)
from voice_agent.core.intelligence.session.models import Session, SlotBag, UserInfo
from voice_agent.core.intelligence.session.store import SessionStore, get_session_store

__all__ = [
    # Intent
    "Intent",
    "IntentResult",
    "INTENT_PRIORITY",
    "IntentClassifier",
    "get_intent_classifier",
    "classify_intent",
    # Slots
    "Extraction",
    "ExtractionSource",
    "SlotField",
    "TimeSlot",
    "SlotExtractor",
    "get_slot_extractor",
    # Session
    "FlowStep",
    "InvalidTransitionError",
    "can_transition",
    "Session",
    "SlotBag",
    "UserInfo",
    "SessionStore",
    "get_session_store",
]
