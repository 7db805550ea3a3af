"""Intent types for utterance classification."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class Intent(str, Enum):
    """Caller intent categories."""

    # Conversation control
    GOODBYE = "goodbye"                        # Bye, that's all
    EMERGENCY = "emergency"                    # Urgent, ASAP (tenant-enabled)

    # Actions
    APPOINTMENT = "appointment"                # Book / schedule
    NAME_CHANGE = "name_change"                # "Change my name to ..."
    EMAIL_CHANGE = "email_change"              # "Update my email"

    # Business-specific categories loaded from tenant config
    DOMAIN = "domain"

    # Answers to "anything else, or book an appointment?"
    FOLLOW_UP_POSITIVE = "follow_up_positive"  # Yes, more questions
    FOLLOW_UP_APPOINTMENT = "follow_up_appointment"

    # Fallback
    UNKNOWN = "unknown"


# Resolution order for the primary intent. Goodbye must override any
# in-progress flow, so it always comes first.
INTENT_PRIORITY: tuple[Intent, ...] = (
    Intent.GOODBYE,
    Intent.EMERGENCY,
    Intent.APPOINTMENT,
    Intent.NAME_CHANGE,
    Intent.EMAIL_CHANGE,
    Intent.DOMAIN,
    Intent.FOLLOW_UP_POSITIVE,
    Intent.FOLLOW_UP_APPOINTMENT,
    Intent.UNKNOWN,
)


@dataclass
class IntentResult:
    """Result of intent classification.

    confidence is informational only; routing reads primary_intent and flags.
    """

    primary_intent: Intent
    confidence: float  # 0.1 - 1.0

    # Every group that matched (after negation)
    flags: frozenset[Intent] = field(default_factory=frozenset)

    # Name of the matched tenant category when DOMAIN is flagged
    domain_category: Optional[str] = None

    # Utterance hit the negation guard ("no", "don't need")
    negated: bool = False

    processing_time_ms: float = 0.0

    def has(self, intent: Intent) -> bool:
        """Check if a group matched."""
        return intent in self.flags

    @property
    def is_goodbye(self) -> bool:
        return self.primary_intent == Intent.GOODBYE

    @property
    def wants_appointment(self) -> bool:
        """Explicit booking request, or booking words while answering a follow-up."""
        return self.has(Intent.APPOINTMENT) or self.has(Intent.FOLLOW_UP_APPOINTMENT)

    @property
    def wants_more(self) -> bool:
        """Caller wants to keep asking questions."""
        return self.has(Intent.FOLLOW_UP_POSITIVE)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "intent": self.primary_intent.value,
            "confidence": self.confidence,
            "flags": sorted(flag.value for flag in self.flags),
            "domain_category": self.domain_category,
            "negated": self.negated,
            "processing_time_ms": self.processing_time_ms,
        }
