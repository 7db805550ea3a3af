"""Intent classification module."""

from .types import INTENT_PRIORITY, Intent, IntentResult
from .classifier import (
    IntentClassifier,
    classify_intent,
    get_intent_classifier,
    is_negated,
)

__all__ = [
    # Types
    "INTENT_PRIORITY",
    "Intent",
    "IntentResult",
    # Classifier
    "IntentClassifier",
    "classify_intent",
    "get_intent_classifier",
    "is_negated",
]
