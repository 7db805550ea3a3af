"""
Rule-based intent classification.

Each category is a named list of regex matchers. A category matches when any
matcher hits and, for negatable categories, the utterance does not trip the
negation guard. The primary intent is the first matched category in
INTENT_PRIORITY.
"""

import logging
import re
import time
from dataclasses import dataclass
from typing import Optional, Pattern

from voice_agent.core.tenants import TenantProfile
from .types import INTENT_PRIORITY, Intent, IntentResult

logger = logging.getLogger(__name__)


def _compile(patterns: list[str]) -> list[Pattern]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


GOODBYE_PATTERNS = _compile([
    r"thank(?:s| you).*no more",
    r"that.*all.*i? ?need",
    r"\bgood-?bye\b",
    r"\bbye\b",
    r"done.*questions",
    r"\bsatisfied\b",
    r"that.*help.*needed",
    r"\bthat'?s (?:all|it)\b",
    r"\bthat is all\b",
    r"\bhang(?:ing)? up\b",
])

EMERGENCY_PATTERNS = _compile([
    r"#",
    r"\bemergency\b",
    r"\burgent\b",
    r"\btime[- ]sensitive\b",
    r"\basap\b",
    r"\bright away\b",
    r"\bimmediately\b",
])

APPOINTMENT_PATTERNS = _compile([
    r"\b(?:set|schedule|book|make|want|need)\b.*\bappointment\b",
    r"\b(?:schedule|book|set up)\b.*\bmeeting\b",
    r"\bappointment\b.*\bplease\b",
    r"\b(?:schedule|book)\b.*\b(?:consultation|demo|call)\b",
])

NAME_CHANGE_PATTERNS = _compile([
    r"\bchange\b.*\bname\b",
    r"\bupdate\b.*\bname\b",
    r"\bname\b.*\bshould\b.*\bbe\b",
    r"\b(?:wrong|correct|fix)\b.*\bname\b",
    r"\bcall me\b",
])

EMAIL_CHANGE_PATTERNS = _compile([
    r"\bchange\b.*\bemail\b",
    r"\bupdate\b.*\bemail\b",
    r"\bmy email\b.*\bis\b",
    r"\bactually\b.*\bemail\b",
    r"\bcorrect\b.*\bemail\b",
    r"\bwrong\b.*\bemail\b",
    r"\bemail\b.*\bshould\b.*\bbe\b",
    r"\bemail address\b.*\bis\b",
    r"\bthe email\b.*\bis\b",
])

FOLLOW_UP_POSITIVE_PATTERNS = _compile([
    r"\byes\b",
    r"\byeah\b",
    r"\bsure\b",
    r"\bmore\b",
    r"\banother\b",
    r"\bother\b",
    r"\bquestions?\b",
])

FOLLOW_UP_APPOINTMENT_PATTERNS = _compile([
    r"\bappointment\b",
    r"\bschedule\b",
    r"\bmeeting\b",
    r"\bconsultation\b",
    r"\bbook\b",
])

NEGATION_PATTERNS = _compile([
    r"^\s*no\b",
    r"^\s*nope\b",
    r"\b(?:don'?t|do not|doesn'?t|does not)\s+(?:really\s+)?(?:need|want)\b",
    r"\bnot interested\b",
    r"\bno,? thanks?\b",
    r"\bnot (?:right )?now\b",
])

# Categories the negation guard can suppress. Goodbye, emergency and
# identity corrections ("no, my email is ...") are never suppressed.
NEGATABLE = {
    Intent.APPOINTMENT,
    Intent.DOMAIN,
    Intent.FOLLOW_UP_POSITIVE,
    Intent.FOLLOW_UP_APPOINTMENT,
}


@dataclass
class PatternGroup:
    """Named ordered list of matchers for one intent."""

    intent: Intent
    patterns: list[Pattern]

    def matches(self, text: str) -> bool:
        return any(p.search(text) for p in self.patterns)


BUILTIN_GROUPS = [
    PatternGroup(Intent.GOODBYE, GOODBYE_PATTERNS),
    PatternGroup(Intent.EMERGENCY, EMERGENCY_PATTERNS),
    PatternGroup(Intent.APPOINTMENT, APPOINTMENT_PATTERNS),
    PatternGroup(Intent.NAME_CHANGE, NAME_CHANGE_PATTERNS),
    PatternGroup(Intent.EMAIL_CHANGE, EMAIL_CHANGE_PATTERNS),
    PatternGroup(Intent.FOLLOW_UP_POSITIVE, FOLLOW_UP_POSITIVE_PATTERNS),
    PatternGroup(Intent.FOLLOW_UP_APPOINTMENT, FOLLOW_UP_APPOINTMENT_PATTERNS),
]


def is_negated(text: str) -> bool:
    """Check the negation guard."""
    return any(p.search(text) for p in NEGATION_PATTERNS)


def score_confidence(match_count: int, word_count: int) -> float:
    """Heuristic confidence in [0.1, 1.0].

    One category on a short utterance scores highest; none or several
    categories score low.
    """
    if match_count == 1:
        confidence = min(0.9, 0.7 + (10 - word_count) * 0.02)
    elif match_count > 1:
        confidence = 0.6
    else:
        confidence = 0.3
    return round(max(0.1, min(1.0, confidence)), 2)


class IntentClassifier:
    """Prioritized pattern-group classifier."""

    def __init__(self):
        self._domain_cache: dict[str, list[tuple[str, list[Pattern]]]] = {}

    def _domain_groups(self, tenant: Optional[TenantProfile]) -> list[tuple[str, list[Pattern]]]:
        """Compiled business-specific categories for a tenant (cached)."""
        if tenant is None or not tenant.intent_categories:
            return []
        if tenant.tenant_id not in self._domain_cache:
            groups = []
            for name, patterns in tenant.intent_categories.items():
                try:
                    groups.append((name, _compile(patterns)))
                except re.error as e:
                    logger.error(f"Invalid pattern in category {name!r} for tenant {tenant.tenant_id}: {e}")
            self._domain_cache[tenant.tenant_id] = groups
        return self._domain_cache[tenant.tenant_id]

    def classify(self, utterance: str, tenant: Optional[TenantProfile] = None) -> IntentResult:
        """
        Classify a caller utterance.

        Args:
            utterance: Transcribed caller speech
            tenant: Tenant profile (emergency switch and domain categories)

        Returns:
            IntentResult with primary intent, matched flags and confidence
        """
        start_time = time.time()
        text = utterance.strip()

        if not text:
            return IntentResult(primary_intent=Intent.UNKNOWN, confidence=0.1)

        negated = is_negated(text)
        emergency_enabled = bool(tenant and tenant.emergency_enabled)
        flags: set[Intent] = set()

        for group in BUILTIN_GROUPS:
            if group.intent == Intent.EMERGENCY and not emergency_enabled:
                continue
            if negated and group.intent in NEGATABLE:
                continue
            if group.matches(text):
                flags.add(group.intent)

        domain_category = None
        if not negated:
            for name, patterns in self._domain_groups(tenant):
                if any(p.search(text) for p in patterns):
                    domain_category = name
                    flags.add(Intent.DOMAIN)
                    break

        primary = next(
            (intent for intent in INTENT_PRIORITY if intent in flags),
            Intent.UNKNOWN,
        )

        result = IntentResult(
            primary_intent=primary,
            confidence=score_confidence(len(flags), len(text.split())),
            flags=frozenset(flags),
            domain_category=domain_category,
            negated=negated,
            processing_time_ms=(time.time() - start_time) * 1000,
        )

        logger.debug(
            f"Intent classified: {primary.value} "
            f"(flags={sorted(f.value for f in flags)}, negated={negated}, "
            f"confidence={result.confidence})"
        )

        return result


# Singleton
_classifier: Optional[IntentClassifier] = None


def get_intent_classifier() -> IntentClassifier:
    """Get singleton IntentClassifier."""
    global _classifier
    if _classifier is None:
        _classifier = IntentClassifier()
    return _classifier


def classify_intent(utterance: str, tenant: Optional[TenantProfile] = None) -> IntentResult:
    """Convenience function to classify intent."""
    return get_intent_classifier().classify(utterance, tenant)
