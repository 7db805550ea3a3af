"""
Deterministic slot extraction.

Used when the LLM extractor is unavailable, errors, or returns nothing
usable. Name, email and phone return None when nothing is found; service
and callback urgency always return a value.
"""

import re
from enum import Enum
from typing import Optional

from voice_agent.core.tenants import TenantProfile
from .spelling import (
    EMAIL_SEARCH_PATTERN,
    collapse_spelled_letters,
    replace_spoken_symbols,
    title_case_name,
)

NAME_INTRO_PATTERN = re.compile(
    r"(?:my name is|my name's|name is|call me|i'm|i am|this is|it's)\s+([a-z][a-z'\- ]*)",
    re.IGNORECASE,
)

# Words that follow "I'm" / "this is" but are not names
NOT_A_NAME = {
    "a", "an", "the", "just", "not", "here", "calling", "looking", "trying",
    "interested", "wondering", "hoping", "good", "fine", "great", "ok", "okay",
    "sorry", "so", "very", "really", "glad", "happy", "going", "having", "in",
    "on", "with", "from", "at", "about", "still", "also", "actually", "sure",
    "correct", "right", "wrong", "urgent", "it", "that", "ready", "done",
}

# Words that end a name phrase ("I'm John and my email is ...")
NAME_TERMINATORS = re.compile(
    r"\b(?:and|my|email|e-mail|at|from|with|i|i'm|calling|here|please|but|so)\b.*$",
    re.IGNORECASE,
)


def extract_name(text: str) -> Optional[str]:
    """Find a self-introduced name, preferring the last one mentioned.

    Handles "my name is ...", "call me ...", "I'm ..." and letter-by-letter
    spelling after an introduction ("my name is j-o-h-n").
    """
    collapsed = collapse_spelled_letters(text)
    matches = list(NAME_INTRO_PATTERN.finditer(collapsed))

    for match in reversed(matches):
        candidate = NAME_TERMINATORS.sub("", match.group(1)).strip(" -'")
        words = candidate.split()
        if not words or words[0].lower() in NOT_A_NAME:
            continue
        return title_case_name(" ".join(words[:3]))

    return None


def extract_email(text: str) -> Optional[str]:
    """Find an email address, tolerating spoken and spelled forms.

    Written addresses are tried first, then spoken or letter-spelled ones
    ("john dot smith at gmail dot com", "j-o-h-n at g-m-a-i-l dot c-o-m",
    "john at gmail.com"). The last address in the utterance wins, so
    restatements override earlier values.
    """
    lowered = text.lower()

    written = EMAIL_SEARCH_PATTERN.findall(lowered)
    if written:
        return written[-1].rstrip(".")

    collapsed = collapse_spelled_letters(lowered)

    symbolized = replace_spoken_symbols(f" {collapsed} ")
    symbolized = re.sub(r"\s*@\s*", "@", symbolized)
    spelled = EMAIL_SEARCH_PATTERN.findall(symbolized)
    if spelled:
        return spelled[-1].rstrip(".")

    return None


def match_service(text: str, tenant: TenantProfile) -> Optional[str]:
    """Catalog label whose keywords appear in the utterance, or None."""
    lowered = text.lower()

    for option in tenant.service_catalog:
        hits = [kw for kw in option.keywords if re.search(rf"\b{re.escape(kw.lower())}", lowered)]
        if option.requires_all:
            if option.keywords and len(hits) == len(option.keywords):
                return option.label
        elif hits:
            return option.label

    return None


def extract_service(text: str, tenant: TenantProfile) -> str:
    """Map an utterance onto the tenant's service catalog.

    Never returns None: the tenant's default service is used when no
    keyword matches.
    """
    return match_service(text, tenant) or tenant.default_service


# Replies to "what's your name?" that are not names
FILLER_WORDS = {
    "hi", "hello", "hey", "yes", "yeah", "yep", "no", "nope", "ok", "okay", "sure",
    "um", "uh", "hmm", "thanks", "thank", "you", "please", "what", "why", "how",
    "sorry", "pardon", "appointment", "book", "schedule", "help", "question",
}


def extract_bare_name(text: str) -> Optional[str]:
    """Accept a short plain answer ("John Smith", "j-o-h-n") as a name.

    Only used right after the caller was asked for their name.
    """
    candidate = collapse_spelled_letters(text.strip()).strip(" .,!?")
    words = candidate.split()
    if not 1 <= len(words) <= 3:
        return None
    if not all(re.fullmatch(r"[A-Za-z][A-Za-z'\-]*", word) for word in words):
        return None
    if any(word.lower() in FILLER_WORDS or word.lower() in NOT_A_NAME for word in words):
        return None
    return title_case_name(candidate)


# === Lead intake ===

PHONE_PATTERN = re.compile(r"(?:\+?1[-.\s]?)?\(?(\d{3})\)?[-.\s]?(\d{3})[-.\s]?(\d{4})\b")

SPOKEN_DIGITS = {
    "zero": "0", "oh": "0", "o": "0", "one": "1", "two": "2", "three": "3",
    "four": "4", "five": "5", "six": "6", "seven": "7", "eight": "8", "nine": "9",
}


class CallbackUrgency(str, Enum):
    """When the caller wants the team to ring back."""

    ASAP = "call back asap"
    ANYTIME = "call anytime"


NO_RUSH_PHRASES = ("no rush", "any day", "anytime", "any time", "whenever", "no hurry", "flexible", "not urgent")


def extract_phone(text: str) -> Optional[str]:
    """Find a US phone number, formatted as (555) 123-4567.

    Spoken digits ("five five five ...") are converted first. A bare run
    of 10 digits, or 11 starting with 1, is also accepted.
    """
    words = re.split(r"(\W+)", text.lower())
    text = "".join(SPOKEN_DIGITS.get(word, word) for word in words)

    match = PHONE_PATTERN.search(text)
    if match:
        return f"({match.group(1)}) {match.group(2)}-{match.group(3)}"

    digits = re.sub(r"\D", "", text)
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    if len(digits) == 10:
        return f"({digits[:3]}) {digits[3:6]}-{digits[6:]}"
    return None


def extract_urgency(text: str) -> CallbackUrgency:
    """Callback preference. Anything without a no-rush phrase is ASAP."""
    lowered = text.lower()
    if any(phrase in lowered for phrase in NO_RUSH_PHRASES):
        return CallbackUrgency.ANYTIME
    return CallbackUrgency.ASAP
