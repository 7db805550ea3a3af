"""
Helpers for spelled-out and spoken identity values.

Voice transcripts deliver emails as "j-o-h-n at g-m-a-i-l dot com" or
"john at gmail dot com"; these helpers turn them into canonical strings
and render them back for confirmation.
"""

import re
from typing import Optional

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
EMAIL_SEARCH_PATTERN = re.compile(r"[a-z0-9._%+\-]+@[a-z0-9.\-]+\.[a-z]{2,}")

# Dash or space between two single characters: "j-o-h-n", "j o h n"
_SPELLED_DASH = re.compile(r"\b(\w)-(?=\w\b)")
_SPELLED_SPACE = re.compile(r"\b(\w) (?=\w\b)")

_SPOKEN_SYMBOLS = [
    (re.compile(r"\s+at\s+"), "@"),
    (re.compile(r"\s*\bdot\b\s*"), "."),
    (re.compile(r"\s*\bperiod\b\s*"), "."),
    (re.compile(r"\s*\bunderscore\b\s*"), "_"),
    (re.compile(r"\s*\b(?:dash|hyphen)\b\s*"), "-"),
]


def is_valid_email(value: Optional[str]) -> bool:
    """Syntactic local@domain.tld check."""
    return bool(value) and bool(EMAIL_PATTERN.match(value))


def collapse_spelled_letters(text: str) -> str:
    """Join letter-by-letter spelling: "j-o-h-n" / "j o h n" -> "john"."""
    collapsed = _SPELLED_DASH.sub(r"\1", text)
    return _SPELLED_SPACE.sub(r"\1", collapsed)


def replace_spoken_symbols(text: str) -> str:
    """Turn spoken at/dot/underscore/dash into symbols."""
    for pattern, symbol in _SPOKEN_SYMBOLS:
        text = pattern.sub(symbol, text)
    return text


def normalize_email(value: str) -> str:
    """Normalize a candidate email value into a compact lowercase address.

    Handles spoken symbols and spelled letters, then removes any remaining
    whitespace. The result is not validated; use is_valid_email.
    """
    text = value.strip().lower().rstrip(".,!?")
    text = collapse_spelled_letters(text)
    text = replace_spoken_symbols(f" {text} ").strip()
    text = re.sub(r"\s*([@.])\s*", r"\1", text)
    return re.sub(r"\s+", "", text)


def spell_email(email: str) -> str:
    """Render an email for read-back: local part spelled, domain spoken.

    >>> spell_email("john@gmail.com")
    'j-o-h-n at gmail.com'
    """
    if "@" not in email:
        return "-".join(email)
    local, domain = email.split("@", 1)
    return f"{'-'.join(local)} at {domain}"


def title_case_name(name: str) -> str:
    """Capitalize each name part, keeping apostrophes and hyphens intact."""
    parts = []
    for word in name.split():
        parts.append("-".join(p[:1].upper() + p[1:].lower() for p in word.split("-")))
    return " ".join(parts)
