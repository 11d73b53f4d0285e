"""
Content Sanitizer - Strip PII-shaped substrings before model calls
==================================================================

Best-effort regex masking, not a guarantee: it catches the common shapes of
phone numbers, email addresses, URLs, card numbers and SSNs and replaces
them with fixed placeholders. Placeholders contain no digits, ``@`` or
scheme prefixes, so running the sanitizer on its own output is a no-op.

Usage:
    from clarity_lite.sanitize import sanitize_text
    clean_text = sanitize_text(raw_text)
"""

import re
from collections import Counter
from typing import Dict, List, Tuple

from .schemas import ParsedMessage

PHONE_PLACEHOLDER = "[PHONE_NUMBER]"
EMAIL_PLACEHOLDER = "[EMAIL_ADDRESS]"
URL_PLACEHOLDER = "[URL]"
CARD_PLACEHOLDER = "[CARD_NUMBER]"
SSN_PLACEHOLDER = "[SSN]"

# Order matters: URLs before emails (mailto/user@host in paths), cards
# before phones (a card contains phone-shaped runs), SSNs before phones.
PII_PATTERNS: List[Tuple[str, re.Pattern, str]] = [
    ("url", re.compile(r'\b(?:https?://|www\.)[^\s<>"\')\]]+', re.IGNORECASE), URL_PLACEHOLDER),
    ("email", re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b'), EMAIL_PLACEHOLDER),
    ("card", re.compile(r'(?<!\d)(?:\d{4}[ -]?){3}\d{4}(?!\d)'), CARD_PLACEHOLDER),
    ("ssn", re.compile(r'(?<!\d)\d{3}-\d{2}-\d{4}(?!\d)'), SSN_PLACEHOLDER),
    ("phone", re.compile(
        r'(?<![\w+])'
        r'(?:\+\d{1,3}[\s.-]?)?'         # country code
        r'(?:\(\d{2,4}\)|\d{2,4})'       # area code
        r'[\s.-]?\d{3,4}[\s.-]?\d{3,4}'  # subscriber number
        r'(?!\d)'
    ), PHONE_PLACEHOLDER),
]


def sanitize_text(text: str) -> str:
    """
    Replace PII-shaped substrings with placeholder tokens.

    Args:
        text: Raw conversation text

    Returns:
        Text with phone numbers, emails, URLs, card numbers and SSNs masked
    """
    if not text:
        return ""

    cleaned = text
    for _, pattern, placeholder in PII_PATTERNS:
        cleaned = pattern.sub(placeholder, cleaned)
    return cleaned


def redaction_counts(text: str) -> Dict[str, int]:
    """Count how many substrings of each PII kind sanitize_text would mask."""
    counts: Counter = Counter()
    if not text:
        return {}

    working = text
    for name, pattern, placeholder in PII_PATTERNS:
        found = pattern.findall(working)
        if found:
            counts[name] += len(found)
            working = pattern.sub(placeholder, working)
    return dict(counts)


def sanitize_messages(messages: List[ParsedMessage]) -> List[ParsedMessage]:
    """Sanitize message contents and speaker labels; ordering is left untouched."""
    return [
        msg.model_copy(update={
            "speaker": sanitize_text(msg.speaker),
            "content": sanitize_text(msg.content),
        })
        for msg in messages
    ]
