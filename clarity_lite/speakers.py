"""
Speaker Normalizer
==================

Screenshot transcripts usually show one party's name and leave the other
implicit ("You", unnamed, "Speaker 1" ...). Normalization maps every raw
label onto canonical ``Speaker-A``, ``Speaker-B``, ... labels:

1. Named labels get letters in first-seen (line) order.
2. All generic labels collapse into one label placed after the named ones.
3. Messages are rewritten through the mapping and stable-sorted by lineNumber.
4. The speaker set is recomputed from the rewritten messages.

Labels that are already canonical keep their letter, so normalizing the
output again changes nothing.

Also holds the message-edit helpers used by re-analysis (renumbering,
speaker rename/removal, transcript reconstruction).
"""

import re
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

from pydantic import ValidationError as PydanticValidationError

from .schemas import ParsedMessage

logger = logging.getLogger(__name__)

CANONICAL_PREFIX = "Speaker-"
CANONICAL_PATTERN = re.compile(r'^Speaker-([A-Z]+)$')

# Labels that stand for "the other party" rather than a real name.
# Canonical labels (Speaker-A) deliberately do not match.
GENERIC_PATTERNS: List[re.Pattern] = [
    re.compile(r'^(?:speaker|user|person|participant|sender)[-_#]?\d*$', re.IGNORECASE),
    re.compile(r'^(?:you|me|myself|i)$', re.IGNORECASE),
    re.compile(r'^(?:unnamed|unknown|anonymous|n/?a)\b', re.IGNORECASE),
    re.compile(r'^\(?(?:you|me)\)?:?$', re.IGNORECASE),
]


@dataclass
class NormalizationResult:
    speakers: List[str] = field(default_factory=list)
    messages: List[ParsedMessage] = field(default_factory=list)
    mapping: Dict[str, str] = field(default_factory=dict)


def is_canonical(label: str) -> bool:
    return bool(CANONICAL_PATTERN.match(label or ""))


def is_generic(label: str) -> bool:
    """True for placeholder labels like "You", "Speaker-1", "Unnamed"."""
    label = (label or "").strip()
    if not label:
        return True
    if " " in label:
        return False
    return any(p.match(label) for p in GENERIC_PATTERNS)


def canonical_label(index: int) -> str:
    """0 -> Speaker-A, 25 -> Speaker-Z, 26 -> Speaker-AA"""
    letters = ""
    n = index + 1
    while n > 0:
        n, rem = divmod(n - 1, 26)
        letters = chr(ord("A") + rem) + letters
    return f"{CANONICAL_PREFIX}{letters}"


def _label_index(label: str) -> int:
    match = CANONICAL_PATTERN.match(label)
    n = 0
    for ch in match.group(1):
        n = n * 26 + (ord(ch) - ord("A") + 1)
    return n - 1


def build_speaker_mapping(labels_in_order: Iterable[str]) -> Dict[str, str]:
    """
    Map raw labels (first-seen order) to canonical labels.

    Args:
        labels_in_order: Raw speaker labels, duplicates allowed

    Returns:
        Dict raw label -> canonical label
    """
    seen: List[str] = []
    for label in labels_in_order:
        label = (label or "").strip()
        if label not in seen:
            seen.append(label)

    mapping: Dict[str, str] = {}
    used = {_label_index(l) for l in seen if is_canonical(l)}

    def next_free() -> str:
        idx = 0
        while idx in used:
            idx += 1
        used.add(idx)
        return canonical_label(idx)

    named = [l for l in seen if not is_generic(l)]
    generic = [l for l in seen if is_generic(l)]

    for label in named:
        mapping[label] = label if is_canonical(label) else next_free()

    if generic:
        shared = next_free()
        for label in generic:
            mapping[label] = shared

    return mapping


def normalize_speakers(
    messages: List[ParsedMessage],
) -> NormalizationResult:
    """
    Canonicalize speaker labels and restore chronological order.

    Args:
        messages: Parsed messages (any order)

    Returns:
        NormalizationResult with lexically sorted speakers
    """
    ordered = sorted(messages, key=lambda m: m.line_number)

    mapping = build_speaker_mapping(m.speaker for m in ordered)

    rewritten = [
        m.model_copy(update={"speaker": mapping.get(m.speaker.strip(), m.speaker)})
        for m in ordered
    ]
    speakers = sorted({m.speaker for m in rewritten})

    if mapping and any(k != v for k, v in mapping.items()):
        logger.debug(f"Speaker mapping applied to {len(rewritten)} messages: {len(mapping)} labels")

    return NormalizationResult(speakers=speakers, messages=rewritten, mapping=mapping)


# =============================================================================
# Raw parse output
# =============================================================================

def messages_from_raw(raw_messages: Any) -> List[ParsedMessage]:
    """
    Validate the parser's "messages" array.

    Entries that are not objects or lack a speaker are dropped. A missing or
    non-numeric lineNumber becomes the entry's 1-based position.
    """
    if not isinstance(raw_messages, list):
        return []

    messages: List[ParsedMessage] = []
    for position, item in enumerate(raw_messages, 1):
        if not isinstance(item, dict):
            continue
        data = dict(item)
        line = data.get("lineNumber", data.get("line_number"))
        if isinstance(line, bool) or not isinstance(line, (int, float)) or line < 1:
            data["lineNumber"] = position
        else:
            data["lineNumber"] = int(line)
        data.pop("line_number", None)
        if data.get("content") is not None and not isinstance(data["content"], str):
            data["content"] = str(data["content"])
        if data.get("timestamp") is not None and not isinstance(data["timestamp"], str):
            data["timestamp"] = str(data["timestamp"])
        try:
            messages.append(ParsedMessage.model_validate(data))
        except PydanticValidationError:
            logger.debug(f"Dropping malformed message at position {position}")
    return messages


def speakers_from_raw(raw_speakers: Any) -> List[str]:
    if not isinstance(raw_speakers, list):
        return []
    return [s.strip() for s in raw_speakers if isinstance(s, str) and s.strip()]


# =============================================================================
# Editing helpers
# =============================================================================

def renumber_messages(messages: List[ParsedMessage]) -> List[ParsedMessage]:
    """Set lineNumber to the 1-based display order (after insert/delete/reorder)."""
    return [m.model_copy(update={"line_number": i}) for i, m in enumerate(messages, 1)]


def messages_to_transcript(messages: List[ParsedMessage], numbered: bool = False) -> str:
    """Rebuild "speaker: content" lines, optionally prefixed with lineNumber."""
    lines = []
    for m in messages:
        line = f"{m.speaker}: {m.content}"
        if numbered:
            line = f"{m.line_number}. {line}"
        lines.append(line)
    return "\n".join(lines)
