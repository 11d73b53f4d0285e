"""
Prompt Builder
==============

Pure functions that build the instruction text for the three model tasks:

1. Screenshot text extraction (vision)
2. Speaker / message parsing
3. Miscommunication analysis

Reasoning level and analysis depth only change how much guidance the model
gets; the JSON schema embedded in each prompt is the same for every level,
so the response parser never has to branch on them.
"""

from dataclasses import dataclass
from typing import List, Optional

from .schemas import AnalysisDepth, IssueCategory, ReasoningLevel, Severity


@dataclass(frozen=True)
class Prompt:
    """A system/user prompt pair"""
    system: str
    user: str


SEVERITY_TAXONOMY = "|".join(s.value for s in Severity)
CATEGORY_TAXONOMY = "|".join(c.value for c in IssueCategory)


# =============================================================================
# Extraction
# =============================================================================

EXTRACTION_PROMPT = (
    "Extract and return only the conversation text from this screenshot. "
    "Focus on conversation messages and chat bubbles. Preserve the original "
    "speaker names and message order. If there are timestamps, include them. "
    "Messages sent by the device owner usually appear right-aligned without a "
    "name; label those lines \"You:\". Return one message per line in the form "
    "\"Speaker: message\" and no additional commentary."
)


def build_extraction_prompt() -> str:
    """Instruction text sent alongside the screenshot."""
    return EXTRACTION_PROMPT


# =============================================================================
# Parsing
# =============================================================================

PARSE_SYSTEM_PROMPT = """You are a conversation parser. Parse the provided conversation text and identify speakers and their messages, in the order they were sent.

Return JSON in this exact format:
{
  "speakers": ["Speaker1", "Speaker2"],
  "messages": [
    {
      "speaker": "Speaker1",
      "content": "message content",
      "timestamp": "optional timestamp or null",
      "lineNumber": 1
    }
  ]
}

Rules:
- lineNumber is the 1-based position of the message in the conversation.
- Keep speaker names exactly as written. If the sender is the device owner or is not named, use "You".
- If no clear speaker format is found, infer speakers from context or use "Speaker A", "Speaker B", etc.
- Do not summarize or rewrite message content."""


def build_parse_prompt(conversation_text: str, language: str = "english") -> Prompt:
    """Build the speaker/message parsing prompt."""
    user = (
        f"Conversation language: {language}\n\n"
        f"Parse this conversation:\n\n{conversation_text}"
    )
    return Prompt(system=PARSE_SYSTEM_PROMPT, user=user)


# =============================================================================
# Analysis
# =============================================================================

REASONING_INSTRUCTIONS = {
    ReasoningLevel.STANDARD: (
        "Identify the core communication issues and score overall clarity."
    ),
    ReasoningLevel.DETAILED: (
        "Provide in-depth analysis with context and actionable recommendations. "
        "Include detailed explanations for each issue and specific suggestions for improvement."
    ),
    ReasoningLevel.COMPREHENSIVE: (
        "Provide deep semantic analysis with psychological insights. Analyze linguistic "
        "patterns, interpersonal dynamics, cultural context and implicit meanings, and give "
        "comprehensive recommendations for improving communication effectiveness."
    ),
}

DEPTH_INSTRUCTIONS = {
    AnalysisDepth.STANDARD: "Focus on the explicit wording of each message.",
    AnalysisDepth.DEEP: "Perform semantic analysis of word choices, connotations, and implied meanings.",
    AnalysisDepth.CONTEXT: "Include contextual analysis, cultural considerations, and relationship dynamics.",
}

ANALYSIS_SCHEMA = f"""{{
  "issues": [
    {{
      "id": "issue_1",
      "severity": "{SEVERITY_TAXONOMY}",
      "category": "{CATEGORY_TAXONOMY}",
      "title": "Brief title",
      "description": "Detailed description",
      "highlightedText": "exact text causing the issue",
      "location": "which part of the conversation",
      "lineNumbers": [1, 2],
      "whyConfusing": ["reason 1", "reason 2"],
      "suggestedImprovement": "better phrasing",
      "confidence": 0.9,
      "speakerInterpretations": [
        {{"speaker": "Speaker-A", "interpretation": "what they likely meant"}}
      ]
    }}
  ],
  "summary": {{
    "criticalIssues": 0,
    "moderateIssues": 0,
    "minorIssues": 0,
    "suggestions": 0,
    "mainCategories": ["category"],
    "keyInsights": ["insight"],
    "recommendations": ["recommendation"],
    "communicationPatterns": ["pattern"]
  }},
  "clarityScore": 85
}}"""

ANALYSIS_SYSTEM_PROMPT = f"""You are an expert communication analyst. Analyze the conversation for potential miscommunications, focusing on:

1. assumption_gap - speakers assume shared understanding that is not there
2. ambiguous_language - words or phrases that could be interpreted differently
3. tone_mismatch - defensive, dismissive or unclear emotional responses
4. implicit_meaning - unstated assumptions or expectations
5. other - any other miscommunication

Severity must be one of: {SEVERITY_TAXONOMY.replace("|", ", ")}.
Category must be one of: {CATEGORY_TAXONOMY.replace("|", ", ")}.
lineNumbers refer to the numbered lines of the conversation.
clarityScore is an integer from 0 (incomprehensible) to 100 (perfectly clear).

Return JSON in this exact format:
{ANALYSIS_SCHEMA}

If there are no issues, return an empty "issues" list and a high clarityScore."""


def _coerce(enum_cls, value, default):
    try:
        return enum_cls(value)
    except ValueError:
        return default


def build_analysis_prompt(
    conversation_text: str,
    speakers: Optional[List[str]] = None,
    language: str = "english",
    analysis_depth: AnalysisDepth = AnalysisDepth.STANDARD,
    reasoning_level: ReasoningLevel = ReasoningLevel.STANDARD,
) -> Prompt:
    """
    Build the miscommunication analysis prompt.

    Args:
        conversation_text: Sanitized conversation, ideally numbered "N. speaker: content" lines
        speakers: Canonical speaker labels, if parsing produced any
        language: Language the explanations should be written in
        analysis_depth: AnalysisDepth
        reasoning_level: ReasoningLevel

    Returns:
        Prompt
    """
    reasoning = REASONING_INSTRUCTIONS[_coerce(ReasoningLevel, reasoning_level, ReasoningLevel.STANDARD)]
    depth = DEPTH_INSTRUCTIONS[_coerce(AnalysisDepth, analysis_depth, AnalysisDepth.STANDARD)]

    speaker_line = ", ".join(speakers) if speakers else "unknown"
    user = (
        f"Analysis depth: {depth}\n"
        f"Reasoning: {reasoning}\n"
        f"Write all explanations in: {language}\n\n"
        f"Speakers identified: {speaker_line}\n\n"
        f"Conversation to analyze:\n\n{conversation_text}"
    )
    return Prompt(system=ANALYSIS_SYSTEM_PROMPT, user=user)
