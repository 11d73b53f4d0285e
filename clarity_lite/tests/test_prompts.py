"""
Tests for Prompt Builder
"""

from clarity_lite.prompts import (
    Prompt,
    build_extraction_prompt,
    build_parse_prompt,
    build_analysis_prompt,
    ANALYSIS_SCHEMA,
)
from clarity_lite.schemas import AnalysisDepth, IssueCategory, ReasoningLevel, Severity


CONVERSATION = "1. John: let's meet\n2. Sarah: sure, when?"


class TestAnalysisPrompt:
    """Tests for build_analysis_prompt"""

    def test_embeds_full_taxonomy(self):
        prompt = build_analysis_prompt(CONVERSATION)
        for severity in Severity:
            assert severity.value in prompt.system
        for category in IssueCategory:
            assert category.value in prompt.system

    def test_deterministic(self):
        a = build_analysis_prompt(CONVERSATION, ["John", "Sarah"], "english", AnalysisDepth.DEEP, ReasoningLevel.DETAILED)
        b = build_analysis_prompt(CONVERSATION, ["John", "Sarah"], "english", AnalysisDepth.DEEP, ReasoningLevel.DETAILED)
        assert a == b

    def test_reasoning_level_changes_instructions_not_schema(self):
        """Same system prompt (schema) for every level; only the user guidance differs"""
        prompts = [build_analysis_prompt(CONVERSATION, reasoning_level=level) for level in ReasoningLevel]

        assert len({p.system for p in prompts}) == 1
        assert ANALYSIS_SCHEMA in prompts[0].system
        assert len({p.user for p in prompts}) == len(prompts)

    def test_includes_conversation_language_and_speakers(self):
        prompt = build_analysis_prompt(CONVERSATION, ["John", "Sarah"], language="spanish")

        assert CONVERSATION in prompt.user
        assert "spanish" in prompt.user
        assert "John, Sarah" in prompt.user

    def test_unknown_levels_use_standard(self):
        """String values from storage are accepted; unknown ones fall back"""
        fallback = build_analysis_prompt(CONVERSATION, analysis_depth="bogus", reasoning_level="bogus")
        standard = build_analysis_prompt(CONVERSATION)
        assert fallback == standard

        from_string = build_analysis_prompt(CONVERSATION, analysis_depth="deep")
        assert from_string == build_analysis_prompt(CONVERSATION, analysis_depth=AnalysisDepth.DEEP)

    def test_no_speakers(self):
        prompt = build_analysis_prompt(CONVERSATION)
        assert "Speakers identified: unknown" in prompt.user


class TestParseAndExtractionPrompts:

    def test_parse_prompt(self):
        prompt = build_parse_prompt("John: hi", language="english")

        assert isinstance(prompt, Prompt)
        assert "lineNumber" in prompt.system
        assert "John: hi" in prompt.user

    def test_extraction_prompt_is_plain_text_instruction(self):
        text = build_extraction_prompt()
        assert isinstance(text, str)
        assert "screenshot" in text.lower()
