"""
Tests for Analysis Orchestrator

The model client is scripted (FakeModelClient); no backend is contacted.
"""

import asyncio
import json
from types import SimpleNamespace

import pytest

from clarity_lite.config import Settings
from clarity_lite.errors import (
    BackendEmptyResponse,
    BackendMalformedResponse,
    BackendUnavailableError,
    ValidationError,
)
from clarity_lite.orchestrator import (
    AnalysisOrchestrator,
    AnalysisResult,
    KeyedLocks,
    build_summary,
    coerce_clarity_score,
    validate_issues,
)
from clarity_lite.sanitize import EMAIL_PLACEHOLDER, PHONE_PLACEHOLDER
from clarity_lite.schemas import (
    AIModel,
    AnalysisDepth,
    AnalysisTask,
    IssueCategory,
    ParsedMessage,
    ReasoningLevel,
)

from .conftest import FakeModelClient, parse_reply, analysis_reply


def conversation(text="John: let's meet\nSarah: sure, when?", image_urls=None, **overrides):
    values = dict(
        text=text,
        image_urls=image_urls or [],
        language="english",
        analysis_depth=AnalysisDepth.STANDARD,
        reasoning_level=ReasoningLevel.STANDARD,
        ai_model=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def make_orchestrator(replies, **settings):
    client = FakeModelClient(replies)
    return AnalysisOrchestrator(client, Settings(**settings)), client


JOHN_SARAH = parse_reply(["John", "Sarah"], [("John", "let's meet"), ("Sarah", "sure, when?")])


# =============================================================================
# Parse
# =============================================================================

class TestParse:
    """Parse stage"""

    @pytest.mark.asyncio
    async def test_typed_conversation_keeps_names(self):
        orchestrator, _ = make_orchestrator({AnalysisTask.PARSE: JOHN_SARAH})

        transcript = await orchestrator.parse("John: let's meet\nSarah: sure, when?")

        assert transcript.speakers == ["John", "Sarah"]
        assert [m.line_number for m in transcript.messages] == [1, 2]
        assert [m.speaker for m in transcript.messages] == ["John", "Sarah"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reply", [
        BackendEmptyResponse(provider="openai"),
        BackendMalformedResponse(provider="openai"),
        "this is not json",
        "[1, 2, 3]",
        json.dumps({"speakers": "John", "messages": {"speaker": "John"}}),
    ])
    async def test_unusable_reply_gives_empty_transcript(self, reply):
        orchestrator, _ = make_orchestrator({AnalysisTask.PARSE: reply})

        transcript = await orchestrator.parse("John: hi")

        assert transcript.speakers == []
        assert transcript.messages == []
        assert transcript.source_text == "John: hi"

    @pytest.mark.asyncio
    async def test_messages_sorted_and_speakers_merged(self):
        reply = json.dumps({
            "speakers": ["Sarah"],
            "messages": [
                {"speaker": "Sarah", "content": "sure", "lineNumber": 2},
                {"speaker": "John", "content": "meet?", "lineNumber": 1},
            ],
        })
        orchestrator, _ = make_orchestrator({AnalysisTask.PARSE: reply})

        transcript = await orchestrator.parse("John: meet?\nSarah: sure")

        assert [m.content for m in transcript.messages] == ["meet?", "sure"]
        assert transcript.speakers == ["Sarah", "John"]

    @pytest.mark.asyncio
    async def test_outbound_text_is_sanitized(self):
        orchestrator, client = make_orchestrator({AnalysisTask.PARSE: JOHN_SARAH})

        await orchestrator.parse("John: mail me at john@example.com")

        sent = client.calls_for(AnalysisTask.PARSE)[0]["prompt"].user
        assert "john@example.com" not in sent
        assert EMAIL_PLACEHOLDER in sent

    @pytest.mark.asyncio
    async def test_blank_text_skips_backend(self):
        orchestrator, client = make_orchestrator({AnalysisTask.PARSE: JOHN_SARAH})

        transcript = await orchestrator.parse("   ")

        assert transcript.messages == []
        assert client.calls == []


# =============================================================================
# Extraction + normalization
# =============================================================================

class TestExtraction:
    """Screenshot path"""

    @pytest.mark.asyncio
    async def test_screenshot_transcript_is_normalized(self):
        orchestrator, client = make_orchestrator({
            AnalysisTask.EXTRACT: "You: hey\nJane Doe: hi",
            AnalysisTask.PARSE: parse_reply(["You", "Jane Doe"], [("You", "hey"), ("Jane Doe", "hi")]),
        })

        transcript = await orchestrator.prepare_transcript(
            conversation(text="", image_urls=["data:image/png;base64,AAAA"])
        )

        assert transcript.from_image
        assert transcript.speakers == ["Speaker-A", "Speaker-B"]
        assert [m.speaker for m in transcript.messages] == ["Speaker-B", "Speaker-A"]
        assert client.calls_for(AnalysisTask.EXTRACT)[0]["image_url"] == "data:image/png;base64,AAAA"

    @pytest.mark.asyncio
    async def test_extraction_failure_falls_back_to_text(self):
        orchestrator, client = make_orchestrator({
            AnalysisTask.EXTRACT: BackendUnavailableError(provider="openai"),
            AnalysisTask.PARSE: JOHN_SARAH,
        })

        transcript = await orchestrator.prepare_transcript(
            conversation(image_urls=["https://img.example/shot.png"])
        )

        assert not transcript.from_image
        assert transcript.speakers == ["John", "Sarah"]
        parse_prompt = client.calls_for(AnalysisTask.PARSE)[0]["prompt"].user
        assert "let's meet" in parse_prompt

    @pytest.mark.asyncio
    async def test_extraction_failure_without_text_propagates(self):
        orchestrator, _ = make_orchestrator({
            AnalysisTask.EXTRACT: BackendUnavailableError(provider="openai"),
        })

        with pytest.raises(BackendUnavailableError):
            await orchestrator.prepare_transcript(conversation(text="", image_urls=["https://img.example/a.png"]))

    @pytest.mark.asyncio
    async def test_fallback_disabled(self):
        orchestrator, _ = make_orchestrator(
            {AnalysisTask.EXTRACT: BackendUnavailableError(provider="openai")},
            image_extraction_fallback=False,
        )

        with pytest.raises(BackendUnavailableError):
            await orchestrator.extract_text(["https://img.example/a.png"], fallback_text="John: hi")


# =============================================================================
# Analyze + assemble
# =============================================================================

class TestAnalyze:
    """Analyze stage and result assembly"""

    @pytest.mark.asyncio
    async def test_full_run(self):
        orchestrator, client = make_orchestrator({
            AnalysisTask.PARSE: JOHN_SARAH,
            AnalysisTask.ANALYZE: analysis_reply(),
        })

        result = await orchestrator.run(conversation())

        assert result.speakers == ["John", "Sarah"]
        assert result.clarity_score == 72
        assert [i.id for i in result.issues] == ["issue_1"]
        assert result.summary.moderate_issues == 1
        assert result.summary.suggestions == 1
        assert result.model == "gpt-4o-mini"

        analyze_call = client.calls_for(AnalysisTask.ANALYZE)[0]
        assert analyze_call["model_id"] == AIModel.GPT_4O_MINI
        assert "1. John: let's meet" in analyze_call["prompt"].user

    @pytest.mark.asyncio
    async def test_malformed_analysis_fails(self):
        orchestrator, _ = make_orchestrator({
            AnalysisTask.PARSE: JOHN_SARAH,
            AnalysisTask.ANALYZE: "Sorry, here is my analysis in prose.",
        })

        with pytest.raises(BackendMalformedResponse):
            await orchestrator.run(conversation())

    @pytest.mark.asyncio
    async def test_unparsed_text_is_analyzed_raw(self):
        orchestrator, client = make_orchestrator({
            AnalysisTask.PARSE: "",
            AnalysisTask.ANALYZE: analysis_reply(issues=[], clarity_score=95),
        })

        result = await orchestrator.run(conversation(text="we should talk later, ok?"))

        assert result.messages == []
        assert result.issues == []
        assert result.clarity_score == 95
        assert "we should talk later, ok?" in client.calls_for(AnalysisTask.ANALYZE)[0]["prompt"].user

    @pytest.mark.asyncio
    async def test_nothing_to_analyze(self):
        orchestrator, client = make_orchestrator({})

        with pytest.raises(ValidationError):
            await orchestrator.analyze([], [], fallback_text="  ")
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_reanalyze_renumbers_and_sanitizes(self):
        orchestrator, client = make_orchestrator({AnalysisTask.ANALYZE: analysis_reply()})
        messages = [
            ParsedMessage(speaker="Speaker-A", content="call me on 555-123-4567", line_number=5),
            ParsedMessage(speaker="Speaker-B", content="ok", line_number=9),
        ]

        result = await orchestrator.reanalyze(conversation(), ["Speaker-A", "Speaker-B"], messages)

        assert [m.line_number for m in result.messages] == [1, 2]
        sent = client.calls_for(AnalysisTask.ANALYZE)[0]["prompt"].user
        assert "555-123-4567" not in sent
        assert PHONE_PLACEHOLDER in sent
        assert "2. Speaker-B: ok" in sent
        assert client.calls_for(AnalysisTask.PARSE) == []

    @pytest.mark.asyncio
    async def test_speaker_labels_are_masked_in_prompt(self):
        orchestrator, client = make_orchestrator({AnalysisTask.ANALYZE: analysis_reply()})
        speakers = ["jane.doe@example.com", "+1 555 123 4567"]
        messages = [
            ParsedMessage(speaker="jane.doe@example.com", content="hi", line_number=1),
            ParsedMessage(speaker="+1 555 123 4567", content="hello", line_number=2),
        ]

        result = await orchestrator.reanalyze(conversation(), speakers, messages)

        sent = client.calls_for(AnalysisTask.ANALYZE)[0]["prompt"].user
        assert "jane.doe@example.com" not in sent
        assert "555 123 4567" not in sent
        assert f"Speakers identified: {EMAIL_PLACEHOLDER}, {PHONE_PLACEHOLDER}" in sent
        assert f"1. {EMAIL_PLACEHOLDER}: hi" in sent
        # The stored result keeps the labels the user chose
        assert result.speakers == speakers
        assert [m.speaker for m in result.messages] == speakers

    @pytest.mark.asyncio
    async def test_requested_model_is_used(self):
        orchestrator, client = make_orchestrator({AnalysisTask.ANALYZE: analysis_reply()})

        result = await orchestrator.reanalyze(
            conversation(ai_model="claude-3-5-sonnet"),
            [],
            [ParsedMessage(speaker="A", content="hi", line_number=1)],
        )

        assert result.model == "claude-3-5-sonnet"
        assert client.calls_for(AnalysisTask.ANALYZE)[0]["model_id"] == AIModel.CLAUDE_3_5_SONNET

    def test_to_record_is_camel_case(self):
        record = AnalysisResult(
            speakers=["A"],
            messages=[ParsedMessage(speaker="A", content="hi", line_number=1)],
            issues=validate_issues([{"severity": "minor", "highlightedText": "hi"}]),
        ).to_record()

        assert record["messages"][0]["lineNumber"] == 1
        assert record["issues"][0]["highlightedText"] == "hi"
        assert "criticalIssues" in record["summary"]
        assert record["clarity_score"] == 0


class TestValidation:
    """Issue/summary validation and score clamping"""

    RAW_ISSUES = [
        {"id": "a", "severity": "moderate", "category": "ambiguous_language", "suggestedImprovement": "be specific"},
        "oops",
        {"type": "critical", "category": "assumption_gap", "title": "Assumed plans"},
        {"severity": "catastrophic", "category": "other"},
        {"severity": "Minor", "category": "sarcasm"},
        {"severity": "minor", "confidence": 1.5},
    ]

    def test_invalid_issues_dropped(self):
        issues = validate_issues(self.RAW_ISSUES)

        assert [i.id for i in issues] == ["a", "issue_3", "issue_5"]
        assert issues[1].category == IssueCategory.ASSUMPTION_GAP
        assert issues[2].category == IssueCategory.OTHER

    def test_not_a_list(self):
        assert validate_issues({"issues": []}) == []
        assert validate_issues(None) == []

    def test_summary_counts_come_from_issues(self):
        issues = validate_issues(self.RAW_ISSUES)
        summary = build_summary({"criticalIssues": 9, "keyInsights": ["Dates are vague"]}, issues)

        assert summary.critical_issues == 1
        assert summary.moderate_issues == 1
        assert summary.minor_issues == 1
        assert summary.suggestions == 1
        assert summary.main_categories == ["ambiguous_language", "assumption_gap", "other"]
        assert summary.key_insights == ["Dates are vague"]

    def test_invalid_summary_replaced(self):
        summary = build_summary({"keyInsights": 12}, [])
        assert summary.key_insights == []
        assert summary.critical_issues == 0

    @pytest.mark.parametrize("raw,expected", [
        (72, 72),
        (72.6, 73),
        (150, 100),
        (-3, 0),
        ("85%", 85),
        ("abc", 0),
        (None, 0),
        (True, 0),
        (float("nan"), 0),
        (float("inf"), 0),
        ([80], 0),
    ])
    def test_clarity_score(self, raw, expected):
        assert coerce_clarity_score(raw) == expected


# =============================================================================
# Per-conversation locks
# =============================================================================

class TestKeyedLocks:

    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self):
        locks = KeyedLocks()
        events = []

        async def worker(name):
            async with locks.hold("conv-1"):
                events.append(f"{name}-start")
                await asyncio.sleep(0.01)
                events.append(f"{name}-end")

        await asyncio.gather(worker("a"), worker("b"))

        assert events in (
            ["a-start", "a-end", "b-start", "b-end"],
            ["b-start", "b-end", "a-start", "a-end"],
        )
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_different_keys_overlap(self):
        locks = KeyedLocks()
        inside = []

        async def worker(key):
            async with locks.hold(key):
                inside.append(key)
                await asyncio.sleep(0.01)
                assert len(inside) == 2

        await asyncio.gather(worker("x"), worker("y"))
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_released_on_error(self):
        locks = KeyedLocks()

        with pytest.raises(RuntimeError):
            async with locks.hold("conv-1"):
                raise RuntimeError("boom")

        assert len(locks) == 0
