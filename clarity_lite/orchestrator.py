"""
Analysis Orchestrator
=====================

Runs one analysis request through the pipeline:

    Start -> [ExtractText] -> Parse -> [Normalize] -> Analyze -> Assemble -> Done
                                    \\-> Failed (from any stage)

- ExtractText: only when the conversation has screenshots. On failure the
  user-supplied text is used instead (IMAGE_EXTRACTION_FALLBACK, default on).
- Parse: empty or malformed model JSON is treated as ``{}`` and yields no
  speakers/messages; the analysis then runs on the raw text.
- Normalize: screenshot-derived transcripts get canonical Speaker-A/B labels.
  Typed transcripts keep the names the user wrote.
- Analyze: malformed JSON here fails the request (BackendMalformedResponse).
- Assemble: issues and summary are validated against AnalysisIssue /
  AnalysisSummary; invalid issues are dropped, summary counts are recomputed
  from the surviving issues and the clarity score is clamped to 0-100.

Every outbound text passes through the Content Sanitizer first, including the
user-corrected messages of a re-analysis.
"""

import asyncio
import math
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from .config import Settings, get_settings
from .errors import ClarityError, BackendEmptyResponse, BackendMalformedResponse, ValidationError
from .llm_client import ModelClient, parse_json_robust, parse_json_object, resolve_model, safe_log_content
from .prompts import build_extraction_prompt, build_parse_prompt, build_analysis_prompt
from .sanitize import redaction_counts, sanitize_text, sanitize_messages
from .schemas import (
    AnalysisDepth, AnalysisIssue, AnalysisSummary, AnalysisTask,
    ParsedMessage, ReasoningLevel, Severity,
)
from .speakers import (
    normalize_speakers, messages_from_raw, speakers_from_raw,
    renumber_messages, messages_to_transcript,
)

logger = logging.getLogger(__name__)


class PipelineStage(str, Enum):
    EXTRACT = "extract"
    PARSE = "parse"
    NORMALIZE = "normalize"
    ANALYZE = "analyze"
    ASSEMBLE = "assemble"


@dataclass
class Transcript:
    """Output of extraction + parsing (+ normalization)"""
    source_text: str = ""
    speakers: List[str] = field(default_factory=list)
    messages: List[ParsedMessage] = field(default_factory=list)
    from_image: bool = False


@dataclass
class AnalysisResult:
    """Assembled result; every collection defaults to empty, never None"""
    speakers: List[str] = field(default_factory=list)
    messages: List[ParsedMessage] = field(default_factory=list)
    issues: List[AnalysisIssue] = field(default_factory=list)
    summary: AnalysisSummary = field(default_factory=AnalysisSummary)
    clarity_score: int = 0
    model: Optional[str] = None

    def to_record(self) -> Dict[str, Any]:
        """JSON-ready fields for the analyses table"""
        return {
            "speakers": list(self.speakers),
            "messages": [m.model_dump(by_alias=True, mode="json") for m in self.messages],
            "issues": [i.model_dump(by_alias=True, mode="json") for i in self.issues],
            "summary": self.summary.model_dump(by_alias=True, mode="json"),
            "clarity_score": self.clarity_score,
            "ai_model": self.model,
        }


class KeyedLocks:
    """
    One asyncio.Lock per key, dropped once nobody holds or waits on it.

    Usage:
        async with locks.hold(conversation_id):
            ...
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] <= 0:
                self._users.pop(key, None)
                self._locks.pop(key, None)

    def __len__(self):
        return len(self._locks)


# =============================================================================
# Validation of analysis output
# =============================================================================

def validate_issues(raw_issues: Any) -> List[AnalysisIssue]:
    """Keep issues that fit the AnalysisIssue shape; give missing ids a stable value"""
    if not isinstance(raw_issues, list):
        return []

    issues: List[AnalysisIssue] = []
    for idx, item in enumerate(raw_issues, 1):
        if not isinstance(item, dict):
            logger.warning(f"Dropping non-object issue at index {idx}")
            continue
        try:
            issue = AnalysisIssue.model_validate(item)
        except PydanticValidationError as e:
            logger.warning(f"Dropping invalid issue at index {idx}: {e.error_count()} errors")
            continue
        if not issue.id:
            issue.id = f"issue_{idx}"
        issues.append(issue)
    return issues


def build_summary(raw_summary: Any, issues: List[AnalysisIssue]) -> AnalysisSummary:
    """Free-text fields come from the model; counts always come from the issues"""
    summary = AnalysisSummary()
    if isinstance(raw_summary, dict):
        try:
            summary = AnalysisSummary.model_validate(raw_summary)
        except PydanticValidationError as e:
            logger.warning(f"Discarding invalid summary: {e.error_count()} errors")

    categories: List[str] = []
    for issue in issues:
        if issue.category.value not in categories:
            categories.append(issue.category.value)

    return summary.model_copy(update={
        "critical_issues": sum(1 for i in issues if i.severity == Severity.CRITICAL),
        "moderate_issues": sum(1 for i in issues if i.severity == Severity.MODERATE),
        "minor_issues": sum(1 for i in issues if i.severity == Severity.MINOR),
        "suggestions": sum(1 for i in issues if i.suggestion or i.suggested_improvement),
        "main_categories": categories,
    })


def coerce_clarity_score(value: Any) -> int:
    """Integer 0-100; anything unreadable becomes 0"""
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, str):
        try:
            value = float(value.strip().rstrip("%"))
        except ValueError:
            return 0
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        return 0
    return max(0, min(100, int(round(value))))


def merge_speakers(declared: List[str], messages: List[ParsedMessage]) -> List[str]:
    """Declared speakers first, then any label only found on messages"""
    speakers: List[str] = []
    for label in list(declared) + [m.speaker for m in messages]:
        label = (label or "").strip()
        if label and label not in speakers:
            speakers.append(label)
    return speakers


# =============================================================================
# Orchestrator
# =============================================================================

class AnalysisOrchestrator:
    """
    Sequences the model calls for one analysis.

    Usage:
        orchestrator = AnalysisOrchestrator(model_client)
        result = await orchestrator.run(conversation)
    """

    def __init__(self, client: ModelClient, settings: Optional[Settings] = None):
        self.client = client
        self.settings = settings or get_settings()
        self.locks = KeyedLocks()

    def _provider_for(self, model_id: Optional[str]) -> str:
        return self.client.select_model(model_id).provider

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    async def extract_text(self, image_urls: List[str], fallback_text: str = "") -> Tuple[str, bool]:
        """
        Read conversation text off screenshots with the vision model.

        Falls back to fallback_text on failure when enabled and non-empty;
        otherwise the backend error propagates.

        Returns:
            (text, extracted) where extracted is False if the fallback was used
        """
        chunks: List[str] = []
        for image_url in image_urls:
            try:
                text = await self.client.invoke(
                    AnalysisTask.EXTRACT,
                    build_extraction_prompt(),
                    image_url=image_url,
                )
            except ClarityError as e:
                if self.settings.image_extraction_fallback and fallback_text.strip():
                    logger.warning(f"Extraction failed ({e.code}), falling back to supplied text")
                    return fallback_text, False
                logger.error(f"Extraction failed ({e.code}) with no fallback text")
                raise
            chunks.append(text.strip())

        extracted = "\n".join(c for c in chunks if c)
        if not extracted and fallback_text.strip():
            return fallback_text, False
        return extracted, True

    async def parse(self, text: str, language: str = "english", model_id: Optional[str] = None) -> Transcript:
        """
        Split text into speakers and messages.

        Empty or malformed model output yields an empty transcript instead of failing.
        """
        transcript = Transcript(source_text=text)
        clean = sanitize_text(text)
        redacted = redaction_counts(text)
        if redacted:
            logger.debug(f"Redacted before parse: {redacted}")
        if not clean.strip():
            return transcript

        try:
            raw = await self.client.invoke(
                AnalysisTask.PARSE,
                build_parse_prompt(clean, language),
                model_id,
            )
        except (BackendEmptyResponse, BackendMalformedResponse) as e:
            logger.warning(f"Parse stage returned no usable content ({e.code}), continuing without messages")
            raw = ""

        data, ok, error = parse_json_robust(raw)
        if not ok or not isinstance(data, dict):
            if raw:
                logger.warning(f"Parse stage JSON unusable: {error or 'not an object'} ({safe_log_content(raw)})")
            data = {}

        transcript.messages = sorted(messages_from_raw(data.get("messages")), key=lambda m: m.line_number)
        transcript.speakers = merge_speakers(speakers_from_raw(data.get("speakers")), transcript.messages)
        return transcript

    def normalize(self, transcript: Transcript) -> Transcript:
        """Canonical Speaker-A/B labels for screenshot transcripts"""
        if not transcript.from_image or not transcript.messages:
            return transcript
        result = normalize_speakers(transcript.messages)
        transcript.messages = result.messages
        transcript.speakers = result.speakers
        return transcript

    async def analyze(
        self,
        speakers: List[str],
        messages: List[ParsedMessage],
        fallback_text: str = "",
        language: str = "english",
        analysis_depth: AnalysisDepth = AnalysisDepth.STANDARD,
        reasoning_level: ReasoningLevel = ReasoningLevel.STANDARD,
        model_id: Optional[str] = None,
    ) -> AnalysisResult:
        """
        Run the issue-analysis call and assemble the result.

        Contents and speaker labels are masked in the prompt only; the result
        keeps the labels as given.

        Raises:
            ValidationError: nothing to analyze
            BackendMalformedResponse: analysis JSON unreadable
        """
        clean_messages = sanitize_messages(messages)
        if clean_messages:
            conversation_text = messages_to_transcript(clean_messages, numbered=True)
        else:
            conversation_text = sanitize_text(fallback_text)

        if not conversation_text.strip():
            raise ValidationError("The conversation is empty. Add some messages and try again.")

        model = resolve_model(model_id, self.settings.default_model)
        prompt = build_analysis_prompt(
            conversation_text,
            speakers=[sanitize_text(s) for s in speakers],
            language=language,
            analysis_depth=analysis_depth,
            reasoning_level=reasoning_level,
        )
        raw = await self.client.invoke(AnalysisTask.ANALYZE, prompt, model)
        data = parse_json_object(raw, provider=self._provider_for(model))

        issues = validate_issues(data.get("issues"))
        summary = build_summary(data.get("summary"), issues)
        score = coerce_clarity_score(data.get("clarityScore", data.get("clarity_score")))

        logger.info(f"Analysis assembled: {len(issues)} issues, clarity={score}, model={model.value}")
        return AnalysisResult(
            speakers=merge_speakers(speakers, messages),
            messages=list(messages),
            issues=issues,
            summary=summary,
            clarity_score=score,
            model=model.value,
        )

    # -------------------------------------------------------------------------
    # Pipelines
    # -------------------------------------------------------------------------

    async def prepare_transcript(self, conversation) -> Transcript:
        """ExtractText -> Parse -> Normalize for a stored conversation"""
        text = conversation.text or ""
        image_urls = list(conversation.image_urls or [])

        stage = PipelineStage.EXTRACT
        try:
            from_image = False
            if image_urls:
                text, from_image = await self.extract_text(image_urls, fallback_text=text)

            stage = PipelineStage.PARSE
            transcript = await self.parse(text, conversation.language, conversation.ai_model)
            transcript.from_image = from_image

            stage = PipelineStage.NORMALIZE
            return self.normalize(transcript)
        except ClarityError as e:
            logger.warning(f"Pipeline failed at {stage.value}: {e.code}")
            raise

    async def run(self, conversation) -> AnalysisResult:
        """
        Full pipeline for a stored conversation.

        Args:
            conversation: Conversation record (text, image_urls, language,
                analysis_depth, reasoning_level, ai_model)
        """
        transcript = await self.prepare_transcript(conversation)
        try:
            return await self.analyze(
                transcript.speakers,
                transcript.messages,
                fallback_text=transcript.source_text,
                language=conversation.language,
                analysis_depth=conversation.analysis_depth,
                reasoning_level=conversation.reasoning_level,
                model_id=conversation.ai_model,
            )
        except ClarityError as e:
            logger.warning(f"Pipeline failed at {PipelineStage.ANALYZE.value}: {e.code}")
            raise

    async def reanalyze(
        self,
        conversation,
        speakers: List[str],
        messages: List[ParsedMessage],
    ) -> AnalysisResult:
        """
        Analyze stage only, on user-corrected speakers/messages.

        Messages are renumbered to their display order; no extraction or parsing.
        """
        ordered = renumber_messages(messages)
        return await self.analyze(
            merge_speakers(speakers, ordered),
            ordered,
            language=conversation.language,
            analysis_depth=conversation.analysis_depth,
            reasoning_level=conversation.reasoning_level,
            model_id=conversation.ai_model,
        )
