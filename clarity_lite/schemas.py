"""
Pydantic Schemas for Clarity Service
====================================

Stable schemas for input/output. JSON on the wire is camelCase
(``clarityScore``, ``lineNumber``); Python attributes are snake_case.

The AnalysisIssue / AnalysisSummary models double as the validation step
between raw model-backend JSON and the persisted record: anything that does
not fit the documented shape is rejected here rather than stored.
"""

from typing import List, Optional, Any
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialized with camelCase aliases"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# ENUMS
# =============================================================================

class AIModel(str, Enum):
    """Selectable model identifiers"""
    GPT_4O_MINI = "gpt-4o-mini"              # fast/cheap tier
    GPT_4O = "gpt-4o"                        # high-accuracy tier, vision capable
    CLAUDE_3_5_SONNET = "claude-3-5-sonnet"  # alternate-provider tier


class ReasoningLevel(str, Enum):
    """How much instruction depth the analysis prompt carries"""
    STANDARD = "standard"
    DETAILED = "detailed"
    COMPREHENSIVE = "comprehensive"


class AnalysisDepth(str, Enum):
    STANDARD = "standard"
    DEEP = "deep"
    CONTEXT = "context"


class Severity(str, Enum):
    """Issue severity levels"""
    CRITICAL = "critical"
    MODERATE = "moderate"
    MINOR = "minor"


class IssueCategory(str, Enum):
    """Miscommunication taxonomy"""
    ASSUMPTION_GAP = "assumption_gap"
    AMBIGUOUS_LANGUAGE = "ambiguous_language"
    TONE_MISMATCH = "tone_mismatch"
    IMPLICIT_MEANING = "implicit_meaning"
    OTHER = "other"


class PlanTier(str, Enum):
    FREE = "free"
    PRO = "pro"
    PREMIUM = "premium"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    INCOMPLETE = "incomplete"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INACTIVE = "inactive"


class AnalysisTask(str, Enum):
    """Model backend tasks"""
    EXTRACT = "extract"
    PARSE = "parse"
    ANALYZE = "analyze"


class DeploymentMode(str, Enum):
    PRODUCTION = "production"
    LOCAL = "local"


class UsageAction(str, Enum):
    ANALYSIS = "analysis"


# =============================================================================
# CONVERSATION CONTENT
# =============================================================================

class ParsedMessage(CamelModel):
    """One message of a parsed conversation. line_number is 1-based display order."""
    speaker: str = Field(..., min_length=1, max_length=200)
    content: str = Field("", max_length=20000)
    timestamp: Optional[str] = None
    line_number: int = Field(0, ge=0)

    @field_validator("speaker", mode="before")
    @classmethod
    def _strip_speaker(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("content", mode="before")
    @classmethod
    def _coerce_content(cls, v: Any) -> Any:
        return "" if v is None else v


class SpeakerInterpretation(CamelModel):
    speaker: str
    interpretation: str = ""


class AnalysisIssue(CamelModel):
    """
    A single detected miscommunication.

    Backends disagree on field names: some put the severity under ``type``,
    others put the category there. Both are accepted; anything else that is
    not a known severity is rejected.
    """
    id: str = ""
    severity: Severity
    category: IssueCategory = IssueCategory.OTHER
    title: str = ""
    description: str = ""
    highlighted_text: str = ""
    location: str = ""
    line_numbers: List[int] = Field(default_factory=list)
    why_confusing: List[str] = Field(default_factory=list)
    suggestion: str = ""
    suggested_improvement: str = ""
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    speaker_interpretations: List[SpeakerInterpretation] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _resolve_type_field(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        legacy_type = data.pop("type", None)
        if isinstance(legacy_type, str):
            lowered = legacy_type.strip().lower()
            if lowered in {s.value for s in Severity}:
                data.setdefault("severity", lowered)
            elif lowered in {c.value for c in IssueCategory}:
                data.setdefault("category", lowered)
        return data

    @field_validator("severity", mode="before")
    @classmethod
    def _lower_severity(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("category", mode="before")
    @classmethod
    def _known_category(cls, v: Any) -> Any:
        if v is None:
            return IssueCategory.OTHER
        if isinstance(v, str):
            lowered = v.strip().lower()
            if lowered in {c.value for c in IssueCategory}:
                return lowered
            return IssueCategory.OTHER
        return v

    @field_validator("why_confusing", mode="before")
    @classmethod
    def _listify(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            return [v] if v.strip() else []
        return v

    @field_validator("line_numbers", mode="before")
    @classmethod
    def _int_lines(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, (int, float)):
            return [int(v)]
        return v


class AnalysisSummary(CamelModel):
    """Aggregate counts plus free-text insights"""
    critical_issues: int = 0
    moderate_issues: int = 0
    minor_issues: int = 0
    suggestions: int = 0
    main_categories: List[str] = Field(default_factory=list)
    overall_clarity: Optional[float] = None
    key_insights: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    communication_patterns: List[str] = Field(default_factory=list)


# =============================================================================
# INPUT SCHEMAS
# =============================================================================

class CreateConversationRequest(CamelModel):
    """Request body for POST /conversations"""
    text: str = Field("", max_length=50000)
    image_url: Optional[str] = Field(None, max_length=10_000_000)
    analysis_depth: AnalysisDepth = AnalysisDepth.STANDARD
    language: str = Field("english", min_length=1, max_length=40)
    ai_model: Optional[str] = Field(None, max_length=64)
    reasoning_level: ReasoningLevel = ReasoningLevel.STANDARD

    @model_validator(mode="after")
    def _require_content(self):
        if not self.text.strip() and not self.image_url:
            raise ValueError("Either text or imageUrl is required")
        return self


class ReanalyzeRequest(CamelModel):
    """User-corrected speakers and messages"""
    speakers: List[str] = Field(default_factory=list)
    messages: List[ParsedMessage] = Field(..., min_length=1)


class CreateShareRequest(CamelModel):
    expires_in_days: Optional[int] = Field(None, ge=0, le=365)


class CreateSubscriptionRequest(CamelModel):
    plan_id: PlanTier


# =============================================================================
# OUTPUT SCHEMAS
# =============================================================================

class ConversationOut(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: str
    user_id: str
    text: str
    image_urls: List[str] = Field(default_factory=list)
    analysis_depth: AnalysisDepth
    language: str
    ai_model: AIModel
    reasoning_level: ReasoningLevel
    created_at: Optional[datetime] = None


class AnalysisOut(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: str
    conversation_id: str
    speakers: List[str] = Field(default_factory=list)
    issues: List[AnalysisIssue] = Field(default_factory=list)
    summary: AnalysisSummary = Field(default_factory=AnalysisSummary)
    clarity_score: int = Field(0, ge=0, le=100)
    created_at: Optional[datetime] = None


class CreateConversationResponse(CamelModel):
    conversation: ConversationOut
    speakers: Optional[List[str]] = None
    messages: Optional[List[ParsedMessage]] = None


class ConversationEnvelope(CamelModel):
    conversation: ConversationOut


class AnalysisEnvelope(CamelModel):
    analysis: AnalysisOut


class AnalyzeResponse(CamelModel):
    analysis: AnalysisOut
    messages: List[ParsedMessage] = Field(default_factory=list)


class ShareInfo(CamelModel):
    token: str
    view_count: int
    is_active: bool
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None


class ShareLinkResponse(CamelModel):
    share_info: ShareInfo
    path: str


class SharedAnalysisResponse(CamelModel):
    conversation: ConversationOut
    analysis: AnalysisOut
    share_info: ShareInfo


class SubscriptionPlanOut(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: str
    name: str
    description: str = ""
    monthly_analysis_limit: int
    price: int
    features: List[str] = Field(default_factory=list)


class SubscriptionStatusResponse(CamelModel):
    subscription_plan: PlanTier
    subscription_status: SubscriptionStatus
    monthly_limit: int
    monthly_usage: int
    remaining: int
    soft_limit: bool = Field(False, description="Plan is allowed past its nominal limit")
    subscription_ends_at: Optional[datetime] = None


class CreateSubscriptionResponse(CamelModel):
    subscription_id: str
    status: SubscriptionStatus
    client_secret: Optional[str] = None


class HealthResponse(CamelModel):
    """Health check response"""
    status: str = Field(..., description="Service status")
    version: str = Field(..., description="Service version")
    providers: List[str] = Field(default_factory=list, description="Model backends with credentials")
    timestamp: datetime = Field(..., description="Current timestamp")


class ErrorResponse(BaseModel):
    """Every failure path renders this shape"""
    message: str = Field(..., description="Human-readable error message")
    error: str = Field(..., description="Machine-readable error code")
