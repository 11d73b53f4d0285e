"""
Model Client Adapter
====================

Uniform entry point for every model-backend call:

    client = ModelClient(settings)
    raw = await client.invoke(AnalysisTask.PARSE, prompt, "gpt-4o-mini")
    data = parse_json_object(raw)

Supports:
- gpt-4o-mini (OpenAI, fast/cheap, default)
- gpt-4o (OpenAI, high accuracy, vision capable)
- claude-3-5-sonnet (Anthropic, alternate provider, premium plans)

An attached image always routes to the vision-capable backend, whatever
model was requested. Empty responses raise BackendEmptyResponse; JSON that
cannot be decoded raises BackendMalformedResponse. Callers decide what to
fall back to.

The client is constructed explicitly (at startup, or by a test) and owns
one httpx.AsyncClient shared by both providers; ``close()`` releases it.
"""

import json
import logging
import hashlib
from dataclasses import dataclass
from typing import Optional, Dict, Any, Tuple, List, Union

import httpx

from .config import Settings, get_settings
from .errors import (
    BackendEmptyResponse,
    BackendMalformedResponse,
    BackendContentPolicyError,
    is_content_refusal,
)
from .llm import OpenAIChatClient, AnthropicMessagesClient, ensure_backend_error
from .prompts import Prompt
from .schemas import AIModel, AnalysisTask, PlanTier

logger = logging.getLogger(__name__)


# =============================================================================
# Model registry
# =============================================================================

@dataclass(frozen=True)
class ModelSpec:
    """How to call one selectable model"""
    model_id: AIModel
    provider: str
    api_model: str
    max_tokens: int
    temperature: float
    system_preamble: str
    vision: bool = False
    min_plan: PlanTier = PlanTier.FREE


MODEL_REGISTRY: Dict[AIModel, ModelSpec] = {
    AIModel.GPT_4O_MINI: ModelSpec(
        model_id=AIModel.GPT_4O_MINI,
        provider="openai",
        api_model="gpt-4o-mini",
        max_tokens=2000,
        temperature=0.3,
        system_preamble=(
            "You are an expert conversation analyst specializing in identifying "
            "miscommunications and improving clarity. Always respond with valid JSON."
        ),
    ),
    AIModel.GPT_4O: ModelSpec(
        model_id=AIModel.GPT_4O,
        provider="openai",
        api_model="gpt-4o",
        max_tokens=4000,
        temperature=0.2,
        system_preamble=(
            "You are an expert conversation analyst with advanced reasoning capabilities. "
            "Provide deep, nuanced analysis of communication patterns and potential issues. "
            "Always respond with valid JSON."
        ),
        vision=True,
        min_plan=PlanTier.PRO,
    ),
    AIModel.CLAUDE_3_5_SONNET: ModelSpec(
        model_id=AIModel.CLAUDE_3_5_SONNET,
        provider="anthropic",
        api_model="claude-3-5-sonnet-20241022",
        max_tokens=4000,
        temperature=0.2,
        system_preamble=(
            "You are an expert conversation analyst with superior understanding of human "
            "communication nuances. Always respond with valid JSON only, no prose."
        ),
        min_plan=PlanTier.PREMIUM,
    ),
}

# Extraction output is plain text and short
EXTRACTION_MAX_TOKENS = 1000


def resolve_model(model_id: Optional[Union[str, AIModel]], default: AIModel = AIModel.GPT_4O_MINI) -> AIModel:
    """Map a requested model id onto a registry entry; unknown ids get the default."""
    if model_id is None:
        return default
    try:
        return AIModel(model_id)
    except ValueError:
        logger.info(f"Unknown model id {str(model_id)[:40]!r}, using {default.value}")
        return default


def get_model_spec(model_id: Optional[Union[str, AIModel]], default: AIModel = AIModel.GPT_4O_MINI) -> ModelSpec:
    return MODEL_REGISTRY[resolve_model(model_id, default)]


# =============================================================================
# Robust JSON Parser
# =============================================================================

def parse_json_robust(content: str) -> Tuple[Optional[Any], bool, str]:
    """
    Parse JSON content robustly, handling common LLM output issues.

    Handles:
    - Empty content
    - Markdown code fences (```json ... ```)
    - Prose before or after the JSON object

    Returns:
        Tuple of (parsed_value, success, error_message)
    """
    if not content or not content.strip():
        return None, False, "Empty content"

    text = content.strip()

    if text.startswith("```"):
        first_newline = text.find("\n")
        closing = text.rfind("```")
        if first_newline != -1 and closing > first_newline:
            text = text[first_newline + 1:closing].strip()

    try:
        return json.loads(text), True, ""
    except json.JSONDecodeError as e:
        first_error = str(e)

    # Scan for the first decodable object starting at any "{"
    decoder = json.JSONDecoder()
    idx = text.find("{")
    while idx != -1:
        try:
            value, _ = decoder.raw_decode(text, idx)
            return value, True, ""
        except json.JSONDecodeError:
            idx = text.find("{", idx + 1)

    return None, False, first_error


def parse_json_object(content: str, provider: Optional[str] = None) -> Dict[str, Any]:
    """
    Decode a JSON object from raw model output.

    Raises:
        BackendMalformedResponse: content is not a JSON object
    """
    data, ok, error = parse_json_robust(content)
    if not ok or not isinstance(data, dict):
        logger.warning(f"Malformed model JSON: {error or 'not an object'} ({safe_log_content(content)})")
        raise BackendMalformedResponse(provider=provider)
    return data


def safe_log_content(content: Optional[str], max_chars: int = 80) -> str:
    """
    Log-safe representation of model output: length, hash, short preview.
    """
    if not content:
        return "(empty)"

    content_hash = hashlib.sha256(content.encode()).hexdigest()[:12]
    preview = content[:max_chars].replace('\n', ' ')

    return f"len={len(content)} hash={content_hash} preview='{preview}...'"


# =============================================================================
# Client
# =============================================================================

class ModelClient:
    """
    Dispatches a task to the backend selected by model id.

    Usage:
        client = ModelClient(get_settings())
        text = await client.invoke(AnalysisTask.ANALYZE, prompt, "gpt-4o")
        await client.close()
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or get_settings()
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=self.settings.llm_timeout)

        self.openai = OpenAIChatClient(
            api_key=self.settings.openai_api_key,
            base_url=self.settings.openai_base_url,
            http_client=self._http,
        )
        self.anthropic = AnthropicMessagesClient(
            api_key=self.settings.anthropic_api_key,
            base_url=self.settings.anthropic_base_url,
            http_client=self._http,
            api_version=self.settings.anthropic_version,
        )

    async def close(self):
        """Close the shared HTTP client (only if this instance created it)"""
        if self._owns_http and not self._http.is_closed:
            await self._http.aclose()

    def configured_providers(self) -> List[str]:
        return [p.provider for p in (self.openai, self.anthropic) if p.enabled]

    def select_model(self, model_id: Optional[Union[str, AIModel]], has_image: bool = False) -> ModelSpec:
        """
        Pick the registry entry for a request.

        An image forces the configured vision model regardless of model_id.
        """
        if has_image:
            spec = MODEL_REGISTRY[self.settings.vision_model]
            if spec.vision:
                return spec
            return MODEL_REGISTRY[AIModel.GPT_4O]
        return get_model_spec(model_id, self.settings.default_model)

    async def invoke(
        self,
        task: AnalysisTask,
        prompt: Union[Prompt, str],
        model_id: Optional[Union[str, AIModel]] = None,
        image_url: Optional[str] = None,
    ) -> str:
        """
        Run one model task and return the raw response text.

        Args:
            task: AnalysisTask (EXTRACT requires image_url)
            prompt: Prompt pair, or bare user text
            model_id: Requested model; unknown ids use the default
            image_url: Screenshot (URL or data URI)

        Raises:
            BackendError subclass on any failure, BackendEmptyResponse on empty text
        """
        if isinstance(prompt, str):
            prompt = Prompt(system="", user=prompt)

        if task == AnalysisTask.EXTRACT and not image_url:
            raise ValueError("Extraction requires an image")

        spec = self.select_model(model_id, has_image=bool(image_url))
        json_mode = task != AnalysisTask.EXTRACT

        system_prompt = prompt.system
        if json_mode:
            system_prompt = f"{spec.system_preamble}\n\n{prompt.system}".strip()
        max_tokens = EXTRACTION_MAX_TOKENS if task == AnalysisTask.EXTRACT else spec.max_tokens

        logger.info(f"Invoking {spec.api_model} for {task.value}")

        try:
            if spec.provider == "anthropic":
                result = await self.anthropic.complete(
                    model=spec.api_model,
                    system_prompt=system_prompt,
                    user_prompt=prompt.user,
                    max_tokens=max_tokens,
                    temperature=spec.temperature,
                )
            else:
                result = await self.openai.complete(
                    model=spec.api_model,
                    system_prompt=system_prompt or None,
                    user_prompt=prompt.user,
                    image_url=image_url,
                    json_mode=json_mode,
                    max_tokens=max_tokens,
                    temperature=spec.temperature,
                )
        except Exception as e:
            raise ensure_backend_error(e, spec.provider) from e

        content = (result.content or "").strip()
        if not content:
            raise BackendEmptyResponse(provider=spec.provider)

        # Plain-text refusal in place of requested JSON. Extraction output is
        # the conversation itself, so its wording is never checked.
        if json_mode and len(content) < 400 and not parse_json_robust(content)[1]:
            if is_content_refusal(content):
                raise BackendContentPolicyError(provider=spec.provider)

        logger.debug(
            f"{spec.api_model} {task.value} response: {safe_log_content(content)} "
            f"tokens_in={result.input_tokens} tokens_out={result.output_tokens}"
        )
        return content
