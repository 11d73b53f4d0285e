"""
Anthropic Messages Client
=========================

Alternate-provider tier (claude-3-5-sonnet). Text only: requests that
carry an image are routed to the vision backend before they get here.
"""

import logging
from typing import Optional, Dict, Any

from .base import ProviderClient, LLMCallResult
from ..errors import BackendContentPolicyError, BackendEmptyResponse, BackendMalformedResponse

logger = logging.getLogger(__name__)


class AnthropicMessagesClient(ProviderClient):
    """POST /messages"""

    provider = "anthropic"

    def __init__(self, api_key, base_url, http_client, api_version: str = "2023-06-01"):
        super().__init__(api_key, base_url, http_client)
        self.api_version = api_version

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.api_key or "",
            "anthropic-version": self.api_version,
            "content-type": "application/json",
        }

    async def complete(
        self,
        model: str,
        system_prompt: Optional[str],
        user_prompt: str,
        max_tokens: int = 4000,
        temperature: float = 0.2,
    ) -> LLMCallResult:
        payload: Dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": user_prompt}],
        }
        if system_prompt:
            payload["system"] = system_prompt

        data = await self._post("/messages", payload)

        if data.get("stop_reason") == "refusal":
            raise BackendContentPolicyError(provider=self.provider)

        blocks = data.get("content")
        if not isinstance(blocks, list):
            raise BackendMalformedResponse(provider=self.provider)

        first = blocks[0] if blocks else None
        if not isinstance(first, dict) or first.get("type") != "text":
            logger.warning("Anthropic returned no text block")
            raise BackendEmptyResponse(provider=self.provider)

        content = first.get("text") or ""
        if not content.strip():
            raise BackendEmptyResponse(provider=self.provider)

        usage = data.get("usage") or {}
        return LLMCallResult(
            content=content,
            model=data.get("model", model),
            input_tokens=usage.get("input_tokens", 0),
            output_tokens=usage.get("output_tokens", 0),
            stop_reason=data.get("stop_reason"),
            raw_response=data,
        )
