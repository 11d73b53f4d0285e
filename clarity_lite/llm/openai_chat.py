"""
OpenAI Chat Completions Client
==============================

Used for the fast tier (gpt-4o-mini), the high-accuracy tier (gpt-4o)
and screenshot extraction (gpt-4o is the vision-capable backend).
"""

import logging
from typing import Optional, Dict, Any, List, Union

from .base import ProviderClient, LLMCallResult
from ..errors import BackendContentPolicyError, BackendEmptyResponse, BackendMalformedResponse

logger = logging.getLogger(__name__)


class OpenAIChatClient(ProviderClient):
    """POST /chat/completions"""

    provider = "openai"

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    @staticmethod
    def build_messages(
        system_prompt: Optional[str],
        user_prompt: str,
        image_url: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Build the messages array; an image turns the user turn into content parts."""
        messages: List[Dict[str, Any]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})

        user_content: Union[str, List[Dict[str, Any]]] = user_prompt
        if image_url:
            user_content = [
                {"type": "text", "text": user_prompt},
                {"type": "image_url", "image_url": {"url": image_url}},
            ]
        messages.append({"role": "user", "content": user_content})
        return messages

    async def complete(
        self,
        model: str,
        system_prompt: Optional[str],
        user_prompt: str,
        image_url: Optional[str] = None,
        json_mode: bool = False,
        max_tokens: int = 2000,
        temperature: float = 0.3,
    ) -> LLMCallResult:
        payload: Dict[str, Any] = {
            "model": model,
            "messages": self.build_messages(system_prompt, user_prompt, image_url),
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        data = await self._post("/chat/completions", payload)

        try:
            choice = data["choices"][0]
            message = choice["message"]
        except (KeyError, IndexError, TypeError) as e:
            logger.error(f"OpenAI response missing choices: {e}")
            raise BackendMalformedResponse(provider=self.provider) from e

        # Structured refusal signal; preferred over wording checks
        if message.get("refusal") or choice.get("finish_reason") == "content_filter":
            raise BackendContentPolicyError(provider=self.provider)

        content = message.get("content")
        if isinstance(content, list):
            content = "".join(
                part.get("text", "") for part in content
                if isinstance(part, dict) and part.get("type") == "text"
            )
        if not isinstance(content, str) or not content.strip():
            raise BackendEmptyResponse(provider=self.provider)

        usage = data.get("usage") or {}
        return LLMCallResult(
            content=content,
            model=data.get("model", model),
            input_tokens=usage.get("prompt_tokens", 0),
            output_tokens=usage.get("completion_tokens", 0),
            stop_reason=choice.get("finish_reason"),
            raw_response=data,
        )
