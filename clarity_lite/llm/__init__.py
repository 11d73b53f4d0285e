"""
LLM Module
==========

Provider clients for the model backends.

Architecture:
- OpenAIChatClient: gpt-4o-mini (fast), gpt-4o (accurate, vision)
- AnthropicMessagesClient: claude-3-5-sonnet (alternate provider)

Both share a single httpx.AsyncClient owned by ModelClient
(see clarity_lite.llm_client), which is what the rest of the service uses.
"""

from .base import ProviderClient, LLMCallResult, ensure_backend_error
from .openai_chat import OpenAIChatClient
from .anthropic_messages import AnthropicMessagesClient

__all__ = [
    "ProviderClient",
    "LLMCallResult",
    "ensure_backend_error",
    "OpenAIChatClient",
    "AnthropicMessagesClient",
]
