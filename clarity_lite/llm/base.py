"""
Provider Base Client
====================

Shared plumbing for the model backends: one ``httpx.AsyncClient`` (and so
one connection pool) per process, bounded timeouts, no retries, and HTTP
failures translated into the service's error taxonomy.
"""

import httpx
import logging
from typing import Optional, Dict, Any
from dataclasses import dataclass

from ..errors import BackendError, BackendMalformedResponse, classify_backend_error

logger = logging.getLogger(__name__)


@dataclass
class LLMCallResult:
    """Result from a provider call"""
    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    stop_reason: Optional[str] = None
    raw_response: Optional[Dict] = None


class ProviderClient:
    """
    Base async client for a JSON-over-HTTP model provider.

    The HTTP client is injected so every provider shares one pool; it is
    owned (and closed) by whoever created it.
    """

    provider: str = "provider"

    def __init__(self, api_key: Optional[str], base_url: str, http_client: httpx.AsyncClient):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._http = http_client

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> Dict[str, str]:
        raise NotImplementedError

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST a JSON payload and return the decoded body.

        Raises:
            BackendError subclass for auth, throttling, refusals, transport failures
        """
        if not self.api_key:
            raise classify_backend_error(401, None, self.provider)

        try:
            response = await self._http.post(
                f"{self.base_url}{path}",
                json=payload,
                headers=self._headers(),
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            body = e.response.text[:2000]
            logger.error(f"{self.provider} API error: {status}")
            raise classify_backend_error(status, body, self.provider) from e
        except httpx.TimeoutException as e:
            logger.error(f"{self.provider} request timed out")
            raise classify_backend_error(None, None, self.provider) from e
        except httpx.TransportError as e:
            logger.error(f"{self.provider} transport failure: {e.__class__.__name__}")
            raise classify_backend_error(None, None, self.provider) from e

        try:
            data = response.json()
        except ValueError as e:
            raise BackendMalformedResponse(provider=self.provider, status=response.status_code) from e

        if not isinstance(data, dict):
            raise BackendMalformedResponse(provider=self.provider, status=response.status_code)
        return data

    async def complete(self, *args, **kwargs) -> LLMCallResult:
        raise NotImplementedError


def ensure_backend_error(exc: Exception, provider: str) -> BackendError:
    """Wrap anything unexpected from a provider so callers only see BackendError."""
    if isinstance(exc, BackendError):
        return exc
    logger.error(f"{provider} call failed: {exc.__class__.__name__}")
    return BackendError(provider=provider)
