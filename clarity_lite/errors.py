"""
Error Taxonomy
==============

Every failure the service surfaces maps to one of these classes. The API
layer renders them as ``{"message": ..., "error": <code>, ...}``; raw
backend bodies, stack traces and credentials never reach a response.

``classify_backend_error`` is the only place that knows how a provider's
HTTP status codes and refusal wording map onto the taxonomy.
"""

import re
from typing import Any, Dict, Optional, List


class ClarityError(Exception):
    """Base class for user-facing errors."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "Something went wrong. Please try again."

    def __init__(self, message: Optional[str] = None, **extra: Any):
        self.message = message or self.default_message
        self.extra: Dict[str, Any] = extra
        super().__init__(self.message)

    def to_payload(self) -> Dict[str, Any]:
        return {"message": self.message, "error": self.code, **self.extra}


class ValidationError(ClarityError):
    status_code = 400
    code = "validation_error"
    default_message = "Invalid request data"


class AuthenticationError(ClarityError):
    status_code = 401
    code = "unauthorized"
    default_message = "Authentication required"


class NotFoundError(ClarityError):
    status_code = 404
    code = "not_found"
    default_message = "Not found"


class PlanRequiredError(ClarityError):
    status_code = 403
    code = "plan_required"
    default_message = "This option requires a higher subscription plan"


class QuotaExceededError(ClarityError):
    status_code = 403
    code = "quota_exceeded"

    def __init__(self, limit: int, usage: int, plan: str):
        super().__init__(
            f"Monthly analysis limit reached ({usage}/{limit}). Upgrade your plan to continue.",
            limit=limit,
            usage=usage,
            plan=plan,
        )


class BillingError(ClarityError):
    status_code = 502
    code = "billing_error"
    default_message = "The billing provider could not complete the request."


# =============================================================================
# Model backend errors
# =============================================================================

class BackendError(ClarityError):
    """Any failure talking to a model backend."""
    status_code = 502
    code = "backend_error"
    default_message = "The analysis service is unavailable. Please try again."

    def __init__(self, message: Optional[str] = None, provider: Optional[str] = None,
                 status: Optional[int] = None):
        super().__init__(message)
        # Kept off the payload: internal diagnostics only
        self.provider = provider
        self.status = status


class BackendAuthError(BackendError):
    code = "backend_auth_error"
    default_message = (
        "The analysis service is misconfigured (invalid or missing API credentials). "
        "Please contact support."
    )


class BackendRateLimitError(BackendError):
    status_code = 429
    code = "backend_rate_limited"
    default_message = "The analysis service is busy. Please try again in a moment."


class BackendContentPolicyError(BackendError):
    status_code = 422
    code = "content_policy"
    default_message = (
        "The AI provider declined to process this conversation. Remove sensitive or "
        "explicit content and try again."
    )


class BackendEmptyResponse(BackendError):
    code = "backend_empty_response"
    default_message = "The analysis service returned an empty response. Please try again."


class BackendMalformedResponse(BackendError):
    code = "backend_malformed_response"
    default_message = "The analysis service returned an unreadable response. Please try again."


class BackendUnavailableError(BackendError):
    code = "backend_unavailable"


# =============================================================================
# Classification
# =============================================================================

# Refusal wording observed from providers. Brittle by nature: replace with a
# structured signal if a provider ever exposes one.
CONTENT_POLICY_PATTERNS: List[re.Pattern] = [
    re.compile(r"content[_ ]policy", re.IGNORECASE),
    re.compile(r"content[_ ]filter", re.IGNORECASE),
    re.compile(r"safety (system|policy|guidelines)", re.IGNORECASE),
    re.compile(r"flagged", re.IGNORECASE),
    re.compile(r"violat(es|ion|ing) (our|the) (usage )?polic", re.IGNORECASE),
    re.compile(r"I(?:'m| am) (?:sorry|unable)[^.]{0,40}(?:can(?:no|')t|unable to) (?:help|assist|comply)", re.IGNORECASE),
]

# Status codes that mean "content refused" for a given provider
CONTENT_POLICY_STATUS = {
    "openai": {400},       # only together with a matching pattern
    "anthropic": {400},
}


def is_content_refusal(text: Optional[str]) -> bool:
    """True if text looks like a provider refusing the content."""
    if not text:
        return False
    return any(p.search(text) for p in CONTENT_POLICY_PATTERNS)


def classify_backend_error(
    status_code: Optional[int],
    body_text: Optional[str] = None,
    provider: Optional[str] = None,
) -> BackendError:
    """
    Map a backend HTTP failure to a BackendError subclass.

    Args:
        status_code: HTTP status from the provider (None for transport failures)
        body_text: Provider error body, used only for refusal matching
        provider: "openai" | "anthropic"

    Returns:
        BackendError instance (caller raises it)
    """
    if status_code is None:
        return BackendUnavailableError(provider=provider)

    if status_code in (401, 403):
        return BackendAuthError(provider=provider, status=status_code)

    if status_code == 429:
        return BackendRateLimitError(provider=provider, status=status_code)

    if status_code in CONTENT_POLICY_STATUS.get(provider or "", set()) and is_content_refusal(body_text):
        return BackendContentPolicyError(provider=provider, status=status_code)

    if status_code >= 500 or status_code == 408:
        return BackendUnavailableError(provider=provider, status=status_code)

    return BackendError(provider=provider, status=status_code)
