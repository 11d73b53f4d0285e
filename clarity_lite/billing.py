"""
Billing Provider Client (Stripe)
================================

Minimal Stripe REST calls over httpx (form-encoded, Bearer secret key):
- create customer
- create subscription (default_incomplete; client confirms the payment
  intent with the returned client secret)
- retrieve subscription (status sync)
- cancel at period end

Webhook delivery and invoice reconciliation are handled by the billing
provider's own tooling; this module only keeps the user's plan/status in step
when the user asks for it.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

import httpx
from sqlalchemy.orm import Session

from .config import Settings, get_settings
from .db.models import User
from .db.repository import get_plan
from .errors import BillingError, ValidationError
from .schemas import PlanTier, SubscriptionStatus

logger = logging.getLogger(__name__)


# Stripe subscription statuses -> ours
STRIPE_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.ACTIVE,
    "incomplete": SubscriptionStatus.INCOMPLETE,
    "incomplete_expired": SubscriptionStatus.CANCELED,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "paused": SubscriptionStatus.INACTIVE,
}


def map_stripe_status(status: Optional[str]) -> SubscriptionStatus:
    return STRIPE_STATUS_MAP.get(status or "", SubscriptionStatus.INACTIVE)


def _timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.utcfromtimestamp(value)
    return None


class BillingClient:
    """
    Usage:
        billing = BillingClient(settings)
        sub = await billing.create_subscription(customer_id, price_id, metadata)
        await billing.close()
    """

    def __init__(self, settings: Optional[Settings] = None, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings or get_settings()
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=30)

    @property
    def enabled(self) -> bool:
        return bool(self.settings.stripe_secret_key)

    async def close(self):
        if self._owns_http and not self._http.is_closed:
            await self._http.aclose()

    async def _request(self, method: str, path: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self.enabled:
            raise BillingError("Billing is not configured on this server.")

        url = f"{self.settings.stripe_base_url.rstrip('/')}{path}"
        headers = {"Authorization": f"Bearer {self.settings.stripe_secret_key}"}
        try:
            response = await self._http.request(method, url, data=data, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            try:
                detail = e.response.json().get("error", {}).get("message")
            except ValueError:
                detail = None
            logger.error(f"Stripe {method} {path} failed: {e.response.status_code} {detail or ''}".strip())
            raise BillingError() from e
        except httpx.HTTPError as e:
            logger.error(f"Stripe {method} {path} transport error: {type(e).__name__}")
            raise BillingError() from e

        try:
            body = response.json()
        except ValueError as e:
            raise BillingError() from e
        if not isinstance(body, dict):
            raise BillingError()
        return body

    async def create_customer(self, user_id: str, email: Optional[str] = None) -> str:
        data = {"metadata[user_id]": user_id}
        if email:
            data["email"] = email
        body = await self._request("POST", "/customers", data)
        return body["id"]

    async def create_subscription(self, customer_id: str, price_id: str, metadata: Dict[str, str]) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "customer": customer_id,
            "items[0][price]": price_id,
            "payment_behavior": "default_incomplete",
            "expand[]": ["latest_invoice.payment_intent"],
        }
        for key, value in metadata.items():
            data[f"metadata[{key}]"] = value
        return await self._request("POST", "/subscriptions", data)

    async def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/subscriptions/{subscription_id}")

    async def cancel_subscription(self, subscription_id: str) -> Dict[str, Any]:
        """Cancel at the end of the current billing period"""
        return await self._request(
            "POST", f"/subscriptions/{subscription_id}", {"cancel_at_period_end": "true"}
        )


# =============================================================================
# User-level operations
# =============================================================================

def _client_secret(subscription: Dict[str, Any]) -> Optional[str]:
    invoice = subscription.get("latest_invoice")
    if isinstance(invoice, dict):
        intent = invoice.get("payment_intent")
        if isinstance(intent, dict):
            return intent.get("client_secret")
    return None


def apply_subscription(user: User, subscription: Dict[str, Any]):
    """Copy Stripe subscription state onto the user"""
    status = map_stripe_status(subscription.get("status"))
    user.stripe_subscription_id = subscription.get("id") or user.stripe_subscription_id
    user.subscription_status = status.value

    plan_id = (subscription.get("metadata") or {}).get("plan_id")
    if status == SubscriptionStatus.ACTIVE and plan_id in {p.value for p in PlanTier}:
        user.subscription_plan = plan_id
    elif status == SubscriptionStatus.CANCELED:
        user.subscription_plan = PlanTier.FREE.value

    ends_at = _timestamp(subscription.get("current_period_end"))
    if ends_at is not None:
        user.subscription_ends_at = ends_at


async def start_subscription(db: Session, billing: BillingClient, user: User, plan_id: PlanTier) -> Dict[str, Any]:
    """
    Create a Stripe subscription for a paid plan.

    Returns:
        {"subscription_id", "status", "client_secret"}
    """
    if plan_id == PlanTier.FREE:
        raise ValidationError("The free plan does not need a subscription. Cancel your current plan instead.")

    plan = get_plan(db, plan_id.value)
    if plan is None or not plan.is_active:
        raise ValidationError(f"Unknown plan: {plan_id.value}")
    if not plan.stripe_price_id:
        raise BillingError(f"The {plan.name} plan is not available for purchase yet.")

    if not user.stripe_customer_id:
        user.stripe_customer_id = await billing.create_customer(user.id, user.email)
        db.flush()

    subscription = await billing.create_subscription(
        user.stripe_customer_id,
        plan.stripe_price_id,
        {"user_id": user.id, "plan_id": plan.id},
    )
    apply_subscription(user, subscription)
    db.flush()
    logger.info(f"Subscription {subscription.get('id')} created for user {user.id} ({plan.id})")

    return {
        "subscription_id": subscription.get("id", ""),
        "status": map_stripe_status(subscription.get("status")),
        "client_secret": _client_secret(subscription),
    }


async def sync_subscription(db: Session, billing: BillingClient, user: User) -> bool:
    """Refresh a pending subscription from Stripe; True if anything was fetched"""
    pending = {SubscriptionStatus.INCOMPLETE.value, SubscriptionStatus.PAST_DUE.value}
    if not (billing.enabled and user.stripe_subscription_id and user.subscription_status in pending):
        return False
    subscription = await billing.retrieve_subscription(user.stripe_subscription_id)
    apply_subscription(user, subscription)
    db.flush()
    return True


async def cancel_user_subscription(db: Session, billing: BillingClient, user: User) -> Dict[str, Any]:
    """Cancel at period end; the plan stays until then"""
    if not user.stripe_subscription_id:
        raise ValidationError("No active subscription to cancel.")

    subscription = await billing.cancel_subscription(user.stripe_subscription_id)
    ends_at = _timestamp(subscription.get("current_period_end"))
    if ends_at is not None:
        user.subscription_ends_at = ends_at
    db.flush()
    logger.info(f"Subscription {user.stripe_subscription_id} set to cancel at period end")
    return subscription
