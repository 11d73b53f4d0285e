"""
Usage / Quota Tracker
=====================

Monthly analysis metering per subscription plan.

The append-only ``usage_events`` table is authoritative. ``User.monthly_analysis_count``
is a display cache: it is reset on month change and bumped opportunistically,
and never consulted when enforcing limits.

Check-then-track is not atomic. Two concurrent submissions from one user can
both pass the check and push usage slightly past the limit; this is accepted.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from sqlalchemy import func
from sqlalchemy.orm import Session

from .db.models import User, UsageEvent
from .errors import QuotaExceededError, PlanRequiredError
from .llm_client import MODEL_REGISTRY
from .schemas import PlanTier, UsageAction, ReasoningLevel, AIModel

logger = logging.getLogger(__name__)


PLAN_LIMITS = {
    PlanTier.FREE: 5,
    PlanTier.PRO: 50,
    PlanTier.PREMIUM: 200,
}

# Plans that may go past their nominal limit
SOFT_LIMIT_PLANS = {PlanTier.PREMIUM}

PLAN_RANK = {
    PlanTier.FREE: 0,
    PlanTier.PRO: 1,
    PlanTier.PREMIUM: 2,
}

REASONING_MIN_PLAN = {
    ReasoningLevel.STANDARD: PlanTier.FREE,
    ReasoningLevel.DETAILED: PlanTier.PRO,
    ReasoningLevel.COMPREHENSIVE: PlanTier.PREMIUM,
}


@dataclass
class QuotaDecision:
    allowed: bool
    limit: int
    usage: int
    plan: PlanTier

    @property
    def remaining(self) -> int:
        return max(self.limit - self.usage, 0)


def current_month(now: Optional[datetime] = None) -> str:
    """Month key "YYYY-MM" from wall-clock time"""
    now = now or datetime.utcnow()
    return now.strftime("%Y-%m")


def resolve_plan(plan: Union[str, PlanTier, None]) -> PlanTier:
    """Unknown or missing plan names are treated as free"""
    if isinstance(plan, PlanTier):
        return plan
    try:
        return PlanTier(plan)
    except ValueError:
        logger.warning(f"Unknown subscription plan {plan!r}, treating as free")
        return PlanTier.FREE


def monthly_limit(plan: Union[str, PlanTier]) -> int:
    return PLAN_LIMITS[resolve_plan(plan)]


def count_monthly_usage(
    db: Session,
    user_id: str,
    month: Optional[str] = None,
    action: UsageAction = UsageAction.ANALYSIS,
) -> int:
    """Count usage events for (user, month, action)"""
    month = month or current_month()
    return db.query(func.count(UsageEvent.id)).filter(
        UsageEvent.user_id == user_id,
        UsageEvent.month == month,
        UsageEvent.action == action.value,
    ).scalar() or 0


def check_quota(db: Session, user_id: str, plan: Union[str, PlanTier]) -> QuotaDecision:
    """
    Compare fresh monthly usage against the plan limit.

    Returns a decision instead of raising; see check_and_maybe_reject.
    """
    tier = resolve_plan(plan)
    limit = PLAN_LIMITS[tier]
    usage = count_monthly_usage(db, user_id)
    allowed = usage < limit or tier in SOFT_LIMIT_PLANS
    return QuotaDecision(allowed=allowed, limit=limit, usage=usage, plan=tier)


def check_and_maybe_reject(db: Session, user_id: str, plan: Union[str, PlanTier]) -> QuotaDecision:
    """
    Gate a new conversation on the monthly quota.

    Raises:
        QuotaExceededError: usage >= limit on a hard-limited plan
    """
    decision = check_quota(db, user_id, plan)
    if not decision.allowed:
        logger.info(f"Quota reached for user {user_id}: {decision.usage}/{decision.limit} ({decision.plan.value})")
        raise QuotaExceededError(limit=decision.limit, usage=decision.usage, plan=decision.plan.value)
    if decision.usage >= decision.limit:
        logger.info(f"User {user_id} past soft limit: {decision.usage}/{decision.limit}")
    return decision


def track_usage(
    db: Session,
    user: User,
    action: UsageAction = UsageAction.ANALYSIS,
    now: Optional[datetime] = None,
) -> UsageEvent:
    """
    Append a usage event and refresh the user's cached counter.

    The counter restarts at 1 when the last reset falls in an earlier month.
    Caller commits.
    """
    now = now or datetime.utcnow()
    month = current_month(now)

    event = UsageEvent(user_id=user.id, action=action.value, month=month, timestamp=now)
    db.add(event)

    last_reset = user.last_analysis_reset
    if last_reset is None or current_month(last_reset) != month:
        user.monthly_analysis_count = 1
        user.last_analysis_reset = now
    else:
        user.monthly_analysis_count = (user.monthly_analysis_count or 0) + 1

    db.flush()
    return event


# =============================================================================
# Plan gating for premium options
# =============================================================================

def plan_allows(plan: Union[str, PlanTier], required: PlanTier) -> bool:
    return PLAN_RANK[resolve_plan(plan)] >= PLAN_RANK[required]


def check_plan_options(
    plan: Union[str, PlanTier],
    model_id: Optional[AIModel] = None,
    reasoning_level: ReasoningLevel = ReasoningLevel.STANDARD,
):
    """
    Raises:
        PlanRequiredError: the requested model or reasoning level needs a higher plan
    """
    if model_id is not None:
        required = MODEL_REGISTRY[model_id].min_plan
        if not plan_allows(plan, required):
            raise PlanRequiredError(
                f"The {model_id.value} model requires the {required.value} plan",
                required_plan=required.value,
            )

    required = REASONING_MIN_PLAN[reasoning_level]
    if not plan_allows(plan, required):
        raise PlanRequiredError(
            f"The {reasoning_level.value} reasoning level requires the {required.value} plan",
            required_plan=required.value,
        )
