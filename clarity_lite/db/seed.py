"""
Subscription plan seeding. Runs on every init_db(); existing rows are
updated in place so limits stay in sync with PLAN_LIMITS.
"""

import logging

from sqlalchemy.orm import Session

from .models import SubscriptionPlan
from ..schemas import PlanTier
from ..usage import PLAN_LIMITS

logger = logging.getLogger(__name__)


DEFAULT_PLANS = [
    {
        "id": PlanTier.FREE.value,
        "name": "Free",
        "description": "Try out conversation analysis",
        "monthly_analysis_limit": PLAN_LIMITS[PlanTier.FREE],
        "price": 0,
        "features": [
            "5 analyses per month",
            "Text and screenshot input",
            "Shareable analysis links",
            "gpt-4o-mini model",
        ],
    },
    {
        "id": PlanTier.PRO.value,
        "name": "Pro",
        "description": "For people who communicate for a living",
        "monthly_analysis_limit": PLAN_LIMITS[PlanTier.PRO],
        "price": 1900,
        "features": [
            "50 analyses per month",
            "gpt-4o high-accuracy model",
            "Detailed reasoning level",
        ],
    },
    {
        "id": PlanTier.PREMIUM.value,
        "name": "Premium",
        "description": "Unlimited depth for teams and heavy users",
        "monthly_analysis_limit": PLAN_LIMITS[PlanTier.PREMIUM],
        "price": 4900,
        "features": [
            "200 analyses per month, soft limit",
            "Comprehensive reasoning level",
            "Claude 3.5 Sonnet model",
            "Priority support",
        ],
    },
]


def seed_subscription_plans(db: Session, price_ids: dict = None) -> int:
    """
    Insert or refresh the built-in plans.

    Args:
        db: Open session (caller commits)
        price_ids: Optional {plan_id: stripe_price_id}

    Returns:
        Number of plans inserted
    """
    if price_ids is None:
        from ..config import get_settings
        settings = get_settings()
        price_ids = {
            PlanTier.PRO.value: settings.stripe_price_pro,
            PlanTier.PREMIUM.value: settings.stripe_price_premium,
        }

    inserted = 0
    for plan_data in DEFAULT_PLANS:
        plan = db.get(SubscriptionPlan, plan_data["id"])
        if plan is None:
            plan = SubscriptionPlan(id=plan_data["id"])
            db.add(plan)
            inserted += 1
        plan.name = plan_data["name"]
        plan.description = plan_data["description"]
        plan.monthly_analysis_limit = plan_data["monthly_analysis_limit"]
        plan.price = plan_data["price"]
        plan.features = list(plan_data["features"])
        plan.is_active = True
        if price_ids.get(plan_data["id"]):
            plan.stripe_price_id = price_ids[plan_data["id"]]

    db.flush()
    if inserted:
        logger.info(f"Seeded {inserted} subscription plans")
    return inserted
