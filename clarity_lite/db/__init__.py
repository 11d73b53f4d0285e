"""
Database Package - SQLAlchemy
=============================

Persistence for users, plans, conversations, analyses, usage events and
shared links.
"""

from .models import (
    Base,
    User, SubscriptionPlan,
    Conversation, Analysis,
    UsageEvent, SharedAnalysisLink,
)
from .session import get_db, get_db_session, init_db, get_engine, reset_engine

__all__ = [
    # Base
    "Base",
    # Accounts
    "User", "SubscriptionPlan",
    # Content
    "Conversation", "Analysis",
    # Metering & sharing
    "UsageEvent", "SharedAnalysisLink",
    # Session
    "get_db", "get_db_session", "init_db", "get_engine", "reset_engine",
]
