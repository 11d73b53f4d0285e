"""
SQLAlchemy Models for Database
==============================

Schema for the conversation analysis service:
- Users with subscription plan state and a cached monthly counter
- Subscription plans (seeded: free / pro / premium)
- Conversations (immutable raw input) and their single current Analysis
- Append-only usage events (source of truth for quota checks)
- Shared analysis links (soft-disabled, never hard-deleted)

Supports both PostgreSQL and SQLite via SQLAlchemy.
"""

import uuid
from datetime import datetime
from sqlalchemy import (
    Column, String, Text, Integer, Boolean, DateTime, ForeignKey, Index, JSON,
    UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import relationship, declarative_base

Base = declarative_base()


def generate_uuid():
    return str(uuid.uuid4())


class User(Base):
    """Account plus subscription state"""
    __tablename__ = "users"

    id = Column(String(64), primary_key=True, default=generate_uuid)
    email = Column(String(255), unique=True, nullable=True)
    first_name = Column(String(120), nullable=True)
    last_name = Column(String(120), nullable=True)
    auth_provider = Column(String(32), nullable=False, default="local")
    external_id = Column(String(255), nullable=True, index=True)

    # Billing
    stripe_customer_id = Column(String(255), nullable=True)
    stripe_subscription_id = Column(String(255), nullable=True)
    subscription_plan = Column(String(20), nullable=False, default="free")
    subscription_status = Column(String(20), nullable=False, default="inactive")
    subscription_ends_at = Column(DateTime, nullable=True)

    # Advisory cache; usage_events is authoritative
    monthly_analysis_count = Column(Integer, nullable=False, default=0)
    last_analysis_reset = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    conversations = relationship("Conversation", back_populates="user")


class SubscriptionPlan(Base):
    __tablename__ = "subscription_plans"

    id = Column(String(20), primary_key=True)
    name = Column(String(60), nullable=False)
    description = Column(Text, nullable=True)
    stripe_price_id = Column(String(255), nullable=True)
    monthly_analysis_limit = Column(Integer, nullable=False)
    price = Column(Integer, nullable=False, default=0)  # cents
    features = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class Conversation(Base):
    """Raw submission. Not mutated after creation."""
    __tablename__ = "conversations"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    text = Column(Text, nullable=False, default="")
    image_urls = Column(JSON, nullable=False, default=list)
    analysis_depth = Column(String(20), nullable=False, default="standard")
    language = Column(String(40), nullable=False, default="english")
    ai_model = Column(String(64), nullable=False, default="gpt-4o-mini")
    reasoning_level = Column(String(20), nullable=False, default="standard")
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    user = relationship("User", back_populates="conversations")
    analysis = relationship(
        "Analysis", back_populates="conversation", uselist=False, cascade="all, delete-orphan"
    )


class Analysis(Base):
    """At most one per conversation; re-analysis replaces it."""
    __tablename__ = "analyses"
    __table_args__ = (
        UniqueConstraint("conversation_id", name="uq_analyses_conversation"),
        CheckConstraint("clarity_score >= 0 AND clarity_score <= 100", name="ck_analyses_clarity_range"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    conversation_id = Column(String(36), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    speakers = Column(JSON, nullable=False, default=list)
    messages = Column(JSON, nullable=False, default=list)
    issues = Column(JSON, nullable=False, default=list)
    summary = Column(JSON, nullable=False, default=dict)
    clarity_score = Column(Integer, nullable=False, default=0)
    ai_model = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    conversation = relationship("Conversation", back_populates="analysis")


class UsageEvent(Base):
    """Append-only metering record. Never updated or deleted."""
    __tablename__ = "usage_events"
    __table_args__ = (
        Index("ix_usage_user_month_action", "user_id", "month", "action"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False)
    action = Column(String(32), nullable=False)
    month = Column(String(7), nullable=False)  # YYYY-MM
    timestamp = Column(DateTime, nullable=False, default=datetime.utcnow)


class SharedAnalysisLink(Base):
    """
    Public read access to one conversation and its current analysis.
    Deactivated by flag, never deleted, so view history survives.
    """
    __tablename__ = "shared_analysis_links"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    token = Column(String(64), unique=True, nullable=False, index=True)
    conversation_id = Column(String(36), ForeignKey("conversations.id"), nullable=False, index=True)
    created_by_user_id = Column(String(64), ForeignKey("users.id"), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    expires_at = Column(DateTime, nullable=True)
    view_count = Column(Integer, nullable=False, default=0)
    last_viewed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
