"""
Repository helpers
==================

Thin query functions over the ORM so routes and services share one way of
loading and writing records. Functions flush but never commit; the caller
owns the transaction.
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from .models import User, SubscriptionPlan, Conversation, Analysis

logger = logging.getLogger(__name__)


# =============================================================================
# Users
# =============================================================================

def upsert_user(
    db: Session,
    user_id: str,
    email: Optional[str] = None,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    auth_provider: str = "jwt",
) -> User:
    """Create the user on first sight; refresh profile fields if provided"""
    user = db.get(User, user_id)
    if user is None:
        user = User(id=user_id, auth_provider=auth_provider)
        db.add(user)
        logger.info(f"Created user {user_id} ({auth_provider})")

    if email and user.email != email:
        existing = db.query(User).filter(User.email == email, User.id != user_id).first()
        if existing is None:
            user.email = email
    if first_name:
        user.first_name = first_name
    if last_name:
        user.last_name = last_name

    db.flush()
    return user


# =============================================================================
# Plans
# =============================================================================

def list_active_plans(db: Session) -> List[SubscriptionPlan]:
    return (
        db.query(SubscriptionPlan)
        .filter(SubscriptionPlan.is_active.is_(True))
        .order_by(SubscriptionPlan.price.asc())
        .all()
    )


def get_plan(db: Session, plan_id: str) -> Optional[SubscriptionPlan]:
    return db.get(SubscriptionPlan, plan_id)


# =============================================================================
# Conversations
# =============================================================================

def create_conversation(
    db: Session,
    user_id: str,
    text: str,
    image_urls: List[str],
    analysis_depth: str,
    language: str,
    ai_model: str,
    reasoning_level: str,
) -> Conversation:
    conversation = Conversation(
        user_id=user_id,
        text=text,
        image_urls=list(image_urls),
        analysis_depth=analysis_depth,
        language=language,
        ai_model=ai_model,
        reasoning_level=reasoning_level,
    )
    db.add(conversation)
    db.flush()
    return conversation


def get_conversation(db: Session, conversation_id: str, user_id: Optional[str] = None) -> Optional[Conversation]:
    """Load a conversation; with user_id, only if that user owns it"""
    conversation = db.get(Conversation, conversation_id)
    if conversation is None:
        return None
    if user_id is not None and conversation.user_id != user_id:
        return None
    return conversation


def list_conversations(db: Session, user_id: str, limit: int = 50, offset: int = 0) -> List[Conversation]:
    return (
        db.query(Conversation)
        .filter(Conversation.user_id == user_id)
        .order_by(Conversation.created_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


# =============================================================================
# Analyses
# =============================================================================

def get_analysis_for_conversation(db: Session, conversation_id: str) -> Optional[Analysis]:
    return db.query(Analysis).filter(Analysis.conversation_id == conversation_id).first()


def save_analysis(
    db: Session,
    conversation_id: str,
    speakers: list,
    messages: list,
    issues: list,
    summary: dict,
    clarity_score: int,
    ai_model: Optional[str] = None,
) -> Analysis:
    analysis = Analysis(
        conversation_id=conversation_id,
        speakers=speakers,
        messages=messages,
        issues=issues,
        summary=summary,
        clarity_score=clarity_score,
        ai_model=ai_model,
    )
    db.add(analysis)
    db.flush()
    return analysis


def delete_analysis_for_conversation(db: Session, conversation_id: str) -> int:
    """Remove every analysis row for a conversation; returns rows deleted"""
    deleted = (
        db.query(Analysis)
        .filter(Analysis.conversation_id == conversation_id)
        .delete(synchronize_session="fetch")
    )
    db.flush()
    return deleted


def replace_analysis(db: Session, conversation_id: str, **fields) -> Analysis:
    """Delete-then-insert within the caller's transaction"""
    delete_analysis_for_conversation(db, conversation_id)
    return save_analysis(db, conversation_id, **fields)
