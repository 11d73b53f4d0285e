"""
Shared analysis links.

A link grants public read access to one conversation and its current
analysis. Links are soft-disabled (is_active=False), never deleted, so the
view counter survives. Resolving a link bumps the counter with a single
conditional UPDATE, which also re-checks active/expiry.
"""

import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from .db.models import SharedAnalysisLink, Conversation, Analysis
from .db.repository import get_conversation, get_analysis_for_conversation
from .errors import NotFoundError

logger = logging.getLogger(__name__)

TOKEN_BYTES = 24
LINK_UNAVAILABLE = "This shared analysis does not exist or is no longer available."


def generate_share_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


def share_path(token: str) -> str:
    return f"/shared/{token}"


def _is_live(now: datetime):
    return (
        SharedAnalysisLink.is_active.is_(True),
        or_(SharedAnalysisLink.expires_at.is_(None), SharedAnalysisLink.expires_at > now),
    )


def create_share_link(
    db: Session,
    conversation_id: str,
    user_id: str,
    expires_in_days: Optional[int] = None,
    default_days: int = 30,
) -> SharedAnalysisLink:
    """
    Create a link for a conversation the user owns and has analyzed.

    expires_in_days: None uses default_days; 0 means the link never expires.
    """
    conversation = get_conversation(db, conversation_id, user_id=user_id)
    if conversation is None:
        raise NotFoundError("Conversation not found")
    if get_analysis_for_conversation(db, conversation_id) is None:
        raise NotFoundError("Analyze this conversation before sharing it")

    days = default_days if expires_in_days is None else expires_in_days
    expires_at = datetime.utcnow() + timedelta(days=days) if days > 0 else None

    link = SharedAnalysisLink(
        token=generate_share_token(),
        conversation_id=conversation_id,
        created_by_user_id=user_id,
        is_active=True,
        expires_at=expires_at,
        view_count=0,
    )
    db.add(link)
    db.flush()
    logger.info(f"Share link created for conversation {conversation_id} (expires={expires_at})")
    return link


def resolve_share_link(
    db: Session,
    token: str,
    now: Optional[datetime] = None,
) -> Tuple[SharedAnalysisLink, Conversation, Analysis]:
    """
    Resolve a token and count the view.

    Raises:
        NotFoundError: unknown, inactive or expired token, or nothing to show
    """
    now = now or datetime.utcnow()

    link = db.query(SharedAnalysisLink).filter(
        SharedAnalysisLink.token == token, *_is_live(now)
    ).first()
    if link is None:
        raise NotFoundError(LINK_UNAVAILABLE)

    conversation = db.get(Conversation, link.conversation_id)
    analysis = get_analysis_for_conversation(db, link.conversation_id)
    if conversation is None or analysis is None:
        raise NotFoundError(LINK_UNAVAILABLE)

    updated = db.query(SharedAnalysisLink).filter(
        SharedAnalysisLink.id == link.id, *_is_live(now)
    ).update(
        {
            SharedAnalysisLink.view_count: SharedAnalysisLink.view_count + 1,
            SharedAnalysisLink.last_viewed_at: now,
        },
        synchronize_session=False,
    )
    if not updated:
        # Deactivated between the read and the update
        raise NotFoundError(LINK_UNAVAILABLE)

    db.refresh(link)
    return link, conversation, analysis


def deactivate_share_link(db: Session, token: str, user_id: str) -> SharedAnalysisLink:
    """Soft-disable a link the user created"""
    link = db.query(SharedAnalysisLink).filter(SharedAnalysisLink.token == token).first()
    if link is None or link.created_by_user_id != user_id:
        raise NotFoundError("Share link not found")

    if link.is_active:
        link.is_active = False
        db.flush()
        logger.info(f"Share link deactivated for conversation {link.conversation_id}")
    return link
