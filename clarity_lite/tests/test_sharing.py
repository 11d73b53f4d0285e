"""
Tests for shared analysis links
"""

from datetime import datetime, timedelta

import pytest

from clarity_lite.db.repository import create_conversation, save_analysis, upsert_user
from clarity_lite.errors import NotFoundError
from clarity_lite.sharing import (
    create_share_link,
    deactivate_share_link,
    resolve_share_link,
    share_path,
)


@pytest.fixture
def analyzed_conversation(db_session):
    upsert_user(db_session, "owner")
    upsert_user(db_session, "stranger")
    conversation = create_conversation(
        db_session,
        user_id="owner",
        text="John: let's meet\nSarah: sure, when?",
        image_urls=[],
        analysis_depth="standard",
        language="english",
        ai_model="gpt-4o-mini",
        reasoning_level="standard",
    )
    save_analysis(
        db_session,
        conversation.id,
        speakers=["John", "Sarah"],
        messages=[],
        issues=[],
        summary={},
        clarity_score=80,
        ai_model="gpt-4o-mini",
    )
    return conversation


class TestCreate:

    def test_default_expiry(self, db_session, analyzed_conversation):
        link = create_share_link(db_session, analyzed_conversation.id, "owner")

        assert link.is_active
        assert link.view_count == 0
        assert link.expires_at is not None
        assert link.expires_at - datetime.utcnow() > timedelta(days=29)
        assert share_path(link.token) == f"/shared/{link.token}"

    def test_zero_days_never_expires(self, db_session, analyzed_conversation):
        link = create_share_link(db_session, analyzed_conversation.id, "owner", expires_in_days=0)
        assert link.expires_at is None

    def test_tokens_are_unique(self, db_session, analyzed_conversation):
        tokens = {create_share_link(db_session, analyzed_conversation.id, "owner").token for _ in range(5)}
        assert len(tokens) == 5

    def test_other_users_cannot_share(self, db_session, analyzed_conversation):
        with pytest.raises(NotFoundError):
            create_share_link(db_session, analyzed_conversation.id, "stranger")

    def test_requires_analysis(self, db_session):
        upsert_user(db_session, "owner")
        conversation = create_conversation(
            db_session, "owner", "hi", [], "standard", "english", "gpt-4o-mini", "standard"
        )

        with pytest.raises(NotFoundError):
            create_share_link(db_session, conversation.id, "owner")


class TestResolve:

    def test_views_are_counted(self, db_session, analyzed_conversation):
        link = create_share_link(db_session, analyzed_conversation.id, "owner")

        for expected in (1, 2, 3):
            resolved, conversation, analysis = resolve_share_link(db_session, link.token)
            assert resolved.view_count == expected

        assert conversation.id == analyzed_conversation.id
        assert analysis.clarity_score == 80
        assert resolved.last_viewed_at is not None

    def test_unknown_token(self, db_session, analyzed_conversation):
        with pytest.raises(NotFoundError):
            resolve_share_link(db_session, "no-such-token")

    def test_expired(self, db_session, analyzed_conversation):
        link = create_share_link(db_session, analyzed_conversation.id, "owner", expires_in_days=1)

        with pytest.raises(NotFoundError):
            resolve_share_link(db_session, link.token, now=datetime.utcnow() + timedelta(days=2))

    def test_deactivated_link_is_gone(self, db_session, analyzed_conversation):
        link = create_share_link(db_session, analyzed_conversation.id, "owner")
        resolve_share_link(db_session, link.token)

        deactivate_share_link(db_session, link.token, "owner")

        with pytest.raises(NotFoundError):
            resolve_share_link(db_session, link.token)
        # Soft-disabled: the counter is kept
        assert link.view_count == 1
        assert not link.is_active


class TestDeactivate:

    def test_only_creator(self, db_session, analyzed_conversation):
        link = create_share_link(db_session, analyzed_conversation.id, "owner")

        with pytest.raises(NotFoundError):
            deactivate_share_link(db_session, link.token, "stranger")
        assert link.is_active

    def test_idempotent(self, db_session, analyzed_conversation):
        link = create_share_link(db_session, analyzed_conversation.id, "owner")

        deactivate_share_link(db_session, link.token, "owner")
        again = deactivate_share_link(db_session, link.token, "owner")

        assert not again.is_active
