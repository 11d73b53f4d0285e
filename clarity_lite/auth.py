"""
Authentication
==============

Identity comes from an ``Authorization: Bearer <jwt>`` header issued by the
external identity provider (HS256 by default, shared secret in JWT_SECRET_KEY).
Claims used: ``sub`` (user id, required), ``email``, ``given_name``,
``family_name``.

DEPLOYMENT_MODE=local skips token checks entirely and acts as a fixed local
user (LOCAL_USER_ID). Never enable it in production.

Users are created on first authenticated request.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import jwt
from fastapi import Depends, Header
from sqlalchemy.orm import Session

from .config import Settings, get_settings
from .db.models import User
from .db.repository import upsert_user
from .db.session import get_db
from .errors import AuthenticationError
from .usage import resolve_plan
from .schemas import PlanTier

logger = logging.getLogger(__name__)

JWT_ACCESS_TOKEN_EXPIRE_MINUTES = 60


@dataclass
class AuthContext:
    """Authenticated caller for one request"""
    user: User
    via_local_bypass: bool = False

    @property
    def user_id(self) -> str:
        return self.user.id

    @property
    def plan(self) -> PlanTier:
        return resolve_plan(self.user.subscription_plan)


# =============================================================================
# JWT TOKEN HANDLING
# =============================================================================

def create_access_token(
    data: dict,
    settings: Optional[Settings] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create a JWT access token (local tooling and tests)"""
    settings = settings or get_settings()
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=JWT_ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: Optional[Settings] = None) -> Optional[dict]:
    """Decode and validate a JWT token; None if invalid or expired"""
    settings = settings or get_settings()
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except jwt.PyJWTError as e:
        logger.warning(f"Invalid JWT token: {e}")
        return None


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization.split(" ", 1)[1].strip()
        return token or None
    return None


# =============================================================================
# FastAPI dependencies
# =============================================================================

async def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization"),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> AuthContext:
    """
    Resolve the caller.

    - DEPLOYMENT_MODE=local: fixed local user, no token needed
    - otherwise: Bearer JWT with a ``sub`` claim
    """
    if settings.is_local:
        user = upsert_user(db, settings.local_user_id, email="local@localhost", auth_provider="local")
        db.commit()
        return AuthContext(user=user, via_local_bypass=True)

    token = _bearer_token(authorization)
    if not token:
        raise AuthenticationError()

    payload = decode_token(token, settings)
    if not payload or not payload.get("sub"):
        raise AuthenticationError("Invalid or expired token")

    user = upsert_user(
        db,
        str(payload["sub"]),
        email=payload.get("email"),
        first_name=payload.get("given_name"),
        last_name=payload.get("family_name"),
        auth_provider="jwt",
    )
    db.commit()
    return AuthContext(user=user)
