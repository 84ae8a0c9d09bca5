# Overview: Bearer session tokens; resolves a token into an AuthContext.

"""
Session Token Service

Identity verification (OTP) happens outside the core; once a user is
verified a session is issued here. Tokens are random, returned once in
plaintext, and stored only as a SHA-256 hash.

- 24-hour absolute timeout (SESSION_ABSOLUTE_TIMEOUT)
- 2-hour idle timeout (SESSION_IDLE_TIMEOUT)
- Revocable
"""

import hashlib
import secrets
from datetime import timedelta

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import SessionToken, User
from shoptab.time_utils import utcnow
from .authorization import AuthContext, context_for_user


SESSION_ABSOLUTE_TIMEOUT = timedelta(hours=24)
SESSION_IDLE_TIMEOUT = timedelta(hours=2)


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_session(user_id: int, ttl: timedelta | None = None) -> tuple[SessionToken, str]:
    """
    Issue a session for an already verified user.

    Returns (session_record, plaintext_token).
    """
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError("User not found", {"user_id": user_id})
    if not user.is_active:
        raise ValidationError("User account is deactivated")

    plaintext_token = generate_token()
    now = utcnow()
    session = SessionToken(
        user_id=user.id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + (ttl or SESSION_ABSOLUTE_TIMEOUT),
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()
    return session, plaintext_token


def _revoke(session: SessionToken) -> None:
    session.is_revoked = True
    session.revoked_at = utcnow()
    db.session.commit()


def validate_session(token: str) -> AuthContext | None:
    """
    Resolve a bearer token into an AuthContext.

    Returns None for unknown, expired, idle or revoked tokens and for
    deactivated users. Touches last_used_at on success.
    """
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()
    if not session:
        return None

    now = utcnow()
    if session.expires_at < now:
        return None

    if session.last_used_at and now - session.last_used_at > SESSION_IDLE_TIMEOUT:
        _revoke(session)
        return None

    user = session.user
    if not user or not user.is_active:
        _revoke(session)
        return None

    session.last_used_at = now
    db.session.commit()
    return context_for_user(user)


def revoke_session(token: str) -> bool:
    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if not session or session.is_revoked:
        return False
    _revoke(session)
    return True
