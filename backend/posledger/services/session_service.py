# Overview: Service-layer operations for session; encapsulates business logic and database work.

"""
Session Token Management Service

Tokens are cryptographically random, stored only as a SHA-256 hash, and
expire SESSION_TTL_HOURS after issue. Revocable on logout.
"""

import hashlib
import secrets
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import SessionToken, User
from posledger.time_utils import utcnow


def generate_token() -> str:
    """64-character hex string (32 bytes of entropy); the only copy goes to the client."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """
    SHA-256 hex digest for storage.

    WHY SHA-256 not bcrypt: tokens are already high-entropy.
    """
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def create_session(
    user_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None
) -> tuple[SessionToken, str]:
    """
    Create a session for a user.

    Returns (session_record, plaintext_token).
    """
    user = db.session.get(User, user_id)
    if not user:
        raise ValueError("User not found")

    plaintext_token = generate_token()
    now = utcnow()
    ttl = timedelta(hours=current_app.config.get("SESSION_TTL_HOURS", 24))

    session = SessionToken(
        user_id=user_id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        expires_at=now + ttl,
        user_agent=user_agent,
        ip_address=ip_address,
    )

    db.session.add(session)
    db.session.commit()

    return session, plaintext_token


def validate_session(token: str) -> User | None:
    """
    Return the session's user if the token is valid, else None.

    Invalid: unknown, revoked, expired, or the user was deactivated.
    """
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        revoked_at=None,
    ).first()

    if not session:
        return None

    if session.expires_at < utcnow():
        return None

    user = session.user
    if not user or not user.is_active:
        return None

    return user


def revoke_session(token: str) -> bool:
    """Returns True if an active session was revoked."""
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        revoked_at=None,
    ).first()

    if not session:
        return False

    session.revoked_at = utcnow()
    db.session.commit()
    return True
