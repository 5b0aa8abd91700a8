# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication Service

WHY: Every balance mutation must be attributable to a user. Uses bcrypt
for password hashing and validates password strength.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost from BCRYPT_ROUNDS, default 12)
- Minimum 8 characters, upper, lower, digit and special char required
- Session tokens managed separately (see session_service.py)
"""

import re

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import User
from ..models.auth import ROLES, ROLE_CASHIER
from posledger.time_utils import utcnow


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Raises PasswordValidationError if requirements not met.
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """Validate strength, then hash with bcrypt."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=current_app.config.get("BCRYPT_ROUNDS", 12))
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt comparison; malformed hashes never match."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def create_user(
    username: str,
    name: str,
    password: str,
    role_name: str = ROLE_CASHIER,
    email: str | None = None,
) -> User:
    """
    Create a staff user.

    Raises:
        ValueError: unknown role or username already taken
        PasswordValidationError: password too weak
    """
    if role_name not in ROLES:
        raise ValueError(f"Unknown role: {role_name}")

    existing = db.session.query(User).filter_by(username=username).first()
    if existing:
        raise ValueError("Username already exists")

    user = User(
        username=username,
        name=name,
        email=email,
        password_hash=hash_password(password),
        role_name=role_name,
    )

    db.session.add(user)
    db.session.commit()
    return user


def authenticate(username: str, password: str) -> User | None:
    """
    Return the active user for these credentials, or None.

    Updates last_login_at on success.
    """
    user = db.session.query(User).filter(
        db.or_(User.username == username, User.email == username),
        User.is_active.is_(True),
    ).first()

    if not user:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None


def deactivate_user(user_id: int) -> User:
    """Soft-deactivate; ledger entries and audit rows keep pointing at the user."""
    user = db.session.get(User, user_id)
    if not user:
        raise ValueError("User not found")
    user.is_active = False
    db.session.commit()
    return user
