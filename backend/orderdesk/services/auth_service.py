# Overview: Service-layer operations for users and roles; encapsulates business logic and database work.

"""
Authentication Service

WHY: Every action must be attributable. Uses bcrypt for password hashing.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor from BCRYPT_ROUNDS, default 12)
- Minimum 8 characters with at least one letter and one digit
- Session tokens managed separately (see session_service.py)
"""

from __future__ import annotations

import re

import bcrypt
from flask import current_app

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Role, User, UserRole
from ..permissions import DEFAULT_ROLES
from ..time_utils import utcnow


class PasswordValidationError(ValidationError):
    """Raised when a password doesn't meet strength requirements."""

    def __init__(self, message: str):
        super().__init__(message, field="password")


def validate_password_strength(password: str) -> None:
    if not isinstance(password, str) or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")
    if not re.search(r"[A-Za-z]", password):
        raise PasswordValidationError("Password must contain at least one letter")
    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str) -> str:
    """Validate and hash a password with bcrypt."""
    validate_password_strength(password)
    rounds = current_app.config.get("BCRYPT_ROUNDS", 12)
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds))
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe comparison of a password against its bcrypt hash."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash
        return False


def create_default_roles() -> int:
    """Create admin, manager and seller roles. Idempotent."""
    created = 0
    for name, description in DEFAULT_ROLES.items():
        if not db.session.query(Role).filter_by(name=name).first():
            db.session.add(Role(name=name, description=description))
            created += 1
    db.session.commit()
    return created


def assign_role(user_id: int, role_name: str) -> UserRole:
    role = db.session.query(Role).filter_by(name=role_name).first()
    if not role:
        raise NotFoundError(f"Role '{role_name}' not found")

    existing = db.session.query(UserRole).filter_by(user_id=user_id, role_id=role.id).first()
    if existing:
        return existing

    user_role = UserRole(user_id=user_id, role_id=role.id)
    db.session.add(user_role)
    db.session.commit()
    return user_role


def create_user(
    username: str,
    email: str,
    password: str,
    *,
    full_name: str | None = None,
    role_name: str | None = None,
) -> User:
    """
    Create a user with a bcrypt password hash and an optional role.

    Raises:
        ValidationError: Missing username/email or weak password
        ConflictError: Username or email already taken
    """
    username = (username or "").strip()
    email = (email or "").strip().lower()
    if not username:
        raise ValidationError("username is required", field="username")
    if not email:
        raise ValidationError("email is required", field="email")

    if db.session.query(User).filter_by(username=username).first():
        raise ConflictError(f"Username '{username}' already exists")
    if db.session.query(User).filter_by(email=email).first():
        raise ConflictError(f"Email '{email}' already exists")

    user = User(
        username=username,
        email=email,
        full_name=full_name,
        password_hash=hash_password(password),
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()

    if role_name:
        assign_role(user.id, role_name)
    return user


def authenticate(identifier: str, password: str) -> User | None:
    """Return the active user matching username/email and password, else None."""
    if not identifier or not password:
        return None
    identifier = identifier.strip()
    user = (
        db.session.query(User)
        .filter((User.username == identifier) | (User.email == identifier.lower()))
        .first()
    )
    if not user or not user.is_active:
        return None
    if not verify_password(password, user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user
