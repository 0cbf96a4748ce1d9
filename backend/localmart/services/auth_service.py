# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication Service

WHY: Every negotiation and order is attributable to a buyer or seller.
Uses bcrypt for password hashing and validates password strength.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, upper, lower and digit required
- Session tokens managed separately (see session_service.py)
"""

import re

import bcrypt
from flask import current_app

from ..extensions import db
from ..errors import ValidationError, MarketplaceError
from ..models import User
from ..models.users import VALID_ROLES, ROLE_ADMIN


EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^\d{10}$")


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""
    pass


class DuplicateEmailError(MarketplaceError):
    kind = "DuplicateEmail"
    status_code = 409


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Raises PasswordValidationError if requirements not met.
    """
    if not password or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt (strength checked first).

    Cost factor comes from BCRYPT_ROUNDS (12 in production).
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=current_app.config.get("BCRYPT_ROUNDS", 12))
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    bcrypt.checkpw() is timing-safe. Malformed hashes count as a mismatch.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def register_user(
    *,
    name: str,
    email: str,
    password: str,
    role: str,
    phone: str | None = None,
    allow_admin: bool = False,
) -> User:
    """
    Create a buyer or seller account.

    Admin accounts are only created from the CLI (allow_admin=True).
    """
    name = (name or "").strip()
    email = (email or "").strip().lower()

    if not name:
        raise ValidationError("name is required", details={"field": "name"})
    if not EMAIL_RE.match(email):
        raise ValidationError("A valid email is required", details={"field": "email"})
    if role not in VALID_ROLES or (role == ROLE_ADMIN and not allow_admin):
        raise ValidationError(f"Invalid role: {role}", details={"field": "role"})
    if phone is not None and not PHONE_RE.match(str(phone)):
        raise ValidationError("phone must be 10 digits", details={"field": "phone"})

    if db.session.query(User).filter_by(email=email).first():
        raise DuplicateEmailError("An account with this email already exists")

    user = User(
        name=name,
        email=email,
        phone=phone,
        role=role,
        password_hash=hash_password(password),
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(email: str, password: str) -> User | None:
    """Return the active user matching the credentials, else None."""
    email = (email or "").strip().lower()
    user = db.session.query(User).filter_by(email=email).first()
    if not user or not user.is_active:
        return None
    if not verify_password(password or "", user.password_hash):
        return None
    return user
