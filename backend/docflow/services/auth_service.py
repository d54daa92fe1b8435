# Overview: Password hashing and user authentication.

"""
Authentication Service

WHY: Every document mutation is attributed to a user, and every user
belongs to exactly one organization. Username/email uniqueness is
tenant-scoped.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters with upper, lower, digit and special char
"""

import re

import bcrypt

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Organization, User
from docflow.time_utils import utcnow


def validate_password_strength(password: str) -> None:
    """Raises ValidationError if the password is too weak."""
    if len(password) < 8:
        raise ValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise ValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise ValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise ValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise ValidationError("Password must contain at least one special character")


def hash_password(password: str, *, rounds: int = 12) -> str:
    validate_password_strength(password)
    hashed = bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds=rounds))
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe check via bcrypt.checkpw."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed hash
        return False


def create_user(username: str, email: str, password: str, org_id: int, *, rounds: int = 12) -> User:
    """
    Create a user inside an organization.

    Raises:
        NotFoundError: organization missing
        ValidationError: inactive org, duplicate username/email, weak password
    """
    org = db.session.query(Organization).filter_by(id=org_id).first()
    if not org:
        raise NotFoundError("Organization not found")
    if not org.is_active:
        raise ValidationError("Organization is not active")

    existing = db.session.query(User).filter(
        User.org_id == org_id,
        db.or_(User.username == username, User.email == email),
    ).first()
    if existing:
        raise ValidationError("Username or email already exists in this organization")

    user = User(
        org_id=org_id,
        username=username,
        email=email,
        password_hash=hash_password(password, rounds=rounds),
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(username: str, password: str, org_code: str | None = None) -> User | None:
    """
    Check credentials (username or email) and return the user.

    MULTI-TENANT: org_code scopes the lookup to one organization. Without
    it the first matching active user wins.

    Returns None on any failure (no reason is leaked).
    """
    query = db.session.query(User).filter(
        db.or_(User.username == username, User.email == username),
        User.is_active.is_(True),
    )
    if org_code is not None:
        query = query.join(Organization, Organization.id == User.org_id).filter(
            Organization.code == org_code
        )

    user = query.first()
    if not user:
        return None

    org = db.session.query(Organization).filter_by(id=user.org_id).first()
    if not org or not org.is_active:
        return None

    if not verify_password(password, user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user
