"""
Role-Based Access Control – account lookup, loading the caller's context and role checks.
"""

from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

from carebridge.config import ROLES
from carebridge.errors import Conflict, Forbidden, NotFound, Unauthenticated, ValidationError
from carebridge.models import AuthContext, Role, User


def register_user(session: Session, name: str, email: str, password: str, role: str) -> User:
    """Create a new account; the email address must be unused."""
    name = (name or "").strip()
    email = (email or "").strip().lower()
    role = (role or "").strip().upper()
    if not name or not email or not password:
        raise ValidationError("Missing required fields: name, email, password, role")
    if role not in ROLES:
        raise ValidationError("Invalid role. Must be PATIENT or DOCTOR")
    if len(password) < 8:
        raise ValidationError("Password must be at least 8 characters")

    if session.scalar(select(User).where(User.email == email)) is not None:
        raise Conflict("An account with this email already exists")

    user = User(
        name=name,
        email=email,
        password_hash=generate_password_hash(password),
        role=role,
        profile_level=0,
    )
    session.add(user)
    try:
        session.flush()
    except IntegrityError:
        raise Conflict("An account with this email already exists")
    return user


def authenticate(session: Session, email: str, password: str) -> User:
    """Return the user matching the credentials or raise Unauthenticated."""
    email = (email or "").strip().lower()
    user = session.scalar(select(User).where(User.email == email))
    if user is None or not check_password_hash(user.password_hash, password or ""):
        raise Unauthenticated("Invalid email or password")
    return user


def load_auth_context(session: Session, payload: Dict[str, Any]) -> AuthContext:
    """Resolve a verified token payload into the caller's current AuthContext.

    The profile level is read from the database on every request so a level
    unlocked after login takes effect without a new token.
    """
    user = session.get(User, payload.get("user_id"))
    if user is None:
        raise Unauthenticated("Invalid or expired token. Please login again.")

    role = str(user.role).strip().upper()
    if role not in ROLES:
        raise Forbidden(f"Unsupported role '{user.role}'")

    return AuthContext(
        user_id=user.id,
        role=Role(role),
        profile_level=user.profile_level,
        name=user.name,
        email=user.email,
    )


def require_role(ctx: AuthContext, role: Role) -> AuthContext:
    if ctx.role != role:
        raise Forbidden(f"Access denied. {role.value} role required.")
    return ctx


def find_user(
    session: Session,
    role: Role,
    user_id: Optional[str] = None,
    email: Optional[str] = None,
) -> User:
    """Look up a user of the given role by id or, failing that, by email."""
    label = role.value.capitalize()
    if not user_id and not email:
        raise ValidationError(f"{label} identifier is required")
    if not isinstance(user_id or "", str) or not isinstance(email or "", str):
        raise ValidationError(f"{label} identifier must be a string")

    stmt = select(User).where(User.role == role.value)
    if user_id:
        stmt = stmt.where(User.id == user_id)
    else:
        stmt = stmt.where(User.email == email.strip().lower())

    user = session.scalar(stmt)
    if user is None:
        raise NotFound(f"{label} not found")
    return user
