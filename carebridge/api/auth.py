"""
JWT authentication helpers and middleware for the Flask API.
"""

from datetime import datetime, timedelta
from functools import wraps
from typing import Any, Dict, Optional

import jwt
from flask import request

from carebridge.config import SECRET_KEY, TOKEN_EXPIRY_HOURS
from carebridge.database import session_scope
from carebridge.errors import Unauthenticated
from carebridge.models import Role, User
from carebridge.rbac import load_auth_context, require_role
from carebridge.tiers import require_level

INVALID_TOKEN_MESSAGE = "Invalid or expired token. Please login again."


def generate_token(user: User, now: Optional[datetime] = None) -> str:
    """Generate a JWT token for an authenticated user."""
    issued = now or datetime.utcnow()
    payload = {
        "user_id": user.id,
        "role": user.role,
        "iat": issued,
        "exp": issued + timedelta(hours=TOKEN_EXPIRY_HOURS),
    }
    return jwt.encode(payload, SECRET_KEY, algorithm="HS256")


def verify_token(token: str) -> Optional[Dict[str, Any]]:
    """Verify a JWT token and return the decoded payload (or None)."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


def bearer_token() -> str:
    """The token from the ``Authorization: Bearer`` header, or raise Unauthenticated."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header:
        raise Unauthenticated("Authorization token required")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthenticated("Invalid authorization header format")
    return token.strip()


def token_required(engine, role: Optional[Role] = None, min_level: int = 0):
    """Decorator factory protecting an endpoint with JWT authentication.

    The wrapped view receives the caller's ``AuthContext`` as its first
    argument. Role is checked before the profile level, so a wrong-role
    caller is told about the role, not about an incomplete profile.
    """
    def decorator(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            payload = verify_token(bearer_token())
            if not payload:
                raise Unauthenticated(INVALID_TOKEN_MESSAGE)

            with session_scope(engine) as session:
                ctx = load_auth_context(session, payload)
                if role is not None:
                    require_role(ctx, role)
                if min_level > 0:
                    ctx = require_level(session, ctx.user_id, min_level)

            return f(ctx, *args, **kwargs)

        return decorated

    return decorator
