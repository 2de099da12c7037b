"""
Messages between a patient and their assigned doctors.

Both directions require an Assignment between the two parties. Messaging does
not need an access grant: conversation is not a read of protected records.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.orm import Session

from carebridge.access import get_assignment
from carebridge.config import DEFAULT_MESSAGE_LIMIT
from carebridge.errors import Forbidden, NotFound, ValidationError
from carebridge.models import AuthContext, Message, Role, User, utcnow

MAX_MESSAGE_LENGTH = 5000


def parse_limit(raw: Any, default: int = DEFAULT_MESSAGE_LIMIT, maximum: int = 500) -> int:
    if raw in (None, ""):
        return default
    try:
        limit = int(raw)
    except (TypeError, ValueError):
        raise ValidationError("limit must be a whole number")
    if limit <= 0:
        raise ValidationError("limit must be positive")
    return min(limit, maximum)


def _pair(ctx: AuthContext, counterpart_id: str):
    """(patient_id, doctor_id) for the caller and the other party."""
    if ctx.role == Role.PATIENT:
        return ctx.user_id, counterpart_id
    return counterpart_id, ctx.user_id


def _require_assignment(session: Session, ctx: AuthContext, counterpart_id: str) -> None:
    patient_id, doctor_id = _pair(ctx, counterpart_id)
    if get_assignment(session, patient_id, doctor_id) is None:
        other = "doctor" if ctx.role == Role.PATIENT else "patient"
        raise Forbidden(f"No assignment found with this {other}")


def _between(a: str, b: str):
    return or_(
        and_(Message.sender_id == a, Message.receiver_id == b),
        and_(Message.sender_id == b, Message.receiver_id == a),
    )


def send_message(session: Session, ctx: AuthContext, counterpart_id: Optional[str],
                 content: Optional[str]) -> Message:
    counterpart_key = "doctorId" if ctx.role == Role.PATIENT else "patientId"
    content = (content or "").strip() if isinstance(content, str) else ""
    if not counterpart_id or not content:
        raise ValidationError(f"Missing required fields: {counterpart_key}, content")
    if len(content) > MAX_MESSAGE_LENGTH:
        raise ValidationError(f"content must be at most {MAX_MESSAGE_LENGTH} characters")

    counterpart_role = Role.DOCTOR if ctx.role == Role.PATIENT else Role.PATIENT
    counterpart = session.get(User, counterpart_id)
    if counterpart is None or counterpart.role != counterpart_role.value:
        raise NotFound(f"{counterpart_role.value.capitalize()} not found")

    _require_assignment(session, ctx, counterpart_id)
    message = Message(sender_id=ctx.user_id, receiver_id=counterpart_id, content=content)
    session.add(message)
    session.flush()
    return message


def conversation(session: Session, ctx: AuthContext, counterpart_id: str,
                 limit: int = DEFAULT_MESSAGE_LIMIT,
                 now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Oldest-first messages with one counterpart; marks the caller's unread ones as read."""
    _require_assignment(session, ctx, counterpart_id)
    messages = session.scalars(
        select(Message)
        .where(_between(ctx.user_id, counterpart_id))
        .order_by(Message.created_at.asc())
        .limit(limit)
    ).all()
    result = [m.to_dict(ctx.user_id) for m in messages]
    session.execute(
        update(Message)
        .where(
            Message.sender_id == counterpart_id,
            Message.receiver_id == ctx.user_id,
            Message.read_at.is_(None),
        )
        .values(read_at=now or utcnow())
    )
    return result


def unread_count(session: Session, user_id: str) -> int:
    return session.scalar(
        select(func.count(Message.id)).where(
            Message.receiver_id == user_id,
            Message.read_at.is_(None),
        )
    ) or 0


def conversations(session: Session, user_id: str) -> List[Dict[str, Any]]:
    """Latest message with every counterpart, newest conversation first."""
    messages = session.scalars(
        select(Message)
        .where(or_(Message.sender_id == user_id, Message.receiver_id == user_id))
        .order_by(Message.created_at.desc())
    ).all()
    latest: Dict[str, Message] = {}
    for message in messages:
        other = message.receiver_id if message.sender_id == user_id else message.sender_id
        latest.setdefault(other, message)

    result = []
    for other_id, message in latest.items():
        other = session.get(User, other_id)
        result.append({
            "counterpart": other.summary() if other else {"id": other_id},
            "lastMessage": message.to_dict(user_id),
        })
    return result
