"""
Appointment booking between assigned doctor/patient pairs.
"""

import re
from datetime import datetime, time, timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from sqlalchemy import select
from sqlalchemy.orm import Session

from carebridge.access import get_assignment
from carebridge.config import MEET_HOSTNAME
from carebridge.errors import Forbidden, NotFound, ValidationError
from carebridge.models import Appointment, AuthContext, Role, utcnow

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_RE = re.compile(r"^\d{2}:\d{2}$")


def parse_date(value: str) -> Optional[datetime]:
    if not isinstance(value, str) or not _DATE_RE.match(value):
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        return None


def parse_time(value: str) -> Optional[time]:
    if not isinstance(value, str) or not _TIME_RE.match(value):
        return None
    try:
        return datetime.strptime(value, "%H:%M").time()
    except ValueError:
        return None


def is_meet_link(value: str) -> bool:
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and parsed.hostname == MEET_HOSTNAME


def list_appointments(session: Session, ctx: AuthContext, date_from: Optional[str] = None,
                      date_to: Optional[str] = None) -> List[Dict[str, Any]]:
    """The caller's appointments, optionally within an inclusive date range."""
    owner = Appointment.doctor_id if ctx.role == Role.DOCTOR else Appointment.patient_id
    stmt = select(Appointment).where(owner == ctx.user_id)

    start, end = parse_date(date_from), parse_date(date_to)
    if start and end:
        stmt = stmt.where(
            Appointment.scheduled_at >= start,
            Appointment.scheduled_at < end + timedelta(days=1),
        )
    rows = session.scalars(stmt.order_by(Appointment.scheduled_at.asc())).all()
    return [a.to_dict() for a in rows]


def upcoming_appointments(session: Session, ctx: AuthContext,
                          now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    now = now or utcnow()
    owner = Appointment.doctor_id if ctx.role == Role.DOCTOR else Appointment.patient_id
    rows = session.scalars(
        select(Appointment)
        .where(owner == ctx.user_id, Appointment.scheduled_at >= now)
        .order_by(Appointment.scheduled_at.asc())
    ).all()
    return [a.to_dict() for a in rows]


def book_appointment(session: Session, ctx: AuthContext, data: Dict[str, Any],
                     now: Optional[datetime] = None) -> Appointment:
    """Schedule a call; each side may only book for themselves and only with an assigned party."""
    doctor_id = str(data.get("doctorId") or "")
    patient_id = str(data.get("patientId") or "")

    if ctx.role == Role.DOCTOR:
        doctor_id = doctor_id or ctx.user_id
        if doctor_id != ctx.user_id:
            raise Forbidden("Doctor can only schedule for self")
    else:
        patient_id = patient_id or ctx.user_id
        if patient_id != ctx.user_id:
            raise Forbidden("Patient can only schedule for self")

    if not doctor_id or not patient_id:
        raise ValidationError("Doctor and patient are required")

    day = parse_date(data.get("date"))
    if day is None:
        raise ValidationError("Invalid appointment date")
    start = parse_time(data.get("startTime"))
    if start is None:
        raise ValidationError("Invalid start time")

    duration = data.get("durationMinutes")
    if isinstance(duration, bool) or not isinstance(duration, int) or duration <= 0:
        raise ValidationError("Duration must be a positive number")

    meet_link = str(data.get("meetLink") or "")
    if not meet_link or not is_meet_link(meet_link):
        raise ValidationError("Invalid Google Meet link")

    if get_assignment(session, patient_id, doctor_id) is None:
        raise Forbidden("Doctor and patient are not assigned")

    scheduled_at = datetime.combine(day.date(), start)
    if scheduled_at <= (now or utcnow()):
        raise ValidationError("Appointment must be in the future")

    notes = data.get("notes")
    notes = notes.strip() if isinstance(notes, str) else None

    appointment = Appointment(
        doctor_id=doctor_id,
        patient_id=patient_id,
        created_by_id=ctx.user_id,
        scheduled_at=scheduled_at,
        duration_minutes=duration,
        meet_link=meet_link,
        notes=notes or None,
    )
    session.add(appointment)
    session.flush()
    print(f"[appointments] {ctx.role.value.lower()} {ctx.user_id} booked {appointment.id}")
    return appointment


def cancel_appointment(session: Session, ctx: AuthContext, appointment_id: Optional[str]) -> None:
    if not appointment_id:
        raise ValidationError("Appointment id is required")
    appointment = session.get(Appointment, appointment_id)
    if appointment is None:
        raise NotFound("Appointment not found")
    if ctx.user_id not in (appointment.doctor_id, appointment.patient_id):
        raise Forbidden("Not allowed to delete this appointment")
    session.delete(appointment)
    session.flush()
