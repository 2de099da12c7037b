"""
Per-role dashboards. A dashboard never blocks: it reports which sections the
caller's profile level unlocks and fills in only the unlocked ones.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from carebridge.access import doctor_requests
from carebridge.analysis import generate_insights, vitals_metrics
from carebridge.appointments import upcoming_appointments
from carebridge.directory import assigned_doctors, assigned_patients
from carebridge.messaging import unread_count
from carebridge.models import AuthContext, User, _iso, utcnow
from carebridge.records import list_records
from carebridge.tiers import next_recommended_step, section_visibility

RECENT_RECORDS = 3
RECENT_PATIENTS = 5


def _frame(ctx: AuthContext) -> Dict[str, Any]:
    return {
        "profileLevel": ctx.profile_level,
        "sectionVisibility": section_visibility(ctx.role, ctx.profile_level),
        "nextRecommendedStep": next_recommended_step(ctx.role, ctx.profile_level),
        "sections": {},
    }


def _appointments(session: Session, ctx: AuthContext, now: datetime) -> Dict[str, Any]:
    upcoming = upcoming_appointments(session, ctx, now)
    return {"upcoming": len(upcoming), "nextAppointment": upcoming[0] if upcoming else None}


def patient_dashboard(session: Session, ctx: AuthContext,
                      now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    body = _frame(ctx)
    visible = {name for name, v in body["sectionVisibility"].items() if v["visible"]}
    sections = body["sections"]
    profile = session.get(User, ctx.user_id).patient_profile
    records = list_records(session, ctx.user_id)

    if "doctorAssigned" in visible:
        doctors = assigned_doctors(session, ctx.user_id)
        sections["doctorAssigned"] = {"assigned": bool(doctors), "doctors": doctors}
    if "medicalRecords" in visible:
        sections["medicalRecords"] = {
            "totalRecords": len(records),
            "recentRecords": [r.to_dict() for r in records[:RECENT_RECORDS]],
        }
    if "messages" in visible:
        sections["messages"] = {"unreadCount": unread_count(session, ctx.user_id)}
    if "appointments" in visible:
        sections["appointments"] = _appointments(session, ctx, now)
    if "healthMetrics" in visible and profile is not None:
        sections["healthMetrics"] = {
            "vitals": vitals_metrics(profile),
            "lastUpdated": _iso(profile.updated_at),
        }
    if "aiInsights" in visible and profile is not None:
        sections["aiInsights"] = {
            "available": True,
            "insights": generate_insights(profile, records, now),
        }
    return body


def doctor_dashboard(session: Session, ctx: AuthContext,
                     now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    body = _frame(ctx)
    visible = {name for name, v in body["sectionVisibility"].items() if v["visible"]}
    sections = body["sections"]
    profile = session.get(User, ctx.user_id).doctor_profile
    body["doctorProfile"] = profile.to_dict() if profile is not None else None

    if "patients" in visible:
        patients = assigned_patients(session, ctx.user_id)
        sections["patients"] = {
            "patientsCount": len(patients),
            "recentPatients": patients[-RECENT_PATIENTS:][::-1],
        }
    if "records" in visible:
        requests = doctor_requests(session, ctx.user_id, now)
        sections["records"] = {
            "activePatients": sum(1 for g in requests["approvedRequests"] if g["isActive"]),
            "pendingRequests": len(requests["pendingRequests"]),
            "totalConsents": requests["totalRequests"],
        }
    if "messages" in visible:
        sections["messages"] = {"unreadCount": unread_count(session, ctx.user_id)}
    if "appointments" in visible:
        sections["appointments"] = _appointments(session, ctx, now)
    return body
