"""
Doctor discovery, condition-based recommendations and patient→doctor assignment.
"""

import re
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from carebridge.config import MAX_PROFILE_LEVEL, MEDICAL_CONDITIONS
from carebridge.errors import Conflict, NotFound, ValidationError
from carebridge.models import Assignment, DoctorProfile, Role, User

# Highest-priority degree first.
DEGREE_PATTERNS = [
    re.compile(r"\bMD\b|M\.D\.|Doctor of Medicine", re.I),
    re.compile(r"\bMBBS\b|M\.B\.B\.S\.", re.I),
    re.compile(r"\bDO\b|D\.O\.|Doctor of Osteopathic Medicine", re.I),
    re.compile(r"\bMS\b|M\.S\.|Master of Science", re.I),
    re.compile(r"\bMA\b|M\.A\.|Master of Arts", re.I),
]


def extract_degree(qualifications: Optional[List[str]]) -> Optional[str]:
    """Pick the most relevant degree from a doctor's qualification list."""
    if not qualifications:
        return None
    for pattern in DEGREE_PATTERNS:
        for qualification in qualifications:
            if pattern.search(qualification):
                return qualification
    return qualifications[0]


def readable_condition(value: str) -> str:
    return MEDICAL_CONDITIONS.get(value, value.lower().replace("_", " "))


def match_reason(profile: Optional[DoctorProfile], conditions: List[str]) -> Optional[str]:
    """Why a doctor fits the patient's conditions, or None if they do not."""
    if profile is None:
        return None
    specialization = (profile.specialization or "").lower()
    treated = [c.lower() for c in (profile.conditions_treated or [])]
    for condition in conditions:
        term = readable_condition(condition).lower()
        if term and term in specialization:
            return f"Specializes in {profile.specialization}"
        if any(term in t or t in term for t in treated):
            return f"Treats {readable_condition(condition)}"
    return None


def _assigned_doctor_ids(session: Session, patient_id: str) -> set:
    return set(session.scalars(
        select(Assignment.doctor_id).where(Assignment.patient_id == patient_id)
    ))


def _complete_doctors(session: Session) -> List[User]:
    doctors = session.scalars(
        select(User)
        .where(User.role == Role.DOCTOR.value, User.profile_level == MAX_PROFILE_LEVEL)
    ).all()
    return sorted(
        doctors,
        key=lambda d: (d.doctor_profile.experience_years or 0) if d.doctor_profile else 0,
        reverse=True,
    )


def _doctor_card(doctor: User, assigned: set, reason: str) -> Dict[str, Any]:
    profile = doctor.doctor_profile
    return {
        "doctorId": doctor.id,
        "name": doctor.name,
        "degree": extract_degree(profile.qualifications if profile else None),
        "specialization": (profile.specialization if profile else None) or "General Practice",
        "yearsOfExperience": (profile.experience_years if profile else None) or 0,
        "hospital": profile.clinic_name if profile else None,
        "consultationMode": profile.consultation_mode if profile else None,
        "availability": profile.availability if profile else None,
        "isCurrentlyAssigned": doctor.id in assigned,
        "matchReason": reason,
    }


def list_doctors(session: Session, patient_id: str) -> List[Dict[str, Any]]:
    """All doctors with a fully completed profile, most experienced first."""
    assigned = _assigned_doctor_ids(session, patient_id)
    return [
        _doctor_card(d, assigned, "Available for consultation")
        for d in _complete_doctors(session)
    ]


def recommend_doctors(session: Session, patient_id: str) -> Dict[str, Any]:
    """Doctors whose specialization or treated conditions match the patient's problem or symptoms."""
    patient = session.get(User, patient_id)
    profile = patient.patient_profile if patient else None
    if profile is None:
        raise NotFound("Patient profile not found. Please complete your profile first.")

    conditions = [c for c in [profile.primary_problem, *(profile.symptoms or [])] if c]
    if not conditions:
        raise ValidationError(
            "No medical conditions found. Please update your profile with primary problem or symptoms."
        )

    assigned = _assigned_doctor_ids(session, patient_id)
    recommended = []
    for doctor in _complete_doctors(session):
        reason = match_reason(doctor.doctor_profile, conditions)
        if reason:
            recommended.append(_doctor_card(doctor, assigned, reason))

    return {
        "recommendedDoctors": recommended,
        "totalRecommendations": len(recommended),
        "patientConditions": conditions,
        "matchingCriteria": {
            "primaryProblem": profile.primary_problem,
            "symptoms": list(profile.symptoms or []),
        },
    }


def assign_doctor(session: Session, patient_id: str, doctor_id: str) -> Assignment:
    """Record the patient's choice of a doctor."""
    if not doctor_id:
        raise ValidationError("Doctor ID is required")

    doctor = session.scalar(
        select(User).where(User.id == doctor_id, User.role == Role.DOCTOR.value)
    )
    if doctor is None:
        raise NotFound("Doctor not found")
    if doctor.profile_level < 1:
        raise ValidationError("Doctor profile is incomplete. Please choose another doctor.")

    existing = session.scalar(
        select(Assignment).where(
            Assignment.patient_id == patient_id,
            Assignment.doctor_id == doctor_id,
        )
    )
    if existing is not None:
        raise Conflict("You are already assigned to this doctor")

    assignment = Assignment(patient_id=patient_id, doctor_id=doctor_id)
    session.add(assignment)
    try:
        session.flush()
    except IntegrityError:
        raise Conflict("You are already assigned to this doctor")
    print(f"[assign] patient {patient_id} assigned doctor {doctor_id}")
    return assignment


def assigned_doctors(session: Session, patient_id: str) -> List[Dict[str, Any]]:
    rows = session.scalars(
        select(Assignment).where(Assignment.patient_id == patient_id)
        .order_by(Assignment.assigned_at)
    ).all()
    return [a.doctor.summary() for a in rows]


def assigned_patients(session: Session, doctor_id: str) -> List[Dict[str, Any]]:
    rows = session.scalars(
        select(Assignment).where(Assignment.doctor_id == doctor_id)
        .order_by(Assignment.assigned_at)
    ).all()
    return [a.patient.summary() for a in rows]
