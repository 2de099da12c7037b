"""
Profile-tier gate – computes a user's unlocked feature level from stored profile
data, ratchets it upward on every profile save and blocks callers below a
required level.

Levels are cumulative: level N is unlocked only when every checklist up to
and including N is complete. The stored level never decreases, even when a
later edit clears a field that an earlier level depended on.
"""

from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import urlparse

from sqlalchemy.orm import Session

from carebridge.config import (
    CONSULTATION_MODES,
    CONSULTATION_PREFERENCES,
    GENDERS,
    HEART_RATE_RANGE,
    MAX_SYMPTOMS,
    MEDICAL_CONDITIONS,
    OXYGEN_RANGE,
)
from carebridge.errors import Forbidden, NotFound, ValidationError
from carebridge.models import AuthContext, DoctorProfile, PatientProfile, Role, User
from carebridge.rbac import load_auth_context

PROFILE_REQUIRED_MESSAGE = "Please complete your profile to access this feature"


# ── Checklists ───────────────────────────────────────────────────────

def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple)):
        return len(value) > 0
    return True


def _patient_checklists(p: PatientProfile) -> List[bool]:
    symptoms = p.symptoms or []
    level1 = (
        _present(p.age)
        and _present(p.gender)
        and _present(p.primary_problem)
        and 1 <= len(symptoms) <= MAX_SYMPTOMS
        and _present(p.consultation_preference)
    )
    level2 = any(_present(v) for v in (
        p.medical_history,
        p.current_medications,
        p.emergency_contact_name,
        p.emergency_contact_phone,
    ))
    level3 = all(_present(v) for v in (
        p.vitals_bp, p.vitals_sugar, p.vitals_heart_rate, p.vitals_oxygen,
    ))
    return [level1, level2, level3]


def _doctor_checklists(d: DoctorProfile) -> List[bool]:
    level1 = (
        _present(d.specialization)
        and d.experience_years is not None
        and _present(d.conditions_treated)
        and d.consultation_mode in CONSULTATION_MODES
        and _present(d.availability)
    )
    level2 = _present(d.qualifications) and _present(d.clinic_name)
    level3 = _present(d.license_document) and _present(d.bio)
    return [level1, level2, level3]


def compute_level(role: Role, profile: Any) -> int:
    """Highest level whose cumulative checklist is satisfied by *profile*."""
    if profile is None:
        return 0
    checks = _patient_checklists(profile) if role == Role.PATIENT else _doctor_checklists(profile)
    level = 0
    for satisfied in checks:
        if not satisfied:
            break
        level += 1
    return level


def ratchet_level(user: User, profile: Any) -> int:
    """Raise the stored level to the computed one; never lower it."""
    computed = compute_level(Role(user.role), profile)
    if computed > user.profile_level:
        print(f"[profile] user {user.id} level {user.profile_level} -> {computed}")
        user.profile_level = computed
    return user.profile_level


def require_level(session: Session, user_id: str, required_level: int) -> AuthContext:
    """Fetch the caller's current level and reject them if it is below *required_level*."""
    ctx = load_auth_context(session, {"user_id": user_id})
    if ctx.profile_level < required_level:
        raise Forbidden(PROFILE_REQUIRED_MESSAGE)
    return ctx


# ── Field validation ─────────────────────────────────────────────────

def _as_int(name: str, value: Any, minimum: Optional[int] = None,
            maximum: Optional[int] = None, message: Optional[str] = None) -> int:
    if isinstance(value, bool):
        raise ValidationError(message or f"{name} must be a whole number")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(message or f"{name} must be a whole number")
    if isinstance(value, float) and value != number:
        raise ValidationError(message or f"{name} must be a whole number")
    if (minimum is not None and number < minimum) or (maximum is not None and number > maximum):
        raise ValidationError(message or f"{name} is out of range")
    return number


def _as_text(name: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} must be a non-empty string")
    return value.strip()


def _as_list(name: str, value: Any) -> List[str]:
    if not isinstance(value, list):
        raise ValidationError(f"{name} must be an array")
    return [str(item).strip() for item in value if str(item).strip()]


def _one_of(name: str, value: Any, allowed) -> str:
    if not isinstance(value, str) or value not in allowed:
        raise ValidationError(f"Invalid {name} value")
    return value


def _non_empty_list(name: str, value: Any) -> List[str]:
    items = _as_list(name, value)
    if not items:
        raise ValidationError(f"{name} must be a non-empty array")
    return items


def _symptoms(value: Any) -> List[str]:
    items = _as_list("symptoms", value)
    if not 1 <= len(items) <= MAX_SYMPTOMS:
        raise ValidationError(f"Symptoms must be an array with 1-{MAX_SYMPTOMS} items")
    return items


def _url(value: Any) -> str:
    text = _as_text("licenseDocument", value)
    parsed = urlparse(text)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError("licenseDocument must be a valid URL")
    return text


def _fee(value: Any) -> float:
    try:
        fee = float(value)
    except (TypeError, ValueError):
        raise ValidationError("consultationFee must be a positive number")
    if fee < 0:
        raise ValidationError("consultationFee must be a positive number")
    return fee


def validate_vitals(data: Dict[str, Any]) -> None:
    """Reject out-of-range heart rate or oxygen regardless of any other field."""
    low, high = HEART_RATE_RANGE
    if _present(data.get("vitalsHeartRate")):
        _as_int("vitalsHeartRate", data["vitalsHeartRate"], low, high,
                f"vitalsHeartRate must be between {low}-{high} bpm")
    low, high = OXYGEN_RANGE
    if _present(data.get("vitalsOxygen")):
        _as_int("vitalsOxygen", data["vitalsOxygen"], low, high,
                f"vitalsOxygen must be between {low}-{high}%")


# (request key, model attribute, converter); None in the body clears the field.
Field = Tuple[str, str, Callable[[Any], Any]]

PATIENT_BASIC: List[Field] = [
    ("age", "age", lambda v: _as_int("age", v, 1, 150)),
    ("gender", "gender", lambda v: _one_of("gender", v, GENDERS)),
    ("primaryProblem", "primary_problem", lambda v: _one_of("primary problem", v, MEDICAL_CONDITIONS)),
    ("symptoms", "symptoms", _symptoms),
    ("consultationPreference", "consultation_preference",
     lambda v: _one_of("consultation preference", v, CONSULTATION_PREFERENCES)),
]

PATIENT_RECOMMENDED: List[Field] = [
    ("medicalHistory", "medical_history", lambda v: _as_list("medicalHistory", v)),
    ("currentMedications", "current_medications", lambda v: _as_list("currentMedications", v)),
    ("emergencyContactName", "emergency_contact_name", lambda v: _as_text("emergencyContactName", v)),
    ("emergencyContactPhone", "emergency_contact_phone", lambda v: _as_text("emergencyContactPhone", v)),
    ("emergencyContactRelationship", "emergency_contact_relationship",
     lambda v: _as_text("emergencyContactRelationship", v)),
    ("lifestyleSmoking", "lifestyle_smoking", lambda v: _as_text("lifestyleSmoking", v)),
    ("lifestyleDrinking", "lifestyle_drinking", lambda v: _as_text("lifestyleDrinking", v)),
    ("lifestyleExercise", "lifestyle_exercise", lambda v: _as_text("lifestyleExercise", v)),
]

PATIENT_ADVANCED: List[Field] = [
    ("vitalsBp", "vitals_bp", lambda v: _as_text("vitalsBp", v)),
    ("vitalsSugar", "vitals_sugar", lambda v: _as_text("vitalsSugar", str(v))),
    ("vitalsHeartRate", "vitals_heart_rate", lambda v: _as_int("vitalsHeartRate", v)),
    ("vitalsOxygen", "vitals_oxygen", lambda v: _as_int("vitalsOxygen", v)),
]

DOCTOR_BASIC: List[Field] = [
    ("specialization", "specialization", lambda v: _as_text("specialization", v)),
    ("experienceYears", "experience_years", lambda v: _as_int("experienceYears", v, 0, 80)),
    ("conditionsTreated", "conditions_treated", lambda v: _non_empty_list("conditionsTreated", v)),
    ("consultationMode", "consultation_mode",
     lambda v: _one_of("consultation mode", v, CONSULTATION_MODES)),
    ("availability", "availability", lambda v: _as_text("availability", v)),
]

DOCTOR_RECOMMENDED: List[Field] = [
    ("qualifications", "qualifications", lambda v: _as_list("qualifications", v)),
    ("clinicName", "clinic_name", lambda v: _as_text("clinicName", v)),
    ("consultationFee", "consultation_fee", _fee),
]

DOCTOR_ADVANCED: List[Field] = [
    ("licenseDocument", "license_document", _url),
    ("bio", "bio", lambda v: _as_text("bio", v)),
]

SECTIONS = {
    "basic": {Role.PATIENT: PATIENT_BASIC, Role.DOCTOR: DOCTOR_BASIC},
    "recommended": {Role.PATIENT: PATIENT_RECOMMENDED, Role.DOCTOR: DOCTOR_RECOMMENDED},
    "advanced": {Role.PATIENT: PATIENT_ADVANCED, Role.DOCTOR: DOCTOR_ADVANCED},
}

_LIST_ATTRS = {
    "symptoms", "medical_history", "current_medications",
    "conditions_treated", "qualifications",
}


# ── Saving sections ──────────────────────────────────────────────────

def get_profile(user: User) -> Optional[Any]:
    return user.patient_profile if user.role == Role.PATIENT.value else user.doctor_profile


def save_section(session: Session, ctx: AuthContext, section: str, data: Dict[str, Any]) -> int:
    """Validate and store one profile section, then ratchet the caller's level.

    Only keys present in *data* are touched. The basic section creates the
    profile; later sections require it to exist. Returns the stored level.
    """
    if section not in SECTIONS:
        raise NotFound(f"Unknown profile section '{section}'")
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")

    if ctx.role == Role.PATIENT and section == "advanced":
        validate_vitals(data)

    fields = SECTIONS[section][ctx.role]
    updates = {}
    for key, attr, convert in fields:
        if key not in data:
            continue
        value = data[key]
        if value is None or (isinstance(value, str) and not value.strip()):
            updates[attr] = [] if attr in _LIST_ATTRS else None
        else:
            updates[attr] = convert(value)

    user = session.get(User, ctx.user_id)
    if user is None:
        raise NotFound("User not found")

    profile = get_profile(user)
    if profile is None:
        if section != "basic":
            raise ValidationError("Please complete basic profile first")
        profile = PatientProfile(user_id=user.id) if ctx.role == Role.PATIENT else DoctorProfile(user_id=user.id)
        session.add(profile)
        if ctx.role == Role.PATIENT:
            user.patient_profile = profile
        else:
            user.doctor_profile = profile

    for attr, value in updates.items():
        setattr(profile, attr, value)

    level = ratchet_level(user, profile)
    session.flush()
    return level


def profile_completeness(profile: Optional[PatientProfile]) -> int:
    """Percentage of the patient profile fields that hold a value."""
    if profile is None:
        return 0
    attrs = [
        "age", "gender", "primary_problem", "symptoms", "consultation_preference",
        "medical_history", "current_medications", "emergency_contact_name",
        "vitals_bp", "vitals_sugar", "vitals_heart_rate", "vitals_oxygen",
    ]
    filled = sum(1 for attr in attrs if _present(getattr(profile, attr)))
    return round(filled * 100 / len(attrs))


# ── Dashboard visibility ─────────────────────────────────────────────

_PROFILE_FIRST = "Please complete your profile to view these records"
_FULL_DOCTOR_PROFILE = "Complete your full professional profile"

# (section, level that unlocks it, message while locked)
DASHBOARD_SECTIONS = {
    Role.PATIENT: [
        ("doctorAssigned", 1, _PROFILE_FIRST),
        ("medicalRecords", 1, "Complete basic profile to access medical records"),
        ("messages", 1, "Complete basic profile to access secure messaging"),
        ("appointments", 1, _PROFILE_FIRST),
        ("healthMetrics", 3, "Complete advanced profile to access health metrics"),
        ("aiInsights", 3, "Complete advanced profile to access AI insights"),
    ],
    Role.DOCTOR: [
        ("patients", 3, f"{_FULL_DOCTOR_PROFILE} (including license document and bio) to start accepting patients"),
        ("records", 3, f"{_FULL_DOCTOR_PROFILE} to access patient medical records"),
        ("messages", 3, f"{_FULL_DOCTOR_PROFILE} to enable messaging with patients"),
        ("appointments", 3, f"{_FULL_DOCTOR_PROFILE} to manage appointments"),
    ],
}

NEXT_STEPS = {
    Role.PATIENT: [
        "Complete your basic patient profile to get started",
        "Add recommended information to unlock health metrics and AI insights",
        "Complete advanced profile to access all features including AI insights",
        "Your profile is complete! Explore all available features",
    ],
    Role.DOCTOR: [
        "Complete your basic professional information",
        "Add your qualifications and clinic information",
        "Upload your license document and add a short bio",
        "Your profile is complete!",
    ],
}


def section_visibility(role: Role, level: int) -> Dict[str, Dict[str, Any]]:
    return {
        name: {"visible": level >= required, "message": None if level >= required else message}
        for name, required, message in DASHBOARD_SECTIONS[role]
    }


def next_recommended_step(role: Role, level: int) -> str:
    steps = NEXT_STEPS[role]
    return steps[min(max(level, 0), len(steps) - 1)]
