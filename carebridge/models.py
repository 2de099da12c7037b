"""
ORM tables and domain dataclasses used across the application.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every datetime column stores."""
    return datetime.utcnow()


def new_id() -> str:
    return uuid.uuid4().hex


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


class Role(str, Enum):
    PATIENT = "PATIENT"
    DOCTOR = "DOCTOR"


class GrantStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DENIED = "DENIED"
    REVOKED = "REVOKED"


@dataclass(frozen=True)
class AuthContext:
    """The authenticated caller, resolved once per request and passed explicitly."""
    user_id: str
    role: Role
    profile_level: int
    name: str
    email: str


class Base(DeclarativeBase):
    pass


# ── Identity / profiles ──────────────────────────────────────────────

class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    profile_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    patient_profile: Mapped[Optional["PatientProfile"]] = relationship(
        back_populates="user", uselist=False
    )
    doctor_profile: Mapped[Optional["DoctorProfile"]] = relationship(
        back_populates="user", uselist=False
    )

    def summary(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "email": self.email}

    def __repr__(self) -> str:
        return f"<User(id={self.id}, role={self.role}, profile_level={self.profile_level})>"


class PatientProfile(Base):
    __tablename__ = "patient_profiles"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), unique=True, nullable=False)

    # Level 1
    age: Mapped[Optional[int]] = mapped_column(Integer)
    gender: Mapped[Optional[str]] = mapped_column(String(32))
    primary_problem: Mapped[Optional[str]] = mapped_column(String(64))
    symptoms: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    consultation_preference: Mapped[Optional[str]] = mapped_column(String(32))

    # Level 2
    medical_history: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    current_medications: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    emergency_contact_name: Mapped[Optional[str]] = mapped_column(String(255))
    emergency_contact_phone: Mapped[Optional[str]] = mapped_column(String(64))
    emergency_contact_relationship: Mapped[Optional[str]] = mapped_column(String(64))
    lifestyle_smoking: Mapped[Optional[str]] = mapped_column(String(64))
    lifestyle_drinking: Mapped[Optional[str]] = mapped_column(String(64))
    lifestyle_exercise: Mapped[Optional[str]] = mapped_column(String(64))

    # Level 3
    vitals_bp: Mapped[Optional[str]] = mapped_column(String(32))
    vitals_sugar: Mapped[Optional[str]] = mapped_column(String(32))
    vitals_heart_rate: Mapped[Optional[int]] = mapped_column(Integer)
    vitals_oxygen: Mapped[Optional[int]] = mapped_column(Integer)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    user: Mapped[User] = relationship(back_populates="patient_profile")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "age": self.age,
            "gender": self.gender,
            "primaryProblem": self.primary_problem,
            "symptoms": list(self.symptoms or []),
            "consultationPreference": self.consultation_preference,
            "medicalHistory": list(self.medical_history or []),
            "currentMedications": list(self.current_medications or []),
            "emergencyContactName": self.emergency_contact_name,
            "emergencyContactPhone": self.emergency_contact_phone,
            "emergencyContactRelationship": self.emergency_contact_relationship,
            "lifestyleSmoking": self.lifestyle_smoking,
            "lifestyleDrinking": self.lifestyle_drinking,
            "lifestyleExercise": self.lifestyle_exercise,
            "vitalsBp": self.vitals_bp,
            "vitalsSugar": self.vitals_sugar,
            "vitalsHeartRate": self.vitals_heart_rate,
            "vitalsOxygen": self.vitals_oxygen,
            "updatedAt": _iso(self.updated_at),
        }


class DoctorProfile(Base):
    __tablename__ = "doctor_profiles"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), unique=True, nullable=False)

    # Level 1
    specialization: Mapped[Optional[str]] = mapped_column(String(255))
    experience_years: Mapped[Optional[int]] = mapped_column(Integer)
    conditions_treated: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    consultation_mode: Mapped[Optional[str]] = mapped_column(String(32))
    availability: Mapped[Optional[str]] = mapped_column(Text)

    # Level 2
    qualifications: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    clinic_name: Mapped[Optional[str]] = mapped_column(String(255))
    consultation_fee: Mapped[Optional[float]] = mapped_column(Float)

    # Level 3
    license_document: Mapped[Optional[str]] = mapped_column(String(1024))
    bio: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    user: Mapped[User] = relationship(back_populates="doctor_profile")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "specialization": self.specialization,
            "experienceYears": self.experience_years,
            "conditionsTreated": list(self.conditions_treated or []),
            "consultationMode": self.consultation_mode,
            "availability": self.availability,
            "qualifications": list(self.qualifications or []),
            "clinicName": self.clinic_name,
            "consultationFee": self.consultation_fee,
            "licenseDocument": self.license_document,
            "bio": self.bio,
            "updatedAt": _iso(self.updated_at),
        }


# ── Consent ──────────────────────────────────────────────────────────

class Assignment(Base):
    """A patient's choice of a doctor; prerequisite for any access grant."""

    __tablename__ = "assignments"
    __table_args__ = (UniqueConstraint("patient_id", "doctor_id", name="uq_assignment_pair"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    patient_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True, nullable=False)
    doctor_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True, nullable=False)
    assigned_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    patient: Mapped[User] = relationship(foreign_keys=[patient_id])
    doctor: Mapped[User] = relationship(foreign_keys=[doctor_id])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "patientId": self.patient_id,
            "doctorId": self.doctor_id,
            "assignedAt": _iso(self.assigned_at),
        }


class AccessGrant(Base):
    """Consent record controlling one doctor's read access to one patient's data."""

    __tablename__ = "access_grants"
    __table_args__ = (UniqueConstraint("patient_id", "doctor_id", name="uq_access_grant_pair"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    patient_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True, nullable=False)
    doctor_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True, nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=GrantStatus.PENDING.value
    )
    requested_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    granted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    patient: Mapped[User] = relationship(foreign_keys=[patient_id])
    doctor: Mapped[User] = relationship(foreign_keys=[doctor_id])

    def is_active(self, now: datetime) -> bool:
        return self.status == GrantStatus.APPROVED.value and (
            self.expires_at is None or self.expires_at > now
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "patientId": self.patient_id,
            "doctorId": self.doctor_id,
            "status": self.status,
            "requestedAt": _iso(self.requested_at),
            "grantedAt": _iso(self.granted_at),
            "expiresAt": _iso(self.expires_at),
            "updatedAt": _iso(self.updated_at),
        }


# ── Patient-owned data ───────────────────────────────────────────────

class MedicalRecord(Base):
    __tablename__ = "medical_records"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    patient_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True, nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    record_type: Mapped[str] = mapped_column(String(32), nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    stored_name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(128), nullable=False)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "patientId": self.patient_id,
            "title": self.title,
            "description": self.description,
            "recordType": self.record_type,
            "fileName": self.file_name,
            "fileUrl": f"/api/files/{self.stored_name}",
            "fileSize": self.file_size,
            "mimeType": self.mime_type,
            "uploadedAt": _iso(self.uploaded_at),
        }


class HealthMetric(Base):
    __tablename__ = "health_metrics"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    patient_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True, nullable=False)
    metric_type: Mapped[str] = mapped_column(String(32), nullable=False)
    value: Mapped[str] = mapped_column(String(255), nullable=False)
    unit: Mapped[Optional[str]] = mapped_column(String(32))
    recorded_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "patientId": self.patient_id,
            "metricType": self.metric_type,
            "value": self.value,
            "unit": self.unit,
            "recordedAt": _iso(self.recorded_at),
        }


class Message(Base):
    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    sender_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True, nullable=False)
    receiver_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    def to_dict(self, viewer_id: Optional[str] = None) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "senderId": self.sender_id,
            "receiverId": self.receiver_id,
            "content": self.content,
            "createdAt": _iso(self.created_at),
            "readAt": _iso(self.read_at),
        }
        if viewer_id is not None:
            data["fromMe"] = self.sender_id == viewer_id
        return data


class Appointment(Base):
    __tablename__ = "appointments"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    doctor_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True, nullable=False)
    patient_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True, nullable=False)
    created_by_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime, index=True, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    meet_link: Mapped[str] = mapped_column(String(1024), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    doctor: Mapped[User] = relationship(foreign_keys=[doctor_id])
    patient: Mapped[User] = relationship(foreign_keys=[patient_id])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "doctorId": self.doctor_id,
            "patientId": self.patient_id,
            "createdById": self.created_by_id,
            "doctor": {"id": self.doctor.id, "name": self.doctor.name},
            "patient": {"id": self.patient.id, "name": self.patient.name},
            "scheduledAt": _iso(self.scheduled_at),
            "durationMinutes": self.duration_minutes,
            "meetLink": self.meet_link,
            "notes": self.notes,
        }
