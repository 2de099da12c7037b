"""
Patient-owned medical records (with their uploaded files on local disk),
doctor credential documents and the patient's health metric log.
"""

import os
import secrets
import sys
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from carebridge.access import is_active
from carebridge.config import (
    ALLOWED_MIME_TYPES,
    DEFAULT_METRIC_LIMIT,
    DOCUMENT_TYPES,
    MAX_UPLOAD_BYTES,
    METRIC_TYPES,
    RECORD_TYPES,
)
from carebridge.errors import Forbidden, NotFound, ValidationError
from carebridge.models import AuthContext, HealthMetric, MedicalRecord, Role, _iso, utcnow


# ── File storage ─────────────────────────────────────────────────────

def _stored_name(original: str) -> str:
    ext = os.path.splitext(secure_filename(original or ""))[1].lower()
    return f"{int(time.time() * 1000)}-{secrets.token_hex(6)}{ext}"


def save_upload(upload: FileStorage, upload_dir: str) -> Dict[str, Any]:
    """Validate an uploaded file and write it under *upload_dir* with a generated name."""
    mime_type = (upload.mimetype or "").lower()
    if mime_type not in ALLOWED_MIME_TYPES:
        raise ValidationError("Invalid file type. Allowed: PDF, Images, Word documents, Text files")

    content = upload.read(MAX_UPLOAD_BYTES + 1)
    if len(content) > MAX_UPLOAD_BYTES:
        raise ValidationError("File too large. Maximum size is 10MB")
    if not content:
        raise ValidationError("Uploaded file is empty")

    os.makedirs(upload_dir, exist_ok=True)
    stored_name = _stored_name(upload.filename)
    with open(os.path.join(upload_dir, stored_name), "wb") as handle:
        handle.write(content)

    return {
        "file_name": upload.filename or stored_name,
        "stored_name": stored_name,
        "file_size": len(content),
        "mime_type": mime_type,
    }


def remove_upload(stored_name: str, upload_dir: str) -> None:
    path = os.path.join(upload_dir, stored_name)
    try:
        os.remove(path)
    except FileNotFoundError:
        print(f"[WARN] Could not delete local file (missing): {path}", file=sys.stderr)


# ── Medical records ──────────────────────────────────────────────────

def list_records(session: Session, patient_id: str) -> List[MedicalRecord]:
    return session.scalars(
        select(MedicalRecord)
        .where(MedicalRecord.patient_id == patient_id)
        .order_by(MedicalRecord.uploaded_at.desc())
    ).all()


def create_record(session: Session, patient_id: str, upload: Optional[FileStorage],
                  fields: Dict[str, Any], upload_dir: str) -> MedicalRecord:
    if upload is None or not upload.filename:
        raise ValidationError("No file uploaded")

    title = (fields.get("title") or "").strip()
    record_type = (fields.get("recordType") or "").strip()
    if not title or not record_type:
        raise ValidationError("Missing required fields: title, recordType")
    if record_type not in RECORD_TYPES:
        raise ValidationError("Invalid record type")

    stored = save_upload(upload, upload_dir)
    record = MedicalRecord(
        patient_id=patient_id,
        title=title,
        description=(fields.get("description") or "").strip() or None,
        record_type=record_type,
        **stored,
    )
    session.add(record)
    try:
        session.flush()
    except Exception:
        remove_upload(stored["stored_name"], upload_dir)
        raise
    print(f"[records] patient {patient_id} uploaded record {record.id}")
    return record


def delete_record(session: Session, patient_id: str, record_id: str, upload_dir: str) -> None:
    record = session.scalar(
        select(MedicalRecord).where(
            MedicalRecord.id == record_id,
            MedicalRecord.patient_id == patient_id,
        )
    )
    if record is None:
        raise NotFound("Record not found or access denied")
    stored_name = record.stored_name
    session.delete(record)
    session.flush()
    remove_upload(stored_name, upload_dir)


def resolve_file(session: Session, ctx: AuthContext, stored_name: str,
                 now: Optional[datetime] = None) -> MedicalRecord:
    """The record behind a stored file, if the caller owns it or holds an active grant."""
    record = session.scalar(select(MedicalRecord).where(MedicalRecord.stored_name == stored_name))
    if record is None:
        raise NotFound("File not found")
    if ctx.role == Role.PATIENT:
        if record.patient_id != ctx.user_id:
            raise NotFound("File not found")
    elif not is_active(session, record.patient_id, ctx.user_id, now):
        raise Forbidden("Access not approved for this patient")
    return record


# ── Doctor documents ─────────────────────────────────────────────────

def document_dir(upload_dir: str, doctor_id: str) -> str:
    return os.path.join(upload_dir, "doctor-documents", doctor_id)


def save_document(doctor_id: str, upload: Optional[FileStorage], fields: Dict[str, Any],
                  upload_dir: str) -> Dict[str, Any]:
    """Store a licence or certificate in the doctor's own document folder."""
    if upload is None or not upload.filename:
        raise ValidationError("No file provided")
    title = (fields.get("title") or "").strip()
    document_type = (fields.get("documentType") or "").strip()
    if not title or not document_type:
        raise ValidationError("Title and document type are required")
    if document_type not in DOCUMENT_TYPES:
        raise ValidationError("Invalid document type")

    stored = save_upload(upload, document_dir(upload_dir, doctor_id))
    print(f"[records] doctor {doctor_id} uploaded document {stored['stored_name']}")
    return {
        "id": stored["stored_name"],
        "title": title,
        "description": (fields.get("description") or "").strip() or None,
        "documentType": document_type,
        "fileName": stored["file_name"],
        "fileSize": stored["file_size"],
        "mimeType": stored["mime_type"],
        "fileUrl": f"/api/doctor/documents/{stored['stored_name']}",
        "uploadedAt": _iso(utcnow()),
    }


def resolve_document(doctor_id: str, stored_name: str, upload_dir: str) -> str:
    """The folder holding one of the doctor's own documents."""
    directory = document_dir(upload_dir, doctor_id)
    if secure_filename(stored_name) != stored_name or not os.path.isfile(os.path.join(directory, stored_name)):
        raise NotFound("Document not found")
    return directory


# ── Health metric log ────────────────────────────────────────────────

def record_metric(session: Session, patient_id: str, data: Dict[str, Any]) -> HealthMetric:
    metric_type = data.get("metricType")
    value = data.get("value")
    if not metric_type or value in (None, ""):
        raise ValidationError("Missing required fields: metricType, value")
    if not isinstance(metric_type, str) or metric_type not in METRIC_TYPES:
        raise ValidationError("Invalid metric type")

    recorded_at = utcnow()
    if data.get("recordedAt"):
        try:
            recorded_at = datetime.fromisoformat(str(data["recordedAt"]).replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError("recordedAt must be an ISO-8601 timestamp")
        if recorded_at.tzinfo is not None:
            recorded_at = recorded_at.astimezone(timezone.utc).replace(tzinfo=None)

    metric = HealthMetric(
        patient_id=patient_id,
        metric_type=metric_type,
        value=str(value),
        unit=(data.get("unit") or None),
        recorded_at=recorded_at,
    )
    session.add(metric)
    session.flush()
    return metric


def metric_history(session: Session, patient_id: str, metric_type: Optional[str] = None,
                   limit: int = DEFAULT_METRIC_LIMIT) -> List[HealthMetric]:
    stmt = select(HealthMetric).where(HealthMetric.patient_id == patient_id)
    if metric_type:
        stmt = stmt.where(HealthMetric.metric_type == metric_type)
    stmt = stmt.order_by(HealthMetric.recorded_at.desc())
    if limit:
        stmt = stmt.limit(limit)
    return session.scalars(stmt).all()
