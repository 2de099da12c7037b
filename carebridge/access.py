"""
Access-grant authorizer – decides whether a doctor may read a patient's
protected data and drives the consent lifecycle:

    PENDING  --approve-->  APPROVED  --revoke-->  REVOKED
    PENDING  --deny----->  DENIED
    DENIED / REVOKED / expired APPROVED  --request-->  PENDING (same row)

There is exactly one grant row per (patient, doctor) pair, and a row can only
exist for an assigned pair. Expiry is evaluated lazily against the clock on
every check; nothing sweeps expired grants.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from carebridge.errors import Conflict, Forbidden, NotFound, ValidationError
from carebridge.models import AccessGrant, Assignment, GrantStatus, utcnow

DECISIONS = {GrantStatus.APPROVED.value, GrantStatus.DENIED.value, GrantStatus.REVOKED.value}


def get_assignment(session: Session, patient_id: str, doctor_id: str) -> Optional[Assignment]:
    return session.scalar(
        select(Assignment).where(
            Assignment.patient_id == patient_id,
            Assignment.doctor_id == doctor_id,
        )
    )


def get_grant(session: Session, patient_id: str, doctor_id: str) -> Optional[AccessGrant]:
    return session.scalar(
        select(AccessGrant).where(
            AccessGrant.patient_id == patient_id,
            AccessGrant.doctor_id == doctor_id,
        )
    )


def _expiry(expires_in_days: Any, now: datetime) -> Optional[datetime]:
    if expires_in_days is None or expires_in_days == "":
        return None
    if isinstance(expires_in_days, bool):
        raise ValidationError("expiresInDays must be a positive number")
    try:
        days = float(expires_in_days)
    except (TypeError, ValueError):
        raise ValidationError("expiresInDays must be a positive number")
    if days <= 0:
        raise ValidationError("expiresInDays must be a positive number")
    return now + timedelta(days=days)


def _reject_open_grant(grant: Optional[AccessGrant], now: datetime, who: str) -> None:
    if grant is None:
        return
    if grant.is_active(now):
        raise Conflict(f"Access already approved for this {who}")
    if grant.status == GrantStatus.PENDING.value:
        raise Conflict(f"Access request already pending for this {who}")


def _upsert(session: Session, grant: Optional[AccessGrant], patient_id: str,
            doctor_id: str, **values) -> AccessGrant:
    """Write the pair's single grant row; a concurrent insert surfaces as Conflict."""
    if grant is None:
        grant = AccessGrant(patient_id=patient_id, doctor_id=doctor_id, **values)
        session.add(grant)
    else:
        for attr, value in values.items():
            setattr(grant, attr, value)
    try:
        session.flush()
    except IntegrityError:
        raise Conflict("An access grant for this doctor and patient already exists")
    return grant


def request_access(session: Session, doctor_id: str, patient_id: str,
                   now: Optional[datetime] = None) -> AccessGrant:
    """Doctor asks the patient for access; creates or resets the grant to PENDING."""
    now = now or utcnow()
    if get_assignment(session, patient_id, doctor_id) is None:
        raise Forbidden("Access requests are limited to your assigned patients")

    grant = get_grant(session, patient_id, doctor_id)
    _reject_open_grant(grant, now, "patient")

    grant = _upsert(
        session, grant, patient_id, doctor_id,
        status=GrantStatus.PENDING.value,
        requested_at=now,
        granted_at=None,
        expires_at=None,
    )
    print(f"[access] doctor {doctor_id} requested access to patient {patient_id}")
    return grant


def grant_access(session: Session, patient_id: str, doctor_id: str,
                 expires_in_days: Any = None, now: Optional[datetime] = None) -> AccessGrant:
    """Patient grants an assigned doctor access directly, optionally for a limited time."""
    now = now or utcnow()
    expires_at = _expiry(expires_in_days, now)
    if get_assignment(session, patient_id, doctor_id) is None:
        raise Forbidden("Access can only be granted to your assigned doctors")

    grant = get_grant(session, patient_id, doctor_id)
    _reject_open_grant(grant, now, "doctor")

    grant = _upsert(
        session, grant, patient_id, doctor_id,
        status=GrantStatus.APPROVED.value,
        requested_at=grant.requested_at if grant is not None else now,
        granted_at=now,
        expires_at=expires_at,
    )
    print(f"[access] patient {patient_id} granted access to doctor {doctor_id}")
    return grant


def _owned_grant(session: Session, patient_id: str, grant_id: str) -> AccessGrant:
    grant = session.scalar(
        select(AccessGrant).where(
            AccessGrant.id == grant_id,
            AccessGrant.patient_id == patient_id,
        )
    )
    if grant is None:
        raise NotFound("Access grant not found")
    return grant


def decide(session: Session, patient_id: str, grant_id: str, decision: str,
           expires_in_days: Any = None, now: Optional[datetime] = None) -> AccessGrant:
    """Patient approves, denies or revokes one of their own grants.

    Approving stamps ``granted_at`` and replaces the expiry: without
    ``expires_in_days`` the approval is open-ended. Other decisions leave
    both untouched.
    """
    now = now or utcnow()
    decision = (decision or "").strip().upper()
    if decision not in DECISIONS:
        raise ValidationError("Invalid status. Must be APPROVED, DENIED, or REVOKED")

    approving = decision == GrantStatus.APPROVED.value
    expires_at = _expiry(expires_in_days, now) if approving else None

    grant = _owned_grant(session, patient_id, grant_id)
    grant.status = decision
    if approving:
        grant.granted_at = now
        grant.expires_at = expires_at
    session.flush()
    print(f"[access] patient {patient_id} set grant {grant_id} to {decision}")
    return grant


def revoke(session: Session, patient_id: str, grant_id: str) -> AccessGrant:
    """Revoke a grant whatever its current status."""
    grant = _owned_grant(session, patient_id, grant_id)
    grant.status = GrantStatus.REVOKED.value
    session.flush()
    print(f"[access] patient {patient_id} revoked grant {grant_id}")
    return grant


def is_active(session: Session, patient_id: str, doctor_id: str,
              now: Optional[datetime] = None) -> bool:
    """True iff an APPROVED grant exists whose expiry, if any, is still ahead of *now*."""
    now = now or utcnow()
    grant_id = session.scalar(
        select(AccessGrant.id).where(
            AccessGrant.patient_id == patient_id,
            AccessGrant.doctor_id == doctor_id,
            AccessGrant.status == GrantStatus.APPROVED.value,
            or_(AccessGrant.expires_at.is_(None), AccessGrant.expires_at > now),
        )
    )
    return grant_id is not None


def require_active_grant(session: Session, doctor_id: str, patient_id: str,
                         now: Optional[datetime] = None) -> None:
    if not is_active(session, patient_id, doctor_id, now):
        raise Forbidden("Access not approved for this patient")


def patient_grants(session: Session, patient_id: str,
                   now: Optional[datetime] = None) -> Dict[str, Any]:
    """A patient's consents split into active and pending, newest request first."""
    now = now or utcnow()
    grants = session.scalars(
        select(AccessGrant)
        .where(AccessGrant.patient_id == patient_id)
        .order_by(AccessGrant.requested_at.desc())
    ).all()
    return {
        "activeConsents": [_with_party(g, g.doctor, now, "doctor") for g in grants if g.is_active(now)],
        "pendingRequests": [
            _with_party(g, g.doctor, now, "doctor")
            for g in grants if g.status == GrantStatus.PENDING.value
        ],
        "totalGrants": len(grants),
    }


def doctor_requests(session: Session, doctor_id: str,
                    now: Optional[datetime] = None) -> Dict[str, Any]:
    """A doctor's requests split into pending and approved, newest request first."""
    now = now or utcnow()
    grants = session.scalars(
        select(AccessGrant)
        .where(AccessGrant.doctor_id == doctor_id)
        .order_by(AccessGrant.requested_at.desc())
    ).all()
    return {
        "pendingRequests": [
            _with_party(g, g.patient, now, "patient")
            for g in grants if g.status == GrantStatus.PENDING.value
        ],
        "approvedRequests": [
            _with_party(g, g.patient, now, "patient")
            for g in grants if g.status == GrantStatus.APPROVED.value
        ],
        "totalRequests": len(grants),
    }


def _with_party(grant: AccessGrant, party, now: datetime, key: str) -> Dict[str, Any]:
    data = grant.to_dict()
    data[key] = party.summary()
    data["isActive"] = grant.is_active(now)
    return data
