"""
End-to-end tests for the REST API through the Flask test client: auth,
profile tiers, doctor assignment and the consent lifecycle.
"""

from datetime import timedelta

import jwt
from sqlalchemy import func, select

from carebridge.config import SECRET_KEY
from carebridge.database import session_scope
from carebridge.models import AccessGrant, utcnow

from conftest import DOCTOR_BASIC, PASSWORD, PATIENT_BASIC


# ── Tests: service / auth ────────────────────────────────────────────

def test_index_and_health(client):
    assert client.get("/").get_json()["status"] == "running"
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json()["checks"] == {"database": True, "llm": False}


def test_unknown_endpoint_is_json_404(client):
    resp = client.get("/api/nope")
    assert resp.status_code == 404
    assert resp.get_json()["error"] == "Endpoint not found"


def test_signup_login_and_profile(client, portal):
    user_id, headers = portal.signup("PATIENT", name="Ada Park")

    resp = client.post("/api/auth/login", json={"email": "patient1@example.com", "password": PASSWORD})
    assert resp.status_code == 200
    assert resp.get_json()["user"]["id"] == user_id

    me = client.get("/api/user/profile", headers=headers).get_json()["user"]
    assert me == {
        "id": user_id, "name": "Ada Park", "email": "patient1@example.com",
        "role": "PATIENT", "profileLevel": 0,
    }


def test_signup_duplicate_email_is_409(client, portal):
    portal.signup("DOCTOR")
    resp = client.post("/api/auth/signup", json={
        "name": "Copy", "email": "doctor1@example.com", "password": PASSWORD, "role": "DOCTOR",
    })
    assert resp.status_code == 409


def test_login_bad_credentials_is_401(client, portal):
    portal.signup("PATIENT")
    resp = client.post("/api/auth/login", json={"email": "patient1@example.com", "password": "nope-nope"})
    assert resp.status_code == 401
    assert resp.get_json() == {"error": "Invalid email or password"}


def test_missing_and_invalid_tokens_are_401(client):
    assert client.get("/api/patient/access").status_code == 401
    resp = client.get("/api/patient/access", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401
    assert "login again" in resp.get_json()["error"]


def test_expired_token_is_401(client, portal):
    user_id, _ = portal.signup("PATIENT")
    issued = utcnow() - timedelta(hours=48)
    token = jwt.encode(
        {"user_id": user_id, "role": "PATIENT", "iat": issued, "exp": issued + timedelta(hours=24)},
        SECRET_KEY, algorithm="HS256",
    )
    resp = client.get("/api/user/profile", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401


def test_wrong_role_is_403(client, portal):
    _, patient = portal.signup("PATIENT")
    _, doctor = portal.signup("DOCTOR")
    assert client.get("/api/doctor/access-request", headers=patient).status_code == 403
    resp = client.get("/api/patient/access", headers=doctor)
    assert resp.status_code == 403
    assert resp.get_json()["error"] == "Access denied. PATIENT role required."


# ── Tests: profile tiers over HTTP ───────────────────────────────────

def test_scenario_d_level_gate_unlocks_after_fifth_field(client, portal):
    _, patient = portal.signup("PATIENT")
    first_three = {k: PATIENT_BASIC[k] for k in ("age", "gender", "primaryProblem")}

    resp = portal.save(patient, "basic", first_three)
    assert resp.get_json()["profileLevel"] == 0
    blocked = client.get("/api/doctors", headers=patient)
    assert blocked.status_code == 403
    assert blocked.get_json()["error"] == "Please complete your profile to access this feature"

    portal.save(patient, "basic", {"symptoms": PATIENT_BASIC["symptoms"]})
    resp = portal.save(patient, "basic", {"consultationPreference": "CHAT"})
    assert resp.get_json() == {"message": "Basic profile saved successfully", "profileLevel": 1}
    assert client.get("/api/doctors", headers=patient).status_code == 200


def test_profile_validation_errors_are_400(client, portal):
    _, patient = portal.signup("PATIENT")
    assert portal.save(patient, "recommended", {"medicalHistory": ["asthma"]}).status_code == 400
    portal.complete_patient(patient, level=2)

    resp = portal.save(patient, "advanced", {"vitalsHeartRate": 250})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "vitalsHeartRate must be between 30-200 bpm"


def test_get_profile_reports_level_and_fields(client, portal):
    _, doctor = portal.signup("DOCTOR")
    portal.complete_doctor(doctor, level=2)

    body = client.get("/api/profile", headers=doctor).get_json()
    assert body["profileLevel"] == 2
    assert body["profile"]["clinicName"] == "Lakeside Clinic"
    assert "completeness" not in body


# ── Tests: doctor discovery / assignment ─────────────────────────────

def test_doctor_listing_and_recommendations(client, portal):
    _, patient = portal.signup("PATIENT")
    doctor_id, doctor = portal.signup("DOCTOR", name="Dr Match")
    other_id, other = portal.signup("DOCTOR", name="Dr Skin")
    portal.complete_patient(patient, level=1)
    portal.complete_doctor(doctor)
    portal.save(other, "basic", dict(DOCTOR_BASIC, specialization="Dermatology",
                                     conditionsTreated=["eczema"], experienceYears=30))
    portal.save(other, "recommended", {"qualifications": ["MBBS"], "clinicName": "Skin Co"})
    portal.save(other, "advanced", {"licenseDocument": "https://x.org/l.pdf", "bio": "Skin."})

    doctors = client.get("/api/doctors", headers=patient).get_json()["doctors"]
    assert [d["doctorId"] for d in doctors] == [other_id, doctor_id]
    assert doctors[1]["degree"] == "MD Endocrinology"

    body = client.get("/api/recommended-doctors", headers=patient).get_json()
    assert [d["doctorId"] for d in body["recommendedDoctors"]] == [doctor_id]
    assert body["patientConditions"][0] == "DIABETES"


def test_assign_doctor_rules(client, portal):
    _, patient = portal.signup("PATIENT")
    doctor_id, doctor = portal.signup("DOCTOR")
    portal.complete_patient(patient, level=1)

    resp = client.post("/api/assign-doctor", json={"doctorId": doctor_id}, headers=patient)
    assert resp.status_code == 400

    portal.complete_doctor(doctor, level=1)
    assert client.post("/api/assign-doctor", json={"doctorId": doctor_id}, headers=patient).status_code == 201
    assert client.post("/api/assign-doctor", json={"doctorId": doctor_id}, headers=patient).status_code == 409
    assert client.post("/api/assign-doctor", json={"doctorId": "missing"}, headers=patient).status_code == 404

    mine = client.get("/api/patient/assigned-doctors", headers=patient).get_json()["doctors"]
    assert [d["id"] for d in mine] == [doctor_id]


# ── Tests: consent lifecycle over HTTP ───────────────────────────────

def test_scenario_a_unassigned_request_is_403(client, engine, portal):
    patient_id, _ = portal.signup("PATIENT")
    _, doctor = portal.signup("DOCTOR")

    resp = client.post("/api/doctor/access-request", json={"patientId": patient_id}, headers=doctor)
    assert resp.status_code == 403

    with session_scope(engine) as s:
        assert s.scalar(select(func.count(AccessGrant.id))) == 0


def test_request_for_unknown_patient_is_404(client, portal):
    _, doctor = portal.signup("DOCTOR")
    resp = client.post("/api/doctor/access-request", json={"patientEmail": "ghost@example.com"},
                       headers=doctor)
    assert resp.status_code == 404
    resp = client.post("/api/doctor/access-request", json={}, headers=doctor)
    assert resp.status_code == 400
    resp = client.post("/api/doctor/access-request", json={"patientEmail": 123}, headers=doctor)
    assert resp.status_code == 400


def test_scenario_b_and_c_request_approve_and_expire(client, engine, portal):
    patient_id, patient, doctor_id, doctor = portal.assigned_pair()

    first = client.post("/api/doctor/access-request", json={"patientId": patient_id}, headers=doctor)
    assert first.status_code == 201
    grant = first.get_json()["grant"]
    assert grant["status"] == "PENDING"

    second = client.post("/api/doctor/access-request", json={"patientId": patient_id}, headers=doctor)
    assert second.status_code == 409
    with session_scope(engine) as s:
        assert s.scalar(select(func.count(AccessGrant.id))) == 1

    read = "/api/doctor/patient-records?patientId=" + patient_id
    assert client.get(read, headers=doctor).status_code == 403

    listing = client.get("/api/patient/access", headers=patient).get_json()
    assert [g["id"] for g in listing["pendingRequests"]] == [grant["id"]]

    resp = client.put(f"/api/patient/access/{grant['id']}",
                      json={"status": "APPROVED", "expiresInDays": 30}, headers=patient)
    assert resp.status_code == 200
    assert resp.get_json()["message"] == "Access approved successfully"
    assert client.get(read, headers=doctor).status_code == 200

    # Move the expiry into the past; no status change is written.
    with session_scope(engine) as s:
        s.get(AccessGrant, grant["id"]).expires_at = utcnow() - timedelta(seconds=1)
    assert client.get(read, headers=doctor).status_code == 403

    requests = client.get("/api/doctor/access-request", headers=doctor).get_json()
    assert requests["approvedRequests"][0]["status"] == "APPROVED"
    assert requests["approvedRequests"][0]["isActive"] is False


def test_decide_and_revoke_routes(client, portal):
    patient_id, patient, doctor_id, doctor = portal.assigned_pair()
    grant = client.post("/api/doctor/access-request", json={"patientId": patient_id},
                        headers=doctor).get_json()["grant"]

    assert client.put(f"/api/patient/access/{grant['id']}", json={"status": "MAYBE"},
                      headers=patient).status_code == 400
    assert client.put("/api/patient/access/unknown", json={"status": "DENIED"},
                      headers=patient).status_code == 404

    other_id, other = portal.signup("PATIENT")
    assert client.delete(f"/api/patient/access/{grant['id']}", headers=other).status_code == 404

    resp = client.delete(f"/api/patient/access/{grant['id']}", headers=patient)
    assert resp.status_code == 200
    assert resp.get_json()["grant"]["status"] == "REVOKED"

    again = client.post("/api/doctor/access-request", json={"patientId": patient_id}, headers=doctor)
    assert again.status_code == 201
    assert again.get_json()["grant"]["id"] == grant["id"]


def test_patient_grants_directly_by_email(client, portal):
    patient_id, patient, doctor_id, doctor = portal.assigned_pair()

    resp = client.post("/api/patient/access", json={"doctorEmail": "doctor2@example.com",
                                                    "expiresInDays": 7}, headers=patient)
    assert resp.status_code == 201
    assert resp.get_json()["grant"]["doctorId"] == doctor_id

    dup = client.post("/api/patient/access", json={"doctorId": doctor_id}, headers=patient)
    assert dup.status_code == 409

    profile = client.get(f"/api/doctor/patient-profile?patientId={patient_id}", headers=doctor).get_json()
    assert profile["profile"]["primaryProblem"] == "DIABETES"
    assert "vitalsBp" not in profile["profile"]

    metrics = client.get(f"/api/doctor/health-metrics?patientId={patient_id}", headers=doctor).get_json()
    assert {m["id"] for m in metrics["metrics"]} == {"bp", "sugar", "heart_rate", "oxygen"}


def test_doctor_read_requires_patient_id(client, portal):
    _, doctor = portal.signup("DOCTOR")
    resp = client.get("/api/doctor/health-metrics", headers=doctor)
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Missing required query parameter: patientId"
