"""
Shared fixtures: an in-memory SQLite database, the Flask test client and
helpers that sign users up and fill in their profiles.
"""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from carebridge.api.app import create_app
from carebridge.database import create_schema, session_scope
from carebridge.models import AuthContext, Role
from carebridge.rbac import register_user

PASSWORD = "correct-horse-battery"

PATIENT_BASIC = {
    "age": 42,
    "gender": "FEMALE",
    "primaryProblem": "DIABETES",
    "symptoms": ["fatigue", "thirst"],
    "consultationPreference": "VIDEO_CALL",
}
PATIENT_RECOMMENDED = {
    "medicalHistory": ["gestational diabetes"],
    "currentMedications": ["metformin"],
    "emergencyContactName": "Sam Park",
}
PATIENT_ADVANCED = {
    "vitalsBp": "128/82",
    "vitalsSugar": "110",
    "vitalsHeartRate": 72,
    "vitalsOxygen": 98,
}

DOCTOR_BASIC = {
    "specialization": "Endocrinology and Diabetes",
    "experienceYears": 12,
    "conditionsTreated": ["diabetes", "thyroid disorders"],
    "consultationMode": "BOTH",
    "availability": "Mon-Fri 9:00-17:00",
}
DOCTOR_RECOMMENDED = {"qualifications": ["MBBS", "MD Endocrinology"], "clinicName": "Lakeside Clinic"}
DOCTOR_ADVANCED = {"licenseDocument": "https://licenses.example.org/doc-1.pdf", "bio": "Diabetes care."}


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine):
    with session_scope(engine) as s:
        yield s


def make_user(session, role, name):
    """Create a user directly and return its AuthContext."""
    email = f"{name.lower().replace(' ', '.')}@example.com"
    user = register_user(session, name, email, PASSWORD, role)
    return AuthContext(user.id, Role(role), user.profile_level, user.name, user.email)


@pytest.fixture
def upload_dir(tmp_path):
    return str(tmp_path / "uploads")


@pytest.fixture
def app(engine, upload_dir):
    application = create_app(engine=engine, llm=None, upload_dir=upload_dir)
    application.config["TESTING"] = True
    return application


@pytest.fixture
def client(app):
    return app.test_client()


class Portal:
    """Drives the HTTP API the way a browser session would."""

    def __init__(self, client):
        self.client = client
        self._count = 0

    def signup(self, role, name=None):
        self._count += 1
        name = name or f"{role.title()} {self._count}"
        resp = self.client.post("/api/auth/signup", json={
            "name": name,
            "email": f"{role.lower()}{self._count}@example.com",
            "password": PASSWORD,
            "role": role,
        })
        assert resp.status_code == 201, resp.get_json()
        body = resp.get_json()
        return body["user"]["id"], {"Authorization": f"Bearer {body['token']}"}

    def save(self, headers, section, data):
        return self.client.post(f"/api/profile/{section}", json=data, headers=headers)

    def complete_patient(self, headers, level=3):
        for section, data in (("basic", PATIENT_BASIC), ("recommended", PATIENT_RECOMMENDED),
                              ("advanced", PATIENT_ADVANCED))[:level]:
            assert self.save(headers, section, data).status_code == 200

    def complete_doctor(self, headers, level=3):
        for section, data in (("basic", DOCTOR_BASIC), ("recommended", DOCTOR_RECOMMENDED),
                              ("advanced", DOCTOR_ADVANCED))[:level]:
            assert self.save(headers, section, data).status_code == 200

    def assigned_pair(self):
        """A level-3 patient assigned to a level-3 doctor."""
        patient_id, patient = self.signup("PATIENT")
        doctor_id, doctor = self.signup("DOCTOR")
        self.complete_patient(patient)
        self.complete_doctor(doctor)
        resp = self.client.post("/api/assign-doctor", json={"doctorId": doctor_id}, headers=patient)
        assert resp.status_code == 201, resp.get_json()
        return patient_id, patient, doctor_id, doctor


@pytest.fixture
def portal(client):
    return Portal(client)
