"""
End-to-end tests for records and files, the health metric log, messaging,
appointments and AI insights.
"""

import io
import os
from datetime import datetime, timedelta

import pytest

from carebridge.api.app import create_app

from conftest import Portal


# ── Helpers ──────────────────────────────────────────────────────────

class FakeLLMResponse:
    def __init__(self, content: str):
        self.content = content


class FakeLLM:
    def __init__(self, content=None, error=None):
        self._content = content
        self._error = error

    def invoke(self, messages):
        if self._error:
            raise self._error
        return FakeLLMResponse(self._content)


def upload(client, headers, data=b"%PDF-1.4 lab", name="labs.pdf", mime="application/pdf",
           record_type="LAB_RESULTS"):
    return client.post(
        "/api/patient/records",
        data={"title": "Bloodwork", "recordType": record_type, "file": (io.BytesIO(data), name, mime)},
        headers=headers,
        content_type="multipart/form-data",
    )


def future_day(days=7):
    return (datetime.utcnow() + timedelta(days=days)).strftime("%Y-%m-%d")


# ── Tests: medical records / files ───────────────────────────────────

def test_record_upload_list_download_and_delete(client, portal, upload_dir):
    _, patient = portal.signup("PATIENT")

    resp = upload(client, patient)
    assert resp.status_code == 201
    record = resp.get_json()["record"]
    assert record["fileName"] == "labs.pdf"
    assert record["fileSize"] == len(b"%PDF-1.4 lab")
    stored = record["fileUrl"].rsplit("/", 1)[1]
    assert os.path.exists(os.path.join(upload_dir, stored))

    listing = client.get("/api/patient/records", headers=patient).get_json()
    assert listing["totalRecords"] == 1

    download = client.get(record["fileUrl"], headers=patient)
    assert download.status_code == 200
    assert download.data == b"%PDF-1.4 lab"
    download.close()

    assert client.delete(f"/api/patient/records/{record['id']}", headers=patient).status_code == 200
    assert not os.path.exists(os.path.join(upload_dir, stored))
    assert client.delete(f"/api/patient/records/{record['id']}", headers=patient).status_code == 404


def test_record_upload_validation(client, portal):
    _, patient = portal.signup("PATIENT")
    assert upload(client, patient, mime="application/x-msdownload", name="x.exe").status_code == 400
    assert upload(client, patient, record_type="SELFIE").status_code == 400
    assert upload(client, patient, data=b"").status_code == 400
    resp = client.post("/api/patient/records", data={"title": "t", "recordType": "OTHER"},
                       headers=patient, content_type="multipart/form-data")
    assert resp.get_json() == {"error": "No file uploaded"}


def test_record_delete_tolerates_missing_file(client, portal, upload_dir):
    _, patient = portal.signup("PATIENT")
    record = upload(client, patient).get_json()["record"]
    os.remove(os.path.join(upload_dir, record["fileUrl"].rsplit("/", 1)[1]))
    assert client.delete(f"/api/patient/records/{record['id']}", headers=patient).status_code == 200


def test_file_access_for_doctors_follows_grant(client, portal):
    patient_id, patient, doctor_id, doctor = portal.assigned_pair()
    url = upload(client, patient).get_json()["record"]["fileUrl"]

    assert client.get(url, headers=doctor).status_code == 403
    client.post("/api/patient/access", json={"doctorId": doctor_id}, headers=patient)
    resp = client.get(url, headers=doctor)
    assert resp.status_code == 200
    resp.close()

    _, stranger = portal.signup("PATIENT")
    assert client.get(url, headers=stranger).status_code == 404
    assert client.get("/api/files/nothing.pdf", headers=patient).status_code == 404


# ── Tests: health metric log ─────────────────────────────────────────

def test_health_metric_log(client, portal):
    _, patient = portal.signup("PATIENT")
    for value, when in (("81", "2026-01-01T08:00:00Z"), ("79.5", "2026-02-01T08:00:00Z")):
        resp = client.post("/api/patient/health-metrics", headers=patient,
                           json={"metricType": "weight", "value": value, "unit": "kg", "recordedAt": when})
        assert resp.status_code == 201
    client.post("/api/patient/health-metrics", headers=patient,
                json={"metricType": "heart_rate", "value": 64})

    body = client.get("/api/patient/health-metrics?limit=2", headers=patient).get_json()
    assert len(body["metrics"]) == 2
    assert set(body["groupedMetrics"]) == {"heart_rate", "weight"}
    assert len(body["groupedMetrics"]["weight"]) == 2
    assert body["summary"]["weight"]["trend"] == "falling"
    assert body["summary"]["heart_rate"]["latest"] == "64"

    only_weight = client.get("/api/patient/health-metrics?type=weight", headers=patient).get_json()
    assert {m["metricType"] for m in only_weight["metrics"]} == {"weight"}


def test_health_metric_validation(client, portal):
    _, patient = portal.signup("PATIENT")
    bad = [
        {"metricType": "mood", "value": "good"},
        {"metricType": "weight"},
        {"metricType": "weight", "value": "80", "recordedAt": "yesterday"},
        {"metricType": ["weight"], "value": "80"},
    ]
    for data in bad:
        assert client.post("/api/patient/health-metrics", json=data, headers=patient).status_code == 400
    assert client.get("/api/patient/health-metrics?type=mood", headers=patient).status_code == 400
    assert client.get("/api/patient/health-metrics?limit=0", headers=patient).status_code == 400


# ── Tests: messaging ─────────────────────────────────────────────────

def test_messaging_requires_assignment_only(client, portal):
    patient_id, patient, doctor_id, doctor = portal.assigned_pair()

    sent = client.post("/api/patient/messages", json={"doctorId": doctor_id, "content": " Hello doctor "},
                       headers=patient)
    assert sent.status_code == 201
    assert sent.get_json()["message"]["content"] == "Hello doctor"

    inbox = client.get("/api/doctor/messages", headers=doctor).get_json()
    assert inbox["unreadCount"] == 1
    assert [p["id"] for p in inbox["patients"]] == [patient_id]

    thread = client.get(f"/api/doctor/messages?patientId={patient_id}", headers=doctor).get_json()
    assert [m["fromMe"] for m in thread["messages"]] == [False]
    assert thread["messages"][0]["readAt"] is None
    assert thread["unreadCount"] == 0

    reply = client.post("/api/doctor/messages", json={"patientId": patient_id, "content": "Hi!"},
                        headers=doctor)
    assert reply.status_code == 201
    convos = client.get("/api/patient/messages", headers=patient).get_json()
    assert convos["unreadCount"] == 1
    assert convos["conversations"][0]["counterpart"]["id"] == doctor_id


def test_messaging_errors(client, portal):
    patient_id, patient, doctor_id, doctor = portal.assigned_pair()
    stranger_id, _ = portal.signup("DOCTOR")

    resp = client.post("/api/patient/messages", json={"doctorId": stranger_id, "content": "hi"},
                       headers=patient)
    assert resp.status_code == 403
    assert client.post("/api/patient/messages", json={"doctorId": doctor_id},
                       headers=patient).status_code == 400
    assert client.post("/api/patient/messages", json={"doctorId": "ghost", "content": "hi"},
                       headers=patient).status_code == 404
    assert client.get(f"/api/patient/messages?doctorId={stranger_id}", headers=patient).status_code == 403


# ── Tests: appointments ──────────────────────────────────────────────

def appointment(**overrides):
    data = {
        "date": future_day(),
        "startTime": "10:30",
        "durationMinutes": 30,
        "meetLink": "https://meet.google.com/abc-defg-hij",
    }
    data.update(overrides)
    return data


def test_book_list_and_cancel_appointment(client, portal):
    patient_id, patient, doctor_id, doctor = portal.assigned_pair()

    resp = client.post("/api/appointments", json=appointment(patientId=patient_id, notes="Follow-up"),
                       headers=doctor)
    assert resp.status_code == 201
    booked = resp.get_json()["appointment"]
    assert booked["doctor"]["id"] == doctor_id
    assert booked["patient"]["id"] == patient_id

    day = future_day()
    mine = client.get(f"/api/appointments?from={day}&to={day}", headers=patient).get_json()
    assert [a["id"] for a in mine["appointments"]] == [booked["id"]]
    elsewhere = client.get(f"/api/appointments?from={future_day(30)}&to={future_day(31)}",
                           headers=patient).get_json()
    assert elsewhere["appointments"] == []

    _, stranger = portal.signup("PATIENT")
    assert client.delete(f"/api/appointments?id={booked['id']}", headers=stranger).status_code == 403
    assert client.delete(f"/api/appointments?id={booked['id']}", headers=patient).status_code == 200
    assert client.delete(f"/api/appointments?id={booked['id']}", headers=patient).status_code == 404


@pytest.mark.parametrize("overrides, status", [
    ({"meetLink": "https://zoom.us/j/1"}, 400),
    ({"durationMinutes": 0}, 400),
    ({"startTime": "25:00"}, 400),
    ({"date": "2020-01-01"}, 400),
    ({"date": "next week"}, 400),
])
def test_appointment_validation(client, portal, overrides, status):
    patient_id, patient, doctor_id, doctor = portal.assigned_pair()
    resp = client.post("/api/appointments", json=appointment(doctorId=doctor_id, **overrides),
                       headers=patient)
    assert resp.status_code == status


def test_appointment_requires_assignment_and_self(client, portal):
    patient_id, patient, doctor_id, doctor = portal.assigned_pair()
    other_doctor_id, _ = portal.signup("DOCTOR")
    other_patient_id, _ = portal.signup("PATIENT")

    resp = client.post("/api/appointments", json=appointment(doctorId=other_doctor_id), headers=patient)
    assert resp.status_code == 403
    resp = client.post("/api/appointments", json=appointment(doctorId=doctor_id, patientId=other_patient_id),
                       headers=patient)
    assert resp.status_code == 403


# ── Tests: AI insights ───────────────────────────────────────────────

def test_ai_insights_requires_level_three(client, portal):
    _, patient = portal.signup("PATIENT")
    portal.complete_patient(patient, level=2)
    assert client.get("/api/ai-insights", headers=patient).status_code == 403


def test_ai_insights_without_llm(client, portal):
    _, patient = portal.signup("PATIENT")
    portal.complete_patient(patient)
    upload(client, patient)

    body = client.get("/api/ai-insights", headers=patient).get_json()
    types = {i["type"] for i in body["insights"]}
    assert {"vitals_analysis", "records_activity", "age_based_care"} <= types
    assert body["totalRecords"] == 1
    assert body["profileCompleteness"] == 100
    assert body["aiSummary"] == "AI summary unavailable."


@pytest.mark.parametrize("llm, expected", [
    (FakeLLM("All good overall."), "All good overall."),
    (FakeLLM(error=RuntimeError("rate limited")), "AI summary unavailable."),
])
def test_ai_insights_with_llm(engine, upload_dir, llm, expected):
    app = create_app(engine=engine, llm=llm, upload_dir=upload_dir)
    portal = Portal(app.test_client())
    _, patient = portal.signup("PATIENT")
    portal.complete_patient(patient)

    body = portal.client.get("/api/ai-insights", headers=patient).get_json()
    assert body["aiSummary"] == expected


# ── Tests: dashboards ────────────────────────────────────────────────

def test_patient_dashboard_level_zero_shows_nothing(client, portal):
    _, patient = portal.signup("PATIENT")

    body = client.get("/api/patient/dashboard", headers=patient).get_json()
    assert body["profileLevel"] == 0
    assert body["sections"] == {}
    assert body["nextRecommendedStep"] == "Complete your basic patient profile to get started"
    assert not any(v["visible"] for v in body["sectionVisibility"].values())
    assert body["sectionVisibility"]["medicalRecords"]["message"] == (
        "Complete basic profile to access medical records"
    )


def test_patient_dashboard_level_one_unlocks_basic_sections(client, portal):
    _, patient = portal.signup("PATIENT")
    portal.complete_patient(patient, level=1)
    upload(client, patient)

    body = client.get("/api/patient/dashboard", headers=patient).get_json()
    visibility = body["sectionVisibility"]
    assert visibility["doctorAssigned"] == {"visible": True, "message": None}
    assert visibility["healthMetrics"] == {
        "visible": False, "message": "Complete advanced profile to access health metrics",
    }
    assert set(body["sections"]) == {"doctorAssigned", "medicalRecords", "messages", "appointments"}
    assert body["sections"]["doctorAssigned"] == {"assigned": False, "doctors": []}
    assert body["sections"]["medicalRecords"]["totalRecords"] == 1


def test_patient_dashboard_level_three_shows_everything(client, portal):
    patient_id, patient, doctor_id, doctor = portal.assigned_pair()
    client.post("/api/appointments", json=appointment(doctorId=doctor_id), headers=patient)
    client.post("/api/doctor/messages", json={"patientId": patient_id, "content": "Hi"}, headers=doctor)

    body = client.get("/api/patient/dashboard", headers=patient).get_json()
    sections = body["sections"]
    assert body["profileLevel"] == 3
    assert all(v["visible"] for v in body["sectionVisibility"].values())
    assert [d["id"] for d in sections["doctorAssigned"]["doctors"]] == [doctor_id]
    assert sections["messages"]["unreadCount"] == 1
    assert sections["appointments"]["upcoming"] == 1
    assert sections["appointments"]["nextAppointment"]["doctorId"] == doctor_id
    assert {m["id"] for m in sections["healthMetrics"]["vitals"]} == {"bp", "sugar", "heart_rate", "oxygen"}
    assert sections["aiInsights"]["available"] is True


def test_doctor_dashboard_levels(client, portal):
    _, fresh = portal.signup("DOCTOR")
    body = client.get("/api/doctor/dashboard", headers=fresh).get_json()
    assert body["profileLevel"] == 0
    assert body["doctorProfile"] is None
    assert body["sections"] == {}
    assert body["sectionVisibility"]["patients"]["visible"] is False

    portal.complete_doctor(fresh, level=1)
    body = client.get("/api/doctor/dashboard", headers=fresh).get_json()
    assert body["nextRecommendedStep"] == "Add your qualifications and clinic information"
    assert body["sections"] == {}

    patient_id, patient, doctor_id, doctor = portal.assigned_pair()
    client.post("/api/patient/access", json={"doctorId": doctor_id}, headers=patient)
    body = client.get("/api/doctor/dashboard", headers=doctor).get_json()
    assert body["profileLevel"] == 3
    assert body["doctorProfile"]["clinicName"] == "Lakeside Clinic"
    assert body["sections"]["patients"]["patientsCount"] == 1
    assert body["sections"]["records"] == {"activePatients": 1, "pendingRequests": 0, "totalConsents": 1}


def test_dashboard_is_role_specific(client, portal):
    _, patient = portal.signup("PATIENT")
    assert client.get("/api/doctor/dashboard", headers=patient).status_code == 403


# ── Tests: doctor documents ──────────────────────────────────────────

def upload_document(client, headers, document_type="LICENSE", mime="application/pdf"):
    return client.post(
        "/api/doctor/documents",
        data={"title": "Medical licence", "documentType": document_type,
              "file": (io.BytesIO(b"%PDF-1.4 licence"), "licence.pdf", mime)},
        headers=headers,
        content_type="multipart/form-data",
    )


def test_doctor_document_upload_and_download(client, portal):
    _, doctor = portal.signup("DOCTOR")

    resp = upload_document(client, doctor)
    assert resp.status_code == 201
    document = resp.get_json()["document"]
    assert document["fileName"] == "licence.pdf"
    assert document["documentType"] == "LICENSE"

    download = client.get(document["fileUrl"], headers=doctor)
    assert download.status_code == 200
    assert download.data == b"%PDF-1.4 licence"
    download.close()

    _, other = portal.signup("DOCTOR")
    assert client.get(document["fileUrl"], headers=other).status_code == 404


def test_doctor_document_validation(client, portal):
    _, doctor = portal.signup("DOCTOR")
    _, patient = portal.signup("PATIENT")
    assert upload_document(client, doctor, document_type="SELFIE").status_code == 400
    assert upload_document(client, doctor, mime="application/x-msdownload").status_code == 400
    assert upload_document(client, patient).status_code == 403
    resp = client.post("/api/doctor/documents", data={"title": "t", "documentType": "OTHER"},
                       headers=doctor, content_type="multipart/form-data")
    assert resp.get_json() == {"error": "No file provided"}
