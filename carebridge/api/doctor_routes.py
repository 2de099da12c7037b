"""
Doctor-facing routes. Every read of a patient's protected data goes through
the active-grant check first.
"""

from flask import jsonify, request, send_from_directory

from carebridge.access import doctor_requests, request_access, require_active_grant
from carebridge.analysis import vitals_metrics
from carebridge.api.auth import token_required
from carebridge.api.routes import json_body
from carebridge.config import DEFAULT_METRIC_LIMIT
from carebridge.dashboard import doctor_dashboard
from carebridge.database import session_scope
from carebridge.directory import assigned_patients
from carebridge.errors import NotFound, ValidationError
from carebridge.messaging import conversation, parse_limit, send_message, unread_count
from carebridge.models import Role, User
from carebridge.rbac import find_user
from carebridge.records import list_records, metric_history, resolve_document, save_document

# Profile fields a doctor with an active grant may read.
SHARED_PROFILE_FIELDS = (
    "age", "gender", "primaryProblem", "symptoms", "consultationPreference",
    "medicalHistory", "currentMedications",
    "emergencyContactName", "emergencyContactPhone", "emergencyContactRelationship",
    "lifestyleSmoking", "lifestyleDrinking", "lifestyleExercise", "updatedAt",
)


def _patient_id_arg() -> str:
    patient_id = request.args.get("patientId")
    if not patient_id:
        raise ValidationError("Missing required query parameter: patientId")
    return patient_id


def register_doctor_routes(app, engine, upload_dir):
    """Register the doctor API routes on the Flask *app*."""

    doctor_only = token_required(engine, Role.DOCTOR)

    @app.route("/api/doctor/dashboard", methods=["GET"])
    @doctor_only
    def doctor_home(ctx):
        with session_scope(engine) as session:
            body = doctor_dashboard(session, ctx)
        return jsonify(body), 200

    # ── Access requests ──────────────────────────────────────────────

    @app.route("/api/doctor/access-request", methods=["GET"])
    @doctor_only
    def list_access_requests(ctx):
        with session_scope(engine) as session:
            body = doctor_requests(session, ctx.user_id)
        return jsonify(body), 200

    @app.route("/api/doctor/access-request", methods=["POST"])
    @doctor_only
    def create_access_request(ctx):
        data = json_body()
        with session_scope(engine) as session:
            patient = find_user(session, Role.PATIENT, data.get("patientId"), data.get("patientEmail"))
            grant = request_access(session, ctx.user_id, patient.id)
            body = {"message": "Access request sent successfully", "grant": grant.to_dict()}
        return jsonify(body), 201

    @app.route("/api/doctor/assigned-patients", methods=["GET"])
    @doctor_only
    def my_patients(ctx):
        with session_scope(engine) as session:
            rows = assigned_patients(session, ctx.user_id)
        return jsonify({"patients": rows}), 200

    # ── Protected patient data ───────────────────────────────────────

    @app.route("/api/doctor/health-metrics", methods=["GET"])
    @doctor_only
    def patient_health_metrics(ctx):
        patient_id = _patient_id_arg()
        with session_scope(engine) as session:
            require_active_grant(session, ctx.user_id, patient_id)
            patient = session.get(User, patient_id)
            profile = patient.patient_profile if patient is not None else None
            if profile is None:
                raise NotFound("Patient profile not found")
            body = {
                "patient": patient.summary(),
                "metrics": vitals_metrics(profile),
                "recentMetrics": [
                    m.to_dict() for m in metric_history(session, patient_id, limit=DEFAULT_METRIC_LIMIT)
                ],
            }
        return jsonify(body), 200

    @app.route("/api/doctor/patient-profile", methods=["GET"])
    @doctor_only
    def patient_profile(ctx):
        patient_id = _patient_id_arg()
        with session_scope(engine) as session:
            require_active_grant(session, ctx.user_id, patient_id)
            patient = session.get(User, patient_id)
            profile = patient.patient_profile if patient is not None else None
            if profile is None:
                raise NotFound("Patient profile not found")
            full = profile.to_dict()
            body = {
                "patient": {"name": patient.name, "email": patient.email},
                "profile": {key: full[key] for key in SHARED_PROFILE_FIELDS},
            }
        return jsonify(body), 200

    @app.route("/api/doctor/patient-records", methods=["GET"])
    @doctor_only
    def patient_records(ctx):
        patient_id = _patient_id_arg()
        with session_scope(engine) as session:
            require_active_grant(session, ctx.user_id, patient_id)
            rows = [r.to_dict() for r in list_records(session, patient_id)]
        return jsonify({"records": rows}), 200

    # ── Messages ─────────────────────────────────────────────────────

    @app.route("/api/doctor/messages", methods=["GET"])
    @doctor_only
    def doctor_messages(ctx):
        patient_id = request.args.get("patientId")
        limit = parse_limit(request.args.get("limit"))
        with session_scope(engine) as session:
            if patient_id:
                body = {"messages": conversation(session, ctx, patient_id, limit)}
            else:
                body = {"patients": assigned_patients(session, ctx.user_id)}
            body["unreadCount"] = unread_count(session, ctx.user_id)
        return jsonify(body), 200

    @app.route("/api/doctor/messages", methods=["POST"])
    @doctor_only
    def doctor_send_message(ctx):
        data = json_body()
        with session_scope(engine) as session:
            message = send_message(session, ctx, data.get("patientId"), data.get("content"))
            body = {"message": message.to_dict(ctx.user_id)}
        return jsonify(body), 201

    # ── Credential documents ─────────────────────────────────────────

    @app.route("/api/doctor/documents", methods=["POST"])
    @doctor_only
    def upload_document(ctx):
        document = save_document(ctx.user_id, request.files.get("file"), request.form, upload_dir)
        return jsonify({"message": "Document uploaded successfully", "document": document}), 201

    @app.route("/api/doctor/documents/<file_name>", methods=["GET"])
    @doctor_only
    def download_document(ctx, file_name):
        directory = resolve_document(ctx.user_id, file_name, upload_dir)
        return send_from_directory(directory, file_name)
