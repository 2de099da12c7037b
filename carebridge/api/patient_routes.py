"""
Patient-facing routes: consent management, doctor discovery, records and
files, the health metric log, messaging and AI insights.
"""

import sys

from flask import jsonify, request, send_from_directory

from carebridge.access import decide, grant_access, patient_grants, revoke
from carebridge.analysis import (
    generate_insights,
    metrics_frame,
    summarize_insights,
    summarize_metrics,
)
from carebridge.api.auth import token_required
from carebridge.api.routes import json_body
from carebridge.config import DEFAULT_METRIC_LIMIT, MAX_PROFILE_LEVEL, METRIC_TYPES
from carebridge.dashboard import patient_dashboard
from carebridge.database import session_scope
from carebridge.directory import assign_doctor, assigned_doctors, list_doctors, recommend_doctors
from carebridge.errors import NotFound, ValidationError
from carebridge.messaging import conversation, conversations, parse_limit, send_message, unread_count
from carebridge.models import Role, User, utcnow
from carebridge.records import (
    create_record,
    delete_record,
    list_records,
    metric_history,
    record_metric,
    resolve_file,
)
from carebridge.rbac import find_user
from carebridge.tiers import profile_completeness

AI_SUMMARY_UNAVAILABLE = "AI summary unavailable."


def register_patient_routes(app, engine, llm, upload_dir):
    """Register the patient API routes on the Flask *app*."""

    patient_only = token_required(engine, Role.PATIENT)

    @app.route("/api/patient/dashboard", methods=["GET"])
    @patient_only
    def patient_home(ctx):
        with session_scope(engine) as session:
            body = patient_dashboard(session, ctx)
        return jsonify(body), 200

    # ── Access grants ────────────────────────────────────────────────

    @app.route("/api/patient/access", methods=["GET"])
    @patient_only
    def list_access(ctx):
        with session_scope(engine) as session:
            body = patient_grants(session, ctx.user_id)
        return jsonify(body), 200

    @app.route("/api/patient/access", methods=["POST"])
    @patient_only
    def create_access(ctx):
        data = json_body()
        with session_scope(engine) as session:
            doctor = find_user(session, Role.DOCTOR, data.get("doctorId"), data.get("doctorEmail"))
            grant = grant_access(session, ctx.user_id, doctor.id, data.get("expiresInDays"))
            body = {"message": "Access granted successfully", "grant": grant.to_dict()}
        return jsonify(body), 201

    @app.route("/api/patient/access/<grant_id>", methods=["PUT"])
    @patient_only
    def update_access(ctx, grant_id):
        data = json_body()
        with session_scope(engine) as session:
            grant = decide(
                session, ctx.user_id, grant_id, data.get("status"), data.get("expiresInDays")
            )
            body = {
                "message": f"Access {grant.status.lower()} successfully",
                "grant": grant.to_dict(),
            }
        return jsonify(body), 200

    @app.route("/api/patient/access/<grant_id>", methods=["DELETE"])
    @patient_only
    def revoke_access(ctx, grant_id):
        with session_scope(engine) as session:
            grant = revoke(session, ctx.user_id, grant_id)
            body = {"message": "Access revoked successfully", "grant": grant.to_dict()}
        return jsonify(body), 200

    # ── Doctor discovery / assignment ────────────────────────────────

    @app.route("/api/doctors", methods=["GET"])
    @token_required(engine, Role.PATIENT, min_level=1)
    def doctors(ctx):
        with session_scope(engine) as session:
            cards = list_doctors(session, ctx.user_id)
        return jsonify({"doctors": cards, "totalDoctors": len(cards)}), 200

    @app.route("/api/recommended-doctors", methods=["GET"])
    @token_required(engine, Role.PATIENT, min_level=1)
    def recommended_doctors(ctx):
        with session_scope(engine) as session:
            body = recommend_doctors(session, ctx.user_id)
        return jsonify(body), 200

    @app.route("/api/assign-doctor", methods=["POST"])
    @token_required(engine, Role.PATIENT, min_level=1)
    def assign(ctx):
        data = json_body()
        with session_scope(engine) as session:
            assignment = assign_doctor(session, ctx.user_id, data.get("doctorId"))
            body = {
                "message": "Doctor assigned successfully",
                "assignment": assignment.to_dict(),
                "doctor": assignment.doctor.summary(),
            }
        return jsonify(body), 201

    @app.route("/api/patient/assigned-doctors", methods=["GET"])
    @patient_only
    def my_doctors(ctx):
        with session_scope(engine) as session:
            rows = assigned_doctors(session, ctx.user_id)
        return jsonify({"doctors": rows}), 200

    # ── Medical records / files ──────────────────────────────────────

    @app.route("/api/patient/records", methods=["GET"])
    @patient_only
    def records(ctx):
        with session_scope(engine) as session:
            rows = [r.to_dict() for r in list_records(session, ctx.user_id)]
        return jsonify({"records": rows, "totalRecords": len(rows)}), 200

    @app.route("/api/patient/records", methods=["POST"])
    @patient_only
    def upload_record(ctx):
        with session_scope(engine) as session:
            record = create_record(
                session, ctx.user_id, request.files.get("file"), request.form, upload_dir
            )
            body = {"message": "Record uploaded successfully", "record": record.to_dict()}
        return jsonify(body), 201

    @app.route("/api/patient/records/<record_id>", methods=["DELETE"])
    @patient_only
    def remove_record(ctx, record_id):
        with session_scope(engine) as session:
            delete_record(session, ctx.user_id, record_id, upload_dir)
        return jsonify({"message": "Record deleted successfully"}), 200

    @app.route("/api/files/<path:file_name>", methods=["GET"])
    @token_required(engine)
    def download_file(ctx, file_name):
        with session_scope(engine) as session:
            record = resolve_file(session, ctx, file_name)
            stored_name, download_name, mime_type = (
                record.stored_name, record.file_name, record.mime_type,
            )
        return send_from_directory(
            upload_dir, stored_name, mimetype=mime_type, download_name=download_name
        )

    # ── Health metric log ────────────────────────────────────────────

    @app.route("/api/patient/health-metrics", methods=["GET"])
    @patient_only
    def health_metrics(ctx):
        metric_type = request.args.get("type") or None
        if metric_type is not None and metric_type not in METRIC_TYPES:
            raise ValidationError("Invalid metric type")
        limit = parse_limit(request.args.get("limit"), DEFAULT_METRIC_LIMIT)

        with session_scope(engine) as session:
            recent = metric_history(session, ctx.user_id, metric_type, limit)
            body = {"metrics": [m.to_dict() for m in recent]}
            full_log = metric_history(session, ctx.user_id, metric_type, limit=0)
            body.update(summarize_metrics(metrics_frame(full_log)))
        return jsonify(body), 200

    @app.route("/api/patient/health-metrics", methods=["POST"])
    @patient_only
    def add_health_metric(ctx):
        data = json_body()
        with session_scope(engine) as session:
            metric = record_metric(session, ctx.user_id, data)
            body = {"message": "Health metric recorded successfully", "metric": metric.to_dict()}
        return jsonify(body), 201

    # ── Messages ─────────────────────────────────────────────────────

    @app.route("/api/patient/messages", methods=["GET"])
    @patient_only
    def patient_messages(ctx):
        doctor_id = request.args.get("doctorId")
        limit = parse_limit(request.args.get("limit"))
        with session_scope(engine) as session:
            if doctor_id:
                body = {"messages": conversation(session, ctx, doctor_id, limit)}
            else:
                body = {"conversations": conversations(session, ctx.user_id)}
            body["unreadCount"] = unread_count(session, ctx.user_id)
        return jsonify(body), 200

    @app.route("/api/patient/messages", methods=["POST"])
    @patient_only
    def patient_send_message(ctx):
        data = json_body()
        with session_scope(engine) as session:
            message = send_message(session, ctx, data.get("doctorId"), data.get("content"))
            body = {"message": message.to_dict(ctx.user_id)}
        return jsonify(body), 201

    # ── AI insights ──────────────────────────────────────────────────

    @app.route("/api/ai-insights", methods=["GET"])
    @token_required(engine, Role.PATIENT, min_level=MAX_PROFILE_LEVEL)
    def ai_insights(ctx):
        now = utcnow()
        with session_scope(engine) as session:
            profile = session.get(User, ctx.user_id).patient_profile
            if profile is None:
                raise NotFound("Patient profile not found")

            patient_records = list_records(session, ctx.user_id)
            insights = generate_insights(profile, patient_records, now)
            metrics_summary = summarize_metrics(
                metrics_frame(metric_history(session, ctx.user_id, limit=0))
            )["summary"]

            ai_summary = AI_SUMMARY_UNAVAILABLE
            if llm is not None:
                try:
                    ai_summary = summarize_insights(llm, profile, insights, metrics_summary)
                except Exception as e:
                    print(f"[WARN] AI summary generation failed: {e}", file=sys.stderr)

            body = {
                "insights": insights,
                "profileCompleteness": profile_completeness(profile),
                "totalRecords": len(patient_records),
                "metricsSummary": metrics_summary,
                "aiSummary": ai_summary,
                "generatedAt": now.isoformat(),
            }
        return jsonify(body), 200
