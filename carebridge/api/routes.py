"""
Flask route handlers shared by both roles: service info, accounts, profile
sections, appointments and the JSON error handlers.
"""

import sys
import traceback
from datetime import datetime, timedelta
from typing import Any, Dict

from flask import jsonify, request

from carebridge.api.auth import generate_token, token_required
from carebridge.appointments import book_appointment, cancel_appointment, list_appointments
from carebridge.config import MAX_PROFILE_LEVEL, TOKEN_EXPIRY_HOURS
from carebridge.database import check_connection, session_scope
from carebridge.errors import PortalError, ValidationError
from carebridge.models import Role, User
from carebridge.rbac import authenticate, register_user
from carebridge.tiers import get_profile, profile_completeness, save_section


def json_body() -> Dict[str, Any]:
    """The request's JSON object, or raise ValidationError."""
    if not request.is_json:
        raise ValidationError("Content-Type must be application/json")
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _auth_response(user: User) -> Dict[str, Any]:
    return {
        "success": True,
        "token": generate_token(user),
        "user": {
            "id": user.id,
            "name": user.name,
            "email": user.email,
            "role": user.role,
            "profileLevel": user.profile_level,
        },
        "expiresAt": (datetime.utcnow() + timedelta(hours=TOKEN_EXPIRY_HOURS)).isoformat(),
    }


def register_routes(app, engine, llm):
    """Register the shared API routes on the Flask *app*."""

    # ── Health / info ────────────────────────────────────────────────

    @app.route("/", methods=["GET"])
    def index():
        return jsonify({
            "service": "CareBridge Portal API",
            "version": "1.0.0",
            "status": "running",
            "endpoints": {
                "signup": "/api/auth/signup",
                "login": "/api/auth/login",
                "profile": "/api/profile",
                "patientAccess": "/api/patient/access",
                "doctorAccessRequest": "/api/doctor/access-request",
                "appointments": "/api/appointments",
                "health": "/health",
            },
        })

    @app.route("/health", methods=["GET"])
    def health():
        checks = {"database": check_connection(engine), "llm": llm is not None}
        healthy = checks["database"]
        return jsonify({
            "status": "healthy" if healthy else "unhealthy",
            "checks": checks,
        }), 200 if healthy else 503

    # ── Auth ─────────────────────────────────────────────────────────

    @app.route("/api/auth/signup", methods=["POST"])
    def signup():
        data = json_body()
        with session_scope(engine) as session:
            user = register_user(
                session,
                name=data.get("name"),
                email=data.get("email"),
                password=data.get("password"),
                role=data.get("role"),
            )
            body = _auth_response(user)
        print(f"[auth] New {body['user']['role'].lower()} account {body['user']['id']}")
        return jsonify(body), 201

    @app.route("/api/auth/login", methods=["POST"])
    def login():
        data = json_body()
        if not data.get("email") or not data.get("password"):
            raise ValidationError("email and password are required")
        with session_scope(engine) as session:
            user = authenticate(session, data["email"], data["password"])
            body = _auth_response(user)
        return jsonify(body), 200

    @app.route("/api/user/profile", methods=["GET"])
    @token_required(engine)
    def user_profile(ctx):
        return jsonify({
            "success": True,
            "user": {
                "id": ctx.user_id,
                "name": ctx.name,
                "email": ctx.email,
                "role": ctx.role.value,
                "profileLevel": ctx.profile_level,
            },
        }), 200

    # ── Profile sections ─────────────────────────────────────────────

    @app.route("/api/profile", methods=["GET"])
    @token_required(engine)
    def get_own_profile(ctx):
        with session_scope(engine) as session:
            user = session.get(User, ctx.user_id)
            profile = get_profile(user)
            body = {
                "user": user.summary(),
                "role": ctx.role.value,
                "profileLevel": user.profile_level,
                "maxProfileLevel": MAX_PROFILE_LEVEL,
                "profile": profile.to_dict() if profile is not None else None,
            }
            if ctx.role == Role.PATIENT:
                body["completeness"] = profile_completeness(profile)
        return jsonify(body), 200

    @app.route("/api/profile/<section>", methods=["POST"])
    @token_required(engine)
    def save_profile_section(ctx, section):
        data = json_body()
        with session_scope(engine) as session:
            level = save_section(session, ctx, section, data)
        return jsonify({
            "message": f"{section.capitalize()} profile saved successfully",
            "profileLevel": level,
        }), 200

    # ── Appointments ─────────────────────────────────────────────────

    @app.route("/api/appointments", methods=["GET"])
    @token_required(engine)
    def get_appointments(ctx):
        with session_scope(engine) as session:
            appointments = list_appointments(
                session, ctx, request.args.get("from"), request.args.get("to")
            )
        return jsonify({"appointments": appointments}), 200

    @app.route("/api/appointments", methods=["POST"])
    @token_required(engine)
    def create_appointment(ctx):
        data = json_body()
        with session_scope(engine) as session:
            appointment = book_appointment(session, ctx, data)
            body = {"appointment": appointment.to_dict()}
        return jsonify(body), 201

    @app.route("/api/appointments", methods=["DELETE"])
    @token_required(engine)
    def delete_appointment(ctx):
        with session_scope(engine) as session:
            cancel_appointment(session, ctx, request.args.get("id"))
        return jsonify({"success": True}), 200

    # ── Error handlers ───────────────────────────────────────────────

    @app.errorhandler(PortalError)
    def portal_error(e):
        return jsonify({"error": e.message}), e.status_code

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Endpoint not found", "message": str(e)}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed", "message": str(e)}), 405

    @app.errorhandler(413)
    def too_large(e):
        return jsonify({"error": "File too large. Maximum size is 10MB"}), 413

    @app.errorhandler(500)
    def internal_error(e):
        original = getattr(e, "original_exception", None)
        if original is not None:
            print(f"[ERROR] Unhandled error: {original}", file=sys.stderr)
            traceback.print_exception(type(original), original, original.__traceback__)
        return jsonify({"error": "Internal server error"}), 500
