"""
Flask application factory and server entry-point.
"""

import os
import sys
import traceback

from flask import Flask
from flask_cors import CORS

from carebridge.api.doctor_routes import register_doctor_routes
from carebridge.api.patient_routes import register_patient_routes
from carebridge.api.routes import register_routes
from carebridge.config import MAX_UPLOAD_BYTES, TOKEN_EXPIRY_HOURS, UPLOAD_DIR
from carebridge.database import create_schema, init_engine
from carebridge.llm import init_llm


def create_app(engine=None, llm=None, upload_dir=None):
    """Build and return a fully configured Flask application.

    With no *engine* the database and LLM are initialised from the
    environment; passing an engine (as the tests do) skips both.
    """
    app = Flask(__name__)
    CORS(app)
    # Multipart overhead on top of the largest accepted file.
    app.config["MAX_CONTENT_LENGTH"] = MAX_UPLOAD_BYTES + 1024 * 1024

    # ── Initialise shared resources ──────────────────────────────────
    if engine is None:
        try:
            print("[init] Initializing database connection...")
            engine = init_engine()

            print("[init] Initializing LLM...")
            llm = init_llm()

            print("[init] ✓ API server ready")
        except Exception as e:
            print(f"[FATAL] Failed to initialize: {e}", file=sys.stderr)
            traceback.print_exc()
            sys.exit(1)
    else:
        create_schema(engine)

    upload_dir = os.path.abspath(upload_dir or UPLOAD_DIR)
    os.makedirs(upload_dir, exist_ok=True)

    # ── Register routes ──────────────────────────────────────────────
    register_routes(app, engine, llm)
    register_patient_routes(app, engine, llm, upload_dir)
    register_doctor_routes(app, engine, upload_dir)

    return app


def main():
    """Run the development server."""
    print("=" * 60)
    print("CareBridge Portal – REST API Server")
    print("=" * 60)

    app = create_app()

    host = os.getenv("API_HOST", "0.0.0.0")
    port = int(os.getenv("API_PORT", "8000"))
    debug = os.getenv("FLASK_ENV") == "development"

    print(f"\n[server] Starting Flask API on {host}:{port}")
    print(f"[server] Debug mode: {debug}")
    print(f"[server] CORS enabled: True")
    print(f"[server] Token expiry: {TOKEN_EXPIRY_HOURS} hours")
    print("\nAPI Endpoints:")
    print(f"  - POST http://{host}:{port}/api/auth/signup")
    print(f"  - POST http://{host}:{port}/api/auth/login")
    print(f"  - POST http://{host}:{port}/api/profile/<basic|recommended|advanced>")
    print(f"  - GET  http://{host}:{port}/api/patient/dashboard")
    print(f"  - GET  http://{host}:{port}/api/doctor/dashboard")
    print(f"  - GET  http://{host}:{port}/api/patient/access")
    print(f"  - POST http://{host}:{port}/api/doctor/access-request")
    print(f"  - GET  http://{host}:{port}/api/doctor/patient-records?patientId=")
    print(f"  - GET  http://{host}:{port}/api/appointments")
    print(f"  - GET  http://{host}:{port}/health")
    print("\n" + "=" * 60)

    app.run(host=host, port=port, debug=debug, threaded=True)


if __name__ == "__main__":
    main()
