"""
Centralised configuration constants and environment helpers.
"""

import os
import sys

from dotenv import load_dotenv

load_dotenv()

# ── LLM ──────────────────────────────────────────────────────────────
MODEL_NAME = "gpt-4.1-mini"

# ── API server ───────────────────────────────────────────────────────
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
TOKEN_EXPIRY_HOURS = 24

# ── Roles / profile tiers ────────────────────────────────────────────
ROLES = {"PATIENT", "DOCTOR"}
MAX_PROFILE_LEVEL = 3

GENDERS = {"MALE", "FEMALE", "OTHER", "PREFER_NOT_TO_SAY"}
CONSULTATION_PREFERENCES = {"IN_PERSON", "VIDEO_CALL", "PHONE_CALL", "CHAT"}
CONSULTATION_MODES = {"IN_PERSON_ONLY", "ONLINE_ONLY", "BOTH"}
MAX_SYMPTOMS = 3

# Medical condition enum -> readable specialty term used for doctor matching.
MEDICAL_CONDITIONS = {
    "HEART_DISEASE": "heart disease",
    "DIABETES": "diabetes",
    "HYPERTENSION": "hypertension",
    "ASTHMA": "asthma",
    "ARTHRITIS": "arthritis",
    "DEPRESSION": "depression",
    "ANXIETY": "anxiety",
    "SKIN_CONDITIONS": "dermatology",
    "DIGESTIVE_ISSUES": "gastroenterology",
    "HEADACHES_MIGRAINES": "neurology",
    "BACK_PAIN": "orthopedics",
    "ALLERGIES": "allergy",
    "RESPIRATORY_ISSUES": "pulmonology",
    "KIDNEY_DISEASE": "nephrology",
    "LIVER_DISEASE": "hepatology",
    "THYROID_DISORDERS": "endocrinology",
    "CANCER": "oncology",
    "NEUROLOGICAL_DISORDERS": "neurology",
    "MENTAL_HEALTH": "psychiatry",
    "WOMENS_HEALTH": "gynecology",
    "MENS_HEALTH": "urology",
    "PEDIATRIC_CARE": "pediatrics",
    "GERIATRIC_CARE": "geriatrics",
    "GENERAL_CHECKUP": "general practice",
    "PREVENTIVE_CARE": "preventive medicine",
    "OTHER": "general practice",
}

# ── Vitals ───────────────────────────────────────────────────────────
HEART_RATE_RANGE = (30, 200)
OXYGEN_RANGE = (70, 100)

METRIC_TYPES = {
    "blood_pressure", "heart_rate", "weight", "height",
    "temperature", "blood_sugar", "cholesterol", "bmi",
}

# ── Records / uploads ────────────────────────────────────────────────
RECORD_TYPES = {"LAB_RESULTS", "PRESCRIPTION", "IMAGING", "CONSULTATION", "OTHER"}
DOCUMENT_TYPES = {"LICENSE", "CERTIFICATE", "OTHER"}
UPLOAD_DIR = os.getenv("UPLOAD_DIR", os.path.join("uploads", "medical-records"))
MAX_UPLOAD_BYTES = 10 * 1024 * 1024
ALLOWED_MIME_TYPES = {
    "application/pdf",
    "image/jpeg", "image/jpg", "image/png", "image/gif",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "text/plain",
}

# ── Listing limits ───────────────────────────────────────────────────
DEFAULT_MESSAGE_LIMIT = 50
DEFAULT_METRIC_LIMIT = 10
RECENT_RECORD_DAYS = 30

# ── Appointments ─────────────────────────────────────────────────────
MEET_HOSTNAME = "meet.google.com"


def get_env(name: str) -> str:
    """Return an environment variable or exit with an error message."""
    value = os.getenv(name)
    if not value:
        print(f"ERROR: env var {name} is not set", file=sys.stderr)
        sys.exit(1)
    return value
