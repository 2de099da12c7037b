"""
Health data analysis – vitals status labels, metric-log summaries, rule-based
insights and the optional AI narrative.
"""

import re
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import pandas as pd
from langchain_core.messages import HumanMessage, SystemMessage

from carebridge.config import RECENT_RECORD_DAYS
from carebridge.models import MedicalRecord, PatientProfile, _iso

METRIC_COLUMNS = ["id", "patientId", "metricType", "value", "unit", "recordedAt"]
_BP_RE = re.compile(r"(\d+)\s*/\s*(\d+)")
_NUMBER_RE = r"(-?\d+(?:\.\d+)?)"


# ── Vitals status labels (display only) ──────────────────────────────

def bp_status(value: Optional[str]) -> str:
    match = _BP_RE.search(value or "")
    if not match:
        return "normal"
    systolic, diastolic = int(match.group(1)), int(match.group(2))
    if systolic >= 140 or diastolic >= 90:
        return "high"
    if systolic < 90 or diastolic < 60:
        return "low"
    return "normal"


def sugar_status(value: Optional[str]) -> str:
    match = re.search(r"\d+", str(value or ""))
    if not match:
        return "normal"
    sugar = int(match.group(0))
    if sugar >= 126:
        return "high"
    if sugar < 70:
        return "low"
    return "normal"


def heart_rate_status(bpm: int) -> str:
    if bpm > 100:
        return "high"
    if bpm < 60:
        return "low"
    return "normal"


def oxygen_status(percent: int) -> str:
    if percent < 95:
        return "low"
    if percent > 100:
        return "high"
    return "normal"


def vitals_metrics(profile: PatientProfile) -> List[Dict[str, Any]]:
    """The profile's current vitals as labelled metric cards."""
    recorded_at = _iso(profile.updated_at)
    metrics = []
    if profile.vitals_bp:
        metrics.append({
            "id": "bp", "type": "Blood Pressure", "value": profile.vitals_bp,
            "unit": "mmHg", "recordedAt": recorded_at, "status": bp_status(profile.vitals_bp),
        })
    if profile.vitals_sugar:
        metrics.append({
            "id": "sugar", "type": "Blood Sugar", "value": profile.vitals_sugar,
            "unit": "", "recordedAt": recorded_at, "status": sugar_status(profile.vitals_sugar),
        })
    if profile.vitals_heart_rate:
        metrics.append({
            "id": "heart_rate", "type": "Heart Rate", "value": str(profile.vitals_heart_rate),
            "unit": "BPM", "recordedAt": recorded_at,
            "status": heart_rate_status(profile.vitals_heart_rate),
        })
    if profile.vitals_oxygen:
        metrics.append({
            "id": "oxygen", "type": "Oxygen Saturation", "value": str(profile.vitals_oxygen),
            "unit": "%", "recordedAt": recorded_at, "status": oxygen_status(profile.vitals_oxygen),
        })
    return metrics


# ── Metric log summaries ─────────────────────────────────────────────

def metrics_frame(metrics) -> pd.DataFrame:
    """Metric rows as a DataFrame, newest first, with a parsed numeric column."""
    metrics = list(metrics)
    df = pd.DataFrame([m.to_dict() for m in metrics], columns=METRIC_COLUMNS)
    if df.empty:
        return df
    # Stored datetimes, not the ISO strings: isoformat() drops zero microseconds.
    df["_ts"] = pd.to_datetime([m.recorded_at for m in metrics])
    # Leading number only: systolic for "120/80", 98.6 for "98.6 F".
    df["_numeric"] = pd.to_numeric(
        df["value"].astype(str).str.extract(_NUMBER_RE, expand=False), errors="coerce"
    )
    return df.sort_values("_ts", ascending=False, kind="stable")


def _records(frame: pd.DataFrame) -> List[Dict[str, Any]]:
    plain = frame[METRIC_COLUMNS].astype(object)
    return plain.where(pd.notna(plain), None).to_dict(orient="records")


def _trend(series: pd.Series) -> str:
    """Direction from the oldest to the newest reading of a newest-first series."""
    newest, oldest = series.iloc[0], series.iloc[-1]
    if abs(newest - oldest) < 1e-9:
        return "stable"
    return "rising" if newest > oldest else "falling"


def summarize_metrics(df: pd.DataFrame) -> Dict[str, Any]:
    """Group the metric log by type: full history, latest reading and numeric summary."""
    if df.empty:
        return {"groupedMetrics": {}, "latestMetrics": [], "summary": {}}

    grouped: Dict[str, List[Dict[str, Any]]] = {}
    summary: Dict[str, Dict[str, Any]] = {}
    for metric_type, group in df.groupby("metricType", sort=True):
        grouped[metric_type] = _records(group)
        entry: Dict[str, Any] = {"count": int(len(group)), "latest": group.iloc[0]["value"]}
        numeric = group["_numeric"].dropna()
        if not numeric.empty:
            entry["min"] = float(numeric.min())
            entry["max"] = float(numeric.max())
            entry["mean"] = round(float(numeric.mean()), 2)
            if len(numeric) >= 2:
                entry["trend"] = _trend(numeric)
        summary[metric_type] = entry

    latest = _records(df.drop_duplicates("metricType", keep="first"))
    return {"groupedMetrics": grouped, "latestMetrics": latest, "summary": summary}


# ── Rule-based insights ──────────────────────────────────────────────

def _age_guidance(age: int):
    if age < 30:
        return (
            "Focus on establishing healthy lifestyle habits and preventive care.",
            ["Maintain healthy diet", "Regular exercise", "Avoid smoking and excessive alcohol"],
        )
    if age < 50:
        return (
            "Regular health screenings become more important. Consider annual check-ups.",
            ["Annual physical exams", "Blood pressure monitoring", "Cholesterol screening"],
        )
    if age < 65:
        return (
            "Increased focus on chronic disease prevention and regular monitoring is recommended.",
            ["Diabetes screening", "Cancer screenings", "Bone density tests"],
        )
    return (
        "Comprehensive geriatric care and frequent health monitoring are beneficial.",
        ["Comprehensive geriatric assessment", "Fall prevention", "Medication review"],
    )


def _vitals_insight(profile: PatientProfile) -> Dict[str, Any]:
    parts = []
    if profile.vitals_bp:
        parts.append(f"blood pressure ({profile.vitals_bp} - {bp_status(profile.vitals_bp)})")
    if profile.vitals_heart_rate:
        parts.append(
            f"heart rate ({profile.vitals_heart_rate} bpm - {heart_rate_status(profile.vitals_heart_rate)})"
        )
    if profile.vitals_oxygen:
        parts.append(
            f"oxygen saturation ({profile.vitals_oxygen}% - {oxygen_status(profile.vitals_oxygen)})"
        )
    if profile.vitals_sugar:
        parts.append(f"blood sugar ({profile.vitals_sugar} - {sugar_status(profile.vitals_sugar)})")

    recommendations = []
    if profile.vitals_heart_rate and profile.vitals_heart_rate > 100:
        recommendations.append("Consider discussing elevated heart rate with your doctor")
    if profile.vitals_oxygen and profile.vitals_oxygen < 95:
        recommendations.append("Low oxygen levels should be evaluated by a healthcare provider")
    if profile.vitals_bp and bp_status(profile.vitals_bp) == "high":
        recommendations.append("Monitor blood pressure and review it with your doctor")
    recommendations.append("Update vitals regularly for better health tracking")

    return {
        "type": "vitals_analysis",
        "title": "Vital Signs Assessment",
        "message": (
            f"Your recorded vitals include {', '.join(parts)}. "
            "Regular monitoring helps track your health trends."
        ),
        "priority": "medium",
        "confidence": 0.85,
        "recommendations": recommendations,
    }


def generate_insights(profile: PatientProfile, records: List[MedicalRecord],
                      now: datetime) -> List[Dict[str, Any]]:
    insights = []

    if profile.vitals_bp or profile.vitals_sugar or profile.vitals_heart_rate or profile.vitals_oxygen:
        insights.append(_vitals_insight(profile))

    if profile.medical_history:
        insights.append({
            "type": "medical_history",
            "title": "Medical History Insights",
            "message": (
                f"Based on your medical history of {', '.join(profile.medical_history)}, "
                "we recommend regular monitoring."
            ),
            "priority": "medium",
            "confidence": 0.75,
            "recommendations": ["Schedule regular check-ups", "Monitor symptoms closely"],
        })

    if profile.current_medications:
        insights.append({
            "type": "medication_review",
            "title": "Medication Management",
            "message": (
                f"You are currently taking {len(profile.current_medications)} medication(s). "
                "Regular review is recommended."
            ),
            "priority": "low",
            "confidence": 0.90,
            "recommendations": ["Discuss with your doctor during next visit", "Keep medication list updated"],
        })

    cutoff = now - timedelta(days=RECENT_RECORD_DAYS)
    recent = [r for r in records if r.uploaded_at > cutoff]
    if recent:
        insights.append({
            "type": "records_activity",
            "title": "Recent Health Activity",
            "message": (
                f"You've uploaded {len(recent)} medical record(s) in the last "
                f"{RECENT_RECORD_DAYS} days. Great job staying organized!"
            ),
            "priority": "low",
            "confidence": 1.0,
            "recommendations": [
                "Continue regular health monitoring",
                "Share relevant records with your assigned doctor",
            ],
        })

    if profile.age:
        message, actions = _age_guidance(profile.age)
        insights.append({
            "type": "age_based_care",
            "title": "Age-Appropriate Care",
            "message": message,
            "priority": "medium",
            "confidence": 0.80,
            "recommendations": actions,
        })

    if not insights:
        insights.append({
            "type": "general_wellness",
            "title": "General Health Guidance",
            "message": "Complete your health profile to receive personalized insights and recommendations.",
            "priority": "low",
            "confidence": 1.0,
            "recommendations": ["Update your vital signs", "Add medical history", "Upload recent medical records"],
        })

    return insights


# ── AI narrative summary ─────────────────────────────────────────────

def summarize_insights(llm, profile: PatientProfile, insights: List[Dict[str, Any]],
                       metrics_summary: Dict[str, Any]) -> str:
    """Ask the LLM for a short plain-language summary of the patient's insights."""
    insight_lines = "\n".join(
        f"- {i['title']}: {i['message']} (recommendations: {'; '.join(i['recommendations'])})"
        for i in insights
    )
    metric_lines = "\n".join(
        f"- {metric_type}: {entry}" for metric_type, entry in metrics_summary.items()
    ) or "(no metric log entries)"

    system = SystemMessage(
        content=(
            "You are a careful health assistant for a patient portal.\n"
            "You will see a patient's rule-based health insights and a summary of their "
            "recorded health metrics.\n"
            "Write a short, encouraging summary for the patient:\n"
            "- Mention the most important findings first.\n"
            "- Point out values labelled high or low.\n"
            "- Do not diagnose; suggest discussing concerns with their doctor.\n"
            "Write 3–5 sentences, no markdown."
        )
    )
    human = HumanMessage(
        content=(
            f"Patient age: {profile.age}\n"
            f"Primary problem: {profile.primary_problem}\n\n"
            f"Insights:\n{insight_lines}\n\n"
            f"Metric log summary:\n{metric_lines}\n"
        )
    )
    resp = llm.invoke([system, human])
    return resp.content.strip()
