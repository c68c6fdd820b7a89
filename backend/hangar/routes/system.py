# Overview: Flask API routes for system health; reports database and pipeline readiness.

# backend/hangar/routes/system.py
"""
System health and version endpoints.

Health covers the database and the submission backlog so an operator can
see at a glance whether the OCR pipeline is keeping up.
"""

import sys
import time
from flask import Blueprint, current_app

from ..extensions import db
from ..models import Aircraft, FlightSubmission
from ..models.flights import (
    SUBMISSION_ERROR,
    SUBMISSION_ESPERANDO_APROBACION,
    SUBMISSION_PENDIENTE,
    SUBMISSION_REVISION,
)
from hangar.time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        aircraft_count = db.session.query(Aircraft).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"aircraft": aircraft_count},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_submission_backlog() -> dict:
    """
    Count submissions waiting on the pipeline or an administrator.

    ERROR submissions make the pipeline "degraded": they need operator attention
    but do not block new work.
    """
    start_time = time.time()
    try:
        counts = {
            estado: db.session.query(FlightSubmission).filter_by(estado=estado).count()
            for estado in (
                SUBMISSION_PENDIENTE,
                SUBMISSION_REVISION,
                SUBMISSION_ESPERANDO_APROBACION,
                SUBMISSION_ERROR,
            )
        }
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "degraded" if counts[SUBMISSION_ERROR] else "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "pending": counts[SUBMISSION_PENDIENTE],
                "in_review": counts[SUBMISSION_REVISION],
                "awaiting_approval": counts[SUBMISSION_ESPERANDO_APROBACION],
                "errored": counts[SUBMISSION_ERROR],
            },
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Submission backlog check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Submission backlog error",
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    backlog_health = check_submission_backlog()

    all_checks = [database_health, backlog_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200  # Degraded is still operational
    else:
        overall_status, http_status = "healthy", 200

    total_elapsed_ms = (time.time() - start_time) * 1000
    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "submissions": backlog_health,
        },
    }, http_status


@system_bp.get("/version")
def version():
    """Non-sensitive deployment information."""
    env = "production" if not current_app.debug else "development"
    return {
        "api_version": "1.0.0",
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
