# Overview: Flask API routes for flight submissions; parses input and returns JSON responses.

# backend/hangar/routes/submissions.py
"""
Flight Submission API Routes

WHY: The upload front end creates submissions; these endpoints drive them
through OCR, manual review and cancellation, and expose their status.

SECURITY:
- Every route requires an acting user (X-Actor-Id from the upstream auth layer)
- Review, approval and cancellation require the ADMIN role (checked in the
  service layer); pilot entries are recorded for the acting user
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor, json_result
from ..services import review_service, submission_service
from ..validation import LedgerError


submissions_bp = Blueprint("submissions", __name__, url_prefix="/api/submissions")


@submissions_bp.get("/<int:submission_id>")
@require_actor
def get_submission_route(submission_id: int):
    """
    Submission status with images and, once committed, the flight and its charge.

    Returns:
        200: {id, estado, errorMessage, pilot, aircraft, images, flight}
        404: Submission not found
    """
    try:
        return jsonify(submission_service.get_submission_status(submission_id)), 200
    except LedgerError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load submission %s", submission_id)
        return jsonify({"error": "Internal server error"}), 500


@submissions_bp.post("/<int:submission_id>/process")
@require_actor
def process_submission_route(submission_id: int):
    """
    Run OCR and the confidence gate on a PENDIENTE submission.

    Pipeline failures do not produce an error response: the submission is
    returned in ERROR with its message.

    Returns:
        200: Submission status after processing
        400: Submission is not PENDIENTE
        404: Submission not found
    """
    try:
        submission_service.process_submission(submission_id)
        return jsonify(submission_service.get_submission_status(submission_id)), 200
    except LedgerError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to process submission %s", submission_id)
        return jsonify({"error": "Internal server error"}), 500


@submissions_bp.post("/<int:submission_id>/review")
@require_actor
def review_submission_route(submission_id: int):
    """
    Approve a submission with administrator-read meter values.

    Request body:
    {
        "hobbsValue": 1234.5,
        "tachValue": 1001.2,
        "rate": 150000,           (optional)
        "instructorRate": 30000   (optional)
    }

    Returns:
        201: {success: true, flight_id, ...}
        400/403/404: {success: false, error, error_type}
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("hobbsValue") is None or data.get("tachValue") is None:
            return jsonify({"error": "hobbsValue and tachValue required"}), 400

        result = review_service.manual_review_and_approve(
            submission_id=submission_id,
            hobbs_value=data.get("hobbsValue"),
            tach_value=data.get("tachValue"),
            admin_id=g.current_user.id,
            rate=data.get("rate"),
            instructor_rate=data.get("instructorRate"),
        )
        return json_result(result, success_status=201)
    except Exception:
        current_app.logger.exception("Failed to review submission %s", submission_id)
        return jsonify({"error": "Internal server error"}), 500


@submissions_bp.post("/pilot-entry")
@require_actor
def pilot_entry_route():
    """
    Record the final meter readings typed in by the acting pilot.

    Request body:
    {
        "aircraftId": 1,
        "hobbsFinal": 1234.5,
        "tachFinal": 1001.2,
        "flightDate": "2026-03-01T14:00:00Z"   (optional)
    }

    Returns:
        201: {success: true, submission_id, estado: ESPERANDO_APROBACION, ...}
        400/403/404: {success: false, error, error_type}
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("aircraftId") is None:
            return jsonify({"error": "aircraftId required"}), 400
        if data.get("hobbsFinal") is None or data.get("tachFinal") is None:
            return jsonify({"error": "hobbsFinal and tachFinal required"}), 400

        result = submission_service.register_pilot_entry(
            pilot_id=g.current_user.id,
            aircraft_id=data.get("aircraftId"),
            hobbs_final=data.get("hobbsFinal"),
            tach_final=data.get("tachFinal"),
            flight_date=data.get("flightDate"),
        )
        return json_result(result, success_status=201)
    except Exception:
        current_app.logger.exception("Failed to record pilot-entered counters")
        return jsonify({"error": "Internal server error"}), 500


@submissions_bp.post("/<int:submission_id>/approve")
@require_actor
def approve_submission_route(submission_id: int):
    """
    Approve the counters a pilot typed in and commit the flight.

    Request body (optional):
    {
        "rate": 150000,
        "instructorRate": 30000
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        result = review_service.approve_submission(
            submission_id=submission_id,
            admin_id=g.current_user.id,
            rate=data.get("rate"),
            instructor_rate=data.get("instructorRate"),
        )
        return json_result(result, success_status=201)
    except Exception:
        current_app.logger.exception("Failed to approve submission %s", submission_id)
        return jsonify({"error": "Internal server error"}), 500


@submissions_bp.post("/<int:submission_id>/cancel")
@require_actor
def cancel_submission_route(submission_id: int):
    """
    Cancel a submission that has not produced a flight.

    Request body (optional):
    {
        "reason": "Duplicate upload"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        result = submission_service.cancel_submission(
            submission_id=submission_id,
            actor_user_id=g.current_user.id,
            reason=data.get("reason"),
        )
        return json_result(result)
    except Exception:
        current_app.logger.exception("Failed to cancel submission %s", submission_id)
        return jsonify({"error": "Internal server error"}), 500
