# Overview: Flask API routes for flights; manual entry, counter corrections and deletion.

# backend/hangar/routes/flights.py
"""
Flight API Routes

WHY: Administrators occasionally type flights in directly, fix mis-read
counters or remove a flight entered by mistake. All three rewrite the ledger
and are ADMIN-only (checked in the service layer).
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor, json_result
from ..services import ledger_service, review_service


flights_bp = Blueprint("flights", __name__, url_prefix="/api/flights")


@flights_bp.post("")
@require_actor
def create_flight_route():
    """
    Register a flight manually (no submission).

    Request body:
    {
        "pilot_id": 3,
        "aircraft_id": 1,
        "hobbs": 1234.5,
        "tach": 1001.2,
        "fecha": "2026-03-01T14:00:00Z",  (optional)
        "rate": 150000,                    (optional, default pilot rate)
        "instructor_rate": 30000           (optional, default 0)
    }

    Returns:
        201: {success: true, flight_id, costo, diff_hobbs, diff_tach}
        400/403/404: {success: false, error, error_type}
    """
    try:
        data = request.get_json(silent=True) or {}
        required = ("pilot_id", "aircraft_id", "hobbs", "tach")
        missing = [field for field in required if data.get(field) is None]
        if missing:
            return jsonify({"error": f"Missing required fields: {', '.join(missing)}"}), 400

        result = review_service.register_manual_flight(
            admin_id=g.current_user.id,
            pilot_id=data["pilot_id"],
            aircraft_id=data["aircraft_id"],
            hobbs_value=data["hobbs"],
            tach_value=data["tach"],
            fecha=data.get("fecha"),
            rate=data.get("rate"),
            instructor_rate=data.get("instructor_rate"),
        )
        return json_result(result, success_status=201)
    except Exception:
        current_app.logger.exception("Failed to register manual flight")
        return jsonify({"error": "Internal server error"}), 500


@flights_bp.put("/<int:flight_id>/counters")
@require_actor
def update_counters_route(flight_id: int):
    """
    Correct the counters of a committed flight.

    Request body:
    {
        "hobbs_inicio": 100.0, "hobbs_fin": 101.5,
        "tach_inicio": 80.0, "tach_fin": 81.2
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        required = ("hobbs_inicio", "hobbs_fin", "tach_inicio", "tach_fin")
        missing = [field for field in required if data.get(field) is None]
        if missing:
            return jsonify({"error": f"Missing required fields: {', '.join(missing)}"}), 400

        result = ledger_service.update_flight_counters(
            actor_user_id=g.current_user.id,
            flight_id=flight_id,
            hobbs_inicio=data["hobbs_inicio"],
            hobbs_fin=data["hobbs_fin"],
            tach_inicio=data["tach_inicio"],
            tach_fin=data["tach_fin"],
        )
        return json_result(result)
    except Exception:
        current_app.logger.exception("Failed to update counters for flight %s", flight_id)
        return jsonify({"error": "Internal server error"}), 500


@flights_bp.delete("/<int:flight_id>")
@require_actor
def delete_flight_route(flight_id: int):
    """Delete a flight and reverse its charge, counters and component hours."""
    try:
        result = ledger_service.delete_flight(actor_user_id=g.current_user.id, flight_id=flight_id)
        return json_result(result)
    except Exception:
        current_app.logger.exception("Failed to delete flight %s", flight_id)
        return jsonify({"error": "Internal server error"}), 500


@flights_bp.get("/last")
@require_actor
def last_flight_route():
    """
    Most recent flight of an aircraft, used to prefill the next entry.

    Query params:
        aircraft_id (required)

    Returns:
        200: {flight: {...} | null}
    """
    aircraft_id = request.args.get("aircraft_id", type=int)
    if aircraft_id is None:
        return jsonify({"error": "aircraft_id query parameter required"}), 400

    try:
        flight = ledger_service.get_last_flight(aircraft_id)
        return jsonify({"flight": flight.to_dict() if flight else None}), 200
    except Exception:
        current_app.logger.exception("Failed to load last flight for aircraft %s", aircraft_id)
        return jsonify({"error": "Internal server error"}), 500
