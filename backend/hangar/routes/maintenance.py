# Overview: Flask API routes for maintenance; overhaul registration and component status.

# backend/hangar/routes/maintenance.py
"""
Maintenance API Routes

SECURITY:
- Overhaul registration is ADMIN-only (service layer)
- Component status is readable by any acting user
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor, json_result
from ..services import overhaul_service
from ..validation import LedgerError


maintenance_bp = Blueprint("maintenance", __name__, url_prefix="/api/maintenance")


@maintenance_bp.post("/overhauls")
@require_actor
def register_overhaul_route():
    """
    Register a component overhaul and recompute later flight snapshots.

    Request body:
    {
        "component_id": 2,
        "component_type": "ENGINE",
        "aircraft_id": 1,
        "overhaul_airframe_hours": 1500.0,
        "overhaul_date": "2026-02-10",
        "notes": "Top overhaul"   (optional)
    }

    Returns:
        200: {success: true, message, hours_since_overhaul, recalculated}
        400/403/404: {success: false, error, error_type}
    """
    try:
        data = request.get_json(silent=True) or {}
        required = ("component_id", "component_type", "aircraft_id", "overhaul_airframe_hours")
        missing = [field for field in required if data.get(field) is None]
        if missing:
            return jsonify({"error": f"Missing required fields: {', '.join(missing)}"}), 400

        result = overhaul_service.register_overhaul(
            actor_user_id=g.current_user.id,
            component_id=data["component_id"],
            component_type=data["component_type"],
            aircraft_id=data["aircraft_id"],
            overhaul_airframe_hours=data["overhaul_airframe_hours"],
            overhaul_date=data.get("overhaul_date"),
            notes=data.get("notes"),
        )
        return json_result(result)
    except Exception:
        current_app.logger.exception("Failed to register overhaul")
        return jsonify({"error": "Internal server error"}), 500


@maintenance_bp.get("/aircraft/<int:aircraft_id>/components")
@require_actor
def list_components_route(aircraft_id: int):
    """Components of an aircraft with overhaul anchor, TBO and hours since overhaul."""
    try:
        components = overhaul_service.list_component_overhauls(aircraft_id)
        return jsonify({"aircraft_id": aircraft_id, "components": components}), 200
    except LedgerError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list components for aircraft %s", aircraft_id)
        return jsonify({"error": "Internal server error"}), 500
