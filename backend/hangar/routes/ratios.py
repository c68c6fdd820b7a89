# Overview: Flask API routes for the Hobbs/Tach predictor; read-only statistics.

# backend/hangar/routes/ratios.py
"""
Hobbs/Tach Ratio API Routes

Used by the entry form when the Hobbs meter is inoperative: the expected
Hobbs delta is suggested from the Tach delta.
"""

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_actor
from ..services import ratio_service
from ..validation import LedgerError, decimal_to_json


ratios_bp = Blueprint("ratios", __name__, url_prefix="/api")


def _read_params():
    tach_delta = request.args.get("tachDelta")
    aircraft_id = request.args.get("aircraft_id", type=int)
    if tach_delta is None or aircraft_id is None:
        return None, None, (jsonify({"error": "tachDelta and aircraft_id query parameters required"}), 400)
    return tach_delta, aircraft_id, None


@ratios_bp.get("/expected-ratio")
@require_actor
def expected_ratio_route():
    """
    Expected Hobbs/Tach ratio for a flight length.

    Query params:
        tachDelta (required), aircraft_id (required)

    Returns:
        200: {expectedRatio, bucket, confidence, sampleSize, minRatio, maxRatio}
        400: tachDelta missing, non-numeric or <= 0
    """
    tach_delta, aircraft_id, error = _read_params()
    if error:
        return error

    try:
        result = ratio_service.get_expected_ratio(tach_delta, aircraft_id)
        return jsonify({
            "expectedRatio": decimal_to_json(result["expected_ratio"]),
            "bucket": result["bucket"],
            "confidence": result["confidence"],
            "sampleSize": result["sample_size"],
            "minRatio": decimal_to_json(result["min_ratio"]),
            "maxRatio": decimal_to_json(result["max_ratio"]),
            "usedGlobalRatio": result["used_global_ratio"],
        }), 200
    except LedgerError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to compute expected ratio")
        return jsonify({"error": "Internal server error"}), 500


@ratios_bp.get("/predict-hobbs")
@require_actor
def predict_hobbs_route():
    """
    Predicted Hobbs delta for a Tach delta.

    Returns:
        200: {predictedHobbsDelta, ratio, bucket, confidence, sampleSize}
    """
    tach_delta, aircraft_id, error = _read_params()
    if error:
        return error

    try:
        result = ratio_service.predict_hobbs_from_tach(tach_delta, aircraft_id)
        return jsonify({
            "predictedHobbsDelta": decimal_to_json(result["predicted_hobbs_delta"]),
            "ratio": decimal_to_json(result["ratio"]),
            "bucket": result["bucket"],
            "confidence": result["confidence"],
            "sampleSize": result["sample_size"],
        }), 200
    except LedgerError as e:
        return jsonify({"error": str(e)}), e.status_code
    except Exception:
        current_app.logger.exception("Failed to predict Hobbs delta")
        return jsonify({"error": "Internal server error"}), 500
