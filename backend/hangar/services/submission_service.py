# Overview: Service-layer operations for flight submissions; OCR pipeline, confidence gate and status read model.

"""
Flight Submission Workflow

WHY: Pilots upload photos of the Hobbs and Tach meters instead of typing
readings. The pipeline reads them with OCR and only commits unattended when
every reading is trusted; everything else waits for an administrator.

LIFECYCLE:
- PENDIENTE -> PROCESANDO: OCR starts
- PROCESANDO -> COMPLETADO: confidence gate passed and the ledger commit succeeded
- PROCESANDO -> REVISION: confidence gate failed, no ledger effects
- PROCESANDO -> ERROR: any failure; error_message holds the cause, no retry
- REVISION/ERROR -> COMPLETADO: manual review (review_service)
- ESPERANDO_APROBACION -> COMPLETADO: pilot-typed counters approved (review_service)
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from flask import current_app

from ..decorators import structured_result
from ..extensions import db
from ..models import Aircraft, FlightSubmission, ImageLog
from ..models.flights import (
    METER_HOBBS,
    METER_TACH,
    METER_TYPES,
    SUBMISSION_CANCELADO,
    SUBMISSION_COMPLETADO,
    SUBMISSION_ERROR,
    SUBMISSION_ESPERANDO_APROBACION,
    SUBMISSION_PENDIENTE,
    SUBMISSION_PROCESANDO,
    SUBMISSION_REVISION,
)
from hangar.time_utils import parse_iso_datetime, to_utc_z
from ..validation import (
    AuthorizationError,
    NotFoundError,
    ValidationError,
    decimal_to_json,
    format_hours,
    to_decimal,
    validate_meter_reading,
)
from . import ledger_service
from .ocr_service import OcrAdapter, OcrRequest, extract_meter_values, get_ocr_adapter
from .permission_service import get_active_user, require_admin


DEFAULT_CONFIDENCE_THRESHOLD = 85


def _get_submission(submission_id: int) -> FlightSubmission:
    submission = db.session.get(FlightSubmission, submission_id)
    if not submission:
        raise NotFoundError(f"Submission {submission_id} not found")
    return submission


# =============================================================================
# CONFIDENCE GATE
# =============================================================================

def is_auto_approvable(image_logs: Iterable[ImageLog], threshold: int | Decimal = DEFAULT_CONFIDENCE_THRESHOLD) -> bool:
    """
    True iff there is at least one image and every image has an extracted
    value with confidence >= threshold.
    """
    logs = list(image_logs)
    if not logs:
        return False
    threshold = Decimal(threshold)
    for log in logs:
        if log.valor_extraido is None or log.confianza is None:
            return False
        if Decimal(log.confianza) < threshold:
            return False
    return True


def meter_values(submission: FlightSubmission) -> tuple[Decimal, Decimal]:
    """Extracted (hobbs, tach) for a submission; ValidationError if either is missing."""
    hobbs_log = submission.image_log_for(METER_HOBBS)
    tach_log = submission.image_log_for(METER_TACH)
    if hobbs_log is None or hobbs_log.valor_extraido is None:
        raise ValidationError(f"Submission {submission.id} has no extracted HOBBS value")
    if tach_log is None or tach_log.valor_extraido is None:
        raise ValidationError(f"Submission {submission.id} has no extracted TACH value")
    return to_decimal(hobbs_log.valor_extraido), to_decimal(tach_log.valor_extraido)


def apply_confidence_gate(submission_id: int, threshold: int | None = None) -> FlightSubmission:
    """
    Auto-commit a trusted submission, or park it in REVISION.

    No retries and no partial commits: either the ledger commit runs (and
    completes the submission) or the submission moves to REVISION untouched.
    """
    if threshold is None:
        threshold = current_app.config.get("OCR_CONFIDENCE_THRESHOLD", DEFAULT_CONFIDENCE_THRESHOLD)

    submission = _get_submission(submission_id)

    if not is_auto_approvable(submission.image_logs, threshold):
        submission.transition_to(SUBMISSION_REVISION)
        db.session.commit()
        current_app.logger.info("Submission %s needs manual review", submission_id)
        return submission

    hobbs, tach = meter_values(submission)
    flight = ledger_service.commit_flight(
        pilot_id=submission.pilot_id,
        aircraft_id=submission.aircraft_id,
        new_hobbs=hobbs,
        new_tach=tach,
        fecha=submission.flight_date,
        rate=submission.rate,
        instructor_rate=submission.instructor_rate,
        submission_id=submission.id,
    )
    current_app.logger.info("Submission %s auto-approved as flight %s", submission_id, flight.id)
    return _get_submission(submission_id)


# =============================================================================
# PIPELINE
# =============================================================================

def _ocr_requests(image_logs: Iterable[ImageLog]) -> list[OcrRequest]:
    requests = []
    for log in image_logs:
        if log.tipo not in METER_TYPES:
            current_app.logger.warning("Skipping image %s with unknown meter type %s", log.id, log.tipo)
            continue
        requests.append(OcrRequest(image_log_id=log.id, image_reference=log.image_url, meter_type=log.tipo))
    return requests


def process_submission(submission_id: int, adapter: OcrAdapter | None = None) -> FlightSubmission:
    """
    Run OCR on every image of a PENDIENTE submission and apply the gate.

    Raises:
        NotFoundError: submission missing
        ValidationError: submission is not PENDIENTE (left untouched)

    Any failure after that point is captured: the submission moves to ERROR
    with the message and is returned for operator attention.
    """
    submission = _get_submission(submission_id)
    if submission.estado != SUBMISSION_PENDIENTE:
        raise ValidationError(
            f"Submission {submission_id} is {submission.estado}; only {SUBMISSION_PENDIENTE} submissions can be processed"
        )

    try:
        submission.transition_to(SUBMISSION_PROCESANDO)
        db.session.commit()

        if adapter is None:
            adapter = get_ocr_adapter()
        results = extract_meter_values(
            adapter,
            _ocr_requests(submission.image_logs),
            timeout=current_app.config.get("OCR_TIMEOUT_SECONDS", 20.0),
            max_workers=current_app.config.get("OCR_MAX_WORKERS", 4),
        )

        for log in submission.image_logs:
            result = results.get(log.id)
            if result is None:
                continue
            log.valor_extraido = result.value
            log.confianza = result.confidence
        db.session.commit()

        return apply_confidence_gate(submission_id)
    except Exception as exc:  # noqa: BLE001
        db.session.rollback()
        current_app.logger.exception("Submission %s failed during processing", submission_id)
        return _mark_error(submission_id, str(exc) or exc.__class__.__name__)


def _mark_error(submission_id: int, message: str) -> FlightSubmission:
    submission = _get_submission(submission_id)
    if submission.estado == SUBMISSION_COMPLETADO:
        # The flight is committed; the failure happened after it
        current_app.logger.warning(
            "Submission %s is already COMPLETADO; not recording error: %s", submission_id, message
        )
        return submission
    if submission.can_transition_to(SUBMISSION_ERROR):
        submission.transition_to(SUBMISSION_ERROR, error_message=message)
    else:
        submission.error_message = message
    db.session.commit()
    return submission


# =============================================================================
# PILOT-ENTERED COUNTERS
# =============================================================================

@structured_result
def register_pilot_entry(
    *,
    pilot_id: int,
    aircraft_id: int,
    hobbs_final,
    tach_final,
    flight_date=None,
) -> dict:
    """
    Record the final Hobbs/Tach a pilot typed in after a flight.

    The submission waits in ESPERANDO_APROBACION with no images until an
    administrator approves it. The monotonic check here only gives the pilot
    early feedback; approval runs it again under the aircraft lock.
    """
    pilot = get_active_user(pilot_id)
    if pilot is None:
        raise AuthorizationError(f"User {pilot_id} is not an active pilot")

    aircraft = db.session.get(Aircraft, aircraft_id)
    if not aircraft:
        raise NotFoundError(f"Aircraft {aircraft_id} not found")

    hobbs = validate_meter_reading(hobbs_final, "Hobbs")
    tach = validate_meter_reading(tach_final, "Tach")

    last_hobbs, last_tach = ledger_service.resolve_last_counters(aircraft)
    if hobbs <= last_hobbs:
        raise ValidationError(
            f"New Hobbs {format_hours(hobbs)} must be greater than last recorded Hobbs {format_hours(last_hobbs)}"
        )
    if tach <= last_tach:
        raise ValidationError(
            f"New Tach {format_hours(tach)} must be greater than last recorded Tach {format_hours(last_tach)}"
        )

    try:
        fecha = parse_iso_datetime(flight_date)
    except ValueError as exc:
        raise ValidationError(f"Invalid flight date: {flight_date}") from exc

    submission = FlightSubmission(
        pilot_id=pilot.id,
        aircraft_id=aircraft.id,
        estado=SUBMISSION_ESPERANDO_APROBACION,
        flight_date=fecha,
        hobbs_final=hobbs,
        tach_final=tach,
    )
    db.session.add(submission)
    db.session.commit()
    current_app.logger.info(
        "Pilot %s entered counters for %s (Hobbs %s, Tach %s) as submission %s",
        pilot.id, aircraft.tail_number, hobbs, tach, submission.id,
    )
    return {
        "submission_id": submission.id,
        "estado": submission.estado,
        "hobbs_final": float(hobbs),
        "tach_final": float(tach),
    }


# =============================================================================
# CANCELLATION
# =============================================================================

@structured_result
def cancel_submission(*, submission_id: int, actor_user_id: int, reason: str | None = None) -> dict:
    """Withdraw a submission that has not produced a flight."""
    require_admin(actor_user_id, "submission cancellation")
    submission = _get_submission(submission_id)

    if submission.flight is not None:
        raise ValidationError("Cannot cancel: the submission already has a flight")
    if submission.estado == SUBMISSION_COMPLETADO:
        raise ValidationError("Cannot cancel: the submission is already completed")

    message = f"Cancelado: {reason}" if reason else "Cancelado por administrador"
    submission.transition_to(SUBMISSION_CANCELADO, error_message=message)
    db.session.commit()
    current_app.logger.info("Submission %s cancelled by user %s", submission_id, actor_user_id)
    return {"submission_id": submission_id, "estado": submission.estado}


# =============================================================================
# READ MODEL
# =============================================================================

def get_submission_status(submission_id: int) -> dict:
    """Status surface consumed by the presentation layer."""
    submission = _get_submission(submission_id)
    flight = submission.flight

    flight_payload = None
    if flight is not None:
        flight_payload = flight.to_dict()
        charge = flight.transaction
        flight_payload["transaction"] = (
            {"monto": decimal_to_json(charge.monto), "tipo": charge.tipo} if charge else None
        )

    return {
        "id": submission.id,
        "estado": submission.estado,
        "errorMessage": submission.error_message,
        "createdAt": to_utc_z(submission.created_at),
        "updatedAt": to_utc_z(submission.updated_at),
        "hobbsFinal": decimal_to_json(submission.hobbs_final),
        "tachFinal": decimal_to_json(submission.tach_final),
        "pilot": {"id": submission.pilot.id, "name": submission.pilot.name, "email": submission.pilot.email},
        "aircraft": submission.aircraft.to_dict(),
        "images": [log.to_dict() for log in submission.image_logs],
        "flight": flight_payload,
    }
