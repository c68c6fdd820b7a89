# Overview: Service-layer operations for manual review; administrator corrections and manual flight entry.

"""
Manual Review & Correction Path

WHY: When OCR is not trusted (REVISION), failed outright (ERROR) or was never
attempted (PENDIENTE), an administrator reads the meters and supplies the
values. Counters typed by the pilot (ESPERANDO_APROBACION) are approved as
they stand, or corrected through the same manual review. The overrides and
the ledger commit happen in ONE unit of work so a rejected commit never
leaves half-validated image logs behind.

Errors are returned as {success: False, error, error_type}; nothing raises
to the caller.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from flask import current_app

from ..decorators import structured_result
from ..extensions import db
from ..models import FlightSubmission, ImageLog
from ..models.flights import (
    METER_HOBBS,
    METER_TACH,
    SUBMISSION_ERROR,
    SUBMISSION_ESPERANDO_APROBACION,
    SUBMISSION_PENDIENTE,
    SUBMISSION_REVISION,
)
from ..validation import NotFoundError, ValidationError, validate_meter_reading
from .concurrency import aircraft_lock, commit_or_raise, run_unit_of_work
from .ledger_service import apply_flight
from .permission_service import require_admin


REVIEWABLE_STATES = (
    SUBMISSION_PENDIENTE,
    SUBMISSION_REVISION,
    SUBMISSION_ERROR,
    SUBMISSION_ESPERANDO_APROBACION,
)
MANUAL_CONFIDENCE = Decimal("100")


def _override_image_log(submission: FlightSubmission, tipo: str, value: Decimal) -> ImageLog:
    log = submission.image_log_for(tipo)
    if log is None:
        log = ImageLog(tipo=tipo)
        submission.image_logs.append(log)
    log.valor_extraido = value
    log.confianza = MANUAL_CONFIDENCE
    log.validado_manual = True
    return log


@structured_result
def manual_review_and_approve(
    *,
    submission_id: int,
    hobbs_value: Any,
    tach_value: Any,
    admin_id: int,
    rate: Any = None,
    instructor_rate: Any = None,
) -> dict:
    """
    Override the OCR readings of a submission and commit the flight.

    Rate overrides fall back to the ones stored on the submission, then to
    the pilot's hourly rate.
    """
    require_admin(admin_id, "manual review")

    hobbs = validate_meter_reading(hobbs_value, "Hobbs")
    tach = validate_meter_reading(tach_value, "Tach")

    submission = db.session.get(FlightSubmission, submission_id)
    if not submission:
        raise NotFoundError(f"Submission {submission_id} not found")
    aircraft_id = submission.aircraft_id

    def _op():
        submission = db.session.get(FlightSubmission, submission_id)
        if submission.estado not in REVIEWABLE_STATES:
            raise ValidationError(
                f"Submission {submission_id} is {submission.estado} and cannot be reviewed"
            )

        _override_image_log(submission, METER_HOBBS, hobbs)
        _override_image_log(submission, METER_TACH, tach)
        if submission.estado == SUBMISSION_ESPERANDO_APROBACION:
            submission.hobbs_final = hobbs
            submission.tach_final = tach

        flight = apply_flight(
            pilot_id=submission.pilot_id,
            aircraft_id=submission.aircraft_id,
            new_hobbs=hobbs,
            new_tach=tach,
            fecha=submission.flight_date,
            rate=rate if rate is not None else submission.rate,
            instructor_rate=instructor_rate if instructor_rate is not None else submission.instructor_rate,
            submission_id=submission.id,
        )
        commit_or_raise()
        return flight

    with aircraft_lock(aircraft_id):
        flight = run_unit_of_work(_op)

    current_app.logger.info(
        "Submission %s approved by admin %s as flight %s", submission_id, admin_id, flight.id
    )
    return {
        "flight_id": flight.id,
        "submission_id": submission_id,
        "costo": float(flight.costo),
    }


@structured_result
def register_manual_flight(
    *,
    admin_id: int,
    pilot_id: int,
    aircraft_id: int,
    hobbs_value: Any,
    tach_value: Any,
    fecha: Any = None,
    rate: Any = None,
    instructor_rate: Any = None,
) -> dict:
    """Record a flight typed in by an administrator; no submission or images involved."""
    require_admin(admin_id, "manual flight entry")

    def _op():
        flight = apply_flight(
            pilot_id=pilot_id,
            aircraft_id=aircraft_id,
            new_hobbs=hobbs_value,
            new_tach=tach_value,
            fecha=fecha,
            rate=rate,
            instructor_rate=instructor_rate,
        )
        commit_or_raise()
        return flight

    with aircraft_lock(aircraft_id):
        flight = run_unit_of_work(_op)

    current_app.logger.info("Manual flight %s registered by admin %s", flight.id, admin_id)
    return {
        "flight_id": flight.id,
        "costo": float(flight.costo),
        "diff_hobbs": float(flight.diff_hobbs),
        "diff_tach": float(flight.diff_tach),
    }


@structured_result
def approve_submission(
    *,
    submission_id: int,
    admin_id: int,
    rate: Any = None,
    instructor_rate: Any = None,
) -> dict:
    """
    Commit the counters a pilot typed in, as they stand.

    The rates actually charged are written back to the submission so the
    approval can be audited later.
    """
    require_admin(admin_id, "submission approval")

    submission = db.session.get(FlightSubmission, submission_id)
    if not submission:
        raise NotFoundError(f"Submission {submission_id} not found")
    aircraft_id = submission.aircraft_id

    def _op():
        submission = db.session.get(FlightSubmission, submission_id)
        if submission.estado != SUBMISSION_ESPERANDO_APROBACION:
            raise ValidationError(
                f"Submission {submission_id} is {submission.estado}; only "
                f"{SUBMISSION_ESPERANDO_APROBACION} submissions can be approved"
            )
        if submission.hobbs_final is None or submission.tach_final is None:
            raise ValidationError(f"Submission {submission_id} has no pilot-entered counters")

        flight = apply_flight(
            pilot_id=submission.pilot_id,
            aircraft_id=submission.aircraft_id,
            new_hobbs=submission.hobbs_final,
            new_tach=submission.tach_final,
            fecha=submission.flight_date,
            rate=rate if rate is not None else submission.rate,
            instructor_rate=instructor_rate if instructor_rate is not None else submission.instructor_rate,
            submission_id=submission.id,
        )
        submission.rate = flight.tarifa
        submission.instructor_rate = flight.instructor_rate
        commit_or_raise()
        return flight

    with aircraft_lock(aircraft_id):
        flight = run_unit_of_work(_op)

    current_app.logger.info(
        "Pilot-entered submission %s approved by admin %s as flight %s", submission_id, admin_id, flight.id
    )
    return {
        "flight_id": flight.id,
        "submission_id": submission_id,
        "costo": float(flight.costo),
        "diff_hobbs": float(flight.diff_hobbs),
        "diff_tach": float(flight.diff_tach),
    }
