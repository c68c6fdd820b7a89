# Overview: Service-layer operations for component overhauls; anchor registration and chunked snapshot backfill.

"""
Overhaul Recalculation Engine

WHY: An engine or propeller overhaul resets what "hours" means for that
component. From then on, flight snapshots report hours since overhaul,
measured on the airframe clock (the Tach meter itself may be replaced).

Registering an overhaul stores the anchor on the component, then rewrites
the engine_hours/propeller_hours snapshot of every later flight:

    snapshot = round(flight.airframe_hours - anchor, 1)

DESIGN PRINCIPLES:
- hours_since_overhaul is a pure function; the backfill only applies it
- The backfill walks flights in id order in chunks of OVERHAUL_RECALC_CHUNK_SIZE,
  committing each chunk and recording progress on a ComponentRecalcJob
- An interrupted job for the same anchor resumes after its last flight;
  re-running from scratch yields the same values (idempotent)
- AIRFRAME overhauls store the anchor but rewrite nothing
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from flask import current_app

from ..decorators import structured_result
from ..extensions import db
from ..models import Aircraft, Component, ComponentRecalcJob, Flight
from ..models.fleet import (
    COMPONENT_AIRFRAME,
    COMPONENT_TYPES,
    JOB_COMPLETED,
    JOB_RUNNING,
    JOB_SUPERSEDED,
    SNAPSHOT_FIELDS,
)
from hangar.time_utils import parse_iso_datetime, utcnow
from ..validation import (
    NotFoundError,
    ValidationError,
    decimal_to_json,
    format_hours,
    round_one_decimal,
    to_decimal,
)
from .concurrency import aircraft_lock, commit_or_raise, run_unit_of_work
from .ledger_service import get_last_flight
from .permission_service import require_admin


def hours_since_overhaul(airframe_hours: Any, anchor: Any) -> Decimal:
    """Airframe hours elapsed since the overhaul, to one decimal."""
    return round_one_decimal(to_decimal(airframe_hours, "airframe_hours") - to_decimal(anchor, "anchor"))


def _current_airframe_hours(aircraft_id: int) -> Decimal | None:
    """Airframe hours on the most recent flight, else the airframe component total."""
    last = get_last_flight(aircraft_id)
    if last is not None and last.airframe_hours is not None:
        return to_decimal(last.airframe_hours)
    airframe = (
        db.session.query(Component)
        .filter_by(aircraft_id=aircraft_id, component_type=COMPONENT_AIRFRAME)
        .first()
    )
    return to_decimal(airframe.accumulated_hours) if airframe else None


def _affected_flights(aircraft_id: int, anchor: Decimal):
    return (
        db.session.query(Flight)
        .filter(Flight.aircraft_id == aircraft_id)
        .filter(Flight.airframe_hours.isnot(None))
        .filter(Flight.airframe_hours > anchor)
    )


# =============================================================================
# BACKFILL
# =============================================================================

def start_recalc_job(component: Component, anchor: Decimal) -> ComponentRecalcJob:
    """
    Return the RUNNING job for this component and anchor, or create one.

    A RUNNING job for a different anchor is superseded: its target values
    are no longer correct.
    """
    field_name = SNAPSHOT_FIELDS[component.component_type]
    running = (
        db.session.query(ComponentRecalcJob)
        .filter_by(component_id=component.id, status=JOB_RUNNING)
        .order_by(ComponentRecalcJob.id)
        .all()
    )
    for job in running:
        if to_decimal(job.anchor) == anchor and job.field_name == field_name:
            current_app.logger.info(
                "Resuming recalc job %s for component %s after flight %s",
                job.id, component.id, job.last_flight_id,
            )
            return job
        job.status = JOB_SUPERSEDED
        job.completed_at = utcnow()

    job = ComponentRecalcJob(
        component_id=component.id,
        aircraft_id=component.aircraft_id,
        field_name=field_name,
        anchor=anchor,
        status=JOB_RUNNING,
        last_flight_id=0,
        processed=0,
        total=_affected_flights(component.aircraft_id, anchor).count(),
    )
    db.session.add(job)
    db.session.flush()
    return job


def _recompute_chunk(job_id: int, chunk_size: int) -> int:
    """Rewrite one chunk of snapshots and advance the job. Returns flights updated."""
    def _op():
        job = db.session.get(ComponentRecalcJob, job_id)
        anchor = to_decimal(job.anchor)
        flights = (
            _affected_flights(job.aircraft_id, anchor)
            .filter(Flight.id > job.last_flight_id)
            .order_by(Flight.id)
            .limit(chunk_size)
            .all()
        )
        if not flights:
            job.status = JOB_COMPLETED
            job.completed_at = utcnow()
            commit_or_raise()
            return 0

        for flight in flights:
            setattr(flight, job.field_name, hours_since_overhaul(flight.airframe_hours, anchor))
        job.last_flight_id = flights[-1].id
        job.processed = (job.processed or 0) + len(flights)
        commit_or_raise()
        return len(flights)

    job = db.session.get(ComponentRecalcJob, job_id)
    with aircraft_lock(job.aircraft_id):
        return run_unit_of_work(_op)


def recompute_component_hours(job: ComponentRecalcJob, chunk_size: int | None = None) -> int:
    """Run a job to completion. Returns the number of flights rewritten by this run."""
    if chunk_size is None:
        chunk_size = current_app.config.get("OVERHAUL_RECALC_CHUNK_SIZE", 500)
    if chunk_size < 1:
        raise ValidationError("chunk_size must be at least 1")

    job_id = job.id
    recalculated = 0
    while True:
        updated = _recompute_chunk(job_id, chunk_size)
        if updated == 0:
            break
        recalculated += updated
        job = db.session.get(ComponentRecalcJob, job_id)
        current_app.logger.info(
            "Recalc job %s: %s/%s flights (%s)", job_id, job.processed, job.total, job.field_name
        )
    return recalculated


# =============================================================================
# OPERATIONS
# =============================================================================

@structured_result
def register_overhaul(
    *,
    actor_user_id: int,
    component_id: int,
    component_type: str,
    aircraft_id: int,
    overhaul_airframe_hours: Any,
    overhaul_date: Any,
    notes: str | None = None,
    chunk_size: int | None = None,
) -> dict:
    """
    Anchor a component overhaul and rewrite later flight snapshots.

    Raises (as structured errors):
        AuthorizationError: actor is not an administrator
        NotFoundError: component not found on the aircraft with that type
        ValidationError: hours <= 0, no flights, or hours beyond the last flight
    """
    require_admin(actor_user_id, "overhaul registration")

    if component_type not in COMPONENT_TYPES:
        raise ValidationError(f"component_type must be one of {', '.join(COMPONENT_TYPES)}")

    anchor = to_decimal(overhaul_airframe_hours, "overhaul_airframe_hours")
    if anchor <= 0:
        raise ValidationError("Overhaul airframe hours must be greater than 0")

    try:
        overhaul_at = parse_iso_datetime(overhaul_date)
    except ValueError as exc:
        raise ValidationError(f"Invalid overhaul date: {overhaul_date}") from exc

    component = (
        db.session.query(Component)
        .filter_by(id=component_id, aircraft_id=aircraft_id, component_type=component_type)
        .first()
    )
    if not component:
        raise NotFoundError(f"{component_type} component {component_id} not found on aircraft {aircraft_id}")

    last_flight = get_last_flight(aircraft_id)
    if last_flight is None or last_flight.airframe_hours is None:
        raise ValidationError("The aircraft has no flights with airframe hours; cannot anchor an overhaul")
    current_airframe = to_decimal(last_flight.airframe_hours)
    if anchor > current_airframe:
        raise ValidationError(
            f"Overhaul hours {format_hours(anchor)} cannot exceed current airframe hours {format_hours(current_airframe)}"
        )

    component.last_overhaul_airframe = anchor
    component.last_overhaul_date = overhaul_at or utcnow()
    component.overhaul_notes = notes

    recalculated = 0
    job = None
    if component.component_type != COMPONENT_AIRFRAME:
        job = start_recalc_job(component, anchor)
        commit_or_raise()
        recalculated = recompute_component_hours(job, chunk_size)
    else:
        commit_or_raise()

    since = hours_since_overhaul(current_airframe, anchor)
    current_app.logger.info(
        "Overhaul registered for %s %s at %s airframe hours by user %s (%s flights recalculated)",
        component_type, component_id, anchor, actor_user_id, recalculated,
    )
    return {
        "message": (
            f"Overhaul registered for {component_type} at {format_hours(anchor)} airframe hours; "
            f"{format_hours(since)} hours since overhaul"
        ),
        "hours_since_overhaul": float(since),
        "recalculated": recalculated,
        "job_id": job.id if job else None,
    }


@structured_result
def resume_recalculation(*, actor_user_id: int, job_id: int, chunk_size: int | None = None) -> dict:
    """Continue an interrupted backfill from its last processed flight."""
    require_admin(actor_user_id, "overhaul recalculation")

    job = db.session.get(ComponentRecalcJob, job_id)
    if not job:
        raise NotFoundError(f"Recalc job {job_id} not found")
    if job.status != JOB_RUNNING:
        raise ValidationError(f"Recalc job {job_id} is {job.status}; only RUNNING jobs can resume")

    recalculated = recompute_component_hours(job, chunk_size)
    job = db.session.get(ComponentRecalcJob, job_id)
    return {"recalculated": recalculated, "job": job.to_dict()}


def list_component_overhauls(aircraft_id: int) -> list[dict]:
    """Anchor, accumulated hours, TBO and hours since overhaul for each component."""
    aircraft = db.session.get(Aircraft, aircraft_id)
    if not aircraft:
        raise NotFoundError(f"Aircraft {aircraft_id} not found")

    current_airframe = _current_airframe_hours(aircraft_id)
    rows = []
    for component in aircraft.components:
        row = component.to_dict(current_airframe)
        used = component.hours_since_overhaul(current_airframe)
        if used is None:
            used = to_decimal(component.accumulated_hours)
        tbo = to_decimal(component.tbo_limit, allow_none=True)
        row["hours_to_tbo"] = decimal_to_json(tbo - used) if tbo is not None else None
        rows.append(row)
    return rows
