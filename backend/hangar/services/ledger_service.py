# Overview: Service-layer operations for the flight ledger; encapsulates business logic and database work.

from __future__ import annotations

from decimal import Decimal
from datetime import datetime
from typing import Any

from flask import current_app
from sqlalchemy import func

from ..decorators import structured_result
from ..extensions import db
from ..models import Aircraft, Component, Flight, FlightSubmission, Transaction, User
from ..models.accounts import TRANSACTION_FLIGHT_CHARGE
from ..models.fleet import COMPONENT_AIRFRAME, SNAPSHOT_FIELDS
from ..models.flights import SUBMISSION_COMPLETADO
from hangar.time_utils import parse_iso_datetime, utcnow
from ..validation import (
    NotFoundError,
    ValidationError,
    format_hours,
    quantize_hours,
    quantize_money,
    to_decimal,
    validate_meter_reading,
)
from .concurrency import aircraft_lock, commit_or_raise, lock_for_update, run_unit_of_work
from .permission_service import require_admin
from .ratio_service import acceptable_ratio_band
"""
Flight Ledger Invariants (authoritative)

- New readings must strictly exceed the last recorded readings. The Flight
  history is authoritative; Aircraft.current_* is only a display cache and is
  used as the baseline only when the aircraft has no flights.
- costo = diff_hobbs * (tarifa + instructor_rate), quantized to the money unit.
- A committed Flight, its CARGO_VUELO Transaction, the pilot balance, the
  aircraft cache and every component's hours change in ONE db transaction.
- Every writer holds the aircraft lock; retries re-run validation.
- Deleting a flight is the exact inverse of committing it.
"""

REVERSAL_COUNTERS = ("diff_tach", "diff_hobbs")


# =============================================================================
# READS
# =============================================================================

def resolve_last_counters(aircraft: Aircraft) -> tuple[Decimal, Decimal]:
    """
    Last recorded Hobbs/Tach for an aircraft.

    Uses the highest hobbs_fin/tach_fin on record; falls back to the cached
    aircraft counters only when no flight exists.
    """
    max_hobbs, max_tach = (
        db.session.query(func.max(Flight.hobbs_fin), func.max(Flight.tach_fin))
        .filter(Flight.aircraft_id == aircraft.id)
        .one()
    )
    last_hobbs = to_decimal(max_hobbs) if max_hobbs is not None else to_decimal(aircraft.current_hobbs)
    last_tach = to_decimal(max_tach) if max_tach is not None else to_decimal(aircraft.current_tach)
    return last_hobbs, last_tach


def get_last_flight(aircraft_id: int) -> Flight | None:
    return (
        db.session.query(Flight)
        .filter(Flight.aircraft_id == aircraft_id)
        .order_by(Flight.fecha.desc(), Flight.id.desc())
        .first()
    )


def compute_cost(diff_hobbs: Decimal, rate: Decimal, instructor_rate: Decimal) -> Decimal:
    return quantize_money(diff_hobbs * (rate + instructor_rate))


def component_snapshots(components: list[Component]) -> dict[str, Decimal | None]:
    """
    Component-hours snapshot for a flight, taken after accrual.

    Airframe reports its accumulated hours. Engine/propeller report hours since
    overhaul when anchored, accumulated hours otherwise.
    """
    snapshots: dict[str, Decimal | None] = {field: None for field in SNAPSHOT_FIELDS.values()}

    airframe = next((c for c in components if c.component_type == COMPONENT_AIRFRAME), None)
    airframe_hours = quantize_hours(to_decimal(airframe.accumulated_hours)) if airframe else None
    snapshots[SNAPSHOT_FIELDS[COMPONENT_AIRFRAME]] = airframe_hours

    for component in components:
        if component.component_type == COMPONENT_AIRFRAME:
            continue
        since = component.hours_since_overhaul(airframe_hours)
        if since is None:
            since = quantize_hours(to_decimal(component.accumulated_hours))
        snapshots[SNAPSHOT_FIELDS[component.component_type]] = since
    return snapshots


def _resolve_rates(pilot: User, rate: Any, instructor_rate: Any) -> tuple[Decimal, Decimal]:
    tarifa = to_decimal(rate, "rate", allow_none=True)
    if tarifa is None:
        tarifa = to_decimal(pilot.hourly_rate, "hourly_rate")
    instructor = to_decimal(instructor_rate, "instructor_rate", allow_none=True) or Decimal("0")
    if tarifa < 0 or instructor < 0:
        raise ValidationError("Rates cannot be negative")
    return tarifa, instructor


def _resolve_fecha(fecha: Any) -> datetime:
    try:
        return parse_iso_datetime(fecha) or utcnow()
    except ValueError as exc:
        raise ValidationError(f"Invalid flight date: {fecha}") from exc


def _flag_ratio_anomaly(aircraft: Aircraft, diff_hobbs: Decimal, diff_tach: Decimal) -> None:
    min_ratio, max_ratio = acceptable_ratio_band(diff_tach)
    ratio = diff_hobbs / diff_tach
    if ratio < min_ratio or ratio > max_ratio:
        current_app.logger.warning(
            "Hobbs/Tach ratio %.3f outside [%s, %s] for %s (diff_hobbs=%s, diff_tach=%s)",
            ratio, min_ratio, max_ratio, aircraft.tail_number, diff_hobbs, diff_tach,
        )


# =============================================================================
# LEDGER COMMIT
# =============================================================================

def apply_flight(
    *,
    pilot_id: int,
    aircraft_id: int,
    new_hobbs: Any,
    new_tach: Any,
    fecha: datetime | str | None = None,
    rate: Any = None,
    instructor_rate: Any = None,
    submission_id: int | None = None,
) -> Flight:
    """
    Apply a validated flight to every affected entity WITHOUT committing.

    WHY: Shared by every entry point (OCR auto-approval, manual review, manual
    entry). Callers that need extra writes in the same unit of work (manual
    review overrides ImageLogs) call this directly; everyone else goes through
    commit_flight(). The caller must hold aircraft_lock(aircraft_id).

    Raises:
        NotFoundError: aircraft, pilot or submission missing
        ValidationError: non-monotonic counters, bad rates, closed submission
    """
    new_hobbs = validate_meter_reading(new_hobbs, "Hobbs")
    new_tach = validate_meter_reading(new_tach, "Tach")

    aircraft = lock_for_update(db.session.query(Aircraft).filter_by(id=aircraft_id)).first()
    if not aircraft:
        raise NotFoundError(f"Aircraft {aircraft_id} not found")

    pilot = db.session.get(User, pilot_id)
    if not pilot:
        raise NotFoundError(f"Pilot {pilot_id} not found")

    submission = None
    if submission_id is not None:
        submission = db.session.get(FlightSubmission, submission_id)
        if not submission:
            raise NotFoundError(f"Submission {submission_id} not found")
        if not submission.can_transition_to(SUBMISSION_COMPLETADO):
            raise ValidationError(
                f"Submission {submission_id} is {submission.estado} and cannot be completed"
            )

    last_hobbs, last_tach = resolve_last_counters(aircraft)
    if new_hobbs <= last_hobbs:
        raise ValidationError(
            f"New Hobbs {format_hours(new_hobbs)} must be greater than last recorded Hobbs {format_hours(last_hobbs)}"
        )
    if new_tach <= last_tach:
        raise ValidationError(
            f"New Tach {format_hours(new_tach)} must be greater than last recorded Tach {format_hours(last_tach)}"
        )

    diff_hobbs = new_hobbs - last_hobbs
    diff_tach = new_tach - last_tach
    tarifa, instructor = _resolve_rates(pilot, rate, instructor_rate)
    costo = compute_cost(diff_hobbs, tarifa, instructor)

    components = list(aircraft.components)
    for component in components:
        component.accumulated_hours = to_decimal(component.accumulated_hours) + diff_tach
    snapshots = component_snapshots(components)

    flight = Flight(
        fecha=_resolve_fecha(fecha),
        hobbs_inicio=last_hobbs,
        hobbs_fin=new_hobbs,
        tach_inicio=last_tach,
        tach_fin=new_tach,
        diff_hobbs=diff_hobbs,
        diff_tach=diff_tach,
        costo=costo,
        tarifa=tarifa,
        instructor_rate=instructor,
        aprobado=True,
        pilot_id=pilot.id,
        aircraft_id=aircraft.id,
        submission_id=submission.id if submission else None,
        **snapshots,
    )
    db.session.add(flight)
    db.session.flush()  # Get flight ID

    aircraft.current_hobbs = new_hobbs
    aircraft.current_tach = new_tach

    db.session.add(Transaction(
        user_id=pilot.id,
        flight_id=flight.id,
        monto=-costo,
        tipo=TRANSACTION_FLIGHT_CHARGE,
    ))
    pilot.balance = to_decimal(pilot.balance) - costo

    if submission is not None:
        submission.transition_to(SUBMISSION_COMPLETADO)

    _flag_ratio_anomaly(aircraft, diff_hobbs, diff_tach)

    db.session.flush()
    return flight


def commit_flight(
    *,
    pilot_id: int,
    aircraft_id: int,
    new_hobbs: Any,
    new_tach: Any,
    fecha: datetime | str | None = None,
    rate: Any = None,
    instructor_rate: Any = None,
    submission_id: int | None = None,
) -> Flight:
    """
    Commit a flight as one atomic unit of work.

    Steps (all or nothing):
    1. Resolve aircraft (row-locked) and pilot
    2. Resolve last recorded counters from Flight history
    3. Validate the new readings exceed them
    4. Compute diffs and cost
    5. Insert the Flight with component snapshots
    6. Update aircraft cached counters
    7. Accrue diff_tach on every component
    8. Insert the -costo CARGO_VUELO transaction
    9. Decrement the pilot balance
    10. Complete the originating submission, if any

    Raises:
        NotFoundError, ValidationError: nothing is written
        PersistenceError: commit failed or conflicts persisted after retries
    """
    def _op():
        flight = apply_flight(
            pilot_id=pilot_id,
            aircraft_id=aircraft_id,
            new_hobbs=new_hobbs,
            new_tach=new_tach,
            fecha=fecha,
            rate=rate,
            instructor_rate=instructor_rate,
            submission_id=submission_id,
        )
        commit_or_raise()
        return flight

    with aircraft_lock(aircraft_id):
        flight = run_unit_of_work(_op)

    current_app.logger.info(
        "Committed flight %s for aircraft %s: hobbs %s->%s tach %s->%s costo %s",
        flight.id, aircraft_id, flight.hobbs_inicio, flight.hobbs_fin,
        flight.tach_inicio, flight.tach_fin, flight.costo,
    )
    return flight


# =============================================================================
# COUNTER EDIT & DELETION
# =============================================================================

def _neighbour_flights(flight: Flight) -> tuple[Flight | None, Flight | None]:
    """Flights committed immediately before and after this one on the same aircraft."""
    siblings = db.session.query(Flight).filter(Flight.aircraft_id == flight.aircraft_id)
    previous = siblings.filter(Flight.id < flight.id).order_by(Flight.id.desc()).first()
    following = siblings.filter(Flight.id > flight.id).order_by(Flight.id.asc()).first()
    return previous, following


def _check_edit_fits_history(
    flight: Flight,
    hobbs_inicio: Decimal,
    hobbs_fin: Decimal,
    tach_inicio: Decimal,
    tach_fin: Decimal,
) -> None:
    """An edited flight must stay between its neighbours so counters keep increasing."""
    previous, following = _neighbour_flights(flight)
    for meter, inicio, fin, attr in (
        ("Hobbs", hobbs_inicio, hobbs_fin, "hobbs"),
        ("Tach", tach_inicio, tach_fin, "tach"),
    ):
        if previous is not None:
            prev_fin = to_decimal(getattr(previous, f"{attr}_fin"))
            if inicio < prev_fin:
                raise ValidationError(
                    f"{meter} inicio {format_hours(inicio)} is below the previous flight's "
                    f"{meter} final {format_hours(prev_fin)}"
                )
        if following is not None:
            next_inicio = to_decimal(getattr(following, f"{attr}_inicio"))
            if fin > next_inicio:
                raise ValidationError(
                    f"{meter} final {format_hours(fin)} exceeds the next flight's "
                    f"{meter} inicio {format_hours(next_inicio)}"
                )


@structured_result
def update_flight_counters(
    *,
    actor_user_id: int,
    flight_id: int,
    hobbs_inicio: Any,
    hobbs_fin: Any,
    tach_inicio: Any,
    tach_fin: Any,
) -> dict:
    """
    Correct the counters of a committed flight.

    WHY: Only the delta of the delta is applied to component hours
    (adjustment = new_diff_tach - old_diff_tach), so flights before and after
    this one keep their snapshots.

    Cost is recomputed with the flight's own rates; the linked transaction and
    the pilot balance move by the cost difference. The new counters must fit
    between the previous flight's finals and the next flight's inicios.
    """
    require_admin(actor_user_id, "counter edit")

    hobbs_inicio = validate_meter_reading(hobbs_inicio, "Hobbs inicio")
    hobbs_fin = validate_meter_reading(hobbs_fin, "Hobbs final")
    tach_inicio = validate_meter_reading(tach_inicio, "Tach inicio")
    tach_fin = validate_meter_reading(tach_fin, "Tach final")

    if hobbs_fin <= hobbs_inicio:
        raise ValidationError("Hobbs final must be greater than Hobbs inicio")
    if tach_fin <= tach_inicio:
        raise ValidationError("Tach final must be greater than Tach inicio")

    flight = db.session.get(Flight, flight_id)
    if not flight:
        raise NotFoundError(f"Flight {flight_id} not found")
    aircraft_id = flight.aircraft_id

    def _op():
        flight = db.session.get(Flight, flight_id)
        if not flight:
            raise NotFoundError(f"Flight {flight_id} not found")
        aircraft = lock_for_update(db.session.query(Aircraft).filter_by(id=flight.aircraft_id)).one()
        pilot = db.session.get(User, flight.pilot_id)
        _check_edit_fits_history(flight, hobbs_inicio, hobbs_fin, tach_inicio, tach_fin)

        new_diff_hobbs = hobbs_fin - hobbs_inicio
        new_diff_tach = tach_fin - tach_inicio
        adjustment = new_diff_tach - to_decimal(flight.diff_tach)

        for field in SNAPSHOT_FIELDS.values():
            current = getattr(flight, field)
            if current is not None:
                setattr(flight, field, to_decimal(current) + adjustment)
        for component in aircraft.components:
            component.accumulated_hours = to_decimal(component.accumulated_hours) + adjustment

        old_costo = to_decimal(flight.costo)
        new_costo = compute_cost(new_diff_hobbs, to_decimal(flight.tarifa), to_decimal(flight.instructor_rate))

        flight.hobbs_inicio = hobbs_inicio
        flight.hobbs_fin = hobbs_fin
        flight.tach_inicio = tach_inicio
        flight.tach_fin = tach_fin
        flight.diff_hobbs = new_diff_hobbs
        flight.diff_tach = new_diff_tach
        flight.costo = new_costo

        charge = db.session.query(Transaction).filter_by(flight_id=flight.id).first()
        if charge is not None:
            charge.monto = -new_costo
        pilot.balance = to_decimal(pilot.balance) - (new_costo - old_costo)

        latest = get_last_flight(aircraft.id)
        if latest is not None and latest.id == flight.id:
            aircraft.current_hobbs = hobbs_fin
            aircraft.current_tach = tach_fin

        commit_or_raise()
        return {
            "flight_id": flight.id,
            "adjustment": float(adjustment),
            "costo": float(new_costo),
        }

    with aircraft_lock(aircraft_id):
        result = run_unit_of_work(_op)
    current_app.logger.info("Flight %s counters edited by user %s", flight_id, actor_user_id)
    return result


@structured_result
def delete_flight(*, actor_user_id: int, flight_id: int) -> dict:
    """
    Delete a committed flight and reverse every ledger effect.

    Within one unit of work:
    - delete the linked transaction(s)
    - credit the pilot balance by costo
    - decrement the aircraft cached counters by the flight deltas
    - decrement every component by diff_tach (REVERSAL_COMPONENT_COUNTER)
    - delete the flight
    """
    require_admin(actor_user_id, "flight deletion")

    counter = current_app.config.get("REVERSAL_COMPONENT_COUNTER", "diff_tach")
    if counter not in REVERSAL_COUNTERS:
        raise ValidationError(f"REVERSAL_COMPONENT_COUNTER must be one of {REVERSAL_COUNTERS}")

    flight = db.session.get(Flight, flight_id)
    if not flight:
        raise NotFoundError(f"Flight {flight_id} not found")
    aircraft_id = flight.aircraft_id

    def _op():
        flight = db.session.get(Flight, flight_id)
        if not flight:
            raise NotFoundError(f"Flight {flight_id} not found")
        aircraft = lock_for_update(db.session.query(Aircraft).filter_by(id=flight.aircraft_id)).one()
        pilot = db.session.get(User, flight.pilot_id)

        if counter != "diff_tach":
            current_app.logger.warning(
                "Reversing flight %s component hours by %s; accrual used diff_tach", flight.id, counter
            )
        component_delta = to_decimal(getattr(flight, counter))
        costo = to_decimal(flight.costo)

        for charge in db.session.query(Transaction).filter_by(flight_id=flight.id).all():
            db.session.delete(charge)
        db.session.flush()

        pilot.balance = to_decimal(pilot.balance) + costo
        aircraft.current_hobbs = to_decimal(aircraft.current_hobbs) - to_decimal(flight.diff_hobbs)
        aircraft.current_tach = to_decimal(aircraft.current_tach) - to_decimal(flight.diff_tach)
        for component in aircraft.components:
            component.accumulated_hours = to_decimal(component.accumulated_hours) - component_delta

        db.session.delete(flight)
        commit_or_raise()
        return {"flight_id": flight_id, "credited": float(costo)}

    with aircraft_lock(aircraft_id):
        result = run_unit_of_work(_op)
    current_app.logger.info("Flight %s deleted by user %s", flight_id, actor_user_id)
    return result
