"""
Ledger commit tests.

Verifies:
- Counter deltas, cost formula, charge and balance of a committed flight
- Monotonic counters against the Flight history (cache used only when empty)
- Component accrual by diff_tach and flight snapshots
- Nothing is written when validation fails
"""

from decimal import Decimal

import pytest

from hangar.extensions import db
from hangar.models import Aircraft, Flight, Transaction, User
from hangar.models.accounts import TRANSACTION_FLIGHT_CHARGE
from hangar.services import ledger_service
from hangar.validation import NotFoundError, ValidationError

from conftest import component_hours


def _commit(pilot, aircraft, hobbs, tach, **kwargs):
    return ledger_service.commit_flight(
        pilot_id=pilot.id,
        aircraft_id=aircraft.id,
        new_hobbs=hobbs,
        new_tach=tach,
        **kwargs,
    )


# =============================================================================
# COMMIT
# =============================================================================


class TestCommitFlight:
    """Single committed flight updates every dependent entity."""

    def test_reference_flight(self, db_session, pilot, aircraft):
        before = component_hours(aircraft.id)

        flight = _commit(pilot, aircraft, "102.5", "81.8", rate=185000, instructor_rate=30000)

        assert flight.diff_hobbs == Decimal("2.5")
        assert flight.diff_tach == Decimal("1.8")
        assert flight.costo == Decimal("537500")
        assert flight.hobbs_inicio == Decimal("100.0")
        assert flight.tach_inicio == Decimal("80.0")

        db.session.expire_all()
        assert db.session.get(User, pilot.id).balance == Decimal("-537500")

        after = component_hours(aircraft.id)
        for component_type, hours in before.items():
            assert after[component_type] == hours + Decimal("1.8")

    def test_charge_transaction_is_linked(self, db_session, pilot, aircraft):
        flight = _commit(pilot, aircraft, "101.0", "80.8")

        charges = db.session.query(Transaction).filter_by(flight_id=flight.id).all()
        assert len(charges) == 1
        assert charges[0].tipo == TRANSACTION_FLIGHT_CHARGE
        assert charges[0].monto == -flight.costo
        assert charges[0].user_id == pilot.id

    def test_rate_defaults_to_pilot_hourly_rate(self, db_session, pilot, aircraft):
        flight = _commit(pilot, aircraft, "101.0", "80.8")

        assert flight.tarifa == Decimal("185000")
        assert flight.instructor_rate == Decimal("0")
        assert flight.costo == Decimal("185000")

    def test_cost_uses_decimal_rounding(self, db_session, pilot, aircraft):
        flight = _commit(pilot, aircraft, "100.3", "80.2", rate="10.01", instructor_rate="0")

        assert flight.costo == Decimal("3.00")  # 0.3 * 10.01 = 3.003

    def test_aircraft_cache_follows_commit(self, db_session, pilot, aircraft):
        _commit(pilot, aircraft, "102.5", "81.8")

        db.session.expire_all()
        plane = db.session.get(Aircraft, aircraft.id)
        assert plane.current_hobbs == Decimal("102.5")
        assert plane.current_tach == Decimal("81.8")

    def test_snapshots_record_component_hours(self, db_session, pilot, aircraft):
        flight = _commit(pilot, aircraft, "101.0", "81.0")

        assert flight.airframe_hours == Decimal("2501.0")
        assert flight.engine_hours == Decimal("351.0")
        assert flight.propeller_hours == Decimal("121.0")

    def test_successive_flights_accrue(self, db_session, pilot, aircraft):
        before = component_hours(aircraft.id)
        readings = [("101.2", "81.0"), ("102.0", "81.7"), ("103.9", "83.2")]
        for hobbs, tach in readings:
            _commit(pilot, aircraft, hobbs, tach)

        flights = db.session.query(Flight).filter_by(aircraft_id=aircraft.id).order_by(Flight.id).all()
        total_tach = sum((f.diff_tach for f in flights), Decimal("0"))
        assert total_tach == Decimal("3.2")

        after = component_hours(aircraft.id)
        for component_type, hours in before.items():
            assert after[component_type] == hours + total_tach

        for previous, current in zip(flights, flights[1:]):
            assert current.hobbs_fin > previous.hobbs_fin
            assert current.tach_fin > previous.tach_fin
            assert current.hobbs_inicio == previous.hobbs_fin

        for f in flights:
            assert f.costo == (f.diff_hobbs * (f.tarifa + f.instructor_rate)).quantize(Decimal("0.01"))

    def test_flight_date_is_stored(self, db_session, pilot, aircraft):
        flight = _commit(pilot, aircraft, "101.0", "81.0", fecha="2026-03-01T14:30:00Z")

        assert flight.fecha.isoformat().startswith("2026-03-01T14:30")


# =============================================================================
# VALIDATION
# =============================================================================


class TestCommitValidation:
    """Rejected commits write nothing."""

    def test_hobbs_below_last_is_rejected(self, db_session, pilot, aircraft):
        with pytest.raises(ValidationError) as exc:
            _commit(pilot, aircraft, "99.0", "81.0")

        message = str(exc.value)
        assert "99.0" in message
        assert "100.0" in message

        db.session.expire_all()
        assert db.session.query(Flight).count() == 0
        assert db.session.query(Transaction).count() == 0
        assert db.session.get(User, pilot.id).balance == Decimal("0")
        assert db.session.get(Aircraft, aircraft.id).current_hobbs == Decimal("100.0")

    def test_equal_reading_is_rejected(self, db_session, pilot, aircraft):
        with pytest.raises(ValidationError):
            _commit(pilot, aircraft, "100.0", "81.0")

    def test_tach_below_last_is_rejected(self, db_session, pilot, aircraft):
        with pytest.raises(ValidationError) as exc:
            _commit(pilot, aircraft, "101.0", "79.5")
        assert "Tach" in str(exc.value)

    def test_history_wins_over_stale_cache(self, db_session, pilot, aircraft):
        _commit(pilot, aircraft, "105.0", "84.0")

        # Simulate a drifted display cache
        plane = db.session.get(Aircraft, aircraft.id)
        plane.current_hobbs = Decimal("50.0")
        plane.current_tach = Decimal("40.0")
        db.session.commit()

        with pytest.raises(ValidationError) as exc:
            _commit(pilot, aircraft, "104.0", "85.0")
        assert "105.0" in str(exc.value)

    def test_out_of_range_reading(self, db_session, pilot, aircraft):
        with pytest.raises(ValidationError):
            _commit(pilot, aircraft, "100000", "81.0")

    def test_non_numeric_reading(self, db_session, pilot, aircraft):
        with pytest.raises(ValidationError):
            _commit(pilot, aircraft, "abc", "81.0")

    def test_negative_rate(self, db_session, pilot, aircraft):
        with pytest.raises(ValidationError):
            _commit(pilot, aircraft, "101.0", "81.0", rate=-5)

    def test_invalid_flight_date(self, db_session, pilot, aircraft):
        with pytest.raises(ValidationError):
            _commit(pilot, aircraft, "101.0", "81.0", fecha="not-a-date")

    def test_unknown_aircraft(self, db_session, pilot):
        with pytest.raises(NotFoundError):
            ledger_service.commit_flight(pilot_id=pilot.id, aircraft_id=999999, new_hobbs=1, new_tach=1)

    def test_unknown_pilot(self, db_session, aircraft):
        with pytest.raises(NotFoundError):
            ledger_service.commit_flight(pilot_id=999999, aircraft_id=aircraft.id, new_hobbs=101, new_tach=81)


# =============================================================================
# READS
# =============================================================================


class TestLastCounters:

    def test_cache_is_baseline_without_flights(self, db_session, aircraft):
        assert ledger_service.resolve_last_counters(aircraft) == (Decimal("100.0"), Decimal("80.0"))

    def test_last_flight_by_date(self, db_session, pilot, aircraft):
        first = _commit(pilot, aircraft, "101.0", "81.0", fecha="2026-01-01")
        second = _commit(pilot, aircraft, "102.0", "82.0", fecha="2026-01-02")

        assert ledger_service.get_last_flight(aircraft.id).id == second.id
        assert first.id != second.id


class TestComponentSnapshots:

    def test_anchored_engine_reports_hours_since_overhaul(self, db_session, pilot, aircraft):
        from hangar.models import Component
        from hangar.models.fleet import COMPONENT_ENGINE

        engine = db.session.query(Component).filter_by(aircraft_id=aircraft.id, component_type=COMPONENT_ENGINE).one()
        engine.last_overhaul_airframe = Decimal("2450.0")
        db.session.commit()

        flight = _commit(pilot, aircraft, "101.0", "81.25")

        assert flight.airframe_hours == Decimal("2501.25")
        assert flight.engine_hours == Decimal("51.3")
        assert flight.propeller_hours == Decimal("121.25")
