"""
Concurrent flight commit tests.

Two writers committing the same readings for one aircraft must serialize:
exactly one flight is recorded, the other writer sees the new counters and
is rejected by the monotonic rule.
"""

import threading
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from hangar.extensions import db
from hangar.models import Aircraft, Flight, Transaction, User
from hangar.services import ledger_service
from hangar.services.concurrency import get_aircraft_lock
from hangar.validation import PersistenceError, ValidationError

from conftest import component_hours


def _commit_in_thread(app, barrier, outcomes, **kwargs):
    with app.app_context():
        barrier.wait()
        try:
            flight = ledger_service.commit_flight(**kwargs)
            outcomes.append(("ok", flight.id))
        except ValidationError as e:
            outcomes.append(("rejected", str(e)))
        finally:
            db.session.remove()


def test_same_readings_commit_once(app, db_session, pilot, aircraft):
    before = component_hours(aircraft.id)
    kwargs = dict(pilot_id=pilot.id, aircraft_id=aircraft.id, new_hobbs="102.5", new_tach="81.8", rate=185000)
    barrier = threading.Barrier(2)
    outcomes = []

    threads = [
        threading.Thread(target=_commit_in_thread, args=(app, barrier, outcomes), kwargs=kwargs)
        for _ in range(2)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert sorted(kind for kind, _ in outcomes) == ["ok", "rejected"]
    rejected = next(detail for kind, detail in outcomes if kind == "rejected")
    assert "102.5" in rejected

    db.session.expire_all()
    assert db.session.query(Flight).count() == 1
    assert db.session.query(Transaction).count() == 1
    assert db.session.get(User, pilot.id).balance == Decimal("-462500")

    after = component_hours(aircraft.id)
    for component_type, hours in before.items():
        assert after[component_type] == hours + Decimal("1.8")


def test_sequential_writers_chain_counters(app, db_session, pilot, aircraft):
    barrier = threading.Barrier(2)
    outcomes = []
    first = dict(pilot_id=pilot.id, aircraft_id=aircraft.id, new_hobbs="101.0", new_tach="81.0")
    second = dict(pilot_id=pilot.id, aircraft_id=aircraft.id, new_hobbs="103.0", new_tach="82.5")

    threads = [
        threading.Thread(target=_commit_in_thread, args=(app, barrier, outcomes), kwargs=first),
        threading.Thread(target=_commit_in_thread, args=(app, barrier, outcomes), kwargs=second),
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    db.session.expire_all()
    flights = db.session.query(Flight).order_by(Flight.id).all()
    # Whichever writer goes first, no two flights overlap
    if len(flights) == 2:
        assert flights[1].hobbs_inicio == flights[0].hobbs_fin
        assert flights[1].tach_inicio == flights[0].tach_fin
    else:
        assert [kind for kind, _ in outcomes].count("ok") == 1
        assert flights[0].hobbs_fin == Decimal("103.0")


# =============================================================================
# COMMIT FAILURES AND CONFLICT RETRY
# =============================================================================

class TestCommitFailures:

    def _failing_commit(self, exc_factory, *, times=None):
        """Replacement for db.session.commit that raises `times` times (always when None)."""
        real_commit = db.session.commit
        calls = {"count": 0}

        def _commit():
            calls["count"] += 1
            if times is None or calls["count"] <= times:
                db.session.flush()
                raise exc_factory()
            return real_commit()

        return _commit, calls

    def test_failed_commit_writes_nothing(self, app, db_session, monkeypatch, pilot, aircraft):
        before = component_hours(aircraft.id)
        fake, _ = self._failing_commit(lambda: IntegrityError("INSERT INTO flights", {}, Exception("constraint")))
        monkeypatch.setattr(db.session, "commit", fake)

        with pytest.raises(PersistenceError):
            ledger_service.commit_flight(
                pilot_id=pilot.id, aircraft_id=aircraft.id, new_hobbs="102.5", new_tach="81.8"
            )
        monkeypatch.undo()

        db.session.expire_all()
        assert db.session.query(Flight).count() == 0
        assert db.session.query(Transaction).count() == 0
        assert db.session.get(User, pilot.id).balance == Decimal("0")
        assert db.session.get(Aircraft, aircraft.id).current_hobbs == Decimal("100.0")
        assert component_hours(aircraft.id) == before

    def test_stale_conflict_is_retried_once(self, app, db_session, monkeypatch, pilot, aircraft):
        fake, calls = self._failing_commit(lambda: StaleDataError("aircraft version changed"), times=1)
        monkeypatch.setattr(db.session, "commit", fake)

        flight = ledger_service.commit_flight(
            pilot_id=pilot.id, aircraft_id=aircraft.id, new_hobbs="102.5", new_tach="81.8"
        )
        monkeypatch.undo()

        assert calls["count"] == 2
        db.session.expire_all()
        assert db.session.query(Flight).count() == 1
        assert db.session.get(Flight, flight.id).diff_hobbs == Decimal("2.5")
        assert db.session.get(User, pilot.id).balance == Decimal("-462500")

    def test_retry_revalidates_against_competing_writer(self, app, db_session, monkeypatch, pilot, aircraft):
        real_commit = db.session.commit
        pilot_id, aircraft_id = pilot.id, aircraft.id
        state = {"raced": False}

        def _commit():
            if state["raced"]:
                return real_commit()
            state["raced"] = True
            # Another writer records the same readings first
            db.session.rollback()
            ledger_service.commit_flight(
                pilot_id=pilot_id, aircraft_id=aircraft_id, new_hobbs="102.5", new_tach="81.8"
            )
            raise StaleDataError("aircraft version changed")

        monkeypatch.setattr(db.session, "commit", _commit)

        with pytest.raises(ValidationError):
            ledger_service.commit_flight(
                pilot_id=pilot_id, aircraft_id=aircraft_id, new_hobbs="102.5", new_tach="81.8"
            )
        monkeypatch.undo()

        db.session.expire_all()
        assert db.session.query(Flight).count() == 1
        assert db.session.get(User, pilot_id).balance == Decimal("-462500")

    def test_exhausted_retries_become_persistence_error(self, app, db_session, monkeypatch, pilot, aircraft):
        fake, calls = self._failing_commit(lambda: StaleDataError("aircraft version changed"))
        monkeypatch.setattr(db.session, "commit", fake)

        with pytest.raises(PersistenceError):
            ledger_service.commit_flight(
                pilot_id=pilot.id, aircraft_id=aircraft.id, new_hobbs="102.5", new_tach="81.8"
            )
        monkeypatch.undo()

        assert calls["count"] == app.config["COMMIT_RETRY_ATTEMPTS"]
        db.session.expire_all()
        assert db.session.query(Flight).count() == 0

    def test_structured_operation_reports_persistence_error(self, app, db_session, monkeypatch, admin, pilot, aircraft):
        flight = ledger_service.commit_flight(
            pilot_id=pilot.id, aircraft_id=aircraft.id, new_hobbs="102.5", new_tach="81.8"
        )
        flight_id = flight.id
        fake, _ = self._failing_commit(lambda: IntegrityError("DELETE FROM flights", {}, Exception("constraint")))
        monkeypatch.setattr(db.session, "commit", fake)

        result = ledger_service.delete_flight(actor_user_id=admin.id, flight_id=flight_id)
        monkeypatch.undo()

        assert result["success"] is False
        assert result["error_type"] == "PersistenceError"
        assert result["status_code"] == 500
        db.session.expire_all()
        assert db.session.get(Flight, flight_id) is not None
        assert db.session.get(User, pilot.id).balance == Decimal("-462500")


def test_aircraft_lock_is_shared_per_aircraft():
    assert get_aircraft_lock(7) is get_aircraft_lock(7)
    assert get_aircraft_lock(7) is not get_aircraft_lock(8)
