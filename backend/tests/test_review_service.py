"""
Manual review and manual entry tests.

Verifies:
- Only administrators can approve or enter flights
- Overrides mark images as human-validated with confidence 100
- Manual review enforces the same ledger invariants as auto-approval
- A rejected review leaves images and state untouched
- Pilot-entered counters are committed as typed once an administrator approves
"""

from decimal import Decimal

from hangar.extensions import db
from hangar.models import Flight, FlightSubmission, Transaction, User
from hangar.models.flights import (
    METER_HOBBS,
    METER_TACH,
    SUBMISSION_CANCELADO,
    SUBMISSION_COMPLETADO,
    SUBMISSION_ERROR,
    SUBMISSION_ESPERANDO_APROBACION,
    SUBMISSION_REVISION,
)
from hangar.services import review_service, submission_service

from conftest import FakeOcrAdapter, component_hours, ocr


def _pilot_entry(pilot, aircraft, hobbs="102.5", tach="81.8", **kwargs):
    result = submission_service.register_pilot_entry(
        pilot_id=pilot.id, aircraft_id=aircraft.id, hobbs_final=hobbs, tach_final=tach, **kwargs
    )
    assert result["success"] is True, result
    return result["submission_id"]


def _to_review(submission_id, hobbs="102.5", tach="81.8", confidences=(90, 70)):
    adapter = FakeOcrAdapter({
        METER_HOBBS: ocr(hobbs, confidences[0]),
        METER_TACH: ocr(tach, confidences[1]),
    })
    return submission_service.process_submission(submission_id, adapter=adapter)


class TestManualReviewAndApprove:

    def test_admin_approves_submission_in_review(self, app, db_session, admin, pilot, aircraft, make_submission):
        submission = make_submission(pilot, aircraft)
        assert _to_review(submission.id).estado == SUBMISSION_REVISION
        before = component_hours(aircraft.id)

        result = review_service.manual_review_and_approve(
            submission_id=submission.id,
            hobbs_value="102.5",
            tach_value="81.9",
            admin_id=admin.id,
            rate=185000,
            instructor_rate=30000,
        )

        assert result["success"] is True
        flight = db.session.get(Flight, result["flight_id"])
        assert flight.submission_id == submission.id
        assert flight.diff_tach == Decimal("1.9")
        assert flight.costo == Decimal("537500")

        refreshed = db.session.get(FlightSubmission, submission.id)
        assert refreshed.estado == SUBMISSION_COMPLETADO
        for log in refreshed.image_logs:
            assert log.validado_manual is True
            assert log.confianza == Decimal("100")
        assert refreshed.image_log_for(METER_TACH).valor_extraido == Decimal("81.9")

        assert db.session.get(User, pilot.id).balance == Decimal("-537500")
        after = component_hours(aircraft.id)
        for component_type, hours in before.items():
            assert after[component_type] == hours + Decimal("1.9")

    def test_pilot_is_denied(self, app, db_session, pilot, aircraft, make_submission):
        submission = make_submission(pilot, aircraft)
        _to_review(submission.id)

        result = review_service.manual_review_and_approve(
            submission_id=submission.id, hobbs_value="102.5", tach_value="81.8", admin_id=pilot.id
        )

        assert result["success"] is False
        assert result["error_type"] == "AuthorizationError"
        assert db.session.query(Flight).count() == 0

    def test_same_monotonic_rule_as_auto_path(self, app, db_session, admin, pilot, aircraft, make_submission):
        submission = make_submission(pilot, aircraft)
        _to_review(submission.id)

        result = review_service.manual_review_and_approve(
            submission_id=submission.id, hobbs_value="99.0", tach_value="81.8", admin_id=admin.id
        )

        assert result["success"] is False
        assert result["error_type"] == "ValidationError"
        assert "99.0" in result["error"] and "100.0" in result["error"]

        # Overrides were rolled back with the failed commit
        db.session.expire_all()
        refreshed = db.session.get(FlightSubmission, submission.id)
        assert refreshed.estado == SUBMISSION_REVISION
        assert all(not log.validado_manual for log in refreshed.image_logs)
        assert db.session.query(Transaction).count() == 0

    def test_error_submission_can_be_approved(self, app, db_session, admin, pilot, aircraft, make_submission):
        submission = make_submission(pilot, aircraft)
        errored = _to_review(submission.id, hobbs="99.0", confidences=(99, 99))
        assert errored.estado == SUBMISSION_ERROR

        result = review_service.manual_review_and_approve(
            submission_id=submission.id, hobbs_value="101.0", tach_value="80.9", admin_id=admin.id
        )

        assert result["success"] is True
        assert db.session.get(FlightSubmission, submission.id).estado == SUBMISSION_COMPLETADO

    def test_pending_submission_without_ocr(self, app, db_session, admin, pilot, aircraft, make_submission):
        submission = make_submission(pilot, aircraft, images=())

        result = review_service.manual_review_and_approve(
            submission_id=submission.id, hobbs_value="101.0", tach_value="80.9", admin_id=admin.id
        )

        assert result["success"] is True
        refreshed = db.session.get(FlightSubmission, submission.id)
        assert {log.tipo for log in refreshed.image_logs} == {METER_HOBBS, METER_TACH}
        assert all(log.validado_manual for log in refreshed.image_logs)

    def test_submission_rate_overrides_are_used(self, app, db_session, admin, pilot, aircraft, make_submission):
        submission = make_submission(pilot, aircraft, rate=Decimal("100000"), instructor_rate=Decimal("20000"))
        _to_review(submission.id)

        result = review_service.manual_review_and_approve(
            submission_id=submission.id, hobbs_value="102.0", tach_value="81.5", admin_id=admin.id
        )

        flight = db.session.get(Flight, result["flight_id"])
        assert flight.tarifa == Decimal("100000")
        assert flight.costo == Decimal("240000")

    def test_completed_submission_cannot_be_reviewed_twice(self, app, db_session, admin, pilot, aircraft, make_submission):
        submission = make_submission(pilot, aircraft)
        _to_review(submission.id)
        review_service.manual_review_and_approve(
            submission_id=submission.id, hobbs_value="101.0", tach_value="81.0", admin_id=admin.id
        )

        result = review_service.manual_review_and_approve(
            submission_id=submission.id, hobbs_value="102.0", tach_value="82.0", admin_id=admin.id
        )

        assert result["success"] is False
        assert db.session.query(Flight).count() == 1

    def test_cancelled_submission_cannot_be_reviewed(self, app, db_session, admin, pilot, aircraft, make_submission):
        submission = make_submission(pilot, aircraft)
        submission_service.cancel_submission(submission_id=submission.id, actor_user_id=admin.id)

        result = review_service.manual_review_and_approve(
            submission_id=submission.id, hobbs_value="101.0", tach_value="81.0", admin_id=admin.id
        )

        assert result["success"] is False
        assert db.session.get(FlightSubmission, submission.id).estado == SUBMISSION_CANCELADO

    def test_missing_submission(self, app, db_session, admin):
        result = review_service.manual_review_and_approve(
            submission_id=999999, hobbs_value="101.0", tach_value="81.0", admin_id=admin.id
        )

        assert result["success"] is False
        assert result["error_type"] == "NotFoundError"


class TestRegisterManualFlight:

    def test_admin_registers_flight(self, app, db_session, admin, pilot, aircraft):
        result = review_service.register_manual_flight(
            admin_id=admin.id,
            pilot_id=pilot.id,
            aircraft_id=aircraft.id,
            hobbs_value="101.5",
            tach_value="81.2",
            instructor_rate=15000,
        )

        assert result["success"] is True
        assert result["diff_hobbs"] == 1.5
        assert result["costo"] == 300000.0
        flight = db.session.get(Flight, result["flight_id"])
        assert flight.submission_id is None

    def test_pilot_is_denied(self, app, db_session, pilot, aircraft):
        result = review_service.register_manual_flight(
            admin_id=pilot.id, pilot_id=pilot.id, aircraft_id=aircraft.id, hobbs_value="101.5", tach_value="81.2"
        )

        assert result["success"] is False
        assert result["status_code"] == 403

    def test_unknown_aircraft(self, app, db_session, admin, pilot):
        result = review_service.register_manual_flight(
            admin_id=admin.id, pilot_id=pilot.id, aircraft_id=999999, hobbs_value="101.5", tach_value="81.2"
        )

        assert result["success"] is False
        assert result["status_code"] == 404


class TestApproveSubmission:

    def test_admin_approves_entered_counters(self, app, db_session, admin, pilot, aircraft):
        submission_id = _pilot_entry(pilot, aircraft, flight_date="2026-03-01T14:00:00Z")
        before = component_hours(aircraft.id)

        result = review_service.approve_submission(
            submission_id=submission_id, admin_id=admin.id, instructor_rate=30000
        )

        assert result["success"] is True
        assert result["diff_hobbs"] == 2.5
        flight = db.session.get(Flight, result["flight_id"])
        assert flight.submission_id == submission_id
        assert flight.hobbs_fin == Decimal("102.5")
        assert flight.tach_fin == Decimal("81.8")
        assert flight.fecha.day == 1
        # Pilot rate 185000 plus instructor 30000 over 2.5 hours
        assert flight.costo == Decimal("537500")

        refreshed = db.session.get(FlightSubmission, submission_id)
        assert refreshed.estado == SUBMISSION_COMPLETADO
        assert refreshed.rate == Decimal("185000")
        assert refreshed.instructor_rate == Decimal("30000")
        assert refreshed.image_logs == []

        assert db.session.get(User, pilot.id).balance == Decimal("-537500")
        after = component_hours(aircraft.id)
        for component_type, hours in before.items():
            assert after[component_type] == hours + Decimal("1.8")

    def test_rate_override(self, app, db_session, admin, pilot, aircraft):
        submission_id = _pilot_entry(pilot, aircraft, hobbs="102.0", tach="81.5")

        result = review_service.approve_submission(submission_id=submission_id, admin_id=admin.id, rate=100000)

        assert result["costo"] == 200000.0
        assert db.session.get(FlightSubmission, submission_id).rate == Decimal("100000")

    def test_pilot_cannot_approve(self, app, db_session, pilot, aircraft):
        submission_id = _pilot_entry(pilot, aircraft)

        result = review_service.approve_submission(submission_id=submission_id, admin_id=pilot.id)

        assert result["success"] is False
        assert result["error_type"] == "AuthorizationError"
        assert db.session.get(FlightSubmission, submission_id).estado == SUBMISSION_ESPERANDO_APROBACION
        assert db.session.query(Flight).count() == 0

    def test_counters_are_rechecked_on_approval(self, app, db_session, admin, pilot, aircraft):
        submission_id = _pilot_entry(pilot, aircraft, hobbs="102.5", tach="81.8")
        review_service.register_manual_flight(
            admin_id=admin.id, pilot_id=pilot.id, aircraft_id=aircraft.id, hobbs_value="103.0", tach_value="82.0"
        )

        result = review_service.approve_submission(submission_id=submission_id, admin_id=admin.id)

        assert result["success"] is False
        assert result["error_type"] == "ValidationError"
        assert "103.0" in result["error"]
        db.session.expire_all()
        assert db.session.get(FlightSubmission, submission_id).estado == SUBMISSION_ESPERANDO_APROBACION
        assert db.session.query(Flight).count() == 1

    def test_photo_submission_cannot_be_approved(self, app, db_session, admin, pilot, aircraft, make_submission):
        submission = make_submission(pilot, aircraft)
        _to_review(submission.id)

        result = review_service.approve_submission(submission_id=submission.id, admin_id=admin.id)

        assert result["success"] is False
        assert result["error_type"] == "ValidationError"
        assert db.session.get(FlightSubmission, submission.id).estado == SUBMISSION_REVISION

    def test_approved_submission_cannot_be_approved_twice(self, app, db_session, admin, pilot, aircraft):
        submission_id = _pilot_entry(pilot, aircraft)
        review_service.approve_submission(submission_id=submission_id, admin_id=admin.id)

        result = review_service.approve_submission(submission_id=submission_id, admin_id=admin.id)

        assert result["success"] is False
        assert db.session.query(Flight).count() == 1

    def test_admin_can_correct_entered_counters(self, app, db_session, admin, pilot, aircraft):
        submission_id = _pilot_entry(pilot, aircraft, hobbs="120.0", tach="95.0")

        result = review_service.manual_review_and_approve(
            submission_id=submission_id, hobbs_value="102.0", tach_value="81.6", admin_id=admin.id
        )

        assert result["success"] is True
        refreshed = db.session.get(FlightSubmission, submission_id)
        assert refreshed.estado == SUBMISSION_COMPLETADO
        assert refreshed.hobbs_final == Decimal("102.0")
        assert db.session.get(Flight, result["flight_id"]).diff_tach == Decimal("1.6")

    def test_entry_can_be_cancelled(self, app, db_session, admin, pilot, aircraft):
        submission_id = _pilot_entry(pilot, aircraft)

        result = submission_service.cancel_submission(submission_id=submission_id, actor_user_id=admin.id)

        assert result["success"] is True
        assert db.session.get(FlightSubmission, submission_id).estado == SUBMISSION_CANCELADO

    def test_missing_submission(self, app, db_session, admin):
        result = review_service.approve_submission(submission_id=999999, admin_id=admin.id)

        assert result["status_code"] == 404
