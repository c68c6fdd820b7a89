"""
Pytest fixtures for hangar backend tests.

Provides a file-backed SQLite app (threads in the concurrency tests need
their own connections), a per-test table wipe, factory fixtures for the
fleet and a fake OCR adapter.
"""

from decimal import Decimal

import pytest

from hangar import create_app
from hangar.extensions import db
from hangar.models import Aircraft, Component, FlightSubmission, ImageLog, User
from hangar.models.accounts import ROLE_ADMIN, ROLE_PILOT
from hangar.models.fleet import COMPONENT_AIRFRAME, COMPONENT_ENGINE, COMPONENT_PROPELLER
from hangar.models.flights import METER_HOBBS, METER_TACH
from hangar.services.ocr_service import OcrAdapter, OcrResult
from hangar.validation import ExternalServiceError


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    db_path = tmp_path_factory.mktemp("data") / "hangar-test.sqlite3"
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f'sqlite:///{db_path}',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'OCR_TIMEOUT_SECONDS': 2.0,
        'OCR_CONFIDENCE_THRESHOLD': 85,
        'OVERHAUL_RECALC_CHUNK_SIZE': 4,
        'REVERSAL_COMPONENT_COUNTER': 'diff_tach',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    # Clear all data but keep schema
    db.session.rollback()
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()
    app.extensions.pop("ocr_adapter", None)

    yield db.session

    # Cleanup after test
    db.session.rollback()
    app.extensions.pop("ocr_adapter", None)


# =============================================================================
# FACTORIES
# =============================================================================

@pytest.fixture(scope='function')
def admin(db_session):
    """Administrator account."""
    user = User(name="Admin", email="admin@club.test", role=ROLE_ADMIN, hourly_rate=Decimal("0"))
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def pilot(db_session):
    """Pilot with an hourly rate and zero balance."""
    user = User(
        name="Pilot One",
        email="pilot@club.test",
        role=ROLE_PILOT,
        hourly_rate=Decimal("185000"),
        balance=Decimal("0"),
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def aircraft(db_session):
    """Aircraft at Hobbs 100.0 / Tach 80.0 with airframe, engine and propeller."""
    plane = Aircraft(
        tail_number="CC-AQI",
        model="Cessna 172",
        current_hobbs=Decimal("100.0"),
        current_tach=Decimal("80.0"),
    )
    db_session.add(plane)
    db_session.flush()
    for component_type, hours, tbo in (
        (COMPONENT_AIRFRAME, Decimal("2500.0"), None),
        (COMPONENT_ENGINE, Decimal("350.0"), Decimal("2000")),
        (COMPONENT_PROPELLER, Decimal("120.0"), Decimal("2400")),
    ):
        db_session.add(Component(
            aircraft_id=plane.id,
            component_type=component_type,
            accumulated_hours=hours,
            tbo_limit=tbo,
        ))
    db_session.commit()
    return plane


@pytest.fixture(scope='function')
def make_submission(db_session):
    """Factory: PENDIENTE submission with HOBBS and TACH images."""
    def _make(pilot, aircraft, *, images=(METER_HOBBS, METER_TACH), rate=None, instructor_rate=None):
        submission = FlightSubmission(
            pilot_id=pilot.id,
            aircraft_id=aircraft.id,
            rate=rate,
            instructor_rate=instructor_rate,
        )
        for tipo in images:
            submission.image_logs.append(ImageLog(tipo=tipo, image_url=f"s3://meters/{tipo.lower()}.jpg"))
        db_session.add(submission)
        db_session.commit()
        return submission
    return _make


def component_hours(aircraft_id: int) -> dict:
    """{component_type: accumulated_hours} read fresh from the database."""
    db.session.expire_all()
    return {
        c.component_type: c.accumulated_hours
        for c in db.session.query(Component).filter_by(aircraft_id=aircraft_id).all()
    }


class FakeOcrAdapter(OcrAdapter):
    """
    In-process OCR stand-in.

    readings maps meter type to an OcrResult, or to an exception to raise.
    """

    def __init__(self, readings: dict):
        self.readings = readings
        self.calls = []

    def extract(self, image_reference, meter_type):
        self.calls.append((image_reference, meter_type))
        reading = self.readings.get(meter_type)
        if reading is None:
            raise ExternalServiceError(f"No reading for {meter_type}")
        if isinstance(reading, Exception):
            raise reading
        return reading


def ocr(value, confidence) -> OcrResult:
    return OcrResult(value=Decimal(str(value)), confidence=Decimal(str(confidence)))


def actor_headers(user) -> dict:
    return {"X-Actor-Id": str(user.id)}
