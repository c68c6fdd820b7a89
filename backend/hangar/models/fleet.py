from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from hangar.time_utils import to_utc_z
from ..validation import decimal_to_json, round_one_decimal


COMPONENT_AIRFRAME = "AIRFRAME"
COMPONENT_ENGINE = "ENGINE"
COMPONENT_PROPELLER = "PROPELLER"

COMPONENT_TYPES = (COMPONENT_AIRFRAME, COMPONENT_ENGINE, COMPONENT_PROPELLER)

# Flight snapshot column per component type
SNAPSHOT_FIELDS = {
    COMPONENT_AIRFRAME: "airframe_hours",
    COMPONENT_ENGINE: "engine_hours",
    COMPONENT_PROPELLER: "propeller_hours",
}

JOB_RUNNING = "RUNNING"
JOB_COMPLETED = "COMPLETED"
JOB_SUPERSEDED = "SUPERSEDED"


class Aircraft(db.Model):
    """
    One physical aircraft.

    WHY: current_hobbs/current_tach are a denormalized display cache. Counter
    validation reads the Flight history, which is authoritative.

    version_id provides optimistic locking: concurrent ledger commits for the
    same aircraft conflict on this row and are retried with re-validation.
    """
    __tablename__ = "aircraft"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tail_number = db.Column(db.String(16), nullable=False, unique=True)  # e.g. "CC-AQI"
    model = db.Column(db.String(64), nullable=True)

    current_hobbs = db.Column(db.Numeric(10, 2, asdecimal=True), nullable=False, default=Decimal("0"))
    current_tach = db.Column(db.Numeric(10, 2, asdecimal=True), nullable=False, default=Decimal("0"))

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tail_number": self.tail_number,
            "model": self.model,
            "current_hobbs": decimal_to_json(self.current_hobbs),
            "current_tach": decimal_to_json(self.current_tach),
            "version_id": self.version_id,
        }


class Component(db.Model):
    """
    Trackable subsystem of an aircraft (airframe, engine, propeller).

    OVERHAUL ANCHOR: last_overhaul_airframe is the airframe-hours reading at
    which the component was overhauled. Airframe hours are used because an
    engine overhaul resets the Tach meter.
    """
    __tablename__ = "components"
    __table_args__ = (
        db.UniqueConstraint("aircraft_id", "component_type", name="uq_components_aircraft_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    aircraft_id = db.Column(db.Integer, db.ForeignKey("aircraft.id"), nullable=False, index=True)
    component_type = db.Column(db.String(16), nullable=False)

    accumulated_hours = db.Column(db.Numeric(10, 2, asdecimal=True), nullable=False, default=Decimal("0"))
    tbo_limit = db.Column(db.Numeric(10, 2, asdecimal=True), nullable=True)

    last_overhaul_airframe = db.Column(db.Numeric(10, 2, asdecimal=True), nullable=True)
    last_overhaul_date = db.Column(db.DateTime(timezone=True), nullable=True)
    overhaul_notes = db.Column(db.Text, nullable=True)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    aircraft = db.relationship("Aircraft", backref=db.backref("components", lazy=True, order_by="Component.id"))

    @property
    def has_overhaul_anchor(self) -> bool:
        return self.last_overhaul_airframe is not None

    def hours_since_overhaul(self, airframe_hours: Decimal | None) -> Decimal | None:
        if self.last_overhaul_airframe is None or airframe_hours is None:
            return None
        return round_one_decimal(Decimal(airframe_hours) - Decimal(self.last_overhaul_airframe))

    def to_dict(self, current_airframe: Decimal | None = None) -> dict:
        return {
            "id": self.id,
            "aircraft_id": self.aircraft_id,
            "component_type": self.component_type,
            "accumulated_hours": decimal_to_json(self.accumulated_hours),
            "tbo_limit": decimal_to_json(self.tbo_limit),
            "last_overhaul_airframe": decimal_to_json(self.last_overhaul_airframe),
            "last_overhaul_date": to_utc_z(self.last_overhaul_date),
            "overhaul_notes": self.overhaul_notes,
            "hours_since_overhaul": decimal_to_json(self.hours_since_overhaul(current_airframe)),
        }


class ComponentRecalcJob(db.Model):
    """
    Progress row for the chunked overhaul backfill.

    WHY: An aircraft can carry thousands of flights. The backfill commits per
    chunk and records the last processed flight id so an interrupted run can
    resume instead of starting over. Re-running is idempotent either way.
    """
    __tablename__ = "component_recalc_jobs"
    __table_args__ = (
        db.Index("ix_component_recalc_jobs_component_status", "component_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    component_id = db.Column(db.Integer, db.ForeignKey("components.id"), nullable=False, index=True)
    aircraft_id = db.Column(db.Integer, db.ForeignKey("aircraft.id"), nullable=False)

    # engine_hours or propeller_hours
    field_name = db.Column(db.String(32), nullable=False)
    anchor = db.Column(db.Numeric(10, 2, asdecimal=True), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=JOB_RUNNING)  # RUNNING, COMPLETED, SUPERSEDED
    last_flight_id = db.Column(db.Integer, nullable=False, default=0)
    processed = db.Column(db.Integer, nullable=False, default=0)
    total = db.Column(db.Integer, nullable=False, default=0)

    started_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    component = db.relationship("Component", backref=db.backref("recalc_jobs", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "component_id": self.component_id,
            "aircraft_id": self.aircraft_id,
            "field_name": self.field_name,
            "anchor": decimal_to_json(self.anchor),
            "status": self.status,
            "last_flight_id": self.last_flight_id,
            "processed": self.processed,
            "total": self.total,
            "started_at": to_utc_z(self.started_at),
            "completed_at": to_utc_z(self.completed_at),
        }
