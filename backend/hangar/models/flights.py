from __future__ import annotations

from ..extensions import db
from hangar.time_utils import to_utc_z
from ..validation import ValidationError, decimal_to_json


# =============================================================================
# SUBMISSION STATES
# =============================================================================

SUBMISSION_PENDIENTE = "PENDIENTE"
SUBMISSION_PROCESANDO = "PROCESANDO"
SUBMISSION_REVISION = "REVISION"
SUBMISSION_COMPLETADO = "COMPLETADO"
SUBMISSION_ERROR = "ERROR"
SUBMISSION_CANCELADO = "CANCELADO"
SUBMISSION_ESPERANDO_APROBACION = "ESPERANDO_APROBACION"

# ERROR is terminal for the automatic pipeline; an administrator can still
# complete it through manual review or cancel it.
SUBMISSION_TRANSITIONS = {
    SUBMISSION_PENDIENTE: {SUBMISSION_PROCESANDO, SUBMISSION_COMPLETADO, SUBMISSION_CANCELADO},
    SUBMISSION_PROCESANDO: {SUBMISSION_REVISION, SUBMISSION_COMPLETADO, SUBMISSION_ERROR},
    SUBMISSION_REVISION: {SUBMISSION_COMPLETADO, SUBMISSION_CANCELADO},
    SUBMISSION_ERROR: {SUBMISSION_COMPLETADO, SUBMISSION_CANCELADO},
    SUBMISSION_ESPERANDO_APROBACION: {SUBMISSION_COMPLETADO, SUBMISSION_CANCELADO},
    SUBMISSION_COMPLETADO: set(),
    SUBMISSION_CANCELADO: set(),
}

METER_HOBBS = "HOBBS"
METER_TACH = "TACH"
METER_TYPES = (METER_HOBBS, METER_TACH)


class FlightSubmission(db.Model):
    """
    Pilot-initiated upload of meter photos.

    LIFECYCLE:
    - PENDIENTE: created by the upload path, nothing extracted yet
    - PROCESANDO: OCR running
    - REVISION: OCR not trusted, waiting for an administrator
    - COMPLETADO: a Flight was committed from this submission
    - ERROR: pipeline failure, error_message holds the cause
    - CANCELADO: withdrawn by an administrator
    - ESPERANDO_APROBACION: the pilot typed hobbs_final/tach_final; waits for an
      administrator to approve them with a rate
    """
    __tablename__ = "flight_submissions"
    __table_args__ = (
        db.Index("ix_flight_submissions_estado_created", "estado", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    pilot_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    aircraft_id = db.Column(db.Integer, db.ForeignKey("aircraft.id"), nullable=False, index=True)

    estado = db.Column(db.String(24), nullable=False, default=SUBMISSION_PENDIENTE)
    error_message = db.Column(db.Text, nullable=True)

    flight_date = db.Column(db.DateTime(timezone=True), nullable=True)

    # Optional per-submission rate overrides (fall back to the pilot's hourly rate)
    rate = db.Column(db.Numeric(12, 2, asdecimal=True), nullable=True)
    instructor_rate = db.Column(db.Numeric(12, 2, asdecimal=True), nullable=True)

    # Counters typed by the pilot (no photos); approved as-is by an administrator
    hobbs_final = db.Column(db.Numeric(10, 2, asdecimal=True), nullable=True)
    tach_final = db.Column(db.Numeric(10, 2, asdecimal=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    pilot = db.relationship("User", backref=db.backref("submissions", lazy=True))
    aircraft = db.relationship("Aircraft", backref=db.backref("submissions", lazy=True))
    image_logs = db.relationship(
        "ImageLog",
        backref="submission",
        lazy=True,
        order_by="ImageLog.id",
        cascade="all, delete-orphan",
    )

    def can_transition_to(self, new_state: str) -> bool:
        return new_state in SUBMISSION_TRANSITIONS.get(self.estado, set())

    def transition_to(self, new_state: str, error_message: str | None = None) -> None:
        if not self.can_transition_to(new_state):
            raise ValidationError(
                f"Submission {self.id} cannot move from {self.estado} to {new_state}"
            )
        self.estado = new_state
        self.error_message = error_message

    def image_log_for(self, tipo: str) -> "ImageLog | None":
        for log in self.image_logs:
            if log.tipo == tipo:
                return log
        return None


class ImageLog(db.Model):
    """One meter photo and what the OCR (or an administrator) read from it."""
    __tablename__ = "image_logs"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    submission_id = db.Column(db.Integer, db.ForeignKey("flight_submissions.id"), nullable=False, index=True)

    tipo = db.Column(db.String(16), nullable=False)  # HOBBS, TACH
    image_url = db.Column(db.String(512), nullable=True)

    valor_extraido = db.Column(db.Numeric(10, 2, asdecimal=True), nullable=True)
    confianza = db.Column(db.Numeric(5, 2, asdecimal=True), nullable=True)  # 0-100
    validado_manual = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "tipo": self.tipo,
            "imageUrl": self.image_url,
            "valorExtraido": decimal_to_json(self.valor_extraido),
            "confianza": decimal_to_json(self.confianza),
            "validadoManual": self.validado_manual,
        }


class Flight(db.Model):
    """
    Committed, billable unit of aircraft usage.

    INVARIANTS:
    - diff_hobbs = hobbs_fin - hobbs_inicio > 0, diff_tach = tach_fin - tach_inicio > 0
    - costo = diff_hobbs * (tarifa + instructor_rate)
    - exactly one CARGO_VUELO Transaction of -costo

    airframe_hours / engine_hours / propeller_hours are component-hours
    snapshots taken at commit time. For an overhauled engine or propeller the
    snapshot is hours since overhaul (airframe_hours - anchor).
    """
    __tablename__ = "flights"
    __table_args__ = (
        db.Index("ix_flights_aircraft_fecha", "aircraft_id", "fecha"),
        db.Index("ix_flights_aircraft_airframe", "aircraft_id", "airframe_hours"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    fecha = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    hobbs_inicio = db.Column(db.Numeric(10, 2, asdecimal=True), nullable=False)
    hobbs_fin = db.Column(db.Numeric(10, 2, asdecimal=True), nullable=False)
    tach_inicio = db.Column(db.Numeric(10, 2, asdecimal=True), nullable=False)
    tach_fin = db.Column(db.Numeric(10, 2, asdecimal=True), nullable=False)
    diff_hobbs = db.Column(db.Numeric(10, 2, asdecimal=True), nullable=False)
    diff_tach = db.Column(db.Numeric(10, 2, asdecimal=True), nullable=False)

    costo = db.Column(db.Numeric(14, 2, asdecimal=True), nullable=False)
    tarifa = db.Column(db.Numeric(12, 2, asdecimal=True), nullable=False)
    instructor_rate = db.Column(db.Numeric(12, 2, asdecimal=True), nullable=False, default=0)

    airframe_hours = db.Column(db.Numeric(10, 2, asdecimal=True), nullable=True)
    engine_hours = db.Column(db.Numeric(10, 2, asdecimal=True), nullable=True)
    propeller_hours = db.Column(db.Numeric(10, 2, asdecimal=True), nullable=True)

    aprobado = db.Column(db.Boolean, nullable=False, default=True)

    pilot_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    aircraft_id = db.Column(db.Integer, db.ForeignKey("aircraft.id"), nullable=False, index=True)
    submission_id = db.Column(db.Integer, db.ForeignKey("flight_submissions.id"), nullable=True, unique=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    pilot = db.relationship("User", backref=db.backref("flights", lazy=True))
    aircraft = db.relationship("Aircraft", backref=db.backref("flights", lazy=True))
    submission = db.relationship("FlightSubmission", backref=db.backref("flight", uselist=False, lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "fecha": to_utc_z(self.fecha),
            "hobbs_inicio": decimal_to_json(self.hobbs_inicio),
            "hobbs_fin": decimal_to_json(self.hobbs_fin),
            "tach_inicio": decimal_to_json(self.tach_inicio),
            "tach_fin": decimal_to_json(self.tach_fin),
            "diff_hobbs": decimal_to_json(self.diff_hobbs),
            "diff_tach": decimal_to_json(self.diff_tach),
            "costo": decimal_to_json(self.costo),
            "tarifa": decimal_to_json(self.tarifa),
            "instructor_rate": decimal_to_json(self.instructor_rate),
            "airframe_hours": decimal_to_json(self.airframe_hours),
            "engine_hours": decimal_to_json(self.engine_hours),
            "propeller_hours": decimal_to_json(self.propeller_hours),
            "aprobado": self.aprobado,
            "pilot_id": self.pilot_id,
            "aircraft_id": self.aircraft_id,
            "submission_id": self.submission_id,
            "created_at": to_utc_z(self.created_at),
        }
