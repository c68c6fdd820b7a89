from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from hangar.time_utils import to_utc_z
from ..validation import decimal_to_json


ROLE_ADMIN = "ADMIN"
ROLE_PILOT = "PILOT"

TRANSACTION_FLIGHT_CHARGE = "CARGO_VUELO"


class User(db.Model):
    """
    Pilot or administrator account.

    WHY: The pilot balance is the running sum of every Transaction applied to
    the account. It is only mutated by the ledger service, in the same unit of
    work that writes the Transaction row.
    """
    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True)

    role = db.Column(db.String(16), nullable=False, default=ROLE_PILOT, index=True)

    # Billing rate per Hobbs hour and account balance (negative = owes money)
    hourly_rate = db.Column(db.Numeric(12, 2, asdecimal=True), nullable=False, default=Decimal("0"))
    balance = db.Column(db.Numeric(14, 2, asdecimal=True), nullable=False, default=Decimal("0"))

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "hourly_rate": decimal_to_json(self.hourly_rate),
            "balance": decimal_to_json(self.balance),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Transaction(db.Model):
    """
    Signed monetary ledger entry for a pilot account.

    Charges are negative. A committed Flight owns exactly one CARGO_VUELO row.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_user_created", "user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    flight_id = db.Column(db.Integer, db.ForeignKey("flights.id"), nullable=True, unique=True)

    monto = db.Column(db.Numeric(14, 2, asdecimal=True), nullable=False)
    tipo = db.Column(db.String(32), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User", backref=db.backref("transactions", lazy=True))
    flight = db.relationship("Flight", backref=db.backref("transaction", uselist=False, lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "flight_id": self.flight_id,
            "monto": decimal_to_json(self.monto),
            "tipo": self.tipo,
            "created_at": to_utc_z(self.created_at),
        }
