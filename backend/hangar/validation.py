from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any


# Meter readings top out at five integer digits on the installed counters
MAX_METER_VALUE = Decimal("99999")

HOURS_QUANT = Decimal("0.01")
MONEY_QUANT = Decimal("0.01")
ONE_DECIMAL = Decimal("0.1")


class LedgerError(Exception):
    """Base class for errors surfaced to operators and API callers."""
    status_code = 500


class ValidationError(LedgerError, ValueError):
    """400-level input problem (non-monotonic counters, missing OCR values, bad anchor)."""
    status_code = 400


class AuthorizationError(LedgerError):
    """403-level: actor lacks the administrator role."""
    status_code = 403


class NotFoundError(LedgerError, LookupError):
    """404-level: aircraft, pilot, submission, flight or component missing."""
    status_code = 404


class ExternalServiceError(LedgerError):
    """OCR adapter failure. Non-fatal per image; recorded as confidence 0."""
    status_code = 502


class PersistenceError(LedgerError):
    """Database commit failed; the unit of work was rolled back."""
    status_code = 500


def to_decimal(value: Any, field: str = "value", *, allow_none: bool = False) -> Decimal | None:
    """
    Strict numeric coercion for hours, rates and money.

    Floats go through str() so 102.5 becomes Decimal("102.5") and not its
    binary expansion. Booleans, NaN and infinities are rejected.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if allow_none:
            return None
        raise ValidationError(f"{field} is required")

    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")

    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise ValidationError(f"{field} must be a number")
    else:
        raise ValidationError(f"{field} must be a number")

    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    return result


def quantize_hours(value: Decimal) -> Decimal:
    return value.quantize(HOURS_QUANT, rounding=ROUND_HALF_UP)


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def round_one_decimal(value: Decimal) -> Decimal:
    return value.quantize(ONE_DECIMAL, rounding=ROUND_HALF_UP)


def format_hours(value: Any) -> str:
    """Render a reading with at least one decimal: 100 -> "100.0", 102.55 -> "102.55"."""
    d = to_decimal(value).normalize()
    if d.as_tuple().exponent > -1:
        d = d.quantize(ONE_DECIMAL)
    return str(d)


def decimal_to_json(value: Decimal | None) -> float | None:
    """Decimals are exposed as JSON numbers to the presentation layer."""
    if value is None:
        return None
    return float(value)


def validate_meter_reading(value: Any, field: str) -> Decimal:
    reading = to_decimal(value, field)
    if reading < 0 or reading > MAX_METER_VALUE:
        raise ValidationError(f"{field} {format_hours(reading)} is outside the meter range 0-{MAX_METER_VALUE}")
    return reading
