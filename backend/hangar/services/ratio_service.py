# Overview: Service-layer operations for the Hobbs/Tach ratio predictor; read-only statistics over flight history.

"""
Hobbs/Tach Ratio Predictor

WHY: Hobbs runs faster than Tach at low RPM, so the Hobbs/Tach ratio depends
on flight length. When the Hobbs meter is known to be inoperative, the
expected Hobbs delta is estimated from the Tach delta using the historical
ratio of flights of similar length.

DESIGN PRINCIPLES:
- Pure functions over (diff_hobbs, diff_tach) samples; the DB loader is separate
- Buckets of 0.1 Tach hours, half-open [a, a+0.1), capped at "5.0+"
- A bucket needs MIN_BUCKET_SAMPLES flights, otherwise the global ratio applies
- Read-only: never writes to the database
"""

from __future__ import annotations

import statistics
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_UP
from typing import Any, Iterable

from ..extensions import db
from ..models import Flight
from ..validation import ValidationError, round_one_decimal, to_decimal


DEFAULT_GLOBAL_RATIO = Decimal("1.245")
MIN_BUCKET_SAMPLES = 3
BUCKET_CAP = Decimal("5.0")
BUCKET_CAP_LABEL = "5.0+"

CONFIDENCE_HIGH = "HIGH"
CONFIDENCE_MEDIUM = "MEDIUM"
CONFIDENCE_LOW = "LOW"

RATIO_QUANT = Decimal("0.001")

# (upper tach bound exclusive, (min_ratio, max_ratio)); None = open-ended
RATIO_BANDS = (
    (Decimal("1.0"), (Decimal("1.00"), Decimal("2.00"))),
    (Decimal("2.0"), (Decimal("1.00"), Decimal("1.70"))),
    (None, (Decimal("1.00"), Decimal("1.40"))),
)


@dataclass(frozen=True)
class RatioSample:
    diff_hobbs: Decimal
    diff_tach: Decimal
    hobbs_inicio: Decimal | None = None
    hobbs_fin: Decimal | None = None


@dataclass(frozen=True)
class BucketStats:
    count: int
    avg_ratio: Decimal
    median: Decimal


@dataclass
class RatioTable:
    ratios_by_bucket: dict[str, Decimal] = field(default_factory=dict)
    global_ratio: Decimal = DEFAULT_GLOBAL_RATIO
    bucket_stats: dict[str, BucketStats] = field(default_factory=dict)


# =============================================================================
# PURE FUNCTIONS
# =============================================================================

def tach_bucket(tach_delta: Any) -> str:
    """Bucket label for a Tach delta: 0.37 -> "0.3-0.4", 6.2 -> "5.0+"."""
    delta = to_decimal(tach_delta, "tach_delta")
    if delta >= BUCKET_CAP:
        return BUCKET_CAP_LABEL
    lower = (delta * 10).to_integral_value(rounding=ROUND_FLOOR) / 10
    return f"{lower:.1f}-{lower + Decimal('0.1'):.1f}"


def is_usable_sample(sample: RatioSample) -> bool:
    """Positive deltas only; a Hobbs that did not move means the meter was inoperative."""
    if sample.hobbs_inicio is not None and sample.hobbs_fin is not None:
        if sample.hobbs_inicio == sample.hobbs_fin:
            return False
    return sample.diff_hobbs > 0 and sample.diff_tach > 0


def calculate_ratios(samples: Iterable[RatioSample]) -> RatioTable:
    """
    Per-bucket and global Hobbs/Tach ratios.

    avg_ratio is sum(diff_hobbs) / sum(diff_tach), which weights longer flights
    more than a mean of per-flight ratios would. The median is the upper median
    of per-flight ratios.
    """
    buckets: dict[str, dict[str, Any]] = {}
    total_hobbs = Decimal("0")
    total_tach = Decimal("0")

    for sample in samples:
        if not is_usable_sample(sample):
            continue
        label = tach_bucket(sample.diff_tach)
        data = buckets.setdefault(label, {"hobbs": Decimal("0"), "tach": Decimal("0"), "ratios": []})
        data["hobbs"] += sample.diff_hobbs
        data["tach"] += sample.diff_tach
        data["ratios"].append(sample.diff_hobbs / sample.diff_tach)
        total_hobbs += sample.diff_hobbs
        total_tach += sample.diff_tach

    table = RatioTable(
        global_ratio=(total_hobbs / total_tach) if total_tach > 0 else DEFAULT_GLOBAL_RATIO,
    )
    for label, data in buckets.items():
        count = len(data["ratios"])
        if count < MIN_BUCKET_SAMPLES or data["tach"] <= 0:
            continue
        avg_ratio = data["hobbs"] / data["tach"]
        table.ratios_by_bucket[label] = avg_ratio
        table.bucket_stats[label] = BucketStats(
            count=count,
            avg_ratio=avg_ratio,
            median=statistics.median_high(data["ratios"]),
        )
    return table


def confidence_label(sample_size: int) -> str:
    if sample_size >= 20:
        return CONFIDENCE_HIGH
    if sample_size >= 10:
        return CONFIDENCE_MEDIUM
    return CONFIDENCE_LOW


def acceptable_ratio_band(tach_delta: Any) -> tuple[Decimal, Decimal]:
    """
    Plausible Hobbs/Tach ratio range for a flight length.

    Short flights spend proportionally more time taxiing at low RPM, so their
    ratio varies more. Callers use this to flag anomalies; it is not enforced.
    """
    delta = to_decimal(tach_delta, "tach_delta")
    for upper, band in RATIO_BANDS:
        if upper is None or delta < upper:
            return band
    return RATIO_BANDS[-1][1]


def expected_ratio_from_table(table: RatioTable, tach_delta: Any) -> dict:
    delta = to_decimal(tach_delta, "tach_delta")
    if delta <= 0:
        raise ValidationError("tach_delta must be greater than 0")

    bucket = tach_bucket(delta)
    ratio = table.ratios_by_bucket.get(bucket, table.global_ratio)
    stats = table.bucket_stats.get(bucket)
    sample_size = stats.count if stats else 0
    min_ratio, max_ratio = acceptable_ratio_band(delta)

    return {
        "expected_ratio": ratio.quantize(RATIO_QUANT, rounding=ROUND_HALF_UP),
        "bucket": bucket,
        "confidence": confidence_label(sample_size),
        "sample_size": sample_size,
        "min_ratio": min_ratio,
        "max_ratio": max_ratio,
        "used_global_ratio": bucket not in table.ratios_by_bucket,
    }


def predict_from_table(table: RatioTable, tach_delta: Any) -> dict:
    expected = expected_ratio_from_table(table, tach_delta)
    delta = to_decimal(tach_delta, "tach_delta")
    return {
        "predicted_hobbs_delta": round_one_decimal(delta * expected["expected_ratio"]),
        "ratio": expected["expected_ratio"],
        "bucket": expected["bucket"],
        "confidence": expected["confidence"],
        "sample_size": expected["sample_size"],
    }


# =============================================================================
# DATABASE-BACKED ENTRY POINTS
# =============================================================================

def load_samples(aircraft_id: int) -> list[RatioSample]:
    """Approved flights of one aircraft with positive deltas."""
    rows = (
        db.session.query(Flight.diff_hobbs, Flight.diff_tach, Flight.hobbs_inicio, Flight.hobbs_fin)
        .filter(Flight.aircraft_id == aircraft_id)
        .filter(Flight.aprobado.is_(True))
        .filter(Flight.diff_hobbs > 0)
        .filter(Flight.diff_tach > 0)
        .all()
    )
    return [
        RatioSample(
            diff_hobbs=to_decimal(row.diff_hobbs),
            diff_tach=to_decimal(row.diff_tach),
            hobbs_inicio=to_decimal(row.hobbs_inicio, allow_none=True),
            hobbs_fin=to_decimal(row.hobbs_fin, allow_none=True),
        )
        for row in rows
    ]


def calculate_hobbs_tach_ratios(aircraft_id: int) -> RatioTable:
    return calculate_ratios(load_samples(aircraft_id))


def get_expected_ratio(tach_delta: Any, aircraft_id: int) -> dict:
    return expected_ratio_from_table(calculate_hobbs_tach_ratios(aircraft_id), tach_delta)


def predict_hobbs_from_tach(tach_delta: Any, aircraft_id: int) -> dict:
    """Expected Hobbs delta for a Tach delta, used when the Hobbs meter is inoperative."""
    return predict_from_table(calculate_hobbs_tach_ratios(aircraft_id), tach_delta)
