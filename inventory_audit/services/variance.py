"""
Variance calculation for counted audit entries.

Quantities are JSON numbers on the session row; arithmetic happens in
Decimal so that 10.01 - 10 is exactly 0.01 before classification.
"""
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, Optional, Union

from inventory_audit.config import settings
from inventory_audit.models.physical_audit import EntryStatus

Number = Union[int, float, Decimal, str]


def to_decimal(value: Number) -> Decimal:
    """Convert a stored or submitted quantity without binary float noise."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def to_json_number(value: Decimal) -> Union[int, float]:
    """Store integral quantities as int, everything else as float."""
    if value == value.to_integral_value():
        return int(value)
    return float(value)


def compute_variance(counted_qty: Number, expected_qty: Number) -> Decimal:
    """variance = counted - expected."""
    return to_decimal(counted_qty) - to_decimal(expected_qty)


def classify_variance(variance: Number, tolerance: Optional[Decimal] = None) -> EntryStatus:
    """
    Map a variance to an entry status.

    Zero, or anything within the rounding tolerance (0.01 by default),
    counts as a match; everything else needs review.
    """
    if tolerance is None:
        tolerance = settings.VARIANCE_TOLERANCE
    variance = to_decimal(variance)
    if variance == 0:
        return EntryStatus.COUNTED
    if abs(variance) <= tolerance:
        return EntryStatus.COUNTED
    return EntryStatus.NEEDS_REVIEW


def apply_count(
    entry: dict,
    counted_qty: Number,
    notes: Optional[str],
    counted_by: str,
    counted_at: datetime,
) -> dict:
    """Return a copy of `entry` with a recorded count. Notes are always overwritten."""
    variance = compute_variance(counted_qty, entry["expected_qty"])
    return {
        **entry,
        "counted_qty": to_json_number(to_decimal(counted_qty)),
        "variance": to_json_number(variance),
        "status": classify_variance(variance).value,
        "notes": notes,
        "last_counted_by": counted_by,
        "last_counted_at": counted_at.isoformat(),
    }


def summarize_entries(entries: Iterable[dict]) -> Dict[str, object]:
    """Progress and variance metrics over a session's entries."""
    total = pending = counted = needs_review = 0
    total_expected = Decimal("0")
    total_counted = Decimal("0")
    net_variance = Decimal("0")
    absolute_variance = Decimal("0")

    for entry in entries:
        total += 1
        total_expected += to_decimal(entry["expected_qty"])
        status = entry.get("status", EntryStatus.PENDING.value)
        if status == EntryStatus.PENDING.value:
            pending += 1
            continue
        if status == EntryStatus.COUNTED.value:
            counted += 1
        else:
            needs_review += 1
        total_counted += to_decimal(entry["counted_qty"])
        variance = to_decimal(entry["variance"])
        net_variance += variance
        absolute_variance += abs(variance)

    accuracy_rate = None
    recorded = counted + needs_review
    if recorded > 0:
        accuracy_rate = (Decimal(counted) / Decimal(recorded) * 100).quantize(
            Decimal("0.01"), rounding=ROUND_HALF_UP
        )

    return {
        "total_entries": total,
        "pending_entries": pending,
        "counted_entries": counted,
        "needs_review_entries": needs_review,
        "total_expected_qty": total_expected,
        "total_counted_qty": total_counted,
        "net_variance": net_variance,
        "absolute_variance": absolute_variance,
        "accuracy_rate": accuracy_rate,
    }
