"""
Audit reference numbers.

Format: AUD-{base36(epoch milliseconds)}, e.g. AUD-MGX3K2Q1.

References are human readable, not a uniqueness guarantee: two sessions
created in the same millisecond produce the same value. The service
resolves clashes per tenant and the (tenant_id, reference) unique
constraint is the final backstop.
"""
import time
from typing import Optional

REFERENCE_PREFIX = "AUD"

_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def to_base36(value: int) -> str:
    """Encode a non-negative integer in lowercase base 36."""
    if value < 0:
        raise ValueError("base36 encoding requires a non-negative integer")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def current_timestamp_ms() -> int:
    return int(time.time() * 1000)


def generate_reference(timestamp_ms: Optional[int] = None) -> str:
    """Build an audit reference from a millisecond timestamp (now by default)."""
    if timestamp_ms is None:
        timestamp_ms = current_timestamp_ms()
    return f"{REFERENCE_PREFIX}-{to_base36(timestamp_ms).upper()}"
