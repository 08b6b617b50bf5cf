"""Conversion helpers shared by the energy and GPS sync jobs."""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from .errors import InvalidTimestampError


def epoch_to_datetime(value: Optional[float]) -> Optional[datetime]:
    """Convert recorder ``last_updated_ts`` (fractional epoch seconds) to UTC.

    The integer part is whole seconds, the fractional part sub-second
    precision (truncated to the microsecond, the resolution of ``datetime``).
    ``None`` stays ``None``; NaN/inf raise ``InvalidTimestampError``.
    """
    if value is None:
        return None

    value = float(value)
    if math.isnan(value) or math.isinf(value):
        raise InvalidTimestampError(f"invalid float for timestamp: {value!r}")

    frac, seconds = math.modf(value)
    try:
        base = datetime.fromtimestamp(int(seconds), tz=timezone.utc)
        return base + timedelta(microseconds=int(frac * 1e6))
    except (OverflowError, OSError, ValueError) as e:
        raise InvalidTimestampError(f"timestamp out of range: {value!r}") from e


def truncate_to_minute(ts: datetime) -> datetime:
    return ts.replace(second=0, microsecond=0)


def to_sink_datetime(ts: Optional[datetime]) -> Optional[datetime]:
    """DATETIME columns are naive; the sink stores UTC."""
    if ts is None:
        return None
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc)
    return ts.replace(tzinfo=None)


def from_sink_datetime(ts: Optional[datetime]) -> Optional[datetime]:
    if ts is None:
        return None
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def format_float(value: float) -> str:
    """Shortest round-trip decimal rendering, never in exponent form.

    >>> format_float(3.0)
    '3'
    >>> format_float(0.1 + 0.2)
    '0.30000000000000004'
    """
    text = repr(float(value))
    if "e" in text or "E" in text:
        text = format(Decimal(text), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def parse_float_text(raw: Optional[str]) -> Optional[float]:
    """Finite float from plain ASCII decimal text, else ``None``.

    Surrounding whitespace, underscores and non-ASCII digits are not numbers.
    """
    if not raw or "_" in raw or raw != raw.strip() or not raw.isascii():
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return value


def parse_numeric_state(raw: Optional[str]) -> Optional[float]:
    # Estados como "unavailable" / "unknown" no son numéricos.
    return parse_float_text(raw)
