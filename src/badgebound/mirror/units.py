"""Mirror node encodings: consensus timestamps and integer base units."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

NANOS_PER_SECOND = 1_000_000_000


def ensure_utc(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC (SQLite hands them back without tzinfo)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_mirror_timestamp(dt: datetime) -> str:
    """Encode a datetime as '{seconds}.{9-digit nanoseconds}'.

    Works from the integer epoch delta so microseconds survive exactly.
    """
    delta = ensure_utc(dt) - datetime(1970, 1, 1, tzinfo=timezone.utc)
    micros = (delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds
    seconds, rem_micros = divmod(micros, 1_000_000)
    return f"{seconds}.{rem_micros * 1000:09d}"


def parse_mirror_timestamp(value: str | None) -> datetime | None:
    """Decode '{seconds}.{nanos}' into an aware UTC datetime (nanos truncated to micros)."""
    if not value:
        return None
    seconds_str, _, nanos_str = str(value).partition(".")
    try:
        seconds = int(seconds_str)
        nanos = int((nanos_str or "0").ljust(9, "0")[:9])
    except ValueError:
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(microsecond=nanos // 1000)


def format_units(amount: int, decimals: int) -> Decimal:
    """Convert an integer base-unit amount into display units.

    The whole part and the fractional remainder are split with integer
    arithmetic before anything becomes a Decimal, so large balances never
    pass through a float.
    """
    amount = int(amount)
    if decimals <= 0:
        return Decimal(amount)
    sign = "-" if amount < 0 else ""
    whole, frac = divmod(abs(amount), 10**decimals)
    return Decimal(f"{sign}{whole}.{frac:0{decimals}d}")
