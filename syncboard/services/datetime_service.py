"""Datetime and duration helpers: lax input -> strict output."""

from __future__ import annotations

import re
from datetime import datetime, timezone

import pendulum

# Go-style duration: "1h30m", "45s", "1.5ms", "-2m3.5s"
_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")
_UNIT_NANOS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "μs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60_000_000_000,
    "h": 3_600_000_000_000,
}


def parse_datetime(value: str | datetime, default_tz: str = "UTC") -> datetime:
    """Parse a lax datetime string into a timezone-aware datetime.

    Accepts RFC3339 timestamps (``2026-02-02T22:21:29Z``), SQLite's
    ``datetime('now')`` output (``2026-02-02 22:21:29``) and date-only strings.
    Missing timezone defaults to default_tz.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            tz = pendulum.timezone(default_tz)
            value = value.replace(tzinfo=tz)  # type: ignore[arg-type]
        return value

    value_str = value.strip()

    parsed = pendulum.parse(value_str, tz=default_tz, strict=False)
    if not isinstance(parsed, pendulum.DateTime):
        # pendulum.parse returns Date for date-only strings
        parsed = pendulum.datetime(
            parsed.year, parsed.month, parsed.day, tz=default_tz  # type: ignore[union-attr]
        )
    return parsed  # type: ignore[return-value]


def parse_optional_datetime(value: str | datetime | None) -> datetime | None:
    """Parse a nullable stored timestamp; empty strings read as None."""
    if value is None or value == "":
        return None
    return parse_datetime(value)


def format_iso(dt: datetime) -> str:
    """Format a datetime as a fixed-width RFC3339 UTC string.

    Output: ``2026-02-02T22:21:29.975359Z``. The width never varies, so stored
    values sort chronologically as plain text.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    utc = dt.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def format_optional_iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return format_iso(dt)


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(timezone.utc)


def parse_duration(value: str) -> float:
    """Parse a Go-style duration string into seconds.

    Raises ValueError for anything Go's ``time.ParseDuration`` would reject.
    """
    text = value.strip()
    if not text:
        raise ValueError("invalid duration: empty string")
    sign = 1
    if text[0] in "+-":
        sign = -1 if text[0] == "-" else 1
        text = text[1:]
    if text == "0":
        return 0.0
    if not text:
        raise ValueError(f"invalid duration: {value!r}")

    total = 0.0
    pos = 0
    while pos < len(text):
        match = _DURATION_PART_RE.match(text, pos)
        if match is None:
            raise ValueError(f"invalid duration: {value!r}")
        number, unit = match.groups()
        total += float(number) * _UNIT_NANOS[unit]
        pos = match.end()
    return sign * total / 1_000_000_000


def _format_fraction(value: int, unit: int) -> str:
    whole, frac = divmod(value, unit)
    if frac == 0:
        return str(whole)
    width = len(str(unit)) - 1
    digits = f"{frac:0{width}d}".rstrip("0")
    return f"{whole}.{digits}"


def format_duration(seconds: float) -> str:
    """Format seconds the way Go's ``time.Duration.String`` does."""
    nanos = round(seconds * 1_000_000_000)
    if nanos == 0:
        return "0s"
    sign = "-" if nanos < 0 else ""
    nanos = abs(nanos)

    if nanos < 1_000:
        return f"{sign}{nanos}ns"
    if nanos < 1_000_000:
        return f"{sign}{_format_fraction(nanos, 1_000)}µs"
    if nanos < 1_000_000_000:
        return f"{sign}{_format_fraction(nanos, 1_000_000)}ms"

    hours, rem = divmod(nanos, _UNIT_NANOS["h"])
    minutes, rem = divmod(rem, _UNIT_NANOS["m"])
    out = sign
    if hours:
        out += f"{hours}h"
    if hours or minutes:
        out += f"{minutes}m"
    return f"{out}{_format_fraction(rem, 1_000_000_000)}s"
