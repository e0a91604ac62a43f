"""Environment lookups and parsing of boolean and duration strings."""

from __future__ import annotations

import os
import re
from datetime import timedelta
from decimal import Decimal

_TRUE = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE = frozenset({"0", "f", "F", "FALSE", "false", "False"})

_UNIT_NANOS = {
    "ns": Decimal(1),
    "us": Decimal(1_000),
    "µs": Decimal(1_000),
    "μs": Decimal(1_000),
    "ms": Decimal(1_000_000),
    "s": Decimal(1_000_000_000),
    "m": Decimal(60_000_000_000),
    "h": Decimal(3_600_000_000_000),
}
_COMPONENT = re.compile(r"(\d+\.?\d*|\.\d+)(ns|us|µs|μs|ms|s|m|h)")

_SECOND = 1_000_000_000


def get(key: str) -> str:
    """Return the environment variable, or an empty string when unset."""
    return os.environ.get(key, "")


def parse_bool(text: str) -> bool:
    """Parse a boolean written as 1/t/true or 0/f/false in the usual cases."""
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"invalid boolean value: {text!r}")


def get_bool(key: str) -> bool:
    """Return the environment variable as a bool; unset or empty means False."""
    value = get(key)
    if value == "":
        return False
    return parse_bool(value)


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``30s``, ``1h30m`` or ``1.5ms``."""
    rest = text
    sign = 1
    if rest[:1] in ("-", "+"):
        if rest[0] == "-":
            sign = -1
        rest = rest[1:]
    if rest == "0":
        return timedelta(0)
    if not rest:
        raise ValueError(f"invalid duration: {text!r}")
    total = Decimal(0)
    position = 0
    while position < len(rest):
        match = _COMPONENT.match(rest, position)
        if match is None:
            raise ValueError(f"invalid duration: {text!r}")
        total += Decimal(match.group(1)) * _UNIT_NANOS[match.group(2)]
        position = match.end()
    microseconds = int((total / 1000).to_integral_value())
    return timedelta(microseconds=sign * microseconds)


def _with_fraction(value: int, digits: int) -> str:
    whole, fraction = divmod(value, 10**digits)
    if not fraction:
        return str(whole)
    return f"{whole}.{str(fraction).zfill(digits).rstrip('0')}"


def format_duration(value: timedelta) -> str:
    """Format a duration the way ``parse_duration`` reads it, e.g. ``1h0m0s``."""
    nanos = ((value.days * 86_400 + value.seconds) * 1_000_000 + value.microseconds) * 1_000
    sign = "-" if nanos < 0 else ""
    nanos = abs(nanos)
    if nanos == 0:
        return "0s"
    if nanos < _SECOND:
        if nanos < 1_000:
            text = f"{nanos}ns"
        elif nanos < 1_000_000:
            text = _with_fraction(nanos, 3) + "µs"
        else:
            text = _with_fraction(nanos, 6) + "ms"
        return sign + text
    hours, rest = divmod(nanos, 3_600 * _SECOND)
    minutes, rest = divmod(rest, 60 * _SECOND)
    seconds = _with_fraction(rest, 9) + "s"
    if hours:
        return f"{sign}{hours}h{minutes}m{seconds}"
    if minutes:
        return f"{sign}{minutes}m{seconds}"
    return sign + seconds