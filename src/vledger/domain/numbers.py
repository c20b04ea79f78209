from __future__ import annotations

import math


def to_number(value: object) -> float:
    """Coerce anything to a finite float. Missing or invalid input becomes 0.0."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        n = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(n):
        return 0.0
    return n


def to_count(value: object) -> int:
    """Non-negative floored integer (packages, units)."""
    return max(0, math.floor(to_number(value)))


def to_optional_count(value: object) -> int | None:
    if value is None or value == "":
        return None
    return to_count(value)


def clamp_percent(value: object) -> float:
    return max(0.0, to_number(value))


def round_money(value: object) -> float:
    return round(to_number(value), 2)
