from __future__ import annotations

from typing import Any


def _parse_bounded_int(value: Any, *, default: int, name: str, low: int, high: int) -> int:
    try:
        parsed = int(str(value if value not in (None, "") else default))
    except ValueError as exc:
        msg = f"{name} must be a valid integer"
        raise ValueError(msg) from exc
    if parsed < low or parsed > high:
        msg = f"{name} must be between {low} and {high}"
        raise ValueError(msg)
    return parsed


def _parse_bounded_float(
    value: Any, *, default: float, name: str, low: float, high: float
) -> float:
    try:
        parsed = float(str(value if value not in (None, "") else default))
    except ValueError as exc:
        msg = f"{name} must be a valid number"
        raise ValueError(msg) from exc
    if parsed < low or parsed > high:
        msg = f"{name} must be between {low} and {high}"
        raise ValueError(msg)
    return parsed
