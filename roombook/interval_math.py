"""Arithmetic on minute-of-day intervals."""

import math

from .constants import SNAP


def snap(minutes: float, step: int = SNAP) -> int:
    """Round to the nearest multiple of ``step``, halves rounding up."""
    # round() would use banker's rounding
    return math.floor(minutes / step + 0.5) * step


def clamp(value: float, lo: float, hi: float):
    if lo > hi:
        raise ValueError(f"clamp bounds are inverted: lo={lo} > hi={hi}")
    return max(lo, min(hi, value))


def overlaps(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    # Half-open: [a_start, a_end) and [b_start, b_end) touching at an edge is fine
    return a_start < b_end and a_end > b_start


def format_minutes(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"
