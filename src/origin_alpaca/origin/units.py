"""Angle conversions between the Origin wire format and caller-facing units.

The mount speaks radians for both axes. Callers use hours for right ascension
and degrees for declination.
"""

from __future__ import annotations

import math


def hours_to_radians(hours: float) -> float:
    return hours * math.pi / 12.0


def radians_to_hours(radians: float) -> float:
    return radians * 12.0 / math.pi


def degrees_to_radians(degrees: float) -> float:
    return degrees * math.pi / 180.0


def radians_to_degrees(radians: float) -> float:
    return radians * 180.0 / math.pi


__all__ = [
    "degrees_to_radians",
    "hours_to_radians",
    "radians_to_degrees",
    "radians_to_hours",
]
