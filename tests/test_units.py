import math

import pytest

from origin_alpaca.origin.units import (
    degrees_to_radians,
    hours_to_radians,
    radians_to_degrees,
    radians_to_hours,
)


def test_hours_and_radians():
    assert hours_to_radians(12.0) == pytest.approx(math.pi)
    assert hours_to_radians(5.0) == pytest.approx(1.3089969)
    assert radians_to_hours(math.pi / 2) == pytest.approx(6.0)


def test_degrees_and_radians():
    assert degrees_to_radians(45.0) == pytest.approx(0.7853982)
    assert degrees_to_radians(-90.0) == pytest.approx(-math.pi / 2)
    assert radians_to_degrees(math.pi) == pytest.approx(180.0)


def test_round_trip_keeps_sign_and_zero():
    assert radians_to_hours(hours_to_radians(0.0)) == 0.0
    assert radians_to_degrees(degrees_to_radians(-12.5)) == pytest.approx(-12.5)
