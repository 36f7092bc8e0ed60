from __future__ import annotations

import math

import pytest

from shared.geo import (
    calculate_distance,
    calculate_eta,
    format_coordinates,
    haversine_km,
    is_nearing,
    is_valid_coordinate,
    validate_coordinate,
)
from shared.http.errors import DispatchValidationError


def test_distance_is_rounded_to_a_tenth_of_a_kilometre() -> None:
    assert calculate_distance(28.60, 77.20, 28.62, 77.22) == 3.0
    assert calculate_distance(28.60, 77.20, 28.60, 77.20) == 0.0


def test_haversine_is_symmetric_and_bounded() -> None:
    forward = haversine_km(51.5074, -0.1278, 40.7128, -74.0060)
    backward = haversine_km(40.7128, -74.0060, 51.5074, -0.1278)

    assert forward == pytest.approx(backward)
    assert forward == pytest.approx(5570, rel=0.01)
    assert haversine_km(0.0, 0.0, 0.0, 180.0) == pytest.approx(math.pi * 6371.0)


@pytest.mark.parametrize(
    ("distance", "speed", "minutes"),
    [(0.0, 60.0, 0), (3.0, 60.0, 3), (3.1, 60.0, 4), (10.0, 40.0, 15)],
)
def test_eta_rounds_up_to_whole_minutes(distance, speed, minutes) -> None:
    assert calculate_eta(distance, speed) == minutes


def test_eta_rejects_non_positive_speed() -> None:
    with pytest.raises(ValueError):
        calculate_eta(1.0, 0)


def test_nearing_is_strictly_inside_the_radius() -> None:
    assert is_nearing(0.9) is True
    assert is_nearing(1.0) is False


@pytest.mark.parametrize(
    ("lat", "lng", "valid"),
    [
        (28.6, 77.2, True),
        (-90, 180, True),
        (90.1, 0, False),
        (0, -180.5, False),
        (float("inf"), 0, False),
        (True, 0, False),
        ("28.6", 77.2, False),
        (None, 77.2, False),
    ],
)
def test_coordinate_validation(lat, lng, valid) -> None:
    assert is_valid_coordinate(lat, lng) is valid


def test_validate_coordinate_raises_with_field() -> None:
    assert validate_coordinate(28, 77) == (28.0, 77.0)

    with pytest.raises(DispatchValidationError) as excinfo:
        validate_coordinate(100, 0, field="driverLocation")
    assert excinfo.value.field == "driverLocation"


def test_format_coordinates() -> None:
    assert format_coordinates(28.6, 77.2) == "28.600000, 77.200000"


def test_eta_never_decreases_as_distance_grows() -> None:
    distances = [step / 10 for step in range(0, 500)]
    etas = [calculate_eta(distance) for distance in distances]

    assert etas == sorted(etas)
    assert etas[0] == 0


def test_eta_follows_haversine_distance_outward_from_a_point() -> None:
    etas = [calculate_eta(calculate_distance(28.60, 77.20, 28.60 + offset / 100, 77.20)) for offset in range(60)]

    assert etas == sorted(etas)
