from __future__ import annotations

import pytest

from app.detention.geo import (
    calculate_bearing,
    calculate_distance,
    cardinal_direction,
    find_nearest_facility,
    format_distance,
    is_within_geofence,
)

WAREHOUSE = {"_id": "fac-1", "name": "Dallas DC", "lat": 32.7767, "lng": -96.7970}
YARD = {"_id": "fac-2", "name": "Fort Worth Yard", "lat": 32.7555, "lng": -97.3308}


def test_distance_to_same_point_is_zero() -> None:
    assert calculate_distance(32.7767, -96.7970, 32.7767, -96.7970) == 0


def test_one_degree_of_latitude_is_about_111km() -> None:
    assert calculate_distance(0, 0, 1, 0) == pytest.approx(111_195, rel=1e-3)


def test_geofence_boundary() -> None:
    # ~0.001 degrees of latitude is ~111m
    assert is_within_geofence(32.7777, -96.7970, WAREHOUSE, 200)
    assert not is_within_geofence(32.7797, -96.7970, WAREHOUSE, 200)


def test_find_nearest_facility() -> None:
    facility, distance = find_nearest_facility(32.76, -97.30, [WAREHOUSE, YARD])

    assert facility["_id"] == "fac-2"
    assert distance < 5000
    assert find_nearest_facility(0, 0, []) is None


def test_format_distance() -> None:
    assert format_distance(0) == "0m"
    assert format_distance(149.5) == "150m"
    assert format_distance(999.4) == "999m"
    assert format_distance(1500) == "1.5km"


def test_bearing_and_cardinal_direction() -> None:
    assert calculate_bearing(0, 0, 1, 0) == pytest.approx(0)
    assert calculate_bearing(0, 0, 0, 1) == pytest.approx(90)
    assert cardinal_direction(0) == "N"
    assert cardinal_direction(22.5) == "NE"
    assert cardinal_direction(180) == "S"
    assert cardinal_direction(350) == "N"
    assert cardinal_direction(calculate_bearing(32.7767, -96.7970, 32.7555, -97.3308)) == "W"
