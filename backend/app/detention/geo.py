"""Great-circle helpers for geofencing drivers against facilities."""

from __future__ import annotations

import math
from typing import Any, Dict, Iterable, Optional, Tuple

EARTH_RADIUS_METERS = 6371e3
CARDINAL_DIRECTIONS = ["N", "NE", "E", "SE", "S", "SW", "W", "NW"]


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine distance in meters."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_METERS * c


def distance_to_facility(lat: float, lng: float, facility: Dict[str, Any]) -> float:
    return calculate_distance(lat, lng, float(facility["lat"]), float(facility["lng"]))


def is_within_geofence(lat: float, lng: float, facility: Dict[str, Any], radius_meters: float) -> bool:
    return distance_to_facility(lat, lng, facility) <= radius_meters


def find_nearest_facility(
    lat: float, lng: float, facilities: Iterable[Dict[str, Any]]
) -> Optional[Tuple[Dict[str, Any], float]]:
    nearest: Optional[Tuple[Dict[str, Any], float]] = None
    for facility in facilities:
        distance = distance_to_facility(lat, lng, facility)
        if nearest is None or distance < nearest[1]:
            nearest = (facility, distance)
    return nearest


def format_distance(meters: float) -> str:
    if meters < 1000:
        return f"{math.floor(meters + 0.5)}m"
    return f"{meters / 1000:.1f}km"


def calculate_bearing(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Initial bearing from point 1 to point 2, in degrees clockwise from north."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_lambda = math.radians(lon2 - lon1)

    y = math.sin(delta_lambda) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(delta_lambda)
    return (math.degrees(math.atan2(y, x)) + 360) % 360


def cardinal_direction(bearing: float) -> str:
    return CARDINAL_DIRECTIONS[math.floor(bearing / 45 + 0.5) % 8]
