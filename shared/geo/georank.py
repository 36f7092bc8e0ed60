"""Great-circle distance, ETA and proximity helpers used to rank candidates."""

from __future__ import annotations

import math

from shared.http.errors import DispatchValidationError

__all__ = [
    "AVERAGE_SPEED_KMH",
    "EARTH_RADIUS_KM",
    "NEARING_RADIUS_KM",
    "calculate_distance",
    "calculate_eta",
    "format_coordinates",
    "haversine_km",
    "is_nearing",
    "is_valid_coordinate",
    "unrounded_distance_m",
    "validate_coordinate",
]

EARTH_RADIUS_KM = 6371.0
AVERAGE_SPEED_KMH = 60.0
NEARING_RADIUS_KM = 1.0


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float, *, radius_km: float = EARTH_RADIUS_KM) -> float:
    """Return the unrounded haversine distance in kilometres."""

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    # Floating error can push ``a`` marginally past 1 for antipodal points.
    a = min(1.0, max(0.0, a))
    return radius_km * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def calculate_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Distance in kilometres rounded to one decimal place.

    Ranking compares these rounded values, so two hospitals 3.04 km and
    3.01 km away tie and keep their input order.
    """

    return round(haversine_km(lat1, lng1, lat2, lng2), 1)


def unrounded_distance_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Distance in metres without rounding."""

    return haversine_km(lat1, lng1, lat2, lng2) * 1000.0


def calculate_eta(distance_km: float, average_speed_kmh: float = AVERAGE_SPEED_KMH) -> int:
    """Whole minutes to cover ``distance_km`` at ``average_speed_kmh``, rounded up."""

    if average_speed_kmh <= 0:
        raise ValueError("average_speed_kmh must be positive")
    if distance_km <= 0:
        return 0
    return math.ceil(distance_km / average_speed_kmh * 60)


def is_nearing(distance_km: float, radius_km: float = NEARING_RADIUS_KM) -> bool:
    return distance_km < radius_km


def is_valid_coordinate(lat: object, lng: object) -> bool:
    """True for finite numbers within latitude/longitude bounds."""

    if isinstance(lat, bool) or isinstance(lng, bool):
        return False
    if not isinstance(lat, (int, float)) or not isinstance(lng, (int, float)):
        return False
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0


def validate_coordinate(lat: object, lng: object, *, field: str = "location") -> tuple[float, float]:
    """Return ``(lat, lng)`` as floats or raise :class:`DispatchValidationError`."""

    if not is_valid_coordinate(lat, lng):
        raise DispatchValidationError(
            "Latitude must be within [-90, 90] and longitude within [-180, 180].",
            field=field,
        )
    return float(lat), float(lng)  # type: ignore[arg-type]


def format_coordinates(lat: float, lng: float) -> str:
    return f"{lat:.6f}, {lng:.6f}"
