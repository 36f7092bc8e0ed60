"""Geographic ranking helpers."""

from .georank import (
    AVERAGE_SPEED_KMH,
    EARTH_RADIUS_KM,
    NEARING_RADIUS_KM,
    calculate_distance,
    calculate_eta,
    format_coordinates,
    haversine_km,
    is_nearing,
    is_valid_coordinate,
    unrounded_distance_m,
    validate_coordinate,
)

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
