"""Great-circle distance between coordinates."""

import math

from memory_graph.domain.detection_constants import EARTH_RADIUS_METERS


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Distance in meters between two (latitude, longitude) points in degrees.

    NaN inputs propagate to a NaN result; callers skip records without
    coordinates instead of relying on this function to reject them.

    Example:
        >>> round(haversine_distance(40.7128, -74.0060, 40.7129, -74.0061))
        14
    """
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
