"""
Great-circle distance for the Comparables Engine.
"""

import math
from typing import Optional

from .models import Comparable, SubjectRef


# Mean Earth radius in meters
EARTH_RADIUS_M = 6_371_000.0


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Calculate distance between two points in meters using the Haversine formula.

    Coordinates are not range-checked. Out-of-range degrees give a defined
    but meaningless result.

    Args:
        lat1, lng1: First point coordinates (degrees)
        lat2, lng2: Second point coordinates (degrees)

    Returns:
        Distance in meters
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c


def distance_to(subject: SubjectRef, comp: Comparable) -> Optional[float]:
    """Distance from the subject to a comparable, None without subject coordinates."""
    if not subject.has_coordinates:
        return None
    return haversine_m(subject.lat, subject.lng, comp.lat, comp.lng)
