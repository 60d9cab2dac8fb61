"""
shared/utils/geo.py
Geodesic distance helpers for nearby hotpoint / driver lookups.
"""

from math import cos, radians
from typing import Iterable, List, Tuple, TypeVar

from geopy.distance import geodesic

T = TypeVar("T")

# One degree of latitude is ~111 km; used to pre-filter rows in SQL
METERS_PER_DEGREE = 111_000


def distance_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    return geodesic((lat1, lng1), (lat2, lng2)).meters


def bounding_box(lat: float, lng: float, radius_m: float) -> Tuple[float, float, float, float]:
    """(min_lat, max_lat, min_lng, max_lng) loosely enclosing the radius."""
    dlat = radius_m / METERS_PER_DEGREE
    dlng = radius_m / (METERS_PER_DEGREE * max(cos(radians(lat)), 0.01))
    return lat - dlat, lat + dlat, lng - dlng, lng + dlng


def nearest(
    items: Iterable[T],
    lat: float,
    lng: float,
    max_distance_m: float,
    limit: int,
) -> List[Tuple[T, float]]:
    """Rank items (anything with latitude/longitude) by distance, keep those within range."""
    ranked = []
    for item in items:
        if item.latitude is None or item.longitude is None:
            continue
        d = distance_m(lat, lng, item.latitude, item.longitude)
        if d <= max_distance_m:
            ranked.append((item, d))
    ranked.sort(key=lambda pair: pair[1])
    return ranked[:limit]
