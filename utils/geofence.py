# utils/geofence.py

from math import atan2, cos, radians, sin, sqrt

from models.geo import GeoPoint

EARTH_RADIUS_M = 6371000


def haversine_dist(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance in meters between two points."""
    φ1, φ2 = radians(a.latitude), radians(b.latitude)
    Δφ = radians(b.latitude - a.latitude)
    Δλ = radians(b.longitude - a.longitude)

    h = sin(Δφ / 2) ** 2 + cos(φ1) * cos(φ2) * sin(Δλ / 2) ** 2
    c = 2 * atan2(sqrt(h), sqrt(1 - h))
    return EARTH_RADIUS_M * c


def is_within_radius(point: GeoPoint, center: GeoPoint, radius_m: float) -> bool:
    # Boundary is inclusive
    return haversine_dist(point, center) <= radius_m
