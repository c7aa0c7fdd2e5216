# tripmax/analyze/geomath.py
"""
Geometric helpers for TripMax

Pure functions over (lat, lng) pairs in degrees. The haversine library does
the spherical trigonometry; we fix the Earth radius ourselves so distances
are reproducible regardless of the library's default mean radius.
"""

from __future__ import annotations

import datetime as dt
import math
from typing import Optional, Tuple

from haversine import haversine, Unit

from tripmax.errors import InvalidCoordinate

EARTH_RADIUS_M = 6_371_000.0

LatLng = Tuple[float, float]


def check_coordinate(p: LatLng) -> None:
    """Raise InvalidCoordinate unless `p` is a finite, in-range (lat, lng)."""
    lat, lng = p
    if not (isinstance(lat, (int, float)) and isinstance(lng, (int, float))):
        raise InvalidCoordinate(f"Coordinate must be numeric: {p!r}")
    if not -90.0 <= lat <= 90.0:
        raise InvalidCoordinate(f"Latitude out of range [-90, 90]: {lat}")
    if not -180.0 <= lng <= 180.0:
        raise InvalidCoordinate(f"Longitude out of range [-180, 180]: {lng}")


def distance_between(p1: LatLng, p2: LatLng) -> float:
    """Great-circle distance in meters between two (lat, lng) points."""
    check_coordinate(p1)
    check_coordinate(p2)
    return haversine(p1, p2, unit=Unit.RADIANS) * EARTH_RADIUS_M


def bearing_between(p1: LatLng, p2: LatLng) -> float:
    """Initial great-circle bearing from p1 to p2, degrees clockwise from north."""
    check_coordinate(p1)
    check_coordinate(p2)
    phi1, phi2 = math.radians(p1[0]), math.radians(p2[0])
    dlam = math.radians(p2[1] - p1[1])
    x = math.sin(dlam) * math.cos(phi2)
    y = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(dlam)
    return (math.degrees(math.atan2(x, y)) + 360.0) % 360.0


def implied_speed(
    p1: LatLng, t1: dt.datetime, p2: LatLng, t2: dt.datetime
) -> Optional[float]:
    """
    Speed in m/s implied by moving from p1 at t1 to p2 at t2.

    Returns None when no time elapsed (or time ran backwards), since no
    meaningful speed can be derived from such a pair.
    """
    dt_s = (t2 - t1).total_seconds()
    if dt_s <= 0:
        return None
    return distance_between(p1, p2) / dt_s
