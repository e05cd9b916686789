"""
Geometry primitives shared by the clustering, routing and reconciliation
code: great-circle distances, coordinate validation and polyline decoding.
"""
from __future__ import annotations

import math
from numbers import Real
from typing import List, Tuple

EARTH_RADIUS_KM = 6371.0088
EARTH_RADIUS_M = EARTH_RADIUS_KM * 1000.0


def is_valid_coordinate(lat: object, lng: object) -> bool:
    """
    Return True when ``lat``/``lng`` form a usable WGS84 position.

    Rejects missing values, booleans, non-numbers, NaN/inf and anything
    outside [-90, 90] x [-180, 180].
    """
    for value in (lat, lng):
        if value is None or isinstance(value, bool) or not isinstance(value, Real):
            return False
        # JSON integers are unbounded; float() overflows on huge ones.
        try:
            if not math.isfinite(float(value)):
                return False
        except (OverflowError, TypeError, ValueError):
            return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Compute the great-circle distance between two coordinates in metres.
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    # Rounding can push ``a`` a hair above 1.0 for antipodal points.
    a = min(a, 1.0)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def haversine_km(start: Tuple[float, float], end: Tuple[float, float]) -> float:
    """
    Compute the great-circle distance between two (lat, lng) tuples in kilometres.
    """
    return haversine_m(start[0], start[1], end[0], end[1]) / 1000.0


def decode_polyline6(polyline: str) -> List[Tuple[float, float]]:
    """
    Decode a polyline6 string (OSRM ``geometries=polyline6``) into (lat, lng) pairs.
    """
    coordinates: List[Tuple[float, float]] = []
    index = 0
    lat = 0
    lng = 0
    factor = 1e-6

    while index < len(polyline):
        lat_change, index = _decode_value(polyline, index)
        lng_change, index = _decode_value(polyline, index)
        lat += lat_change
        lng += lng_change
        coordinates.append((lat * factor, lng * factor))

    return coordinates


def _decode_value(polyline: str, index: int) -> Tuple[int, int]:
    result = 0
    shift = 0

    while True:
        if index >= len(polyline):
            raise ValueError("Invalid polyline: buffer exhausted.")
        b = ord(polyline[index]) - 63
        index += 1
        result |= (b & 0x1F) << shift
        shift += 5
        if b < 0x20:
            break

    delta = ~(result >> 1) if (result & 1) else (result >> 1)
    return delta, index
