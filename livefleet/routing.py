"""
Road-following geometry for raw GPS traces.

A trace is filtered, downsampled to a bounded waypoint list, and handed to
an OSRM backend. Results are cached in the Django cache. When the backend
is unavailable the caller still gets the straight "connect the dots"
line through the valid raw points.
"""
from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence

import requests
from django.core.cache import caches

from .conf import get_config
from .domain import Coordinate
from .exceptions import RoutingError
from .geo import decode_polyline6, is_valid_coordinate

logger = logging.getLogger(__name__)

OSRM_MAX_WAYPOINTS = 100
CACHE_PREFIX = "route-geometry"


def to_coordinate(point: object) -> Optional[Coordinate]:
    """
    Read (lat, lng) from a trace point, a ``{"latitude", "longitude"}``
    mapping or a 2-sequence. Returns None when the point is unusable.
    """
    if isinstance(point, dict):
        lat, lng = point.get("latitude"), point.get("longitude")
    elif hasattr(point, "latitude") and hasattr(point, "longitude"):
        lat, lng = point.latitude, point.longitude
    elif isinstance(point, (list, tuple)) and len(point) == 2:
        lat, lng = point
    else:
        return None
    if not is_valid_coordinate(lat, lng):
        return None
    return (float(lat), float(lng))


def filter_valid(points: Iterable[object]) -> List[Coordinate]:
    coords = []
    for point in points:
        coord = to_coordinate(point)
        if coord is not None:
            coords.append(coord)
    return coords


def sample_waypoints(points: Iterable[object], max_points: int = 50) -> List[Coordinate]:
    """
    Reduce a trace to at most ``max_points + 1`` waypoints.

    Invalid points are dropped first. Short traces come back unchanged;
    longer ones keep the first point, every ``step``-th point after it and
    always the last point, where ``step = ceil(count / max_points)``.
    """
    if max_points < 2:
        raise ValueError(f"max_points must be at least 2, got {max_points}")

    coords = filter_valid(points)
    count = len(coords)
    if count <= max_points:
        return coords

    step = math.ceil(count / max_points)
    sampled = [coords[0]]
    for index in range(step, count - 1, step):
        sampled.append(coords[index])
    sampled.append(coords[-1])
    return sampled


def geometry_cache_key(sampled: Sequence[Coordinate]) -> str:
    """
    Cache key from the rounded endpoints and the waypoint count.

    Interior points do not take part, so a slowly growing trace keeps
    hitting the same entry as long as its endpoints and density hold.
    """
    if len(sampled) < 2:
        return f"{CACHE_PREFIX}:empty"
    first = sampled[0]
    last = sampled[-1]
    return (
        f"{CACHE_PREFIX}:{first[0]:.4f},{first[1]:.4f}"
        f"-{last[0]:.4f},{last[1]:.4f}-{len(sampled)}"
    )


class OSRMRoutingBackend:
    """
    Minimal client for the OSRM ``route`` service.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        profile: str = "driving",
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.profile = profile
        self.session = session or requests.Session()

    def route(self, waypoints: Sequence[Coordinate]) -> List[Coordinate]:
        if len(waypoints) < 2:
            raise RoutingError("At least two waypoints are required")
        if len(waypoints) > OSRM_MAX_WAYPOINTS:
            raise RoutingError(
                f"OSRM accepts at most {OSRM_MAX_WAYPOINTS} waypoints, got {len(waypoints)}"
            )

        # OSRM expects lon,lat pairs.
        coords = ";".join(f"{lng:.6f},{lat:.6f}" for lat, lng in waypoints)
        url = f"{self.base_url}/route/v1/{self.profile}/{coords}"
        params = {"overview": "full", "geometries": "polyline6"}

        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.exceptions.RequestException, ValueError) as error:
            raise RoutingError(f"Error contacting routing service: {error}") from error

        if data.get("code") != "Ok" or not data.get("routes"):
            raise RoutingError(f"OSRM could not find a route: {data.get('code')} {data.get('message', '')}".strip())

        try:
            geometry = decode_polyline6(data["routes"][0]["geometry"])
        except (KeyError, TypeError, ValueError) as error:
            raise RoutingError(f"Malformed OSRM geometry: {error}") from error
        return geometry


@dataclass
class RouteGeometry:
    geometry: List[Coordinate] = field(default_factory=list)
    is_loading: bool = False
    is_error: bool = False
    error: Optional[str] = None
    source: str = "fallback"

    def to_dict(self) -> Dict:
        return {
            "geometry": [[lat, lng] for lat, lng in self.geometry],
            "is_loading": self.is_loading,
            "is_error": self.is_error,
            "error": self.error,
            "source": self.source,
        }


class RouteGeometryService:
    """
    Cached, fail-soft route geometry for one trace at a time.

    Entries are fresh for ``stale_time`` seconds and evicted after
    ``gc_time`` seconds without being read. A stale entry triggers a
    refetch; if that refetch fails the stale geometry is served with the
    error flag set.
    """

    def __init__(
        self,
        backend: OSRMRoutingBackend,
        cache_alias: str = "default",
        max_points: int = 50,
        stale_time: float = 300,
        gc_time: float = 600,
        retry: int = 1,
        clock: Callable[[], float] = time.time,
    ):
        self.backend = backend
        self.cache_alias = cache_alias
        self.max_points = max_points
        self.stale_time = stale_time
        self.gc_time = gc_time
        self.retry = retry
        self.clock = clock

    @classmethod
    def from_config(cls, config: Optional[Dict] = None) -> "RouteGeometryService":
        config = config or get_config()
        backend = OSRMRoutingBackend(
            config["OSRM_URL"],
            timeout=config["ROUTING_TIMEOUT"],
            profile=config["OSRM_PROFILE"],
        )
        return cls(
            backend,
            cache_alias=config["CACHE_ALIAS"],
            max_points=config["MAX_WAYPOINTS"],
            stale_time=config["GEOMETRY_STALE_TIME"],
            gc_time=config["GEOMETRY_GC_TIME"],
            retry=config["ROUTING_RETRY"],
        )

    @property
    def cache(self):
        return caches[self.cache_alias]

    def geometry(
        self,
        locations: Iterable[object],
        max_points: Optional[int] = None,
        enabled: bool = True,
    ) -> RouteGeometry:
        valid = filter_valid(locations)
        sampled = sample_waypoints(valid, self.max_points if max_points is None else max_points)
        fallback = list(valid)

        if not enabled or len(sampled) < 2:
            return RouteGeometry(geometry=fallback)

        key = geometry_cache_key(sampled)
        entry = self.cache.get(key)
        if entry is not None:
            self.cache.touch(key, self.gc_time)
            if self.clock() - entry["fetched_at"] < self.stale_time:
                return RouteGeometry(geometry=list(entry["geometry"]), source="cache")

        try:
            polyline = self._fetch(sampled)
        except RoutingError as error:
            logger.warning("Route geometry unavailable for %s: %s", key, error)
            if entry is not None:
                return RouteGeometry(
                    geometry=list(entry["geometry"]),
                    is_error=True,
                    error=str(error),
                    source="cache",
                )
            return RouteGeometry(geometry=fallback, is_error=True, error=str(error))

        self.cache.set(key, {"geometry": polyline, "fetched_at": self.clock()}, self.gc_time)
        return RouteGeometry(geometry=polyline, source="backend")

    def _fetch(self, sampled: Sequence[Coordinate]) -> List[Coordinate]:
        attempts = 1 + max(self.retry, 0)
        last_error: Optional[RoutingError] = None
        for attempt in range(1, attempts + 1):
            try:
                polyline = self.backend.route(sampled)
            except RoutingError as error:
                last_error = error
                logger.info("Routing attempt %d/%d failed: %s", attempt, attempts, error)
                continue
            if polyline:
                return [tuple(point) for point in polyline]
            last_error = RoutingError("Routing backend returned an empty geometry")
        raise last_error
