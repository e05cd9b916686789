"""
Greedy proximity clustering of stop events.

Used to surface places an agent keeps coming back to: home candidates
(tight radius over unclassified stops) and generic frequent places.
"""
from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence, TypeVar

from .domain import StopCluster, StopEvent
from .geo import haversine_m, is_valid_coordinate

logger = logging.getLogger(__name__)

HOME_RADIUS_M = 200.0
FREQUENT_PLACE_RADIUS_M = 500.0

PlaceT = TypeVar("PlaceT")


def cluster_stops(stops: Iterable[StopEvent], radius_meters: float = HOME_RADIUS_M) -> List[StopCluster]:
    """
    Group stops into clusters around seed stops.

    Stops are visited in input order. The first unassigned stop seeds a
    cluster and absorbs every later unassigned stop whose distance to the
    seed is at most ``radius_meters``. Members are only compared with the
    seed, so a cluster can be wider than the radius end to end but never
    from its seed. The result is the busiest cluster first (total dwell
    minutes), ties kept in creation order.

    Stops with unusable coordinates are left out.

    Raises:
        ValueError: ``radius_meters`` is negative.
    """
    if radius_meters < 0:
        raise ValueError(f"radius_meters must be non-negative, got {radius_meters}")

    valid = [stop for stop in stops if is_valid_coordinate(stop.latitude, stop.longitude)]
    assigned = [False] * len(valid)
    clusters: List[StopCluster] = []

    for index, seed in enumerate(valid):
        if assigned[index]:
            continue
        assigned[index] = True
        member_ids = [seed.id]
        total = seed.duration_minutes

        for other_index in range(index + 1, len(valid)):
            if assigned[other_index]:
                continue
            other = valid[other_index]
            distance = haversine_m(seed.latitude, seed.longitude, other.latitude, other.longitude)
            if distance <= radius_meters:
                assigned[other_index] = True
                member_ids.append(other.id)
                total += other.duration_minutes

        clusters.append(
            StopCluster(
                representative_latitude=seed.latitude,
                representative_longitude=seed.longitude,
                member_stop_ids=tuple(member_ids),
                total_duration_minutes=total,
                province=seed.province,
            )
        )

    # list.sort is stable, so equal totals keep creation order.
    clusters.sort(key=lambda cluster: cluster.total_duration_minutes, reverse=True)
    logger.debug("Clustered %d stops into %d clusters (radius=%sm)", len(valid), len(clusters), radius_meters)
    return clusters


def _keep(clusters: List[StopCluster], min_visits: int, limit: Optional[int]) -> List[StopCluster]:
    kept = [cluster for cluster in clusters if cluster.member_count >= min_visits]
    if limit is not None:
        kept = kept[:limit]
    return kept


def home_candidates(
    stops: Iterable[StopEvent],
    radius_meters: float = HOME_RADIUS_M,
    location_type: Optional[str] = "unknown",
    min_visits: int = 1,
    limit: Optional[int] = None,
) -> List[StopCluster]:
    """
    Cluster the stops of one location type (unclassified by default) into
    candidate home/depot zones.
    """
    if location_type is not None:
        stops = [stop for stop in stops if stop.location_type == location_type]
    return _keep(cluster_stops(stops, radius_meters), min_visits, limit)


def frequent_places(
    stops: Iterable[StopEvent],
    radius_meters: float = FREQUENT_PLACE_RADIUS_M,
    min_visits: int = 2,
    limit: Optional[int] = None,
) -> List[StopCluster]:
    """Places visited at least ``min_visits`` times, busiest first."""
    return _keep(cluster_stops(stops, radius_meters), min_visits, limit)


def nearest_within(
    lat: float,
    lng: float,
    places: Sequence[PlaceT],
    radius_meters: float = HOME_RADIUS_M,
) -> Optional[PlaceT]:
    """
    Return the closest place whose radius covers the point, or None.

    A place is anything with ``latitude``/``longitude`` (or the
    ``representative_*`` pair of a cluster). A place's own ``radius``
    attribute, when set, overrides ``radius_meters``.
    """
    if not is_valid_coordinate(lat, lng):
        return None

    best: Optional[PlaceT] = None
    best_distance = float("inf")
    for place in places:
        place_lat = getattr(place, "latitude", None)
        place_lng = getattr(place, "longitude", None)
        if place_lat is None:
            place_lat = getattr(place, "representative_latitude", None)
            place_lng = getattr(place, "representative_longitude", None)
        if not is_valid_coordinate(place_lat, place_lng):
            continue
        radius = getattr(place, "radius", None) or radius_meters
        distance = haversine_m(lat, lng, place_lat, place_lng)
        if distance <= radius and distance < best_distance:
            best = place
            best_distance = distance
    return best
