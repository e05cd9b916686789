"""
Display helpers for one agent's raw trace: thinning for the map and
summary statistics for the route header.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Sequence

from .domain import RawTracePoint
from .geo import haversine_km, haversine_m, is_valid_coordinate

SIMPLIFY_RADIUS_M = 100.0
SIMPLIFY_SPEED_DELTA_KMH = 10.0
SIMPLIFY_TIME_GAP_S = 300.0


def simplify_trace(
    points: Sequence[RawTracePoint],
    radius_meters: float = SIMPLIFY_RADIUS_M,
    speed_delta_kmh: float = SIMPLIFY_SPEED_DELTA_KMH,
    time_gap_seconds: float = SIMPLIFY_TIME_GAP_S,
) -> List[RawTracePoint]:
    """
    Drop fixes that add nothing visible.

    A fix is kept when it is farther than ``radius_meters`` from the last
    kept fix, when the speed changed by more than ``speed_delta_kmh``, or
    when more than ``time_gap_seconds`` passed. The last fix is always kept.
    """
    points = [p for p in points if is_valid_coordinate(p.latitude, p.longitude)]
    if len(points) < 2:
        return points

    kept = [points[0]]
    for current in points[1:]:
        last = kept[-1]
        distance = haversine_m(last.latitude, last.longitude, current.latitude, current.longitude)
        speed_change = abs((current.speed or 0.0) - (last.speed or 0.0))
        time_gap = 0.0
        if current.recorded_at is not None and last.recorded_at is not None:
            time_gap = abs((current.recorded_at - last.recorded_at).total_seconds())

        if distance > radius_meters or speed_change > speed_delta_kmh or time_gap > time_gap_seconds:
            kept.append(current)

    if kept[-1] is not points[-1]:
        kept.append(points[-1])
    return kept


@dataclass(frozen=True, slots=True)
class TraceSummary:
    total_distance_km: float = 0.0
    total_duration_minutes: float = 0.0
    avg_speed_kmh: float = 0.0
    max_speed_kmh: float = 0.0
    points: int = 0

    def to_dict(self) -> Dict:
        return {
            "total_distance_km": round(self.total_distance_km, 2),
            "total_duration_minutes": round(self.total_duration_minutes, 1),
            "avg_speed_kmh": round(self.avg_speed_kmh, 1),
            "max_speed_kmh": round(self.max_speed_kmh, 1),
            "points": self.points,
        }


def summarize_trace(points: Sequence[RawTracePoint]) -> TraceSummary:
    """
    Distance along the fixes, elapsed time between first and last fix, and
    speeds. Average speed is distance over elapsed time, not the mean of
    reported speeds.
    """
    points = [p for p in points if is_valid_coordinate(p.latitude, p.longitude)]
    if len(points) < 2:
        return TraceSummary(points=len(points))

    distance_km = 0.0
    for start, end in zip(points[:-1], points[1:]):
        distance_km += haversine_km(start.coordinate, end.coordinate)

    max_speed = max((p.speed or 0.0) for p in points)

    duration_minutes = 0.0
    first, last = points[0].recorded_at, points[-1].recorded_at
    if first is not None and last is not None:
        duration_minutes = max((last - first).total_seconds() / 60.0, 0.0)

    avg_speed = (distance_km / duration_minutes) * 60 if duration_minutes > 0 else 0.0
    return TraceSummary(
        total_distance_km=distance_km,
        total_duration_minutes=duration_minutes,
        avg_speed_kmh=avg_speed,
        max_speed_kmh=max_speed,
        points=len(points),
    )
