"""
Plain data types for live positions, stops and route traces.

Nothing here is persisted; the store and the clustering code build these
objects from the wire and the poll payloads.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional, Tuple, Union

Coordinate = Tuple[float, float]


class AgentStatus(str, enum.Enum):
    ON_TRIP = "on_trip"
    AT_HOME = "at_home"
    ACTIVE = "active"
    INACTIVE = "inactive"

    @classmethod
    def parse(cls, value: object, default: Optional["AgentStatus"] = None) -> Optional["AgentStatus"]:
        """Map a wire value onto a status; empty values give ``default``."""
        if isinstance(value, cls):
            return value
        if value is None or value == "":
            return default
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


class PositionSource(str, enum.Enum):
    POLL = "poll"
    PUSH = "push"


@dataclass(frozen=True, slots=True)
class AgentPosition:
    """
    The most recent known state of one agent.

    ``speed`` is in km/h. ``source`` is diagnostic only and does not take
    part in equality.
    """

    agent_id: str
    display_name: str
    latitude: float
    longitude: float
    speed: float
    status: AgentStatus
    observed_at: datetime
    region_hint: Optional[str] = None
    source: PositionSource = field(default=PositionSource.POLL, compare=False)

    @property
    def coordinate(self) -> Coordinate:
        return (self.latitude, self.longitude)

    def to_dict(self) -> Dict:
        return {
            "agent_id": self.agent_id,
            "display_name": self.display_name,
            "location": {"lat": round(self.latitude, 6), "lng": round(self.longitude, 6)},
            "speed_kmh": round(self.speed, 1),
            "status": self.status.value,
            "region_hint": self.region_hint,
            "observed_at": self.observed_at.isoformat(),
            "source": self.source.value,
        }


@dataclass(frozen=True, slots=True)
class LocationUpdate:
    agent_id: str
    display_name: str
    latitude: float
    longitude: float
    speed: float
    status: AgentStatus
    observed_at: datetime
    region_hint: Optional[str] = None

    def to_position(self) -> AgentPosition:
        return AgentPosition(
            agent_id=self.agent_id,
            display_name=self.display_name,
            latitude=self.latitude,
            longitude=self.longitude,
            speed=self.speed,
            status=self.status,
            observed_at=self.observed_at,
            region_hint=self.region_hint,
            source=PositionSource.PUSH,
        )


@dataclass(frozen=True, slots=True)
class StatusChange:
    """Status-only push event. ``observed_at`` is present only when the wire carried one."""

    agent_id: str
    status: AgentStatus
    observed_at: Optional[datetime] = None


PushEvent = Union[LocationUpdate, StatusChange]


@dataclass(frozen=True, slots=True)
class StopEvent:
    """A recorded dwell, pre-extracted by trip segmentation."""

    id: str
    latitude: float
    longitude: float
    province: str = ""
    district: Optional[str] = None
    duration_minutes: int = 0
    location_type: str = "unknown"

    @classmethod
    def from_dict(cls, data: Dict) -> "StopEvent":
        duration = int(data.get("duration_minutes") or 0)
        if duration < 0:
            raise ValueError("duration_minutes must be non-negative")
        return cls(
            id=str(data["id"]),
            latitude=data.get("latitude"),
            longitude=data.get("longitude"),
            province=data.get("province") or "",
            district=data.get("district") or None,
            duration_minutes=duration,
            location_type=data.get("location_type") or "unknown",
        )


@dataclass(frozen=True, slots=True)
class StopCluster:
    representative_latitude: float
    representative_longitude: float
    member_stop_ids: Tuple[str, ...]
    total_duration_minutes: int
    province: str = ""

    @property
    def member_count(self) -> int:
        return len(self.member_stop_ids)

    def to_dict(self) -> Dict:
        return {
            "latitude": self.representative_latitude,
            "longitude": self.representative_longitude,
            "member_stop_ids": list(self.member_stop_ids),
            "member_count": self.member_count,
            "total_duration_minutes": self.total_duration_minutes,
            "province": self.province,
        }


@dataclass(frozen=True, slots=True)
class RawTracePoint:
    """
    One raw GPS fix. Only latitude/longitude matter to sampling; speed and
    recorded_at ride along for display.
    """

    latitude: float
    longitude: float
    speed: Optional[float] = None
    recorded_at: Optional[datetime] = None

    @property
    def coordinate(self) -> Coordinate:
        return (self.latitude, self.longitude)
