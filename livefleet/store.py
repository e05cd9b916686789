"""
Live fleet state reconciled from the poll snapshot and the push stream.

Both producers feed candidates into one rule: a candidate replaces the
stored record for its agent only when its ``observed_at`` is strictly
newer. Arrival order and source do not matter, so a slow poll cannot
clobber a fresher push update and a replayed push message is a no-op.
"""
from __future__ import annotations

import dataclasses
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional

from .domain import AgentPosition, AgentStatus, LocationUpdate, PushEvent, StatusChange
from .geo import is_valid_coordinate
from .regions import REGIONS, provinces_for

logger = logging.getLogger(__name__)

Subscriber = Callable[[AgentPosition], None]


class LiveStateStore:
    """
    One record per agent, guarded by a single lock.

    Records are immutable; an accepted update swaps the whole record, so
    readers never see a half-written position. Subscribers run inside the
    lock, once per accepted change and never for a rejected one, so they
    see changes in acceptance order. They must not block.
    """

    def __init__(self):
        self._positions: Dict[str, AgentPosition] = {}
        self._subscribers: List[Subscriber] = []
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._positions)

    def __contains__(self, agent_id: object) -> bool:
        with self._lock:
            return agent_id in self._positions

    # Subscriptions --------------------------------------------------------
    def subscribe(self, callback: Subscriber) -> Subscriber:
        with self._lock:
            if callback not in self._subscribers:
                self._subscribers.append(callback)
        return callback

    def unsubscribe(self, callback: Subscriber) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def _notify(self, position: AgentPosition) -> None:
        for callback in list(self._subscribers):
            try:
                callback(position)
            except Exception:
                logger.exception("Subscriber %r failed for agent %s", callback, position.agent_id)

    # Producers ------------------------------------------------------------
    def apply_position(self, candidate: AgentPosition) -> bool:
        """Merge one full position. Returns True when it was accepted."""
        if not is_valid_coordinate(candidate.latitude, candidate.longitude):
            logger.debug("Rejected %s: invalid coordinate", candidate.agent_id)
            return False

        with self._lock:
            current = self._positions.get(candidate.agent_id)
            if current is not None and candidate.observed_at <= current.observed_at:
                logger.debug(
                    "Rejected %s from %s: %s is not newer than %s",
                    candidate.agent_id,
                    candidate.source.value,
                    candidate.observed_at.isoformat(),
                    current.observed_at.isoformat(),
                )
                return False
            self._positions[candidate.agent_id] = candidate
            self._notify(candidate)
        return True

    def apply_status(self, change: StatusChange) -> bool:
        """
        Update only the status of a known agent.

        With a timestamp the change must be strictly newer than the stored
        record and advances it. Without one the record time is kept and a
        change to the same status counts as a duplicate.
        """
        with self._lock:
            current = self._positions.get(change.agent_id)
            if current is None:
                logger.debug("Dropped status for unknown agent %s", change.agent_id)
                return False
            if change.observed_at is not None:
                if change.observed_at <= current.observed_at:
                    return False
                updated = dataclasses.replace(current, status=change.status, observed_at=change.observed_at)
            else:
                if change.status == current.status:
                    return False
                updated = dataclasses.replace(current, status=change.status)
            self._positions[change.agent_id] = updated
            self._notify(updated)
        return True

    def apply_push_event(self, event: PushEvent) -> bool:
        if isinstance(event, LocationUpdate):
            return self.apply_position(event.to_position())
        if isinstance(event, StatusChange):
            return self.apply_status(event)
        raise TypeError(f"Unsupported push event: {type(event).__name__}")

    def apply_poll_snapshot(self, positions: Iterable[AgentPosition]) -> int:
        """Merge a polled batch; returns the number of accepted records."""
        accepted = 0
        for position in positions:
            if self.apply_position(position):
                accepted += 1
        return accepted

    # Readers --------------------------------------------------------------
    def get(self, agent_id: str) -> Optional[AgentPosition]:
        with self._lock:
            return self._positions.get(agent_id)

    def snapshot(self) -> List[AgentPosition]:
        with self._lock:
            return list(self._positions.values())

    def filter(
        self,
        status: Optional[str] = None,
        region: Optional[str] = None,
        province: Optional[str] = None,
    ) -> List[AgentPosition]:
        """
        Agents matching every given filter. Agents without a province are
        not excluded by the region filter, only by the province filter.
        """
        wanted_status = AgentStatus.parse(status) if status else None
        region_provinces = provinces_for(region) if region else ()

        result = []
        for position in self.snapshot():
            if status and position.status != wanted_status:
                continue
            if region and position.region_hint and position.region_hint not in region_provinces:
                continue
            if province and position.region_hint != province:
                continue
            result.append(position)
        return result

    def status_counts(self) -> Dict[str, int]:
        positions = self.snapshot()
        counts = {status.value: 0 for status in AgentStatus}
        for position in positions:
            counts[position.status.value] += 1
        counts["total"] = len(positions)
        return counts

    def region_counts(self) -> Dict[str, int]:
        positions = self.snapshot()
        return {
            key: sum(1 for p in positions if p.region_hint and p.region_hint in region["provinces"])
            for key, region in REGIONS.items()
        }

    def stale_agents(self, max_age: timedelta, now: Optional[datetime] = None) -> List[AgentPosition]:
        """Agents whose last accepted position is older than ``max_age``."""
        now = now or datetime.now(timezone.utc)
        return [p for p in self.snapshot() if now - p.observed_at > max_age]
