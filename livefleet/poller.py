"""
Periodic fetch of the live locations endpoint.

The poll is the slow, bulk channel: every ``interval`` seconds the whole
list is fetched and offered to the store, which keeps whatever is newer.
"""
from __future__ import annotations

import logging
import math
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

import requests
from django.utils import timezone as dj_timezone
from django.utils.dateparse import parse_datetime

from .conf import get_config
from .domain import AgentPosition, AgentStatus, PositionSource
from .exceptions import PollError
from .geo import is_valid_coordinate
from .store import LiveStateStore

logger = logging.getLogger(__name__)


def _parse_observed_at(value: object) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        try:
            parsed = parse_datetime(value.strip())
        except ValueError:
            return None
        if parsed is None:
            return None
    else:
        return None
    if dj_timezone.is_naive(parsed):
        parsed = dj_timezone.make_aware(parsed, timezone.utc)
    return parsed


def parse_live_location(record: Dict) -> Optional[AgentPosition]:
    """
    Build a position from one live locations record, or None if it is
    unusable (no id, bad coordinates, unknown status, no timestamp).
    """
    if not isinstance(record, dict):
        return None
    agent_id = record.get("driver_id")
    if agent_id in (None, ""):
        return None

    lat, lng = record.get("latitude"), record.get("longitude")
    if not is_valid_coordinate(lat, lng):
        return None

    observed_at = _parse_observed_at(record.get("updated_at"))
    if observed_at is None:
        return None

    status = AgentStatus.parse(record.get("status"), default=AgentStatus.ACTIVE)
    if status is None:
        return None

    try:
        speed = float(record.get("speed") or 0.0)
    except (OverflowError, TypeError, ValueError):
        speed = 0.0
    if not math.isfinite(speed) or speed < 0:
        speed = 0.0

    name = " ".join(
        part for part in (record.get("driver_name"), record.get("driver_surname")) if part
    )
    return AgentPosition(
        agent_id=str(agent_id),
        display_name=name,
        latitude=float(lat),
        longitude=float(lng),
        speed=speed,
        status=status,
        observed_at=observed_at,
        region_hint=record.get("province") or None,
        source=PositionSource.POLL,
    )


def parse_live_locations(records: Iterable[Dict]) -> List[AgentPosition]:
    positions = []
    skipped = 0
    for record in records:
        position = parse_live_location(record)
        if position is None:
            skipped += 1
            continue
        positions.append(position)
    if skipped:
        logger.debug("Skipped %d unusable live location records", skipped)
    return positions


class LiveLocationsClient:
    """
    Fetches ``{"data": {"locations": [...]}}`` (or a bare
    ``{"locations": [...]}``) from the live locations endpoint.
    """

    def __init__(self, url: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def fetch(self) -> List[AgentPosition]:
        try:
            response = self.session.get(self.url, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except (requests.exceptions.RequestException, ValueError) as error:
            raise PollError(f"Live locations request failed: {error}") from error

        if not isinstance(payload, dict):
            raise PollError("Live locations payload is not an object")
        container = payload.get("data") if isinstance(payload.get("data"), dict) else payload
        records = container.get("locations")
        if not isinstance(records, list):
            raise PollError("Live locations payload has no 'locations' list")
        return parse_live_locations(records)


class PollWorker:
    """
    Runs ``fetch`` every ``interval`` seconds and merges the result into
    the store. A failed fetch is logged and retried on the next tick.
    """

    def __init__(
        self,
        store: LiveStateStore,
        fetch: Callable[[], Iterable[AgentPosition]],
        interval: float = 10.0,
    ):
        self.store = store
        self.fetch = fetch
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def from_config(cls, store: LiveStateStore, config: Optional[Dict] = None) -> "PollWorker":
        config = config or get_config()
        client = LiveLocationsClient(config["POLL_URL"], timeout=config["POLL_TIMEOUT"])
        return cls(store, client.fetch, interval=config["POLL_INTERVAL"])

    def poll_once(self) -> int:
        try:
            positions = list(self.fetch())
        except PollError as error:
            logger.warning("Live locations poll failed: %s", error)
            return 0
        accepted = self.store.apply_poll_snapshot(positions)
        logger.info("Poll merged %d of %d positions", accepted, len(positions))
        return accepted

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name="livefleet-poll", daemon=True)
        self._thread.start()

    def run(self) -> None:
        while not self._stop.is_set():
            try:
                self.poll_once()
            except Exception:
                logger.exception("Live locations poll failed unexpectedly")
            self._stop.wait(self.interval)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
