"""
Session wiring and view-ready snapshots.

A ``FleetSession`` owns exactly one ``LiveStateStore`` together with the
push connection and poll worker that feed it. The Django app keeps one
session per process; tests build their own.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from .conf import get_config
from .connection import ConnectionManager
from .poller import PollWorker
from .regions import DEFAULT_CENTER, region_legend
from .routing import RouteGeometryService
from .store import LiveStateStore

logger = logging.getLogger(__name__)


class FleetSession:
    def __init__(
        self,
        store: Optional[LiveStateStore] = None,
        connection: Optional[ConnectionManager] = None,
        poller: Optional[PollWorker] = None,
        geometry: Optional[RouteGeometryService] = None,
    ):
        self.store = store or LiveStateStore()
        self.connection = connection
        self.poller = poller
        self.geometry = geometry or RouteGeometryService.from_config()
        self.started = False

    def start(self) -> None:
        if self.started:
            return
        if self.poller is not None:
            self.poller.start()
        if self.connection is not None:
            self.connection.start()
        self.started = True
        logger.info(
            "Fleet session started (push=%s, poll=%s)",
            bool(self.connection),
            bool(self.poller),
        )

    def stop(self) -> None:
        if self.connection is not None:
            self.connection.stop(timeout=5)
        if self.poller is not None:
            self.poller.stop(timeout=5)
        self.started = False


def build_session(config: Optional[Dict] = None) -> FleetSession:
    """
    Build a session from configuration. Push and poll are only wired when
    their URLs are set.
    """
    config = config or get_config()
    store = LiveStateStore()

    connection = None
    if config["PUSH_URL"]:
        connection = ConnectionManager.from_config(config["PUSH_URL"], store.apply_push_event, config)

    poller = None
    if config["POLL_URL"]:
        poller = PollWorker.from_config(store, config)

    return FleetSession(
        store=store,
        connection=connection,
        poller=poller,
        geometry=RouteGeometryService.from_config(config),
    )


def get_tracking_snapshot(
    store: LiveStateStore,
    status: Optional[str] = None,
    region: Optional[str] = None,
    province: Optional[str] = None,
    connection: Optional[ConnectionManager] = None,
) -> Dict:
    """
    Provide a ready-to-use snapshot for templates and APIs.
    """
    agents = store.filter(status=status, region=region, province=province)
    agents.sort(key=lambda position: position.agent_id)

    return {
        "agents": [position.to_dict() for position in agents],
        "status_counts": store.status_counts(),
        "region_counts": store.region_counts(),
        "filters": {"status": status, "region": region, "province": province},
        "legend": {"regions": list(region_legend())},
        "center_location": dict(DEFAULT_CENTER),
        "push_state": connection.state.value if connection is not None else None,
        "generation_time": datetime.now(timezone.utc).isoformat(),
    }
