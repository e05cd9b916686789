"""
Runtime options for the livefleet app.

Defaults live here; projects override any of them through the
``LIVEFLEET`` dict in Django settings.
"""
from __future__ import annotations

from typing import Any, Dict

from django.conf import settings

DEFAULTS: Dict[str, Any] = {
    # Push channel (websocket).
    "PUSH_URL": "",
    "CONNECT_TIMEOUT": 10.0,
    "HEARTBEAT_INTERVAL": 30.0,
    "LIVENESS_TIMEOUT": 90.0,
    "RECONNECT_DELAY": 5.0,
    "RECONNECT_FACTOR": 1.0,
    "RECONNECT_MAX_DELAY": 60.0,
    "RECONNECT_JITTER": 0.0,
    # Poll collaborator.
    "POLL_URL": "",
    "POLL_INTERVAL": 10.0,
    "POLL_TIMEOUT": 10.0,
    # Routing backend.
    "OSRM_URL": "http://localhost:5000",
    "OSRM_PROFILE": "driving",
    "ROUTING_TIMEOUT": 10.0,
    "ROUTING_RETRY": 1,
    "MAX_WAYPOINTS": 50,
    "GEOMETRY_STALE_TIME": 300,
    "GEOMETRY_GC_TIME": 600,
    "CACHE_ALIAS": "default",
    # Start push/poll workers when the app is ready.
    "AUTOSTART": False,
}


def get_config() -> Dict[str, Any]:
    """Return the defaults overlaid with ``settings.LIVEFLEET``."""
    config = dict(DEFAULTS)
    config.update(getattr(settings, "LIVEFLEET", None) or {})
    return config
