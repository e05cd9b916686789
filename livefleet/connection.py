"""
Push channel client.

Keeps one websocket open to the live location hub, sends a keepalive ping
on a fixed interval, decodes ``location_update`` and ``driver_status``
messages into typed events and reconnects forever after any closure.

Bad messages are dropped here and never count as transport faults. The
manager delivers events one at a time from its worker, in wire order; it
knows nothing about the store or the poll channel.
"""
from __future__ import annotations

import enum
import json
import logging
import math
import random
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

import websocket

from .conf import get_config
from .domain import AgentStatus, LocationUpdate, PushEvent, StatusChange
from .geo import is_valid_coordinate

logger = logging.getLogger(__name__)

PING_MESSAGE = json.dumps({"type": "ping"})


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    STOPPED = "stopped"


@dataclass
class ReconnectPolicy:
    """
    Delay before reconnect attempt ``attempt`` (1-based).

    The default is a flat 5 seconds. ``factor`` > 1 turns it into capped
    exponential backoff and ``jitter`` adds up to that fraction of the
    delay at random.
    """

    delay: float = 5.0
    factor: float = 1.0
    max_delay: float = 60.0
    jitter: float = 0.0

    def next_delay(self, attempt: int) -> float:
        exponent = min(max(attempt - 1, 0), 32)
        delay = min(self.delay * (self.factor ** exponent), self.max_delay)
        if self.jitter > 0:
            delay += random.uniform(0, self.jitter * delay)
        return delay


def _number(value: object) -> Optional[float]:
    if value is None or isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        number = float(value)
    except (OverflowError, TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def _epoch_to_datetime(value: object) -> Optional[datetime]:
    seconds = _number(value)
    if seconds is None:
        return None
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def _decode_location(message: Dict) -> Optional[LocationUpdate]:
    agent_id = message.get("driver_id")
    if agent_id in (None, ""):
        return None

    lat, lng = message.get("latitude"), message.get("longitude")
    if not is_valid_coordinate(lat, lng):
        return None

    observed_at = _epoch_to_datetime(message.get("timestamp"))
    if observed_at is None:
        return None

    status = AgentStatus.parse(message.get("status"), default=AgentStatus.ACTIVE)
    if status is None:
        return None

    speed = _number(message.get("speed") or 0)
    if speed is None:
        return None

    return LocationUpdate(
        agent_id=str(agent_id),
        display_name=str(message.get("name") or ""),
        latitude=float(lat),
        longitude=float(lng),
        speed=max(speed, 0.0),
        status=status,
        observed_at=observed_at,
        region_hint=message.get("province") or None,
    )


def _decode_status(message: Dict) -> Optional[StatusChange]:
    agent_id = message.get("driver_id")
    status = AgentStatus.parse(message.get("status"))
    if agent_id in (None, "") or status is None:
        return None

    observed_at = None
    if message.get("timestamp") is not None:
        observed_at = _epoch_to_datetime(message["timestamp"])
        if observed_at is None:
            return None
    return StatusChange(agent_id=str(agent_id), status=status, observed_at=observed_at)


def decode_message(raw: object) -> Optional[PushEvent]:
    """
    Decode one wire frame. Returns None for anything that is not a valid
    location or status event, including pongs and unknown types.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            return None
    if not isinstance(raw, str):
        return None
    try:
        message = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(message, dict):
        return None

    kind = message.get("type")
    if kind == "location_update":
        return _decode_location(message)
    if kind == "driver_status":
        return _decode_status(message)
    return None


class ConnectionManager:
    """
    Long-lived push connection with heartbeat and reconnect.

    ``on_event`` receives every decoded event; failures inside it are
    logged and do not touch the connection. ``connect`` defaults to
    ``websocket.create_connection`` and is swappable for tests.
    """

    def __init__(
        self,
        url: str,
        on_event: Callable[[PushEvent], object],
        heartbeat_interval: float = 30.0,
        liveness_timeout: Optional[float] = 90.0,
        connect_timeout: float = 10.0,
        reconnect: Optional[ReconnectPolicy] = None,
        poll_interval: float = 1.0,
        connect: Optional[Callable[..., websocket.WebSocket]] = None,
        on_state_change: Optional[Callable[[ConnectionState], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.url = url
        self.on_event = on_event
        self.heartbeat_interval = heartbeat_interval
        self.liveness_timeout = liveness_timeout
        self.connect_timeout = connect_timeout
        self.reconnect = reconnect or ReconnectPolicy()
        self.poll_interval = min(poll_interval, heartbeat_interval)
        self.on_state_change = on_state_change
        self.clock = clock
        self._connect = connect or websocket.create_connection

        self.state = ConnectionState.DISCONNECTED
        self.connect_count = 0
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._ws: Optional[websocket.WebSocket] = None

    @classmethod
    def from_config(
        cls,
        url: str,
        on_event: Callable[[PushEvent], object],
        config: Optional[Dict] = None,
        **kwargs,
    ) -> "ConnectionManager":
        config = config or get_config()
        policy = ReconnectPolicy(
            delay=config["RECONNECT_DELAY"],
            factor=config["RECONNECT_FACTOR"],
            max_delay=config["RECONNECT_MAX_DELAY"],
            jitter=config["RECONNECT_JITTER"],
        )
        return cls(
            url,
            on_event,
            heartbeat_interval=config["HEARTBEAT_INTERVAL"],
            liveness_timeout=config["LIVENESS_TIMEOUT"],
            connect_timeout=config["CONNECT_TIMEOUT"],
            reconnect=policy,
            **kwargs,
        )

    # Lifecycle ------------------------------------------------------------
    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name="livefleet-push", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        ws = self._ws
        if ws is not None:
            self._close(ws)
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._set_state(ConnectionState.STOPPED)

    def run(self) -> None:
        """Connect/serve/reconnect until ``stop`` is called."""
        attempt = 0
        while not self._stop.is_set():
            self._set_state(ConnectionState.CONNECTING)
            try:
                ws = self._connect(self.url, timeout=self.connect_timeout)
            except (websocket.WebSocketException, OSError, ValueError) as error:
                attempt += 1
                logger.warning("Push connection to %s failed: %s", self.url, error)
                self._schedule_reconnect(attempt)
                continue

            self._ws = ws
            self.connect_count += 1
            self._set_state(ConnectionState.CONNECTED)
            logger.info("Push channel connected to %s", self.url)
            try:
                self._serve(ws)
            except (websocket.WebSocketException, OSError) as error:
                logger.warning("Push channel to %s dropped: %s", self.url, error)
            except Exception:
                # The worker must outlive any single session.
                logger.exception("Push channel to %s failed", self.url)
            finally:
                self._ws = None
                self._close(ws)

            # A session that got connected restarts the backoff sequence.
            attempt = 1
            self._schedule_reconnect(attempt)

        self._set_state(ConnectionState.STOPPED)

    # Internals ------------------------------------------------------------
    def _schedule_reconnect(self, attempt: int) -> None:
        if self._stop.is_set():
            return
        self._set_state(ConnectionState.DISCONNECTED)
        delay = self.reconnect.next_delay(attempt)
        logger.info("Reconnecting to %s in %.1fs", self.url, delay)
        self._wait(delay)

    def _wait(self, delay: float) -> None:
        self._stop.wait(delay)

    def _serve(self, ws: websocket.WebSocket) -> None:
        ws.settimeout(self.poll_interval)
        last_ping = last_frame = self.clock()

        while not self._stop.is_set():
            now = self.clock()
            if now - last_ping >= self.heartbeat_interval:
                ws.send(PING_MESSAGE)
                last_ping = now
            if self.liveness_timeout is not None and now - last_frame > self.liveness_timeout:
                logger.warning(
                    "No frames from %s for %.0fs, treating connection as dead", self.url, now - last_frame
                )
                return

            try:
                raw = ws.recv()
            except websocket.WebSocketTimeoutException:
                continue

            if raw in ("", b"", None):
                logger.info("Push channel closed by %s", self.url)
                return
            last_frame = self.clock()

            event = decode_message(raw)
            if event is None:
                logger.debug("Dropped push message: %.200r", raw)
                continue
            self._deliver(event)

    def _deliver(self, event: PushEvent) -> None:
        try:
            self.on_event(event)
        except Exception:
            logger.exception("Push event handler failed for %s", event)

    def _close(self, ws: websocket.WebSocket) -> None:
        try:
            ws.close()
        except (websocket.WebSocketException, OSError) as error:
            logger.debug("Error while closing push socket: %s", error)

    def _set_state(self, state: ConnectionState) -> None:
        if state == self.state:
            return
        self.state = state
        if self.on_state_change is not None:
            self.on_state_change(state)
