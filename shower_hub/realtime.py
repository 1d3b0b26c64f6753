"""Live submission channels with reconnect and exponential backoff.

Each named channel moves DISCONNECTED -> SUBSCRIBING -> SUBSCRIBED. A channel
error moves it to RECONNECTING and schedules a retry after
``base_delay * 2 ** (attempt - 1)`` seconds. Once ``max_attempts`` retries have
been spent the channel stays DISCONNECTED until ``reinitialize`` is called.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, Optional, Protocol

from .errors import UpstreamWriteError
from .store import SUBMISSIONS_TABLE

logger = logging.getLogger(__name__)

DISCONNECTED = "DISCONNECTED"
SUBSCRIBING = "SUBSCRIBING"
SUBSCRIBED = "SUBSCRIBED"
RECONNECTING = "RECONNECTING"

# Transport status events.
STATUS_SUBSCRIBED = "SUBSCRIBED"
STATUS_CHANNEL_ERROR = "CHANNEL_ERROR"
STATUS_TIMED_OUT = "TIMED_OUT"
STATUS_CLOSED = "CLOSED"

StatusCallback = Callable[[str], None]
InsertCallback = Callable[[Dict[str, Any]], None]


class Transport(Protocol):
    def open(self, on_status: StatusCallback, on_insert: InsertCallback) -> None: ...

    def close(self) -> None: ...


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, fn: Callable[[], None]) -> TimerHandle: ...


class ThreadingScheduler:
    def call_later(self, delay: float, fn: Callable[[], None]) -> threading.Timer:
        timer = threading.Timer(delay, fn)
        timer.daemon = True
        timer.start()
        return timer


class PollingTransport:
    """Delivers INSERTs of one activity type by polling for rows past the last seen id."""

    def __init__(
        self,
        store: Any,
        activity_type: str,
        *,
        table: str = SUBMISSIONS_TABLE,
        poll_seconds: float = 2.5,
        batch_size: int = 100,
    ) -> None:
        self.store = store
        self.activity_type = activity_type
        self.table = table
        self.poll_seconds = poll_seconds
        self.batch_size = batch_size
        self.last_seen_id: Optional[int] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def open(self, on_status: StatusCallback, on_insert: InsertCallback) -> None:
        self._thread = threading.Thread(
            target=self._run,
            args=(on_status, on_insert),
            name=f"realtime-{self.activity_type}",
            daemon=True,
        )
        self._thread.start()

    def close(self) -> None:
        self._stop.set()

    def _baseline(self) -> None:
        latest = self.store.select(
            self.table,
            {"activity_type": self.activity_type},
            columns="id",
            order="id.desc",
            limit=1,
        )
        self.last_seen_id = latest[0]["id"] if latest else 0

    def poll_once(self, on_insert: InsertCallback) -> int:
        if self.last_seen_id is None:
            self._baseline()
            return 0
        rows = self.store.select(
            self.table,
            {"activity_type": self.activity_type, "id": ("gt", self.last_seen_id)},
            order="id.asc",
            limit=self.batch_size,
        )
        for row in rows:
            self.last_seen_id = max(self.last_seen_id or 0, int(row.get("id") or 0))
            on_insert(row)
        return len(rows)

    def _run(self, on_status: StatusCallback, on_insert: InsertCallback) -> None:
        subscribed = False
        while not self._stop.is_set():
            try:
                self.poll_once(on_insert)
            except UpstreamWriteError as exc:
                if not self._stop.is_set():
                    logger.warning("Realtime poll failed for %s: %s", self.activity_type, exc)
                    on_status(STATUS_CHANNEL_ERROR)
                return
            except Exception:
                if not self._stop.is_set():
                    logger.exception("Realtime poll crashed for %s", self.activity_type)
                    on_status(STATUS_CHANNEL_ERROR)
                return
            if not subscribed:
                subscribed = True
                on_status(STATUS_SUBSCRIBED)
            self._stop.wait(self.poll_seconds)
        on_status(STATUS_CLOSED)


class Channel:
    def __init__(self, name: str, on_insert: InsertCallback) -> None:
        self.name = name
        self.on_insert = on_insert
        self.state = DISCONNECTED
        self.attempts = 0
        self.last_delay: Optional[float] = None
        self.transport: Optional[Transport] = None
        self.timer: Optional[TimerHandle] = None
        self.closed = False

    def describe(self) -> Dict[str, Any]:
        return {"state": self.state, "attempts": self.attempts, "last_delay": self.last_delay}


class RealtimeManager:
    def __init__(
        self,
        transport_factory: Callable[[str], Transport],
        *,
        scheduler: Optional[Scheduler] = None,
        base_delay: float = 3.0,
        max_attempts: int = 5,
    ) -> None:
        self.transport_factory = transport_factory
        self.scheduler = scheduler or ThreadingScheduler()
        self.base_delay = base_delay
        self.max_attempts = max_attempts
        self.channels: Dict[str, Channel] = {}
        self._lock = threading.RLock()

    def backoff_delay(self, attempt: int) -> float:
        return self.base_delay * (2 ** (attempt - 1))

    def subscribe(self, name: str, on_insert: InsertCallback) -> Channel:
        with self._lock:
            existing = self.channels.get(name)
            if existing is not None and not existing.closed:
                return existing
            channel = Channel(name, on_insert)
            self.channels[name] = channel
            self._connect(channel)
            return channel

    def _connect(self, channel: Channel) -> None:
        channel.state = SUBSCRIBING
        channel.timer = None
        transport = self.transport_factory(channel.name)
        channel.transport = transport
        logger.info("Subscribing to channel %s", channel.name)
        transport.open(
            lambda status: self._on_status(channel, transport, status),
            lambda row: self._on_insert(channel, transport, row),
        )

    def _on_insert(self, channel: Channel, transport: Transport, row: Dict[str, Any]) -> None:
        if channel.closed or channel.transport is not transport:
            return
        try:
            channel.on_insert(row)
        except Exception:
            logger.exception("Insert callback failed on channel %s", channel.name)

    def _on_status(self, channel: Channel, transport: Transport, status: str) -> None:
        with self._lock:
            if channel.closed or channel.transport is not transport:
                return
            if status == STATUS_SUBSCRIBED:
                channel.state = SUBSCRIBED
                channel.attempts = 0
                logger.info("Channel %s subscribed", channel.name)
            elif status in (STATUS_CHANNEL_ERROR, STATUS_TIMED_OUT):
                transport.close()
                channel.transport = None
                self._schedule_reconnect(channel, status)
            elif status == STATUS_CLOSED:
                channel.transport = None
                channel.state = DISCONNECTED

    def _schedule_reconnect(self, channel: Channel, reason: str) -> None:
        if channel.attempts >= self.max_attempts:
            channel.state = DISCONNECTED
            logger.error(
                "Channel %s gave up after %d reconnect attempts (%s)",
                channel.name,
                channel.attempts,
                reason,
            )
            return
        channel.attempts += 1
        delay = self.backoff_delay(channel.attempts)
        channel.last_delay = delay
        channel.state = RECONNECTING
        logger.warning(
            "Channel %s %s, reconnecting in %.1fs (attempt %d/%d)",
            channel.name,
            reason,
            delay,
            channel.attempts,
            self.max_attempts,
        )
        channel.timer = self.scheduler.call_later(delay, lambda: self._retry(channel))

    def _retry(self, channel: Channel) -> None:
        with self._lock:
            if channel.closed or channel.state != RECONNECTING:
                return
            self._connect(channel)

    def reinitialize(self, name: str) -> Optional[Channel]:
        with self._lock:
            channel = self.channels.get(name)
            if channel is None or channel.closed:
                return None
            self._teardown(channel)
            channel.attempts = 0
            channel.last_delay = None
            self._connect(channel)
            return channel

    def _teardown(self, channel: Channel) -> None:
        if channel.timer is not None:
            channel.timer.cancel()
            channel.timer = None
        if channel.transport is not None:
            transport = channel.transport
            channel.transport = None
            transport.close()
        channel.state = DISCONNECTED

    def unsubscribe(self, name: str) -> None:
        with self._lock:
            channel = self.channels.pop(name, None)
            if channel is None:
                return
            channel.closed = True
            self._teardown(channel)

    def close_all(self) -> None:
        for name in list(self.channels):
            self.unsubscribe(name)

    def status(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {name: channel.describe() for name, channel in self.channels.items()}
