import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def needs_probe(now: datetime, last_tested_at: datetime, stale_after: timedelta) -> bool:
    return now - last_tested_at > stale_after


@dataclass(frozen=True)
class HealthSnapshot:
    connected: bool
    last_tested_at: datetime


class ConnectionHealth:
    """Process-wide advisory status of the store connection.

    Every query attempt writes to it (last writer wins). It is surfaced for
    diagnostics only and never gates a query.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock
        self._lock = threading.Lock()
        self._connected = False
        self._last_tested_at = clock()

    def mark_connected(self) -> bool:
        """Returns True when this call restored a previously lost connection."""
        with self._lock:
            restored = not self._connected
            self._connected = True
            self._last_tested_at = self._clock()
        return restored

    def mark_disconnected(self) -> None:
        with self._lock:
            self._connected = False

    def snapshot(self) -> HealthSnapshot:
        with self._lock:
            return HealthSnapshot(self._connected, self._last_tested_at)

    def is_stale(self, stale_after: timedelta, now: Optional[datetime] = None) -> bool:
        snapshot = self.snapshot()
        return needs_probe(now or self._clock(), snapshot.last_tested_at, stale_after)


_connection_health = ConnectionHealth()


def get_connection_health() -> ConnectionHealth:
    return _connection_health
