"""
Alert Cooldowns — In-Memory, Process-Wide, Clock-Injected
==========================================================

Maps an alert key (``"{kind}_{record_id}"``) to the moment it last fired.
An alert is blocked while ``now − last_fired < window``.

State is lost on restart; entries older than 24 h are evicted by
``run_eviction`` on its own asyncio task. A manual check and a scheduled
sweep may evaluate the same key concurrently, so ``try_acquire`` does the
check and the mark under one lock.
"""

import asyncio
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

EVICTION_AGE = timedelta(hours=24)
EVICTION_INTERVAL_SECONDS = 60 * 60


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CooldownService:
    """
    Usage:
        cooldowns = CooldownService()
        if cooldowns.try_acquire("out_of_range_7", 60):
            ...  # send
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None, max_age: timedelta = EVICTION_AGE):
        self._clock = clock or utc_now
        self._max_age = max_age
        self._last_fired: Dict[str, datetime] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._last_fired)

    def _blocked(self, key: str, minutes: float, now: datetime) -> bool:
        last = self._last_fired.get(key)
        return last is not None and now - last < timedelta(minutes=minutes)

    def is_cooling_down(self, key: str, minutes: float) -> bool:
        """True if ``key`` fired less than ``minutes`` ago."""
        with self._lock:
            return self._blocked(key, minutes, self._clock())

    def mark(self, key: str) -> None:
        """Record that ``key`` fired now."""
        with self._lock:
            self._last_fired[key] = self._clock()

    def try_acquire(self, key: str, minutes: float) -> bool:
        """
        Atomic check-and-set.

        Returns:
            True (and marks the key) if the window has elapsed, else False.
        """
        with self._lock:
            now = self._clock()
            if self._blocked(key, minutes, now):
                return False
            self._last_fired[key] = now
            return True

    def evict_expired(self) -> int:
        """Drop entries older than the max age; returns how many were removed."""
        with self._lock:
            cutoff = self._clock() - self._max_age
            stale = [key for key, fired in self._last_fired.items() if fired < cutoff]
            for key in stale:
                del self._last_fired[key]
        if stale:
            logger.debug("Evicted %d expired cooldown entries", len(stale))
        return len(stale)

    async def run_eviction(self, interval_seconds: float = EVICTION_INTERVAL_SECONDS) -> None:
        """Evict forever, every ``interval_seconds``. Cancel the task to stop."""
        while True:
            await asyncio.sleep(interval_seconds)
            self.evict_expired()
