"""
Rate limiting for API clients and pacing for provider calls within a batch.
"""

import threading
import time
from collections import namedtuple

from .config import RATE_LIMIT_CLEANUP_SECONDS, RateLimitPreset

RateLimitResult = namedtuple("RateLimitResult", ["allowed", "remaining", "reset_at"])


class RateLimiter:
    """Sliding-window limiter keyed by client identifier.

    Expired identifiers are purged during `check` at most once every
    `cleanup_interval` seconds, so the table stays bounded by recent clients.
    """

    def __init__(self, max_calls=RateLimitPreset.MODERATE[0], period=RateLimitPreset.MODERATE[1], clock=time.time,
                 cleanup_interval=RATE_LIMIT_CLEANUP_SECONDS):
        self.max_calls = max_calls
        self.period = period
        self.calls = {}
        self.lock = threading.Lock()
        self.clock = clock
        self.cleanup_interval = cleanup_interval
        self._last_cleanup = clock()

    @classmethod
    def from_preset(cls, preset, clock=time.time):
        max_calls, period = preset
        return cls(max_calls=max_calls, period=period, clock=clock)

    def _purge(self, now):
        expired = [key for key, window in self.calls.items()
                   if not window or window[-1] <= now - self.period]
        for key in expired:
            del self.calls[key]
        self._last_cleanup = now

    def check(self, identifier: str) -> RateLimitResult:
        """Record a call for `identifier` unless its window is already full."""
        with self.lock:
            now = self.clock()
            if now - self._last_cleanup >= self.cleanup_interval:
                self._purge(now)

            window = [call for call in self.calls.get(identifier, []) if call > now - self.period]

            if len(window) >= self.max_calls:
                self.calls[identifier] = window
                return RateLimitResult(False, 0, window[0] + self.period)

            window.append(now)
            self.calls[identifier] = window
            return RateLimitResult(True, self.max_calls - len(window), window[0] + self.period)

    def cleanup(self):
        """Drop identifiers whose window has fully expired."""
        with self.lock:
            self._purge(self.clock())


class RequestPacer:
    """Sleeps a fixed interval before every call except the first."""

    def __init__(self, interval: float, sleep=time.sleep):
        self.interval = interval
        self.sleep = sleep
        self._calls = 0

    def wait(self) -> float:
        """Block before the next provider call; returns the seconds slept."""
        waited = 0.0
        if self._calls > 0 and self.interval > 0:
            self.sleep(self.interval)
            waited = self.interval
        self._calls += 1
        return waited
