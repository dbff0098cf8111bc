# backend/schooldb/apps/apikeys/ratelimit.py
"""
In-process fixed-window rate limiter for API keys.

Windows live in memory only: they reset on restart and are per process.
That is acceptable for an abuse guard; it is not a billing meter. A burst
straddling a window edge can admit up to twice the limit.
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional

from schooldb.clock import Clock, utcnow

RATE_LIMIT_WINDOW_SEC = int(os.getenv("API_RATE_LIMIT_WINDOW_SEC", "60"))
RATE_LIMIT_CLEANUP_SEC = int(os.getenv("API_RATE_LIMIT_CLEANUP_SEC", "300"))
DEFAULT_RATE_LIMIT = 100


@dataclass
class _Window:
    count: int
    window_start: datetime


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: datetime

    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": self.reset_at.isoformat(),
        }


class RateLimiter:
    def __init__(
        self,
        *,
        window_seconds: int = RATE_LIMIT_WINDOW_SEC,
        cleanup_interval_seconds: int = RATE_LIMIT_CLEANUP_SEC,
        clock: Optional[Clock] = None,
    ):
        self.window = timedelta(seconds=window_seconds)
        self.cleanup_interval = timedelta(seconds=cleanup_interval_seconds)
        self._clock = clock or utcnow
        self._lock = threading.Lock()
        self._windows: Dict[str, _Window] = {}
        self._last_cleanup = self._clock()

    def check(self, key: str, limit: int = DEFAULT_RATE_LIMIT) -> RateLimitResult:
        """Count one request for `key` and report whether it is within `limit`."""
        now = self._clock()
        with self._lock:
            if now - self._last_cleanup >= self.cleanup_interval:
                self._purge_locked(now)

            entry = self._windows.get(key)
            if entry is None or now - entry.window_start > self.window:
                entry = _Window(count=1, window_start=now)
                self._windows[key] = entry
            else:
                entry.count += 1

            count = entry.count
            reset_at = entry.window_start + self.window

        return RateLimitResult(
            allowed=count <= limit,
            limit=limit,
            remaining=max(0, limit - count),
            reset_at=reset_at,
        )

    def purge_stale(self) -> int:
        with self._lock:
            return self._purge_locked(self._clock())

    def _purge_locked(self, now: datetime) -> int:
        cutoff = now - 2 * self.window
        stale = [key for key, entry in self._windows.items() if entry.window_start < cutoff]
        for key in stale:
            del self._windows[key]
        self._last_cleanup = now
        return len(stale)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()
            self._last_cleanup = self._clock()

    def __len__(self) -> int:
        return len(self._windows)


api_key_rate_limiter = RateLimiter()
