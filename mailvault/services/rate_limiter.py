"""
Sliding-window throttle for outbound provider calls.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Callable, Deque, Dict


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


class SlidingWindowRateLimiter:
    """Count calls per identifier inside a moving time window.

    Denied attempts are not recorded, so a caller hammering a closed window
    does not extend its own lockout. Identifiers are fully independent.
    """

    def __init__(
        self,
        *,
        retention_ms: int = 300_000,
        clock: Callable[[], float] = _monotonic_ms,
    ) -> None:
        self._retention_ms = retention_ms
        self._clock = clock
        self._calls: Dict[str, Deque[float]] = {}
        # Longest window each identifier was checked against.
        self._windows: Dict[str, int] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def allow(self, identifier: str, max_requests: int, window_ms: int) -> bool:
        """Record a call for ``identifier`` and report whether it is within limits."""
        now = self._clock()
        with self._lock:
            if now - self._last_sweep >= self._retention_ms:
                self._sweep_locked(now, self._retention_ms)

            calls = self._calls.setdefault(identifier, deque())
            self._windows[identifier] = max(self._windows.get(identifier, 0), window_ms)
            cutoff = now - window_ms
            while calls and calls[0] <= cutoff:
                calls.popleft()

            if len(calls) >= max_requests:
                return False
            calls.append(now)
            return True

    def retry_after_ms(self, identifier: str, window_ms: int) -> float:
        """Milliseconds until the oldest call for ``identifier`` leaves the window."""
        now = self._clock()
        with self._lock:
            calls = self._calls.get(identifier)
            if not calls:
                return 0.0
            return max(0.0, calls[0] + window_ms - now)

    def sweep(self, retention_ms: int | None = None) -> int:
        """Drop identifiers idle for longer than ``retention_ms``; return how many.

        An identifier is only dropped once its newest call has also left the
        longest window it was checked against, so a sweep never reopens a
        window early. Timestamps are trimmed by ``allow`` alone.
        """
        now = self._clock()
        with self._lock:
            return self._sweep_locked(now, retention_ms or self._retention_ms)

    def tracked_identifiers(self) -> int:
        with self._lock:
            return len(self._calls)

    def _sweep_locked(self, now: float, retention_ms: int) -> int:
        self._last_sweep = now
        removed = 0
        for identifier in list(self._calls):
            calls = self._calls[identifier]
            horizon = max(retention_ms, self._windows.get(identifier, 0))
            if not calls or calls[-1] <= now - horizon:
                del self._calls[identifier]
                self._windows.pop(identifier, None)
                removed += 1
        return removed


__all__ = ["SlidingWindowRateLimiter"]
