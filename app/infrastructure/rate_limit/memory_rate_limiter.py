import math
import threading
import time
from collections import deque
from typing import Deque, Dict

from ...application.ports.rate_limiter import RateLimiter, RateLimitResult

# Seconds between sweeps of keys whose window has fully elapsed
SWEEP_INTERVAL = 60.0


class InMemoryRateLimiter(RateLimiter):
    """Sliding-window limiter for a single process (development and tests).

    Replicas do not share this state; deployments with more than one
    instance use RedisRateLimiter.
    """

    def __init__(self) -> None:
        self._store: Dict[str, Deque[float]] = {}
        self._windows: Dict[str, int] = {}
        self._lock = threading.Lock()
        self._last_sweep = time.time()

    def hit(self, key: str, max_requests: int, window_seconds: int) -> RateLimitResult:
        now = time.time()
        window_start = now - window_seconds
        with self._lock:
            self._sweep(now)
            times = self._store.setdefault(key, deque())
            self._windows[key] = window_seconds
            # prune
            while times and times[0] <= window_start:
                times.popleft()
            if len(times) >= max_requests:
                if not times:
                    self._forget(key)
                    return RateLimitResult(allowed=False, remaining=0, retry_after=max(window_seconds, 1))
                retry_after = math.ceil(times[0] + window_seconds - now)
                return RateLimitResult(allowed=False, remaining=0, retry_after=max(retry_after, 1))
            times.append(now)
            return RateLimitResult(allowed=True, remaining=max_requests - len(times))

    def reset(self, key: str) -> None:
        with self._lock:
            self._forget(key)

    def tracked_keys(self) -> int:
        return len(self._store)

    def _forget(self, key: str) -> None:
        self._store.pop(key, None)
        self._windows.pop(key, None)

    def _sweep(self, now: float) -> None:
        if now - self._last_sweep < SWEEP_INTERVAL:
            return
        self._last_sweep = now
        stale = [
            key for key, times in self._store.items()
            if not times or times[-1] <= now - self._windows.get(key, 0)
        ]
        for key in stale:
            self._forget(key)
