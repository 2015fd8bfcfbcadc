from dataclasses import dataclass
from typing import Protocol


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    retry_after: int = 0


class RateLimiter(Protocol):
    def hit(self, key: str, max_requests: int, window_seconds: int) -> RateLimitResult:
        """Record one event for key within a sliding window, unless the limit is already reached."""
        ...

    def reset(self, key: str) -> None:
        ...
