import math
import time
import uuid

import redis

from ...application.ports.rate_limiter import RateLimiter, RateLimitResult


class RedisRateLimiter(RateLimiter):
    """Sliding-window log in a Redis sorted set, shared by every replica.

    Prune, add and count run in one MULTI/EXEC transaction so concurrent
    callers cannot both observe room for the last slot.
    """

    def __init__(self, url: str, prefix: str = "rl:", client=None) -> None:
        self.client = client or redis.Redis.from_url(url)
        self.prefix = prefix

    def hit(self, key: str, max_requests: int, window_seconds: int) -> RateLimitResult:
        rk = f"{self.prefix}{key}:{window_seconds}"
        now_ms = int(time.time() * 1000)
        window_ms = window_seconds * 1000
        member = f"{now_ms}:{uuid.uuid4().hex}"

        pipe = self.client.pipeline(transaction=True)
        pipe.zremrangebyscore(rk, 0, now_ms - window_ms)
        pipe.zadd(rk, {member: now_ms})
        pipe.zcard(rk)
        pipe.zrange(rk, 0, 0, withscores=True)
        pipe.pexpire(rk, window_ms)
        _, _, count, oldest, _ = pipe.execute()

        count = int(count)
        if count <= max_requests:
            return RateLimitResult(allowed=True, remaining=max_requests - count)

        # Over the limit: this attempt does not occupy a slot
        self.client.zrem(rk, member)
        oldest_ms = int(oldest[0][1]) if oldest else now_ms
        retry_after = math.ceil((oldest_ms + window_ms - now_ms) / 1000)
        return RateLimitResult(allowed=False, remaining=0, retry_after=max(retry_after, 1))

    def reset(self, key: str) -> None:
        for rk in self.client.scan_iter(match=f"{self.prefix}{key}:*"):
            self.client.delete(rk)
