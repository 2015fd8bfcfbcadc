import pytest

from app.infrastructure.rate_limit.memory_rate_limiter import InMemoryRateLimiter


def test_memory_rate_limiter_allows_then_blocks():
    rl = InMemoryRateLimiter()
    key = "k1"
    assert rl.hit(key, max_requests=2, window_seconds=60).allowed is True
    assert rl.hit(key, max_requests=2, window_seconds=60).allowed is True
    denied = rl.hit(key, max_requests=2, window_seconds=60)
    assert denied.allowed is False
    assert denied.remaining == 0
    assert 1 <= denied.retry_after <= 60


def test_memory_rate_limiter_keys_are_independent_and_resettable():
    rl = InMemoryRateLimiter()
    assert rl.hit("a", 1, 60).allowed
    assert not rl.hit("a", 1, 60).allowed
    assert rl.hit("b", 1, 60).allowed
    rl.reset("a")
    assert rl.hit("a", 1, 60).allowed


def test_memory_rate_limiter_window_slides(monkeypatch):
    from app.infrastructure.rate_limit import memory_rate_limiter as mod

    now = [1000.0]
    monkeypatch.setattr(mod, "time", type("Clock", (), {"time": staticmethod(lambda: now[0])}))
    rl = InMemoryRateLimiter()
    assert rl.hit("k", 1, 10).allowed
    now[0] += 5
    assert rl.hit("k", 1, 10).retry_after == 5
    now[0] += 5.5
    assert rl.hit("k", 1, 10).allowed


def test_memory_rate_limiter_drops_idle_keys(monkeypatch):
    from app.infrastructure.rate_limit import memory_rate_limiter as mod

    now = [1000.0]
    monkeypatch.setattr(mod, "time", type("Clock", (), {"time": staticmethod(lambda: now[0])}))
    rl = InMemoryRateLimiter()
    for i in range(50):
        rl.hit(f"otp:ip:10.0.0.{i}", 5, 30)
    rl.hit("otp:phone:long", 5, 3600)
    assert rl.tracked_keys() == 51

    now[0] += mod.SWEEP_INTERVAL + 1
    rl.hit("fresh", 5, 30)
    assert rl.tracked_keys() == 2
    assert rl.hit("otp:phone:long", 2, 3600).remaining == 0


class FakePipe:
    def __init__(self, client):
        self.client = client
        self.ops = []

    def zremrangebyscore(self, k, lo, hi):
        self.ops.append(lambda: self.client.zremrangebyscore(k, lo, hi))
        return self

    def zadd(self, k, mapping):
        self.ops.append(lambda: self.client.zadd(k, mapping))
        return self

    def zcard(self, k):
        self.ops.append(lambda: len(self.client.store.get(k, {})))
        return self

    def zrange(self, k, start, end, withscores=False):
        def op():
            items = sorted(self.client.store.get(k, {}).items(), key=lambda kv: kv[1])
            return [(m.encode(), float(s)) for m, s in items[start:end + 1]]
        self.ops.append(op)
        return self

    def pexpire(self, k, ms):
        self.ops.append(lambda: True)
        return self

    def execute(self):
        return [op() for op in self.ops]


class FakeRedis:
    def __init__(self):
        self.store = {}

    def pipeline(self, transaction=True):
        return FakePipe(self)

    def zremrangebyscore(self, k, lo, hi):
        zset = self.store.get(k, {})
        for m in [m for m, s in zset.items() if lo <= s <= hi]:
            del zset[m]

    def zadd(self, k, mapping):
        self.store.setdefault(k, {}).update(mapping)

    def zrem(self, k, member):
        self.store.get(k, {}).pop(member, None)

    def scan_iter(self, match):
        prefix = match.rstrip("*")
        return [k for k in list(self.store) if k.startswith(prefix)]

    def delete(self, k):
        self.store.pop(k, None)


def test_redis_rate_limiter_with_fake():
    pytest.importorskip("redis")
    from app.infrastructure.rate_limit.redis_rate_limiter import RedisRateLimiter

    fake = FakeRedis()
    rl = RedisRateLimiter(url="redis://fake", client=fake)

    assert rl.hit("k1", 2, 60).allowed is True
    assert rl.hit("k1", 2, 60).remaining == 0
    denied = rl.hit("k1", 2, 60)
    assert denied.allowed is False
    assert 1 <= denied.retry_after <= 60
    # A denied attempt does not occupy a slot
    assert len(fake.store["rl:k1:60"]) == 2

    rl.reset("k1")
    assert rl.hit("k1", 2, 60).allowed is True
