from __future__ import annotations

import asyncio
from types import SimpleNamespace

from redis.exceptions import ConnectionError as RedisConnectionError

from plexus.config import Settings
from plexus.governance.throttle import (
    MemoryWindowStore,
    OperationLimit,
    RedisWindowStore,
    RequestThrottle,
    limits_from_settings,
)
from plexus.models.schemas import OperationClass


def make_throttle(clock, **kwargs) -> RequestThrottle:
    return RequestThrottle(limits_from_settings(Settings(_env_file=None)), clock=clock, **kwargs)


def test_ten_calls_count_down_then_deny(clock):
    throttle = make_throttle(clock)

    async def scenario():
        return [await throttle.check_limit("user-1", "generation", 300, 10) for _ in range(11)]

    decisions = asyncio.run(scenario())
    assert [d.allowed for d in decisions[:10]] == [True] * 10
    assert [d.remaining for d in decisions[:10]] == [9, 8, 7, 6, 5, 4, 3, 2, 1, 0]
    assert decisions[10].allowed is False
    assert decisions[10].remaining == 0
    assert decisions[10].reset_time == clock.now + 300


def test_window_resets_after_expiry(clock):
    throttle = make_throttle(clock)

    async def scenario():
        for _ in range(3):
            await throttle.check_limit("user-1", "generation", 60, 3)
        denied = await throttle.check_limit("user-1", "generation", 60, 3)
        clock.advance(60)
        return denied, await throttle.check_limit("user-1", "generation", 60, 3)

    denied, fresh = asyncio.run(scenario())
    assert denied.allowed is False
    assert fresh.allowed is True
    assert fresh.remaining == 2
    assert throttle.store.window("user-1", "generation").count == 1


def test_operation_classes_do_not_share_counters(clock):
    throttle = make_throttle(clock)

    async def scenario():
        first = await throttle.check_limit("user-1", OperationClass.GENERATION, 300, 1)
        blocked = await throttle.check_limit("user-1", OperationClass.GENERATION, 300, 1)
        chat = await throttle.check_limit("user-1", OperationClass.CHAT_REPLY, 300, 1)
        other_user = await throttle.check_limit("user-2", OperationClass.GENERATION, 300, 1)
        return first, blocked, chat, other_user

    first, blocked, chat, other_user = asyncio.run(scenario())
    assert first.allowed and chat.allowed and other_user.allowed
    assert blocked.allowed is False


def test_check_uses_configured_limit(clock):
    throttle = RequestThrottle({OperationClass.GUIDANCE: OperationLimit(window_seconds=10, max_requests=2)}, clock=clock)

    async def scenario():
        return [await throttle.check("user-1", OperationClass.GUIDANCE) for _ in range(3)]

    decisions = asyncio.run(scenario())
    assert [d.allowed for d in decisions] == [True, True, False]
    assert decisions[0].reset_time == clock.now + 10


def test_retry_after_rounds_up_to_whole_seconds(clock):
    throttle = make_throttle(clock)

    async def scenario():
        await throttle.check_limit("user-1", "guidance", 300, 1)
        clock.advance(0.5)
        return await throttle.check_limit("user-1", "guidance", 300, 1)

    denied = asyncio.run(scenario())
    assert denied.retry_after(clock.now) == 300


def test_sweep_drops_only_expired_windows(clock):
    throttle = make_throttle(clock)

    async def scenario():
        await throttle.check_limit("user-1", "generation", 60, 5)
        await throttle.check_limit("user-2", "chat_reply", 60, 5)
        await throttle.check_limit("user-3", "generation", 600, 5)
        clock.advance(61)
        return await throttle.sweep()

    removed = asyncio.run(scenario())
    assert removed == 2
    assert len(throttle.store) == 1
    assert throttle.store.window("user-3", "generation") is not None


def test_background_sweep_runs_until_stopped(clock):
    throttle = make_throttle(clock, sweep_interval_seconds=0.01)

    async def scenario():
        await throttle.check_limit("user-1", "generation", 60, 5)
        throttle.start()
        assert throttle.running
        clock.advance(120)
        await asyncio.sleep(0.05)
        remaining = len(throttle.store)
        await throttle.stop()
        return remaining

    assert asyncio.run(scenario()) == 0
    assert throttle.running is False


def test_redis_store_falls_back_to_memory_when_unreachable(clock):
    fallback = MemoryWindowStore()
    store = RedisWindowStore("redis://127.0.0.1:1/0", fallback=fallback)
    throttle = RequestThrottle({}, store, clock=clock)

    async def scenario():
        first = await throttle.check_limit("user-1", "generation", 300, 1)
        second = await throttle.check_limit("user-1", "generation", 300, 1)
        await throttle.stop()
        return first, second

    first, second = asyncio.run(scenario())
    assert first.allowed is True
    assert second.allowed is False


class StubPipeline:
    def __init__(self, redis):
        self.redis = redis
        self.ops = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    def incr(self, key):
        self.ops.append(('incr', key))

    def pttl(self, key):
        self.ops.append(('pttl', key))

    async def execute(self):
        results = []
        for op, key in self.ops:
            if op == 'incr':
                self.redis.counts[key] = self.redis.counts.get(key, 0) + 1
                results.append(self.redis.counts[key])
            else:
                results.append(self.redis.ttls.get(key, -1))
        self.ops = []
        return results


class StubRedis:
    def __init__(self, fail_ping=False):
        self.counts = {}
        self.ttls = {}
        self.fail_ping = fail_ping
        self.closed = False

    def pipeline(self, transaction=True):
        return StubPipeline(self)

    async def pexpire(self, key, milliseconds):
        self.ttls[key] = milliseconds

    async def ping(self):
        if self.fail_ping:
            raise RedisConnectionError('connection refused')
        return True

    async def aclose(self):
        self.closed = True


def test_redis_store_counts_shared_window(clock):
    redis = StubRedis()
    throttle = RequestThrottle({}, RedisWindowStore('redis://stub/0', client=redis), clock=clock)

    async def scenario():
        return [await throttle.check_limit('user-1', 'generation', 300, 2) for _ in range(3)]

    decisions = asyncio.run(scenario())
    assert [d.allowed for d in decisions] == [True, True, False]
    assert [d.remaining for d in decisions] == [1, 0, 0]
    assert all(d.reset_time == clock.now + 300 for d in decisions)
    assert redis.ttls['throttle:generation:user-1'] == 300_000
    assert redis.counts['throttle:generation:user-1'] == 3


def test_redis_client_is_closed_when_ping_fails(clock, monkeypatch):
    redis = StubRedis(fail_ping=True)
    monkeypatch.setattr(
        'plexus.governance.throttle.Redis',
        SimpleNamespace(from_url=lambda *args, **kwargs: redis),
    )
    store = RedisWindowStore('redis://stub/0')
    throttle = RequestThrottle({}, store, clock=clock)

    decision = asyncio.run(throttle.check_limit('user-1', 'generation', 300, 1))
    assert decision.allowed is True
    assert redis.closed is True
    assert redis.counts == {}
