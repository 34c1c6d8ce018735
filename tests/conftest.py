import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from doorstep.core.db import close_db, init_db
from doorstep.events.dispatch import SideEffectDispatcher
from doorstep.jobs.lock import RELEASE_LOCK_LUA, REFRESH_LOCK_LUA
from doorstep.realtime.bus import NotificationBus
from doorstep.realtime.registry import ConnectionRegistry
from doorstep.services.booking_service import BookingService


class FakePubSub:
    """Pub/sub double; `listen()` raises a connection error for its first `failures` calls."""

    def __init__(self, failures=0):
        self.failures = failures
        self.listen_calls = 0
        self.subscribed = []
        self.messages = asyncio.Queue()

    async def subscribe(self, channel):
        self.subscribed.append(channel)

    async def unsubscribe(self, channel):
        pass

    async def aclose(self):
        pass

    async def listen(self):
        self.listen_calls += 1
        if self.listen_calls <= self.failures:
            raise RedisConnectionError("connection reset by peer")
        while True:
            data = await self.messages.get()
            yield {"type": "message", "data": data}


class FakeRedis:
    """In-memory stand-in for the handful of Redis commands the lock and relay use."""

    def __init__(self, listen_failures=0):
        self.values = {}
        self.ttls = {}
        self.published = []
        self.pubsub_double = FakePubSub(listen_failures)

    def pubsub(self, ignore_subscribe_messages=False):
        return self.pubsub_double

    async def set(self, key, value, nx=False, px=None):
        if nx and key in self.values:
            return None
        self.values[key] = value
        self.ttls[key] = px
        return True

    async def get(self, key):
        return self.values.get(key)

    async def eval(self, script, numkeys, key, token, *args):
        if self.values.get(key) != token:
            return 0
        if script == RELEASE_LOCK_LUA:
            del self.values[key]
            self.ttls.pop(key, None)
            return 1
        if script == REFRESH_LOCK_LUA:
            self.ttls[key] = int(args[0])
            return 1
        raise AssertionError("unexpected script")

    async def publish(self, channel, message):
        self.published.append((channel, message))
        if channel in self.pubsub_double.subscribed:
            self.pubsub_double.messages.put_nowait(message)
        return 1


class BrokenRedis(FakeRedis):
    async def set(self, key, value, nx=False, px=None):
        raise RedisConnectionError("connection refused")

    async def publish(self, channel, message):
        raise RedisConnectionError("connection refused")


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def broken_redis():
    return BrokenRedis()


@pytest.fixture
def flaky_redis():
    """Redis whose first pub/sub read fails with a connection error."""
    return FakeRedis(listen_failures=1)


@pytest.fixture
async def db():
    """Fresh in-memory SQLite database per test."""
    await init_db("sqlite://:memory:")
    yield
    await close_db()


@pytest.fixture
def registry():
    return ConnectionRegistry(max_per_user=5, max_total=100, heartbeat_seconds=0.05, queue_size=10)


@pytest.fixture
def dispatcher():
    return SideEffectDispatcher()


@pytest.fixture
def bus(registry):
    return NotificationBus(registry)


@pytest.fixture
def service(bus, dispatcher):
    return BookingService(bus, dispatcher, service_timezone="UTC")
