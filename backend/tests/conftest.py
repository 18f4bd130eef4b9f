"""
Pytest configuration and fixtures for relay tests.
"""

import asyncio
import time
from unittest.mock import AsyncMock

import pytest
import redis.exceptions
from fastapi.testclient import TestClient

from shared.config.settings import Settings
from shared.infrastructure.events import BrokerPool
from ws_gateway.main import create_app


# =============================================================================
# Fake Redis building blocks for unit tests
# =============================================================================


class FakePubSub:
    """
    Scripted pubsub: yields the given raw messages (or raises them if they are
    exceptions), then blocks until cancelled, or raises ``then_raise``.
    """

    def __init__(self, messages=(), then_raise=None, subscribe_error=None):
        self._messages = list(messages)
        self._then_raise = then_raise
        self.subscribe = AsyncMock(side_effect=subscribe_error or self._subscribe)
        self.aclose = AsyncMock()
        self.subscribed = asyncio.Event()

    async def _subscribe(self, *channels):
        self.subscribed.set()

    async def get_message(self, timeout=None):
        await asyncio.sleep(0)
        if self._messages:
            item = self._messages.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        if self._then_raise is not None:
            raise self._then_raise
        await asyncio.Event().wait()


class FakeClient:
    """Stands in for a redis.asyncio.Redis client."""

    def __init__(self, fail_connect=False, pubsub=None, publish_result=1):
        error = redis.exceptions.ConnectionError("Connection refused") if fail_connect else None
        self.ping = AsyncMock(side_effect=error, return_value=True)
        self.aclose = AsyncMock()
        self.publish = AsyncMock(return_value=publish_result)
        self._pubsub = pubsub or FakePubSub()

    def pubsub(self):
        return self._pubsub


class FakeClientFactory:
    """Callable client factory that records every client it creates."""

    def __init__(self, **client_kwargs):
        self.client_kwargs = client_kwargs
        self.created: list[FakeClient] = []

    def __call__(self):
        client = FakeClient(**self.client_kwargs)
        self.created.append(client)
        return client


class InMemoryBroker:
    """
    Process-local pub/sub broker for end-to-end tests.

    Clients from ``client_factory`` share this broker: PUBLISH fans out to
    every subscription on the channel, in publish order.
    """

    def __init__(self):
        self._subscriptions: set["InMemoryPubSub"] = set()
        self.published: list[tuple[str, str]] = []

    def client_factory(self):
        return InMemoryClient(self)

    async def publish(self, channel, payload):
        self.published.append((channel, payload))
        receivers = [sub for sub in self._subscriptions if channel in sub.channels]
        for sub in receivers:
            sub.deliver(data_message(payload, channel))
        return len(receivers)


class InMemoryClient:
    def __init__(self, broker):
        self._broker = broker
        self.ping = AsyncMock(return_value=True)
        self.aclose = AsyncMock()

    async def publish(self, channel, payload):
        return await self._broker.publish(channel, payload)

    def pubsub(self):
        return InMemoryPubSub(self._broker)


class InMemoryPubSub:
    def __init__(self, broker):
        self._broker = broker
        self._queue: asyncio.Queue = asyncio.Queue()
        self.channels: set[str] = set()

    def deliver(self, raw):
        self._queue.put_nowait(raw)

    async def subscribe(self, *channels):
        for channel in channels:
            self.channels.add(channel)
            self._broker._subscriptions.add(self)
            self.deliver(subscribe_ack(channel, len(self.channels)))

    async def get_message(self, timeout=None):
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    async def aclose(self):
        self._broker._subscriptions.discard(self)
        self.channels.clear()


def data_message(payload, channel="main"):
    return {"type": "message", "pattern": None, "channel": channel, "data": payload}


def subscribe_ack(channel="main", count=1):
    return {"type": "subscribe", "pattern": None, "channel": channel, "data": count}


@pytest.fixture
def client_factory():
    return FakeClientFactory()


@pytest.fixture
def pool(client_factory):
    return BrokerPool(client_factory, max_active=4, idle_timeout=60.0)


# =============================================================================
# Application fixtures (in-memory broker)
# =============================================================================


@pytest.fixture
def relay_settings():
    return Settings(
        redis_url="redis://fake:6379",
        ws_bridge_poll_interval=0.05,
        ws_bridge_shutdown_timeout=2.0,
        environment="test",
    )


@pytest.fixture
def broker():
    return InMemoryBroker()


@pytest.fixture
def app(relay_settings, broker):
    return create_app(relay_settings, client_factory=broker.client_factory)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


def wait_until(predicate, timeout=5.0, interval=0.02):
    """Poll ``predicate`` until it returns truthy or ``timeout`` elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return False
