"""Tests for the Redis pub/sub event source."""

from __future__ import annotations

import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from kubeban.broadcaster.source import RedisEventSource, build_redis_client
from kubeban.models.config import RedisConfig


class _FakePubSub:
    """Scripted pubsub: ``listen`` replays *frames*, then raises *error* if set."""

    def __init__(
        self,
        frames: list[dict],
        error: Exception | None = None,
        ack: bool = True,
        subscribe_error: Exception | None = None,
    ) -> None:
        self._frames = frames
        self._subscribe_error = subscribe_error
        self._error = error
        self._ack = ack
        self.subscribed_to: list[str] = []
        self.unsubscribed_from: list[str] = []
        self.closed = False

    async def subscribe(self, channel: str) -> None:
        if self._subscribe_error is not None:
            raise self._subscribe_error
        self.subscribed_to.append(channel)

    async def get_message(self, timeout: float = 0.0) -> dict | None:
        if self._ack:
            return {"type": "subscribe", "channel": self.subscribed_to[-1], "data": 1}
        return None

    async def listen(self):
        for frame in self._frames:
            yield frame
        if self._error is not None:
            raise self._error

    async def unsubscribe(self, channel: str) -> None:
        self.unsubscribed_from.append(channel)

    async def aclose(self) -> None:
        self.closed = True


class _FakeRedis:
    def __init__(self, pubsubs: list[_FakePubSub]) -> None:
        self._pubsubs = list(pubsubs)
        self.created: list[_FakePubSub] = []

    def pubsub(self) -> _FakePubSub:
        pubsub = self._pubsubs.pop(0)
        self.created.append(pubsub)
        return pubsub


def _msg(data: str | bytes) -> dict:
    return {"type": "message", "channel": "cleanCache", "data": data}


async def _take(source: RedisEventSource, count: int) -> list[str]:
    payloads: list[str] = []
    async for payload in source:
        payloads.append(payload)
        if len(payloads) == count:
            await source.close()
    return payloads


class TestSubscribe:
    async def test_waits_for_ack(self) -> None:
        pubsub = _FakePubSub([])
        source = RedisEventSource(_FakeRedis([pubsub]), "cleanCache")
        assert not source.subscribed
        await source.subscribe()
        assert source.subscribed
        assert pubsub.subscribed_to == ["cleanCache"]

    async def test_missing_ack_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("kubeban.broadcaster.source._SUBSCRIBE_ACK_POLLS", 2)
        pubsub = _FakePubSub([], ack=False)
        source = RedisEventSource(_FakeRedis([pubsub]), "cleanCache")
        with pytest.raises(RedisConnectionError):
            await source.subscribe()
        assert pubsub.closed
        assert not source.subscribed

    async def test_subscribe_error_closes_pubsub(self) -> None:
        pubsub = _FakePubSub([], subscribe_error=RedisConnectionError("Connection refused"))
        source = RedisEventSource(_FakeRedis([pubsub]), "cleanCache")
        with pytest.raises(RedisConnectionError):
            await source.subscribe()
        assert pubsub.closed
        assert not source.subscribed


class TestIteration:
    async def test_failed_resubscribe_attempts_are_closed(self) -> None:
        refused = [_FakePubSub([], subscribe_error=RedisConnectionError("Connection refused")) for _ in range(2)]
        healthy = _FakePubSub([_msg("web")])
        source = RedisEventSource(_FakeRedis([*refused, healthy]), "cleanCache", reconnect_delay=0)

        assert await asyncio.wait_for(_take(source, 1), timeout=2.0) == ["web"]
        assert all(p.closed for p in refused)

    async def test_yields_only_message_payloads(self) -> None:
        frames = [
            {"type": "subscribe", "channel": "cleanCache", "data": 1},
            _msg("billing-api"),
            {"type": "pong", "data": None},
            _msg(b"configReload"),
        ]
        source = RedisEventSource(_FakeRedis([_FakePubSub(frames)]), "cleanCache")
        assert await asyncio.wait_for(_take(source, 2), timeout=2.0) == ["billing-api", "configReload"]

    async def test_resubscribes_after_connection_loss(self) -> None:
        first = _FakePubSub([_msg("web")], error=RedisConnectionError("Connection reset by peer"))
        second = _FakePubSub([_msg("api")])
        redis_client = _FakeRedis([first, second])
        source = RedisEventSource(redis_client, "cleanCache", reconnect_delay=0)

        assert await asyncio.wait_for(_take(source, 2), timeout=2.0) == ["web", "api"]
        assert first.closed
        assert len(redis_client.created) == 2

    async def test_close_unsubscribes(self) -> None:
        pubsub = _FakePubSub([_msg("web")])
        source = RedisEventSource(_FakeRedis([pubsub]), "cleanCache")
        await asyncio.wait_for(_take(source, 1), timeout=2.0)
        assert pubsub.unsubscribed_from == ["cleanCache"]
        assert pubsub.closed
        assert not source.subscribed


class TestBuildRedisClient:
    def test_connection_parameters(self) -> None:
        client = build_redis_client(RedisConfig(host="redis.infra", port=6380, password="pw", db=2))
        kwargs = client.connection_pool.connection_kwargs
        assert kwargs["host"] == "redis.infra"
        assert kwargs["port"] == 6380
        assert kwargs["password"] == "pw"
        assert kwargs["db"] == 2
