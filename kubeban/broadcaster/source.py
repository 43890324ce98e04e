"""Redis pub/sub event source.

Yields raw string payloads from one channel, in delivery order. The
subscription survives Redis restarts: a dropped connection is logged and
re-established after a fixed delay without ending iteration.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

import redis.asyncio as redis
import structlog
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from kubeban.models.config import RedisConfig

_log = structlog.get_logger(component="broadcaster.source")

_SUBSCRIBE_ACK_POLLS = 10


def build_redis_client(config: RedisConfig) -> redis.Redis:
    return redis.Redis(
        host=config.host,
        port=config.port,
        password=config.password or None,
        db=config.db,
        decode_responses=True,
    )


class RedisEventSource:
    """Async iterator over the payloads published on *channel*.

    Args:
        client:          ``redis.asyncio.Redis`` (process-wide).
        channel:         Channel name to subscribe to.
        reconnect_delay: Seconds to wait before resubscribing after a
                         connection failure.
    """

    def __init__(self, client: Any, channel: str, reconnect_delay: float = 5.0) -> None:
        self._client = client
        self._channel = channel
        self._reconnect_delay = reconnect_delay
        self._pubsub: Any = None
        self._subscribed = False
        self._closed = False

    @property
    def channel(self) -> str:
        return self._channel

    @property
    def subscribed(self) -> bool:
        return self._subscribed

    async def subscribe(self) -> None:
        """Subscribe and wait for the server's confirmation."""
        pubsub = self._client.pubsub()
        try:
            await pubsub.subscribe(self._channel)
            # First frame on a fresh subscription is the subscribe ack
            for _ in range(_SUBSCRIBE_ACK_POLLS):
                message = await pubsub.get_message(timeout=1.0)
                if message is not None and message.get("type") == "subscribe":
                    break
            else:
                raise RedisConnectionError(f"no subscribe confirmation for channel {self._channel!r}")
        except BaseException:
            await pubsub.aclose()
            raise
        self._pubsub = pubsub
        self._subscribed = True
        _log.info("subscribed", channel=self._channel)

    async def __aiter__(self) -> AsyncIterator[str]:
        while not self._closed:
            try:
                if self._pubsub is None:
                    await self.subscribe()
                async for message in self._pubsub.listen():
                    if message.get("type") != "message":
                        continue
                    data = message.get("data")
                    if isinstance(data, bytes):
                        data = data.decode("utf-8", errors="replace")
                    yield str(data)
                    if self._closed:
                        return
                if self._closed:
                    return
                # listen() ends when the connection is dropped without an error
                raise RedisConnectionError("subscription ended")
            except (RedisConnectionError, RedisTimeoutError, OSError) as exc:
                if self._closed:
                    return
                _log.warning(
                    "subscription_lost",
                    channel=self._channel,
                    error=str(exc),
                    retry_in=self._reconnect_delay,
                )
                await self._reset()
                await asyncio.sleep(self._reconnect_delay)

    async def _reset(self) -> None:
        self._subscribed = False
        pubsub, self._pubsub = self._pubsub, None
        if pubsub is None:
            return
        try:
            await pubsub.aclose()
        except (RedisConnectionError, OSError) as exc:
            _log.debug("pubsub close raised (non-fatal)", error=str(exc))

    async def close(self) -> None:
        """Unsubscribe and end iteration."""
        self._closed = True
        if self._pubsub is not None:
            try:
                await self._pubsub.unsubscribe(self._channel)
            except (RedisConnectionError, OSError) as exc:
                _log.debug("unsubscribe raised (non-fatal)", error=str(exc))
        await self._reset()
