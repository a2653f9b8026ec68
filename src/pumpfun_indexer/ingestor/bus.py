"""Event bus carrying signature envelopes from the ingester to workers.

Two interchangeable backends implement the same ``EventBus`` protocol:

- ``RedisEventBus``: pub/sub on a single Redis channel, for running the
  ingester and the workers as separate processes.
- ``InMemoryEventBus``: a bounded ``asyncio.Queue`` for single-process
  deployments. When full, the oldest envelope is dropped.

Delivery is at-least-once at best; downstream processing is idempotent.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Protocol, cast

from redis.asyncio import Redis
from redis.exceptions import RedisError

from pumpfun_indexer.errors import DecodeError, TransportError
from pumpfun_indexer.ingestor.models import SignatureEnvelope

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL = "solana:transactions"
DEFAULT_CAPACITY = 10_000


class EventBus(Protocol):
    """Single-topic channel of signature envelopes."""

    async def publish(self, envelope: SignatureEnvelope) -> None: ...

    def subscribe(self) -> AsyncIterator[SignatureEnvelope]: ...

    async def close(self) -> None: ...


class RedisEventBus:
    """Redis pub/sub event bus.

    Example:
        ```python
        redis = Redis.from_url("redis://localhost:6379")
        bus = RedisEventBus(redis, channel="solana:transactions")
        await bus.publish(SignatureEnvelope(signature="5xyz..."))
        ```
    """

    def __init__(self, redis: Redis, *, channel: str = DEFAULT_CHANNEL) -> None:
        self._redis = redis
        self._channel = channel
        self._closed = asyncio.Event()

    @property
    def channel(self) -> str:
        return self._channel

    async def publish(self, envelope: SignatureEnvelope) -> None:
        """Publish an envelope.

        Raises:
            TransportError: If Redis rejects the publish.
        """
        try:
            receivers = await self._redis.publish(self._channel, envelope.to_json())
        except RedisError as e:
            raise TransportError(f"Failed to publish {envelope.signature}: {e}") from e
        if receivers == 0:
            logger.debug("No subscribers on %s for %s", self._channel, envelope.signature)

    async def subscribe(self) -> AsyncIterator[SignatureEnvelope]:
        """Yield envelopes published on the channel until the bus is closed."""
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(self._channel)
        logger.info("Subscribed to Redis channel %s", self._channel)
        try:
            while not self._closed.is_set():
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message is None or message.get("type") != "message":
                    continue
                try:
                    yield SignatureEnvelope.from_json(message["data"])
                except DecodeError as e:
                    logger.warning("Skipping malformed bus message: %s", e)
        finally:
            await pubsub.unsubscribe(self._channel)
            await pubsub.aclose()

    async def close(self) -> None:
        self._closed.set()


_CLOSED = object()


class InMemoryEventBus:
    """Bounded in-process event bus with a drop-oldest full policy."""

    def __init__(self, *, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=capacity + 1)
        self._capacity = capacity
        self._closed = False
        self.dropped = 0

    @property
    def size(self) -> int:
        return self._queue.qsize()

    async def publish(self, envelope: SignatureEnvelope) -> None:
        if self._closed:
            raise TransportError("Event bus is closed")
        if self._queue.qsize() >= self._capacity:
            dropped = self._queue.get_nowait()
            self.dropped += 1
            if isinstance(dropped, SignatureEnvelope):
                logger.warning(
                    "Event bus full (%d), dropped oldest envelope %s",
                    self._capacity,
                    dropped.signature,
                )
        self._queue.put_nowait(envelope)

    async def subscribe(self) -> AsyncIterator[SignatureEnvelope]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                # Leave the sentinel for any other subscriber.
                self._queue.put_nowait(_CLOSED)
                return
            yield cast(SignatureEnvelope, item)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # One slot is reserved so the sentinel always fits.
        self._queue.put_nowait(_CLOSED)
