"""
Fan-out channels carrying notification change envelopes between bus instances.

An envelope is a small JSON dict ``{type, origin, ...}``. Receivers do not
apply envelopes incrementally; they reload the notification list from
storage, which stays the source of truth.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

import redis.asyncio as redis
from redis.asyncio import ConnectionPool, Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError, RedisError, TimeoutError

from printease.core.errors import StorageError
from printease.core.logging import get_logger

logger = get_logger(__name__)

Envelope = dict[str, Any]
EnvelopeHandler = Callable[[Envelope], Awaitable[None]]


class BroadcastChannel(ABC):
    """Publish/subscribe topic shared by every bus instance."""

    @abstractmethod
    async def start(self, handler: EnvelopeHandler) -> None:
        """Begin delivering envelopes published by other instances to ``handler``."""

    @abstractmethod
    async def publish(self, envelope: Envelope) -> None:
        """Send an envelope to every other instance."""

    @abstractmethod
    async def close(self) -> None:
        """Stop delivery and release resources."""


class LocalBroadcastHub:
    """
    In-process hub connecting several channels.

    Handlers are awaited directly during ``publish`` so that delivery is
    complete when the publisher resumes.
    """

    def __init__(self) -> None:
        self._channels: list["LocalBroadcastChannel"] = []

    def channel(self) -> "LocalBroadcastChannel":
        return LocalBroadcastChannel(self)

    def attach(self, channel: "LocalBroadcastChannel") -> None:
        if channel not in self._channels:
            self._channels.append(channel)

    def detach(self, channel: "LocalBroadcastChannel") -> None:
        if channel in self._channels:
            self._channels.remove(channel)

    async def deliver(self, sender: "LocalBroadcastChannel", envelope: Envelope) -> None:
        for channel in list(self._channels):
            if channel is sender or channel.handler is None:
                continue
            try:
                await channel.handler(dict(envelope))
            except Exception as e:
                logger.error(
                    "Broadcast handler failed",
                    envelope_type=envelope.get("type"),
                    error=str(e),
                    error_type=type(e).__name__,
                )


class LocalBroadcastChannel(BroadcastChannel):
    """Channel attached to a ``LocalBroadcastHub``."""

    def __init__(self, hub: LocalBroadcastHub):
        self.hub = hub
        self.handler: Optional[EnvelopeHandler] = None

    async def start(self, handler: EnvelopeHandler) -> None:
        self.handler = handler
        self.hub.attach(self)

    async def publish(self, envelope: Envelope) -> None:
        await self.hub.deliver(self, envelope)

    async def close(self) -> None:
        self.hub.detach(self)
        self.handler = None


class RedisBroadcastChannel(BroadcastChannel):
    """
    Channel backed by a Redis pub/sub topic.

    A background task listens on the topic and hands decoded envelopes to
    the handler. Envelopes published by this process come back through
    Redis too; the bus ignores them by origin.
    """

    def __init__(
        self,
        url: str,
        topic: str,
        client: Optional[Redis] = None,
    ):
        self.url = url
        self.topic = topic
        self._client = client
        self._pool: Optional[ConnectionPool] = None
        self._pubsub: Optional[Any] = None
        self._listener: Optional[asyncio.Task] = None
        self._handler: Optional[EnvelopeHandler] = None

    async def start(self, handler: EnvelopeHandler) -> None:
        """
        Connect and subscribe to the topic.

        Raises:
            StorageError: If Redis cannot be reached
        """
        self._handler = handler
        try:
            if self._client is None:
                self._pool = ConnectionPool.from_url(
                    self.url,
                    retry=Retry(ExponentialBackoff(base=0.1, cap=2.0), retries=3),
                    decode_responses=True,
                )
                self._client = redis.Redis(connection_pool=self._pool)
            await self._client.ping()
            self._pubsub = self._client.pubsub(ignore_subscribe_messages=True)
            await self._pubsub.subscribe(self.topic)
        except (ConnectionError, TimeoutError) as e:
            logger.error("Failed to subscribe to notification topic", topic=self.topic, error=str(e))
            raise StorageError(
                "Notification channel unavailable",
                topic=self.topic,
                error=str(e),
            ) from e

        self._listener = asyncio.create_task(self._listen())
        logger.info("Subscribed to notification topic", topic=self.topic)

    async def _listen(self) -> None:
        async for message in self._pubsub.listen():
            if message.get("type") != "message":
                continue
            try:
                envelope = json.loads(message["data"])
            except (TypeError, ValueError) as e:
                logger.warning("Discarding malformed envelope", topic=self.topic, error=str(e))
                continue
            try:
                await self._handler(envelope)
            except Exception as e:
                logger.error(
                    "Broadcast handler failed",
                    envelope_type=envelope.get("type"),
                    error=str(e),
                    error_type=type(e).__name__,
                )

    async def publish(self, envelope: Envelope) -> None:
        if self._client is None:
            raise StorageError("Notification channel not started", topic=self.topic)
        try:
            await self._client.publish(self.topic, json.dumps(envelope))
        except RedisError as e:
            raise StorageError(
                "Failed to publish notification envelope",
                topic=self.topic,
                error=str(e),
            ) from e

    async def close(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None

        if self._pubsub is not None:
            await self._pubsub.unsubscribe(self.topic)
            await self._pubsub.aclose()
            self._pubsub = None

        if self._pool is not None:
            await self._client.aclose()
            await self._pool.aclose()
            self._client = None
            self._pool = None

        logger.info("Notification topic closed", topic=self.topic)


def build_broadcast_channel(
    backend: str,
    redis_url: str,
    topic: str,
    hub: Optional[LocalBroadcastHub] = None,
) -> BroadcastChannel:
    """Create the channel selected by the ``broadcast_backend`` setting."""
    if backend == "redis":
        return RedisBroadcastChannel(redis_url, topic)
    return (hub or LocalBroadcastHub()).channel()
