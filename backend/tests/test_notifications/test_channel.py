"""
Test suite for notification broadcast channels.

The Redis channel is exercised against a mocked client; no Redis server is
needed.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError, RedisError

from printease.core.errors import StorageError
from printease.services.notifications.channel import (
    LocalBroadcastChannel,
    LocalBroadcastHub,
    RedisBroadcastChannel,
    build_broadcast_channel,
)


class FakePubSub:
    """Pub/sub double replaying a fixed list of raw messages."""

    def __init__(self, messages):
        self.messages = messages
        self.subscribe = AsyncMock()
        self.unsubscribe = AsyncMock()
        self.aclose = AsyncMock()

    async def listen(self):
        for message in self.messages:
            yield message


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def pubsub() -> FakePubSub:
    return FakePubSub(
        [
            {"type": "subscribe", "data": 1},
            {"type": "message", "data": json.dumps({"type": "notification", "origin": "a"})},
            {"type": "message", "data": "not json"},
            {"type": "message", "data": json.dumps({"type": "notifications_cleared", "origin": "b"})},
        ]
    )


@pytest.fixture
def redis_client(pubsub: FakePubSub) -> MagicMock:
    """
    Create mock Redis client.

    Returns:
        Mock client whose ``pubsub()`` returns the fake pub/sub
    """
    client = MagicMock()
    client.ping = AsyncMock(return_value=True)
    client.publish = AsyncMock(return_value=1)
    client.pubsub = MagicMock(return_value=pubsub)
    return client


# ============================================================================
# Local Hub Tests
# ============================================================================


class TestLocalHub:
    """Test in-process fan-out."""

    async def test_delivers_to_other_channels_only(self):
        hub = LocalBroadcastHub()
        sender, receiver = hub.channel(), hub.channel()
        sender_handler, receiver_handler = AsyncMock(), AsyncMock()
        await sender.start(sender_handler)
        await receiver.start(receiver_handler)

        await sender.publish({"type": "notification", "origin": "x"})

        sender_handler.assert_not_awaited()
        receiver_handler.assert_awaited_once_with({"type": "notification", "origin": "x"})

    async def test_closed_channel_receives_nothing(self):
        hub = LocalBroadcastHub()
        sender, receiver = hub.channel(), hub.channel()
        handler = AsyncMock()
        await receiver.start(handler)
        await receiver.close()

        await sender.publish({"type": "notification"})

        handler.assert_not_awaited()

    async def test_handler_failure_is_contained(self):
        hub = LocalBroadcastHub()
        sender, broken, healthy = hub.channel(), hub.channel(), hub.channel()
        healthy_handler = AsyncMock()
        await broken.start(AsyncMock(side_effect=RuntimeError("boom")))
        await healthy.start(healthy_handler)

        await sender.publish({"type": "notification"})

        healthy_handler.assert_awaited_once()


# ============================================================================
# Redis Channel Tests
# ============================================================================


class TestRedisChannel:
    """Test Redis pub/sub channel."""

    async def test_start_subscribes_and_dispatches(
        self, redis_client: MagicMock, pubsub: FakePubSub
    ):
        channel = RedisBroadcastChannel("redis://localhost:6379/0", "topic", client=redis_client)
        handler = AsyncMock()

        await channel.start(handler)
        await channel._listener

        pubsub.subscribe.assert_awaited_once_with("topic")
        assert [call.args[0]["origin"] for call in handler.await_args_list] == ["a", "b"]

        await channel.close()
        pubsub.unsubscribe.assert_awaited_once_with("topic")
        pubsub.aclose.assert_awaited_once()

    async def test_publish_serializes_envelope(self, redis_client: MagicMock):
        channel = RedisBroadcastChannel("redis://localhost:6379/0", "topic", client=redis_client)

        await channel.publish({"type": "notification_read", "notificationId": "notif_1"})

        topic, payload = redis_client.publish.await_args.args
        assert topic == "topic"
        assert json.loads(payload) == {"type": "notification_read", "notificationId": "notif_1"}

    async def test_publish_failure_raises_storage_error(self, redis_client: MagicMock):
        redis_client.publish.side_effect = RedisError("READONLY")
        channel = RedisBroadcastChannel("redis://localhost:6379/0", "topic", client=redis_client)

        with pytest.raises(StorageError):
            await channel.publish({"type": "notification"})

    async def test_unreachable_server_raises_storage_error(self, redis_client: MagicMock):
        redis_client.ping.side_effect = ConnectionError("refused")
        channel = RedisBroadcastChannel("redis://localhost:6379/0", "topic", client=redis_client)

        with pytest.raises(StorageError) as exc_info:
            await channel.start(AsyncMock())

        assert exc_info.value.context["topic"] == "topic"


class TestBuildChannel:
    """Test channel selection from settings."""

    def test_local_backend(self):
        hub = LocalBroadcastHub()

        channel = build_broadcast_channel("local", "redis://localhost:6379/0", "topic", hub=hub)

        assert isinstance(channel, LocalBroadcastChannel)
        assert channel.hub is hub

    def test_redis_backend(self):
        channel = build_broadcast_channel("redis", "redis://cache:6379/1", "printease:notifications")

        assert isinstance(channel, RedisBroadcastChannel)
        assert channel.url == "redis://cache:6379/1"
        assert channel.topic == "printease:notifications"
