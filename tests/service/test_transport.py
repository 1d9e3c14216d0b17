"""Tests for the Redis pub/sub peer transport."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from whereabouts.errors import TransportError
from whereabouts.schemas.messages import Envelope, FriendRequest, Ping
from whereabouts.transport import RedisTransport


@pytest.fixture
def redis_transport(mock_redis):
    return RedisTransport(mock_redis, "alice", channel_prefix="peer:")


class TestSend:
    @pytest.mark.asyncio
    async def test_publishes_envelope_on_recipient_channel(self, redis_transport, mock_redis):
        await redis_transport.send("bob", FriendRequest())

        channel, payload = mock_redis.publish.call_args[0]
        assert channel == "peer:bob"
        data = json.loads(payload)
        assert data == {"sender": "alice", "message": {"kind": "friend_request"}}

    @pytest.mark.asyncio
    async def test_no_subscriber_is_a_failure(self, redis_transport, mock_redis):
        mock_redis.publish = AsyncMock(return_value=0)

        with pytest.raises(TransportError, match="not listening"):
            await redis_transport.send("bob", Ping())

    @pytest.mark.asyncio
    async def test_redis_error_is_wrapped(self, redis_transport, mock_redis):
        mock_redis.publish = AsyncMock(side_effect=RedisConnectionError("refused"))

        with pytest.raises(TransportError) as exc_info:
            await redis_transport.send("bob", Ping())

        assert exc_info.value.kind == "transport_failure"
        assert isinstance(exc_info.value.__cause__, RedisConnectionError)


def _pubsub_with(messages):
    """Fake pubsub whose ``listen()`` yields ``messages`` then stops."""
    pubsub = MagicMock()
    pubsub.subscribe = AsyncMock()
    pubsub.unsubscribe = AsyncMock()
    pubsub.aclose = AsyncMock()

    async def _listen():
        for message in messages:
            yield message

    pubsub.listen = _listen
    return pubsub


class TestListen:
    @pytest.mark.asyncio
    async def test_dispatches_valid_envelopes(self, redis_transport, mock_redis):
        good = Envelope(sender="bob", message=Ping()).model_dump_json()
        pubsub = _pubsub_with([
            {"type": "subscribe", "data": 1},
            {"type": "message", "data": "not json"},
            {"type": "message", "data": good},
        ])
        mock_redis.pubsub = MagicMock(return_value=pubsub)
        handler = AsyncMock()

        await redis_transport.listen(handler)

        pubsub.subscribe.assert_awaited_once_with("peer:alice")
        handler.assert_awaited_once()
        envelope = handler.call_args[0][0]
        assert envelope.sender == "bob"
        assert isinstance(envelope.message, Ping)
        pubsub.unsubscribe.assert_awaited_once_with("peer:alice")
        pubsub.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_handler_failure_does_not_stop_listener(self, redis_transport, mock_redis):
        payload = Envelope(sender="bob", message=Ping()).model_dump_json()
        pubsub = _pubsub_with([
            {"type": "message", "data": payload},
            {"type": "message", "data": payload},
        ])
        mock_redis.pubsub = MagicMock(return_value=pubsub)
        handler = AsyncMock(side_effect=[RuntimeError("boom"), None])

        await redis_transport.listen(handler)

        assert handler.await_count == 2


def test_channel_for(mock_redis):
    assert RedisTransport(mock_redis, "alice", channel_prefix="wb:").channel_for("bob") == "wb:bob"
