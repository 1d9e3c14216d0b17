"""Peer transport over Redis pub/sub.

Each peer subscribes to its own channel (``peer:<peer_id>``). Sending
publishes an :class:`Envelope` on the recipient's channel; a publish that
reaches no subscriber counts as undelivered.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Protocol

import redis.asyncio as aioredis
import structlog
from pydantic import ValidationError
from redis.exceptions import RedisError

from whereabouts.errors import TransportError
from whereabouts.schemas.messages import Envelope, PeerMessage

logger = structlog.get_logger()

EnvelopeHandler = Callable[[Envelope], Awaitable[None]]


class Transport(Protocol):
    async def send(self, recipient: str, message: PeerMessage) -> None: ...


class RedisTransport:
    """Point-to-point messaging between peers sharing one Redis."""

    def __init__(
        self,
        redis_client: aioredis.Redis,
        peer_id: str,
        channel_prefix: str = "peer:",
    ):
        self.redis_client = redis_client
        self.peer_id = peer_id
        self.channel_prefix = channel_prefix

    def channel_for(self, peer_id: str) -> str:
        return f"{self.channel_prefix}{peer_id}"

    async def send(self, recipient: str, message: PeerMessage) -> None:
        """Publish ``message`` to ``recipient``; raises TransportError if undelivered."""
        channel = self.channel_for(recipient)
        envelope = Envelope(sender=self.peer_id, message=message)
        try:
            receivers = await self.redis_client.publish(channel, envelope.model_dump_json())
        except RedisError as e:
            raise TransportError(f"publish to {recipient} failed: {e}") from e

        if not receivers:
            raise TransportError(f"{recipient} is not listening")
        logger.debug("peer_message_sent", recipient=recipient, kind=message.kind)

    async def listen(self, handler: EnvelopeHandler) -> None:
        """Subscribe to our channel and feed every envelope to ``handler``.

        Malformed payloads and handler failures are logged and skipped so a
        single bad message never stops the listener.
        """
        channel = self.channel_for(self.peer_id)
        pubsub = self.redis_client.pubsub()
        await pubsub.subscribe(channel)
        logger.info("peer_listener_started", channel=channel)

        try:
            async for message in pubsub.listen():
                if message["type"] != "message":
                    continue
                try:
                    envelope = Envelope.model_validate_json(message["data"])
                except ValidationError as e:
                    logger.warning("peer_message_invalid", channel=channel, error=str(e))
                    continue
                try:
                    await handler(envelope)
                except Exception as e:
                    logger.error(
                        "peer_message_failed",
                        sender=envelope.sender,
                        kind=envelope.message.kind,
                        error=str(e),
                    )
        finally:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()
