"""Relationship book persistence in Redis."""

from __future__ import annotations

import json

import structlog
from pydantic import ValidationError
from redis.exceptions import RedisError

from whereabouts.errors import StorageError
from whereabouts.relationships import RelationshipBook

logger = structlog.get_logger()


def relationship_key(prefix: str, peer_id: str) -> str:
    return f"{prefix}{peer_id}"


async def load_relationships(redis_client, key: str) -> RelationshipBook:
    """Restore the book stored under ``key``, or start empty."""
    raw = await redis_client.get(key)
    if not raw:
        logger.info("relationships_empty", key=key)
        return RelationshipBook()
    try:
        book = RelationshipBook.restore(json.loads(raw))
    except (json.JSONDecodeError, ValidationError, AttributeError) as e:
        # A corrupt snapshot must not keep the peer from starting.
        logger.error("relationships_snapshot_invalid", key=key, error=str(e))
        return RelationshipBook()
    logger.info(
        "relationships_loaded",
        key=key,
        friends=len(book.friends()),
        pending=len(book.pending()),
    )
    return book


async def save_relationships(redis_client, key: str, snapshot: dict) -> None:
    try:
        await redis_client.set(key, json.dumps(snapshot))
    except RedisError as e:
        raise StorageError(f"saving relationships failed: {e}") from e
