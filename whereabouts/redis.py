"""Shared Redis client for the peer transport and relationship snapshots.

The transport holds one pub/sub connection open for the life of the process,
so the client pings idle connections and gives up quickly on connect.
"""

from __future__ import annotations

import redis.asyncio as redis

from whereabouts.config import Settings, get_settings

_redis_client: redis.Redis | None = None


def create_redis(settings: Settings | None = None) -> redis.Redis:
    """Build a client from the service settings."""
    settings = settings or get_settings()
    return redis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=settings.redis_max_connections,
        socket_connect_timeout=settings.redis_connect_timeout_seconds,
        health_check_interval=settings.redis_health_check_interval_seconds,
    )


async def get_redis() -> redis.Redis:
    """Get or create the process-wide client."""
    global _redis_client
    if _redis_client is None:
        _redis_client = create_redis()
    return _redis_client


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
