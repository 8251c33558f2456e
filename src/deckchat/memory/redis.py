# deckchat/memory/redis.py

from __future__ import annotations

from typing import Optional
import redis.asyncio as redis
from deckchat.core.config import settings

_client: Optional[redis.Redis] = None

def _make(url: str) -> redis.Redis:
    return redis.from_url(
        url,
        decode_responses=True,                     # handles, tokens and transcript entries are text
        health_check_interval=30,
        socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
        socket_connect_timeout=settings.REDIS_CONNECT_TIMEOUT,
        retry_on_timeout=True,
        max_connections=settings.REDIS_MAX_CONNS,
    )

def get_redis() -> redis.Redis:
    """Shared Redis client backing the session store."""
    global _client
    if _client is None:
        _client = _make(settings.REDIS_URL)
    return _client

async def ping() -> bool:
    """Lightweight readiness check for /readyz."""
    try:
        return bool(await get_redis().ping())
    except Exception:
        return False

async def close() -> None:
    """Gracefully close the Redis client on shutdown."""
    global _client
    try:
        if _client is not None:
            await _client.aclose()
    finally:
        _client = None
