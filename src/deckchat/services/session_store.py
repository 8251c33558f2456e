# src/deckchat/services/session_store.py
# Per-document session state in Redis, every key with a server-enforced TTL.
#
# Key families (all scoped by document id):
#   sandbox:{doc}:id          execution environment handle (JSON)
#   cursor:{doc}:thread_id    agent continuation token
#   chat:{doc}:transcript     bounded list of JSON transcript entries

from __future__ import annotations

from typing import Any, List, Optional

from deckchat.core.logging import get_logger

log = get_logger(__name__)


def environment_key(document_id: str) -> str:
    return f"sandbox:{document_id}:id"


def continuation_key(document_id: str) -> str:
    return f"cursor:{document_id}:thread_id"


def transcript_key(document_id: str) -> str:
    return f"chat:{document_id}:transcript"


class SessionStore:
    """
    Thin key/value facade over an async Redis client.

    The client must be created with decode_responses=True so values come
    back as str. No cross-key transactions are offered: each family is
    written independently and may expire independently.
    """

    def __init__(self, redis: Any):
        self._redis = redis

    async def get(self, key: str) -> Optional[str]:
        return await self._redis.get(key)

    async def set(self, key: str, value: str, ttl: int) -> None:
        await self._redis.set(key, value, ex=int(ttl))

    async def delete(self, key: str) -> None:
        await self._redis.delete(key)

    async def append_bounded(self, key: str, item: str, max_len: int, ttl: int) -> None:
        """Append `item`, keep only the newest `max_len` entries, refresh the TTL."""
        pipe = self._redis.pipeline(transaction=True)
        pipe.rpush(key, item)
        pipe.ltrim(key, -int(max_len), -1)
        pipe.expire(key, int(ttl))
        await pipe.execute()

    async def get_list(self, key: str) -> List[str]:
        return list(await self._redis.lrange(key, 0, -1))
