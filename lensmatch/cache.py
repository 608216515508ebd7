"""
Lensmatch — Redis client and ranked-result cache.

The client is opened once by the application lifespan.  The result cache is
an accelerator only: every ranking is persisted to ``matching_results``, so
a Redis outage degrades to database reads instead of failing requests.
"""

from __future__ import annotations

import json
from typing import Any

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from lensmatch.config import get_settings

logger = structlog.get_logger("lensmatch.cache")

RESULT_KEY_PREFIX = "lensmatch:results:"

_redis_client: aioredis.Redis | None = None


async def connect_redis() -> aioredis.Redis:
    global _redis_client
    settings = get_settings()
    _redis_client = aioredis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_connect_timeout=5,
    )
    # Verify connectivity
    await _redis_client.ping()
    logger.info("redis_connected", url=settings.REDIS_URL)
    return _redis_client


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("redis_closed")


def get_redis() -> aioredis.Redis | None:
    """Return the shared Redis client, or None before startup / after shutdown."""
    return _redis_client


class ResultCache:
    """Caches ranked results per session id under ``lensmatch:results:<id>``."""

    def __init__(self, client: aioredis.Redis | None = None, ttl_seconds: int | None = None) -> None:
        self._client = client
        self.ttl_seconds = ttl_seconds or get_settings().RESULT_CACHE_TTL_SECONDS

    @property
    def client(self) -> aioredis.Redis | None:
        return self._client if self._client is not None else get_redis()

    @staticmethod
    def key(session_id: str) -> str:
        return f"{RESULT_KEY_PREFIX}{session_id}"

    async def get(self, session_id: str) -> list[dict[str, Any]] | None:
        client = self.client
        if client is None:
            return None
        try:
            raw = await client.get(self.key(session_id))
        except RedisError as exc:
            logger.warning("result_cache_read_failed", session_id=session_id, error=str(exc))
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("result_cache_corrupt", session_id=session_id)
            return None

    async def set(self, session_id: str, results: list[dict[str, Any]]) -> None:
        client = self.client
        if client is None:
            return
        try:
            await client.set(self.key(session_id), json.dumps(results), ex=self.ttl_seconds)
        except RedisError as exc:
            logger.warning("result_cache_write_failed", session_id=session_id, error=str(exc))

    async def invalidate(self, session_id: str) -> None:
        client = self.client
        if client is None:
            return
        try:
            await client.delete(self.key(session_id))
        except RedisError as exc:
            logger.warning("result_cache_delete_failed", session_id=session_id, error=str(exc))
