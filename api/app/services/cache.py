from __future__ import annotations

from functools import lru_cache
import logging
from typing import Any

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from app.core.config import get_settings

logger = logging.getLogger(__name__)


class AdCache:
    """Best-effort Redis cache for ad read results.

    Every key lives under a namespace generation. Bumping the generation makes
    all previously written entries unreachable; they then age out through their
    TTL. Redis failures are logged and reported as misses, never raised.
    """

    def __init__(self, client: Any | None, *, namespace: str = "ads", ttl_seconds: int = 300) -> None:
        self.client = client
        self.namespace = namespace
        self.ttl_seconds = ttl_seconds

    @property
    def enabled(self) -> bool:
        return self.client is not None

    @property
    def generation_key(self) -> str:
        return f"{self.namespace}:generation"

    async def get_generation(self) -> int | None:
        if self.client is None:
            return None
        try:
            raw = await self.client.get(self.generation_key)
        except RedisError as exc:
            logger.warning("cache generation read failed namespace=%s error=%s", self.namespace, exc)
            return None
        if raw is None:
            return 0
        try:
            return int(raw)
        except (TypeError, ValueError):
            logger.warning("cache generation is not an integer namespace=%s value=%r", self.namespace, raw)
            return None

    async def get(self, key: str) -> str | None:
        if self.client is None:
            return None
        try:
            raw = await self.client.get(key)
        except RedisError as exc:
            logger.warning("cache read failed key=%s error=%s", key, exc)
            return None
        if isinstance(raw, bytes):
            return raw.decode("utf-8", errors="replace")
        return raw

    async def set(self, key: str, value: str) -> None:
        if self.client is None:
            return
        try:
            await self.client.set(key, value, ex=self.ttl_seconds)
        except RedisError as exc:
            logger.warning("cache write failed key=%s error=%s", key, exc)

    async def invalidate(self) -> None:
        if self.client is None:
            return
        try:
            generation = await self.client.incr(self.generation_key)
        except RedisError as exc:
            logger.warning("cache invalidation failed namespace=%s error=%s", self.namespace, exc)
            return
        logger.info("cache invalidated namespace=%s generation=%s", self.namespace, generation)

    async def close(self) -> None:
        if self.client is not None:
            await self.client.aclose()


@lru_cache
def get_cache() -> AdCache:
    settings = get_settings()
    client = None
    if settings.redis_url:
        client = aioredis.Redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=settings.redis_timeout_seconds,
            socket_timeout=settings.redis_timeout_seconds,
        )
    else:
        logger.info("MARKET_REDIS_URL not set; ad read cache disabled")
    return AdCache(client, namespace=settings.cache_namespace, ttl_seconds=settings.cache_ttl_seconds)
