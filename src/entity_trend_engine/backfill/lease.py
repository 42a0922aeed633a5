"""Per-category Redis lease so only one process backfills a category."""

from __future__ import annotations

import logging
import os
import socket
import uuid

from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from entity_trend_engine.errors import StoreUnavailableError
from entity_trend_engine.models import Category

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "entity_trend:backfill_lock:"


class CategoryLease:
    """SET NX EX lease keyed by category.

    The lease value identifies the holder; release only deletes the key if
    this process still holds it.
    """

    def __init__(
        self,
        redis: Redis,
        *,
        ttl_seconds: int = 3600,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        owner: str | None = None,
    ) -> None:
        self._redis = redis
        self._ttl = ttl_seconds
        self._key_prefix = key_prefix
        self.owner = owner or f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"

    def _key(self, category: Category) -> str:
        return f"{self._key_prefix}{category.value}"

    async def acquire(self, category: Category) -> bool:
        """Take the lease for a category.

        Raises:
            StoreUnavailableError: If Redis cannot be reached.
        """
        key = self._key(category)
        try:
            was_set = await self._redis.set(key, self.owner, nx=True, ex=self._ttl)
            holder = None if was_set else await self._redis.get(key)
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StoreUnavailableError(f"lease store unavailable for {category.value}: {e}") from e
        if not was_set:
            logger.warning(
                "Backfill lease for %s is held by %s",
                category.value,
                holder.decode() if isinstance(holder, bytes) else holder,
            )
        return bool(was_set)

    async def release(self, category: Category) -> None:
        key = self._key(category)
        try:
            holder = await self._redis.get(key)
            if isinstance(holder, bytes):
                holder = holder.decode()
            if holder == self.owner:
                await self._redis.delete(key)
        except (RedisConnectionError, RedisTimeoutError) as e:
            # The key still expires after its TTL.
            logger.warning("Could not release backfill lease for %s: %s", category.value, e)
