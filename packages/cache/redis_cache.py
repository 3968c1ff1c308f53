import json
from enum import Enum
from typing import Any, List, Optional

import redis.asyncio as redis
import structlog

logger = structlog.get_logger(__name__)


class CacheState(str, Enum):
    """Availability of the cache service"""

    NOT_CONFIGURED = "not_configured"
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    UNAVAILABLE = "unavailable"


class CacheService:
    """
    Best-effort Redis cache.

    Every operation checks the explicit state first and degrades to the
    "no cache" value (None / False / 0) when Redis is not configured, could not
    be reached at connect time, or fails mid-operation. Errors are logged and
    never propagated.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        default_ttl: int = 3600,  # 1 hour
        client: Optional[redis.Redis] = None,
    ):
        self.redis_url = redis_url
        self.default_ttl = default_ttl
        self._client: Optional[redis.Redis] = client

        if client is not None:
            self._state = CacheState.CONNECTED
        elif redis_url:
            self._state = CacheState.DISCONNECTED
        else:
            self._state = CacheState.NOT_CONFIGURED

    @property
    def state(self) -> CacheState:
        return self._state

    @property
    def available(self) -> bool:
        return self._state == CacheState.CONNECTED

    async def connect(self) -> CacheState:
        """Open the Redis client and verify it with PING. Never raises."""
        if self._state != CacheState.DISCONNECTED:
            return self._state

        try:
            self._client = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_keepalive=True,
                health_check_interval=30,
            )
            await self._client.ping()
            self._state = CacheState.CONNECTED
            logger.info("Cache connected", url=_mask_url(self.redis_url))
        except Exception as e:
            logger.warning("Cache unavailable - caching disabled", error=str(e))
            self._state = CacheState.UNAVAILABLE
            await self._discard_client()

        return self._state

    async def get(self, key: str) -> Optional[Any]:
        """Get a JSON value from cache."""
        if not self.available:
            return None

        try:
            value = await self._client.get(key)
            if value is None:
                logger.debug("Cache miss", key=key)
                return None

            logger.debug("Cache hit", key=key)
            return json.loads(value)

        except Exception as e:
            logger.error("Cache get failed", key=key, error=str(e))
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Set a JSON value with TTL."""
        if not self.available:
            return False

        try:
            cache_ttl = ttl or self.default_ttl
            await self._client.setex(key, cache_ttl, json.dumps(value, default=str))

            logger.debug("Cache set", key=key, ttl=cache_ttl)
            return True

        except Exception as e:
            logger.error("Cache set failed", key=key, error=str(e))
            return False

    async def delete(self, key: str) -> bool:
        """Delete a key. True means the delete ran, whether or not the key existed."""
        if not self.available:
            return False

        try:
            result = await self._client.delete(key)
            logger.debug("Cache delete", key=key, existed=bool(result))
            return True

        except Exception as e:
            logger.error("Cache delete failed", key=key, error=str(e))
            return False

    async def invalidate_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern in one batch; returns the count deleted."""
        if not self.available:
            return 0

        try:
            keys: List[str] = await self._client.keys(pattern)
            if not keys:
                return 0

            deleted = await self._client.delete(*keys)
            logger.debug("Cache pattern delete", pattern=pattern, deleted=deleted)
            return int(deleted)

        except Exception as e:
            logger.error("Cache pattern delete failed", pattern=pattern, error=str(e))
            return 0

    async def close(self):
        """Close Redis connection."""
        await self._discard_client()
        if self._state == CacheState.CONNECTED:
            self._state = CacheState.DISCONNECTED if self.redis_url else CacheState.NOT_CONFIGURED

    async def _discard_client(self):
        if self._client is None:
            return
        try:
            await self._client.aclose()
        except Exception as e:
            logger.debug("Cache client close failed", error=str(e))
        finally:
            self._client = None


def _mask_url(url: Optional[str]) -> Optional[str]:
    if not url or "@" not in url:
        return url
    scheme, _, rest = url.partition("://")
    return f"{scheme}://***@{rest.split('@', 1)[1]}"
