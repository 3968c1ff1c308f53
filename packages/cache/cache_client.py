"""
HTTP client for the gateway's /api/cache routes, for callers without direct
Redis access. Mirrors CacheService's soft-failure contract: errors are logged
and turned into None / False / 0.
"""

from typing import Any, Optional

import httpx
import structlog

logger = structlog.get_logger(__name__)


class CacheClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
        default_ttl: int = 3600,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.default_ttl = default_ttl
        self._client = client

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        url = f"{self.base_url}{path}"
        if self._client is not None:
            return await self._client.request(method, url, **kwargs)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.request(method, url, **kwargs)

    async def get(self, key: str) -> Optional[Any]:
        try:
            response = await self._request("GET", "/api/cache", params={"key": key})
            return response.json().get("data")
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Cache client get error", key=key, error=str(e))
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        try:
            response = await self._request(
                "POST", "/api/cache", json={"key": key, "value": value, "ttl": ttl or self.default_ttl}
            )
            return bool(response.json().get("success"))
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Cache client set error", key=key, error=str(e))
            return False

    async def delete(self, key: str) -> bool:
        try:
            response = await self._request("DELETE", "/api/cache", params={"key": key})
            return bool(response.json().get("success"))
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Cache client delete error", key=key, error=str(e))
            return False

    async def invalidate_pattern(self, pattern: str) -> int:
        try:
            response = await self._request("POST", "/api/cache/invalidate", json={"pattern": pattern})
            return int(response.json().get("count") or 0)
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Cache client invalidate error", pattern=pattern, error=str(e))
            return 0
