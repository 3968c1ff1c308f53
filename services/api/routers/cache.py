from typing import Any, Optional

import structlog
from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from packages.cache.redis_cache import CacheService
from services.api.dependencies import get_cache_service

router = APIRouter()
logger = structlog.get_logger(__name__)


class CacheEntry(BaseModel):
    key: Optional[str] = None
    value: Optional[Any] = None
    ttl: Optional[int] = None


class InvalidateRequest(BaseModel):
    pattern: Optional[str] = None


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": message})


@router.get("")
async def get_cached(key: Optional[str] = Query(None), cache: CacheService = Depends(get_cache_service)):
    if not key:
        return _bad_request("Key required")

    return {"data": await cache.get(key)}


@router.post("")
async def set_cached(entry: CacheEntry, cache: CacheService = Depends(get_cache_service)):
    if not entry.key or entry.value is None:
        return _bad_request("Key and value required")

    return {"success": await cache.set(entry.key, entry.value, ttl=entry.ttl)}


@router.delete("")
async def delete_cached(key: Optional[str] = Query(None), cache: CacheService = Depends(get_cache_service)):
    if not key:
        return _bad_request("Key required")

    return {"success": await cache.delete(key)}


@router.post("/invalidate")
async def invalidate_cached(request: InvalidateRequest, cache: CacheService = Depends(get_cache_service)):
    """Delete every key matching a glob pattern."""
    if not request.pattern:
        return _bad_request("Pattern required")

    count = await cache.invalidate_pattern(request.pattern)
    logger.info("Cache pattern invalidated via API", pattern=request.pattern, count=count)
    return {"success": True, "count": count}
