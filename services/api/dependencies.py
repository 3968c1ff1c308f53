from fastapi import Request

from packages.cache.redis_cache import CacheService
from packages.orchestrator.event_gateway import EventGateway


def get_gateway(request: Request) -> EventGateway:
    return request.app.state.gateway


def get_cache_service(request: Request) -> CacheService:
    return request.app.state.cache
