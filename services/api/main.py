import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
from dotenv import load_dotenv
from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from packages.cache.redis_cache import CacheService
from packages.orchestrator.broker import BrokerConnection
from packages.orchestrator.event_gateway import EventGateway
from packages.orchestrator.event_publisher import EventPublisher
from packages.orchestrator.metrics import CONTENT_TYPE_LATEST, PipelineMetrics
from packages.telemetry.logger import configure_logging
from services.api.routers import cache as cache_router
from services.api.routers import events
from services.worker.config import PipelineConfig, get_config

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    config: PipelineConfig = app.state.config
    logger.info("Starting Farmline event gateway", environment=config.environment)

    broker: Optional[BrokerConnection] = None
    if app.state.gateway is None:
        broker = BrokerConnection(
            config.rabbitmq_url,
            connect_timeout=config.broker_connect_timeout,
            connect_max_retries=config.broker_connect_max_retries,
            max_queue_length=config.queue_max_length,
        )
        if not broker.is_configured:
            logger.warning("RABBITMQ_URL not set - event publishing disabled")

        publisher = EventPublisher(broker, metrics=app.state.metrics)
        app.state.gateway = EventGateway(publisher, metrics=app.state.metrics)

    owns_cache = app.state.cache is None
    if owns_cache:
        app.state.cache = CacheService(config.redis_url, default_ttl=config.cache_default_ttl)
        await app.state.cache.connect()

    yield

    # Cleanup on shutdown
    logger.info("Shutting down Farmline event gateway")
    if owns_cache:
        await app.state.cache.close()
    if broker is not None:
        broker.close()


def create_app(
    config: Optional[PipelineConfig] = None,
    *,
    gateway: Optional[EventGateway] = None,
    cache: Optional[CacheService] = None,
    metrics: Optional[PipelineMetrics] = None,
) -> FastAPI:
    """
    Build the event gateway application.

    Broker and cache clients are created in the lifespan unless injected.
    Injected clients are owned by the caller and are not closed on shutdown.
    """
    config = config or get_config()

    app = FastAPI(
        title="Farmline Event Gateway",
        description="Publishes marketplace order events to durable queues and manages the shared cache",
        version="1.0.0",
        docs_url="/docs" if not config.is_production else None,
        redoc_url="/redoc" if not config.is_production else None,
        openapi_url="/openapi.json" if not config.is_production else None,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.gateway = gateway
    app.state.cache = cache
    app.state.metrics = metrics or PipelineMetrics()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle validation errors with structured response."""
        if request.url.path.rstrip("/") == "/api/events":
            # Event submissions only answer with the gateway's own error shapes
            logger.warning("Rejected malformed event submission", request_id=getattr(request.state, "request_id", None))
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={
                    "error": "Invalid event data",
                    "details": [{"loc": list(err["loc"]), "msg": err["msg"]} for err in exc.errors()],
                },
            )

        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": "validation_error",
                "message": "Request validation failed",
                "details": exc.errors(),
                "request_id": getattr(request.state, "request_id", None),
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception", exc_info=exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal server error",
                "request_id": getattr(request.state, "request_id", None),
            },
        )

    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        """Add request ID to all requests for tracing."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = time.time()

        response = await call_next(request)

        logger.info(
            "Request processed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            process_time=time.time() - start_time,
            request_id=getattr(request.state, "request_id", None),
        )
        return response

    @app.get("/health", tags=["Health"])
    async def health_check(request: Request):
        """Health check with broker and cache availability."""
        gateway: Optional[EventGateway] = request.app.state.gateway
        cache_service: Optional[CacheService] = request.app.state.cache

        broker_state = gateway.publisher.broker.state.value if gateway is not None else "not_configured"
        cache_state = cache_service.state.value if cache_service is not None else "not_configured"

        return {
            "status": "healthy",
            "service": "farmline-events",
            "version": "1.0.0",
            "broker": broker_state,
            "cache": cache_state,
            "timestamp": time.time(),
        }

    @app.get("/metrics", tags=["Monitoring"])
    async def metrics_endpoint(request: Request):
        """Prometheus metrics endpoint."""
        return Response(content=request.app.state.metrics.export_metrics(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(events.router, prefix="/api/events", tags=["Events"])
    app.include_router(cache_router.router, prefix="/api/cache", tags=["Cache"])

    return app


load_dotenv()
_config = get_config()
configure_logging(_config.log_level, json_logs=_config.log_json)

app = create_app(_config)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "services.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info",
    )
