"""
FastAPI application for the order lifecycle API.

Run with ``uvicorn orders_service.main:app``.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.exceptions import ConnectionError as RedisConnectionError
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from orders_service.api.deps import limiter
from orders_service.api.v1.orders import router as orders_router
from orders_service.core.config import get_settings
from orders_service.core.logging import (
    clear_context,
    configure_logging,
    get_logger,
    get_request_id,
    log_performance,
    set_request_id,
)
from orders_service.database.connection import (
    check_database_health,
    close_database_connections,
)
from orders_service.messaging.emitter import RedisEventEmitter
from orders_service.messaging.redis_client import RedisClient

# Configure logging before application initialization
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Connect the event publisher on startup; release it and the database
    engine on shutdown.

    An unreachable Redis does not prevent startup. Events are then logged as
    failed publishes until the process is restarted.
    """
    settings = get_settings()

    logger.info(
        "Application starting",
        environment=settings.environment,
        debug=settings.debug,
        version=settings.app_version,
    )

    redis_client = RedisClient()
    with log_performance(logger, "application_startup"):
        try:
            await redis_client.connect()
        except RedisConnectionError as e:
            logger.error("Event publisher unavailable at startup", error=str(e))

        app.state.redis_client = redis_client
        app.state.event_emitter = RedisEventEmitter(
            redis_client,
            settings.event_channel_prefix,
        )
        logger.info("Resources initialized successfully")

    yield

    logger.info("Application shutting down")
    with log_performance(logger, "application_shutdown"):
        await redis_client.disconnect()
        await close_database_connections()
        logger.info("Resources cleaned up successfully")


settings = get_settings()
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Food delivery order lifecycle API",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
    debug=settings.debug,
)

# Configure rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    """Bind a request ID for the duration of the request and echo it back."""
    request_id = set_request_id(request.headers.get("X-Request-ID"))

    logger.info(
        "Request received",
        method=request.method,
        path=request.url.path,
        client_host=request.client.host if request.client else None,
    )

    try:
        with log_performance(
            logger,
            "request_processing",
            method=request.method,
            path=request.url.path,
        ):
            response = await call_next(request)

        response.headers["X-Request-ID"] = request_id

        logger.info(
            "Request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
        )

        return response
    except Exception as e:
        logger.error(
            "Request failed",
            method=request.method,
            path=request.url.path,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise
    finally:
        clear_context()


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Return 422 with the failing locations and messages."""
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]

    logger.warning(
        "Request validation failed",
        method=request.method,
        path=request.url.path,
        errors=errors,
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "Validation Error",
            "message": "Request validation failed",
            "details": errors,
            "request_id": get_request_id(),
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """Log the exception and return a generic 500 body."""
    logger.error(
        "Unhandled exception",
        method=request.method,
        path=request.url.path,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal Server Error",
            "message": "An unexpected error occurred",
            "request_id": get_request_id(),
        },
    )


@app.get(
    "/health",
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Health check endpoint",
)
async def health_check() -> dict[str, str]:
    """Liveness check."""
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }


@app.get(
    "/ready",
    tags=["Health"],
    summary="Readiness check endpoint",
)
async def readiness_check(request: Request):
    """
    Readiness check covering the database and the event publisher.

    Returns 503 when the database is unreachable. A disconnected publisher
    is reported but does not fail readiness.
    """
    database_ready = await check_database_health()

    redis_client = getattr(request.app.state, "redis_client", None)
    publisher_ready = bool(redis_client) and await redis_client.health_check()

    body = {
        "status": "ready" if database_ready else "not_ready",
        "service": settings.app_name,
        "database": "healthy" if database_ready else "unhealthy",
        "event_publisher": "healthy" if publisher_ready else "unhealthy",
    }

    if not database_ready:
        logger.warning("Readiness check failed", database_ready=False)
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body)

    return body


app.include_router(orders_router, prefix=settings.api_v1_prefix)
