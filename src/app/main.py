import time
import uuid
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any

import arq
import redis.asyncio as redis
from arq.connections import RedisSettings
from fastapi import Depends, FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy import text
from sqlmodel.ext.asyncio.session import AsyncSession

from src import version
from src.app.dependencies import build_services
from src.config.settings import settings
from src.core.cache import CacheBackend, InMemoryCacheBackend, RedisCacheBackend, RoleCache
from src.core.database import async_session_maker, get_session, init_models
from src.core.logger import configure_logging
from src.domain.agents.router import router as agents_router
from src.domain.identity.router import router as identity_router
from src.domain.tenants.router import router as tenants_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Owns every long-lived component: schema, Redis connections, the role cache and the services."""
    configure_logging()
    await init_models()

    redis_client = None
    backend: CacheBackend
    if settings.ROLE_CACHE_BACKEND == "redis":
        redis_client = redis.from_url(settings.REDIS_URL)
        backend = RedisCacheBackend(redis_client)
    else:
        backend = InMemoryCacheBackend()
    role_cache = RoleCache(backend, ttl_seconds=settings.ROLE_CACHE_TTL_SECONDS)

    arq_pool = None
    if settings.EMAIL_QUEUE_ENABLED:
        try:
            arq_pool = await arq.create_pool(RedisSettings.from_dsn(settings.REDIS_URL))
        except Exception as e:
            logger.error(f"Email queue unavailable, invitations will be sent inline: {e}")

    app.state.arq_pool = arq_pool
    app.state.services = build_services(async_session_maker, role_cache, arq_pool=arq_pool)
    logger.info(f"{settings.APP_NAME} started (role cache: {settings.ROLE_CACHE_BACKEND})")

    yield

    if arq_pool is not None:
        await arq_pool.close()
    if redis_client is not None:
        await redis_client.aclose()


app = FastAPI(
    title=settings.APP_NAME,
    debug=settings.DEBUG,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url=None,
)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
    """Injects a unique Request-ID into the logging context and response headers.

    Args:
        request: The incoming HTTP request.
        call_next: The next middleware or route handler in the pipeline.

    Returns:
        Response: The HTTP response with injected tracking headers.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())

    with logger.contextualize(request_id=request_id, tenant_id=request.headers.get("X-Tenant-Id")):
        logger.info(f"Started {request.method} {request.url.path}")
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
            process_time = time.perf_counter() - start_time

            response.headers["X-Request-ID"] = request_id
            response.headers["X-Process-Time"] = str(process_time)

            logger.info(f"Completed {response.status_code} in {process_time:.4f}s")
            return response
        except Exception as e:
            process_time = time.perf_counter() - start_time
            logger.error(f"Request failed after {process_time:.4f}s: {e}")
            raise


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catches unhandled exceptions and returns a standardized JSON response.

    Args:
        request: The incoming HTTP request.
        exc: The raised exception.

    Returns:
        JSONResponse: A 500 Internal Server Error payload.
    """
    logger.exception("Unhandled server exception")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal Server Error",
            "message": "An unexpected error occurred.",
            "request_id": request.headers.get("X-Request-ID", "unknown"),
        },
    )


app.include_router(identity_router)
app.include_router(tenants_router)
app.include_router(agents_router)


@app.get("/health", tags=["System"])
async def health_check(session: AsyncSession = Depends(get_session)) -> dict[str, Any]:
    """Reports service identity and whether the database answers."""
    try:
        await session.exec(text("SELECT 1"))
        database = "ok"
    except Exception as e:
        logger.error(f"Health check database ping failed: {e}")
        database = "degraded"

    return {
        "status": "ok" if database == "ok" else "degraded",
        "service": settings.APP_NAME,
        "version": version.VERSION,
        "build_time": version.BUILD_TIMESTAMP,
        "database": database,
    }
