"""
File Zipper - Main FastAPI Application
Streams the files listed in a cached manifest (local paths and URLs) to the client as one ZIP archive
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
import httpx
import logging
from redis import asyncio as aioredis
from redis.exceptions import RedisError

from zipper.core.config import settings
from zipper.api.routes import zip as zip_routes
from zipper.api.exception_handlers import setup_exception_handlers

# Configure logging - reduce noise, keep only important messages
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence noisy loggers
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def create_redis_client():
    """Shared Redis connection pool for manifest lookups"""
    return aioredis.Redis.from_url(
        settings.REDIS_URL,
        max_connections=settings.REDIS_MAX_CONNECTIONS,
    )


def create_http_client() -> httpx.AsyncClient:
    """Shared HTTP client for remote sources"""
    return httpx.AsyncClient(
        follow_redirects=settings.REMOTE_FOLLOW_REDIRECTS,
        timeout=settings.REMOTE_TIMEOUT,
        limits=httpx.Limits(max_connections=settings.REMOTE_MAX_CONNECTIONS),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown events"""
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}...")

    app.state.redis = create_redis_client()
    app.state.http_client = create_http_client()
    logger.info(f"Manifest cache: {settings.REDIS_URL} (namespace '{settings.MANIFEST_NAMESPACE}')")

    yield

    logger.info("Shutting down...")
    await app.state.http_client.aclose()
    await app.state.redis.aclose()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

setup_exception_handlers(app)


@app.get("/api/health")
async def health_check(request: Request):
    """Health check; degraded when the manifest cache is unreachable"""
    redis_ok = False
    redis = getattr(request.app.state, "redis", None)
    if redis is not None:
        try:
            redis_ok = bool(await redis.ping())
        except (RedisError, OSError) as e:
            logger.warning(f"Health check: redis ping failed: {e}")

    return {
        "status": "healthy" if redis_ok else "degraded",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "redis": "ok" if redis_ok else "unavailable",
    }


app.include_router(zip_routes.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "zipper.main:app",
        host=settings.BACKEND_HOST,
        port=settings.BACKEND_PORT,
    )
