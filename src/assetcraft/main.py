from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.asyncio import Redis

from assetcraft.config import settings
from assetcraft.api.ai import router as ai_router
from assetcraft.api.assets import router as assets_router
from assetcraft.api.auth import router as auth_router
from assetcraft.api.gemstones import router as gemstones_router
from assetcraft.api.generations import router as generations_router
from assetcraft.api.rewards import router as rewards_router
from assetcraft.api.store import router as store_router
from assetcraft.api.users import router as users_router
from assetcraft.api.webhooks import router as webhooks_router
from assetcraft.middleware.rate_limit import RateLimitMiddleware
from assetcraft.middleware.security import SecurityHeadersMiddleware

# Configure structlog
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        (
            structlog.dev.ConsoleRenderer()
            if settings.APP_ENV == "development"
            else structlog.processors.JSONRenderer()
        ),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(0),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    log.info("starting_up", env=settings.APP_ENV)
    redis = Redis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        await redis.ping()
        log.info("redis_connected", url=settings.REDIS_URL)
    except Exception as e:
        log.warning("redis_connection_failed", error=str(e))
    app.state.redis = redis

    yield

    # Shutdown
    log.info("shutting_down")
    await redis.close()


app = FastAPI(
    title="AssetCraft AI",
    lifespan=lifespan,
)

# CORS middleware for development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.APP_ENV == "development" else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Security headers on every response the routes produce
app.add_middleware(SecurityHeadersMiddleware)

# Rate limiting wraps everything else, so a 429 never reaches a route
app.add_middleware(RateLimitMiddleware)


app.include_router(auth_router)
app.include_router(users_router)
app.include_router(gemstones_router)
app.include_router(generations_router)
app.include_router(ai_router)
app.include_router(assets_router)
app.include_router(store_router)
app.include_router(rewards_router)
app.include_router(webhooks_router)


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
