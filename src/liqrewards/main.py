"""FastAPI application factory."""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from liqrewards.config import get_settings
from liqrewards.database import close_db, get_session_factory, init_db
from liqrewards.gamification.router import router as gamification_router
from liqrewards.gamification.seed import seed_all
from liqrewards.health.router import router as health_router
from liqrewards.middleware import setup_middleware
from liqrewards.redis_client import close_redis, get_redis, init_redis
from liqrewards.social.notification_router import router as notification_router
from liqrewards.social.router import router as guild_router
from liqrewards.ws.bridge import PubSubBridge
from liqrewards.ws.manager import manager
from liqrewards.ws.router import router as ws_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)
    manager.max_connections_per_account = settings.ws_max_connections_per_user

    # Seed achievements, quests, loot boxes, skill trees (idempotent)
    if settings.seed_on_startup:
        try:
            async with get_session_factory()() as db:
                await seed_all(db)
        except Exception:
            logger.warning("Seeding failed (tables may not exist yet)", exc_info=True)

    # Start the Redis pub/sub -> WebSocket bridge
    bridge = PubSubBridge(get_redis(), retry_seconds=settings.notification_retry_seconds)
    bridge_task = asyncio.create_task(bridge.start())
    heartbeat_task = asyncio.create_task(manager.run_heartbeat(settings.ws_heartbeat_interval_seconds))

    yield

    # Shutdown bridge and heartbeat
    await bridge.stop()
    for task in (bridge_task, heartbeat_task):
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="LiqLearns Rewards API",
        description="Progression and rewards engine for the LiqLearns learning platform",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(gamification_router)
    app.include_router(guild_router)
    app.include_router(notification_router)
    app.include_router(ws_router)

    return app


app = create_app()
