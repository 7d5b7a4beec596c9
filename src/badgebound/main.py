"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from badgebound.chain.client import BadgeContractClient
from badgebound.config import get_settings
from badgebound.database import close_db, init_db
from badgebound.health.router import router as health_router
from badgebound.middleware import setup_middleware
from badgebound.quests.router import router as quests_router
from badgebound.quests.settlement import SettlementService
from badgebound.redis_client import close_redis, get_redis, init_redis


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    if settings.redis_url:
        await init_redis(settings.redis_url)

    chain = BadgeContractClient.from_settings(settings)
    app.state.settlement = SettlementService(
        chain, redis=get_redis(), xp_per_level=settings.xp_per_level
    )

    yield

    await chain.aclose()
    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="BadgeBound API",
        description="Quest evaluation and badge reward settlement",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router)
    app.include_router(quests_router)

    return app


app = create_app()
