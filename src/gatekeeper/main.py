"""ASGI entrypoint: ``uvicorn gatekeeper.main:app``."""

import asyncio
import contextlib
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI

from gatekeeper.config import Settings, get_settings
from gatekeeper.database import close_db, init_db, prepare_database
from gatekeeper.dependencies import Services, build_services
from gatekeeper.exceptions import StorageError
from gatekeeper.health.router import router as health_router
from gatekeeper.middleware import setup_middleware
from gatekeeper.progression.router import router as progression_router
from gatekeeper.proxy.router import router as proxy_router
from gatekeeper.redis_client import close_redis, get_redis_or_none, init_redis
from gatekeeper.storage.sql import SqlStorage
from gatekeeper.verification.router import router as verification_router
from gatekeeper.verification.sessions import SessionSweeper

logger = structlog.get_logger()


async def start_services(settings: Settings) -> Services:
    """Connect storage and Redis, seed the lattice and warm the definition cache."""
    session_factory = await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    try:
        inserted = await prepare_database()
        logger.info("database_ready", rank_definitions_inserted=inserted)
    except Exception:
        logger.warning("rank_definition_seeding_failed", exc_info=True)

    storage = SqlStorage(session_factory)
    services = build_services(
        settings,
        storage,
        redis=get_redis_or_none(),
        http_client=httpx.AsyncClient(timeout=settings.reward_timeout_seconds),
    )
    try:
        await services.definitions.reload(storage)
    except StorageError:
        logger.error("rank_definitions_unavailable", exc_info=True)
    return services


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings = get_settings()
    services = await start_services(settings)
    app.state.services = services

    sweeper = SessionSweeper(
        services.sessions,
        interval_seconds=settings.session_sweep_interval_seconds,
        on_sweep=services.ledger.cleanup_rate_limit_data,
    )
    sweeper_task = asyncio.create_task(sweeper.start())
    logger.info("gatekeeper_started", environment=settings.environment)

    yield

    await sweeper.stop()
    sweeper_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper_task

    await services.dispatcher.join()
    if services.http_client is not None:
        await services.http_client.aclose()
    await close_db()
    await close_redis()
    logger.info("gatekeeper_stopped")


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="Gatekeeper",
        description="Whitelist verification and rank progression service for a Minecraft proxy",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url=None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    for router in (verification_router, proxy_router, progression_router):
        app.include_router(router)

    return app


app = create_app()
