"""Main FastAPI application."""

import asyncio
from contextlib import asynccontextmanager, suppress
import logging

from fastapi import FastAPI
import httpx

from timekeeper_sync.api import health, integrations
from timekeeper_sync.core.config import get_settings
from timekeeper_sync.core.database import database
from timekeeper_sync.integrations import AdapterRegistry
from timekeeper_sync.services import IntegrationManager, IntegrationRepository, TaskRepository
from timekeeper_sync.utils.logging import setup_logging

logger = logging.getLogger(__name__)

# Get settings
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info(f"Starting {settings.service_name} ({settings.environment}) on port {settings.port}")
    await database.connect()

    http_client = httpx.AsyncClient(
        timeout=settings.http_timeout_seconds,
        headers={"User-Agent": f"{settings.service_name}/1.0"},
    )
    manager = IntegrationManager(
        store=IntegrationRepository(database, settings),
        task_store=TaskRepository(database),
        adapters=AdapterRegistry.create_all(http_client=http_client, settings=settings),
        settings=settings,
    )
    app.state.database = database
    app.state.manager = manager

    trigger = None
    if settings.sync_interval_seconds > 0:
        trigger = asyncio.create_task(manager.run_periodically(settings.sync_interval_seconds))

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.service_name}...")
    if trigger is not None:
        trigger.cancel()
        with suppress(asyncio.CancelledError):
            await trigger
    await http_client.aclose()
    await database.disconnect()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Timekeeper Sync",
        description="Mirrors Azure DevOps and GitHub work items into local tasks",
        version="1.0.0",
        lifespan=lifespan,
    )

    # Include routers
    app.include_router(health.router, tags=["health"])
    app.include_router(
        integrations.router,
        prefix="/api/v1/integrations",
        tags=["integrations"]
    )
    return app


app = create_app()


def run() -> None:
    import uvicorn

    setup_logging(settings)
    uvicorn.run(
        "timekeeper_sync.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.debug,
        log_config=None,
    )


if __name__ == "__main__":
    run()
