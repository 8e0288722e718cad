"""FastAPI application factory and main app.

This module creates the FastAPI application with all routers and
dependency injection configured. Published packages are served from the
artifacts directory under the public URL prefix.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from storeapp_builder import __version__
from storeapp_builder.builds.orchestrator import BuildOrchestrator, create_orchestrator
from storeapp_builder.config import Settings, get_settings
from storeapp_builder.db import create_all_tables, get_engine, get_session_factory
from storeapp_builder.tenants.store import SqlTenantSettingsStore
from storeapp_builder.tenants.vault import ConfigVault, TenantConfigService
from web.routers import app_config, builds, config, health


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager.

    Wires the orchestrator and the tenant configuration service unless
    they were injected, and waits for running builds on shutdown.
    """
    settings: Settings = app.state.settings

    if getattr(app.state, "config_service", None) is None:
        engine = get_engine(settings.db_url)
        create_all_tables(engine)
        app.state.session_factory = get_session_factory(engine)
        app.state.config_service = TenantConfigService(
            SqlTenantSettingsStore(app.state.session_factory),
            ConfigVault.from_settings(settings),
        )

    if getattr(app.state, "orchestrator", None) is None:
        app.state.orchestrator = create_orchestrator(settings)

    orchestrator: BuildOrchestrator = app.state.orchestrator
    try:
        yield
    finally:
        await orchestrator.shutdown()


def create_app(
    settings: Settings | None = None,
    orchestrator: BuildOrchestrator | None = None,
    config_service: TenantConfigService | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Application settings (loaded from environment if omitted).
        orchestrator: Pre-built orchestrator, mainly for tests.
        config_service: Pre-built tenant configuration service.

    Returns:
        Configured FastAPI application.
    """
    if settings is None:
        settings = get_settings()

    application = FastAPI(
        title="Storefront App Builder API",
        description="HTTP API for packaging tenant storefronts as native apps",
        version=__version__,
        lifespan=lifespan,
    )
    application.state.settings = settings
    application.state.orchestrator = orchestrator
    application.state.config_service = config_service

    # Include routers
    application.include_router(health.router, tags=["health"])
    application.include_router(config.router, prefix="/config", tags=["config"])
    application.include_router(builds.router, prefix="/builds", tags=["builds"])
    application.include_router(
        app_config.router, prefix="/app-config", tags=["app-config"]
    )

    application.mount(
        settings.public_url_prefix.rstrip("/") or "/apks",
        StaticFiles(directory=settings.artifacts_dir / "apks", check_dir=False),
        name="apks",
    )

    return application


# Create the default application instance
app = create_app()
