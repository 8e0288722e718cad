"""Router modules for FastAPI web API."""

from web.routers import app_config, builds, config, health

__all__ = ["app_config", "builds", "config", "health"]
