"""Configuration endpoints."""

from typing import Any

from fastapi import APIRouter, Depends

from storeapp_builder.config import Settings
from web.deps import get_app_settings

router = APIRouter()


@router.get("")
def get_config(settings: Settings = Depends(get_app_settings)) -> dict[str, Any]:
    """Get effective configuration.

    Secrets are never returned; only whether cloud builds are configured.

    Returns:
        Current configuration as JSON.
    """
    return {
        "artifacts_dir": str(settings.artifacts_dir),
        "work_dir": str(settings.work_dir),
        "public_url_prefix": settings.public_url_prefix,
        "project_dir": str(settings.project_dir) if settings.project_dir else None,
        "project_autodiscovery": settings.project_autodiscovery,
        "log_level": settings.log_level,
        "cloud_configured": settings.cloud_configured,
        "cloud_poll_interval": settings.cloud_poll_interval,
        "cloud_poll_max_attempts": settings.cloud_poll_max_attempts,
        "pwa_api_url": settings.pwa_api_url,
        "toolchain_timeout": settings.toolchain_timeout,
        "build_ttl": settings.build_ttl,
    }
