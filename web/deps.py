"""Request dependencies for FastAPI.

Provides the orchestrator, the tenant configuration service, and the
calling tenant to route handlers via FastAPI dependency injection.
"""

from __future__ import annotations

from typing import Any

from fastapi import Header, HTTPException, Request
from fastapi import status as http_status

from storeapp_builder.builds.orchestrator import BuildOrchestrator
from storeapp_builder.config import Settings
from storeapp_builder.tenants.vault import TenantConfigService


def get_app_settings(request: Request) -> Settings:
    """Get settings from app state."""
    settings: Any = request.app.state.settings
    return settings  # type: ignore[no-any-return]


def get_orchestrator(request: Request) -> BuildOrchestrator:
    """Get the build orchestrator from app state."""
    orchestrator: Any = request.app.state.orchestrator
    return orchestrator  # type: ignore[no-any-return]


def get_config_service(request: Request) -> TenantConfigService:
    """Get the tenant configuration service from app state."""
    service: Any = request.app.state.config_service
    return service  # type: ignore[no-any-return]


def get_tenant_id(x_tenant_id: str | None = Header(default=None)) -> str:
    """Resolve the calling tenant from the X-Tenant-ID header.

    Raises:
        HTTPException: If the header is missing or empty.
    """
    if not x_tenant_id or not x_tenant_id.strip():
        raise HTTPException(
            status_code=http_status.HTTP_400_BAD_REQUEST,
            detail={
                "code": "tenant_required",
                "message": "X-Tenant-ID header is required",
            },
        )
    return x_tenant_id.strip()
