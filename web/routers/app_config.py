"""Tenant app builder configuration endpoints."""

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException
from fastapi import status as http_status

from storeapp_builder.tenants.store import TenantNotFoundError
from storeapp_builder.tenants.vault import TenantConfigService
from web.deps import get_config_service, get_tenant_id

router = APIRouter()


@router.get("")
def get_app_config(
    tenant_id: str = Depends(get_tenant_id),
    service: TenantConfigService = Depends(get_config_service),
) -> dict[str, Any]:
    """Get the calling tenant's saved build configuration.

    Returns:
        The configuration, or null when none is stored.
    """
    return {"tenant_id": tenant_id, "config": service.get_config(tenant_id)}


@router.post("")
def save_app_config(
    config: dict[str, Any] = Body(...),
    tenant_id: str = Depends(get_tenant_id),
    service: TenantConfigService = Depends(get_config_service),
) -> dict[str, Any]:
    """Encrypt and save the calling tenant's build configuration.

    Raises:
        HTTPException: If the tenant does not exist.
    """
    try:
        saved = service.save_config(tenant_id, config)
    except TenantNotFoundError:
        raise HTTPException(
            status_code=http_status.HTTP_404_NOT_FOUND,
            detail={
                "code": "tenant_not_found",
                "message": f"Tenant not found: {tenant_id}",
            },
        ) from None
    return {"tenant_id": tenant_id, "config": saved}
