"""Build management endpoints.

- POST /builds - Start a build for the calling tenant
- GET /builds - List the calling tenant's builds
- GET /builds/{id}/status - Get build status
- POST /builds/{id}/cancel - Cancel a running build
"""

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException
from fastapi import status as http_status

from storeapp_builder.builds.errors import BuildValidationError
from storeapp_builder.builds.models import BuildJob
from storeapp_builder.builds.orchestrator import BuildOrchestrator
from web.deps import get_orchestrator, get_tenant_id

router = APIRouter()


def _not_found(build_id: str) -> HTTPException:
    return HTTPException(
        status_code=http_status.HTTP_404_NOT_FOUND,
        detail={
            "code": "build_not_found",
            "message": f"Build not found: {build_id}",
        },
    )


def _owned_job(job: BuildJob | None, build_id: str, tenant_id: str) -> BuildJob:
    # Another tenant's build is reported as missing
    if job is None or job.tenant_id != tenant_id:
        raise _not_found(build_id)
    return job


@router.post("", status_code=http_status.HTTP_202_ACCEPTED)
async def start_build_endpoint(
    config: dict[str, Any] = Body(...),
    tenant_id: str = Depends(get_tenant_id),
    orchestrator: BuildOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Start a build.

    Args:
        config: Build input (camelCase or snake_case fields).
        tenant_id: Calling tenant.
        orchestrator: Build orchestrator.

    Returns:
        The new build ID and its initial status.

    Raises:
        HTTPException: If the build input is invalid.
    """
    try:
        build_id = orchestrator.start_build(tenant_id, config)
    except BuildValidationError as e:
        raise HTTPException(
            status_code=422,
            detail={"code": e.code, "message": str(e)},
        ) from None

    job = orchestrator.registry.get(build_id)
    return {
        "build_id": build_id,
        "status": job.status.value if job else "pending",
        "message": "Build started",
    }


@router.get("")
def list_builds_endpoint(
    tenant_id: str = Depends(get_tenant_id),
    orchestrator: BuildOrchestrator = Depends(get_orchestrator),
) -> list[dict[str, Any]]:
    """List the calling tenant's builds, newest first."""
    return [job.to_dict() for job in orchestrator.get_tenant_builds(tenant_id)]


@router.get("/{build_id}/status")
async def get_build_status_endpoint(
    build_id: str,
    tenant_id: str = Depends(get_tenant_id),
    orchestrator: BuildOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Get build status, refreshing cloud builds from the CI service.

    Raises:
        HTTPException: If the build is unknown to the calling tenant.
    """
    job = await orchestrator.get_build_status(build_id)
    return _owned_job(job, build_id, tenant_id).to_dict()


@router.post("/{build_id}/cancel")
async def cancel_build_endpoint(
    build_id: str,
    tenant_id: str = Depends(get_tenant_id),
    orchestrator: BuildOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Cancel a running build.

    Raises:
        HTTPException: If the build is unknown or no longer running.
    """
    _owned_job(orchestrator.registry.get(build_id), build_id, tenant_id)
    if not await orchestrator.cancel_build(build_id):
        raise HTTPException(
            status_code=http_status.HTTP_409_CONFLICT,
            detail={
                "code": "build_not_running",
                "message": f"Build is not running: {build_id}",
            },
        )
    return {"build_id": build_id, "cancelled": True}
