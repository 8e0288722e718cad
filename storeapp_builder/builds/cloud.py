"""Remote CI build client.

This module handles:
- Triggering a workflow on the CI builds API with the tenant's app metadata
- Polling the remote build until it finishes or the attempt cap is hit
- Downloading finished packages into the tenant's public directory
- Best-effort cancellation

Requests authenticate with the ``x-auth-token`` header.
"""

from __future__ import annotations

import asyncio
import logging
import tempfile
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import httpx

from storeapp_builder.builds.artifacts import (
    ArtifactPublisher,
    classify_artifact,
    safe_filename,
)
from storeapp_builder.builds.errors import (
    ArtifactError,
    BuildCancelledError,
    ExternalServiceError,
)
from storeapp_builder.types import BuildArtifact, Platform

if TYPE_CHECKING:
    from storeapp_builder.builds.models import BuildConfig
    from storeapp_builder.builds.orchestrator import BuildContext
    from storeapp_builder.config import Settings

logger = logging.getLogger(__name__)

# Progress reported while the remote build runs
POLL_PROGRESS_START = 30
POLL_PROGRESS_STEP = 2
POLL_PROGRESS_CAP = 90

# Timeout for artifact downloads (seconds)
DOWNLOAD_TIMEOUT = 600

# Chunk size for downloads (bytes)
DOWNLOAD_CHUNK_SIZE = 64 * 1024  # 64 KB


@dataclass
class CloudBuildState:
    """Snapshot of a remote build.

    Attributes:
        status: Remote lifecycle state (e.g. 'queued', 'building', 'finished').
        build_status: Outcome once finished (e.g. 'success', 'failed').
        artefacts: Remote artefact descriptors with 'name' and 'url'.
    """

    status: str
    build_status: str | None = None
    artefacts: list[dict[str, Any]] = field(default_factory=list)

    @property
    def finished(self) -> bool:
        return self.status == "finished"

    @property
    def succeeded(self) -> bool:
        return self.finished and self.build_status == "success"

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> CloudBuildState:
        """Parse a status response, accepting a top-level or nested 'build'."""
        data = payload.get("build", payload)
        if not isinstance(data, dict) or "status" not in data:
            raise ExternalServiceError("CI status response has no 'status'")
        artefacts = data.get("artefacts") or []
        return cls(
            status=str(data["status"]),
            build_status=data.get("buildStatus"),
            artefacts=[a for a in artefacts if isinstance(a, dict)],
        )


def poll_progress(attempt: int) -> int:
    """Capped linear progress ramp for polling attempt number ``attempt``."""
    return min(POLL_PROGRESS_CAP, POLL_PROGRESS_START + attempt * POLL_PROGRESS_STEP)


class CloudBuildClient:
    """Build strategy backed by a remote CI build service.

    Args:
        api_url: Base URL of the builds API.
        api_token: API token; the strategy is unavailable without it.
        app_id: CI application ID; the strategy is unavailable without it.
        publisher: Publisher for downloaded packages.
        branch: Branch the workflow builds.
        poll_interval: Seconds between status polls.
        max_attempts: Maximum number of status polls.
        timeout: Timeout for API requests in seconds.
        client: Optional HTTPX client (one is created when omitted).
    """

    name = "cloud"

    def __init__(
        self,
        api_url: str,
        api_token: str | None,
        app_id: str | None,
        publisher: ArtifactPublisher,
        branch: str = "main",
        poll_interval: float = 30.0,
        max_attempts: int = 60,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.api_token = api_token
        self.app_id = app_id
        self.publisher = publisher
        self.branch = branch
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        publisher: ArtifactPublisher,
        client: httpx.AsyncClient | None = None,
    ) -> CloudBuildClient:
        """Create a client from application settings."""
        return cls(
            api_url=settings.cloud_api_url,
            api_token=settings.cloud_api_token,
            app_id=settings.cloud_app_id,
            publisher=publisher,
            branch=settings.cloud_branch,
            poll_interval=settings.cloud_poll_interval,
            max_attempts=settings.cloud_poll_max_attempts,
            timeout=settings.cloud_request_timeout,
            client=client,
        )

    @property
    def is_configured(self) -> bool:
        """Whether API credentials are present."""
        return bool(self.api_token and self.app_id)

    def is_available(self, config: BuildConfig) -> bool:
        return self.is_configured

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _headers(self) -> dict[str, str]:
        return {"x-auth-token": self.api_token or ""}

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send an API request, mapping failures to ExternalServiceError."""
        try:
            response = await self.client.request(
                method, url, headers=self._headers(), timeout=self.timeout, **kwargs
            )
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            raise ExternalServiceError(
                f"CI API error: {e.response.status_code} - {e.response.text[:500]}",
                status_code=e.response.status_code,
            ) from e
        except httpx.TimeoutException as e:
            raise ExternalServiceError(f"Timeout calling CI API at {url}") from e
        except httpx.RequestError as e:
            raise ExternalServiceError(f"Network error calling CI API: {e}") from e

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise ExternalServiceError("CI API returned invalid JSON") from e
        if not isinstance(data, dict):
            raise ExternalServiceError("CI API returned an unexpected payload")
        return data

    def build_variables(self, tenant_id: str, config: BuildConfig) -> dict[str, str]:
        """Environment variables handed to the CI workflow."""
        return {
            "TENANT_ID": tenant_id,
            "APP_NAME": config.app_name,
            "PACKAGE_ID": config.resolve_package_id(tenant_id),
            "STORE_URL": config.store_url,
            "PRIMARY_COLOR": config.primary_color,
            "APP_VERSION": config.app_version,
        }

    async def trigger(self, tenant_id: str, config: BuildConfig) -> str:
        """Start a remote build.

        Args:
            tenant_id: Owning tenant.
            config: Build input.

        Returns:
            Remote build ID.

        Raises:
            ExternalServiceError: On transport failure, non-2xx, or a
                response without a build ID.
        """
        workflow_id = "ios-build" if config.platform == Platform.IOS else "android-build"
        body = {
            "appId": self.app_id,
            "workflowId": workflow_id,
            "branch": self.branch,
            "environment": {"variables": self.build_variables(tenant_id, config)},
        }
        response = await self._request("POST", self.api_url, json=body)
        cloud_build_id = self._json(response).get("buildId")
        if not cloud_build_id:
            raise ExternalServiceError("CI API response has no 'buildId'")

        logger.info("CI build started: %s (workflow=%s)", cloud_build_id, workflow_id)
        return str(cloud_build_id)

    async def get_status(self, cloud_build_id: str) -> CloudBuildState:
        """Fetch the current state of a remote build."""
        response = await self._request("GET", f"{self.api_url}/{cloud_build_id}")
        return CloudBuildState.from_payload(self._json(response))

    async def poll(
        self,
        cloud_build_id: str,
        on_progress: Callable[[int, CloudBuildState], None] | None = None,
        check_cancelled: Callable[[], None] | None = None,
    ) -> CloudBuildState:
        """Wait for a remote build to finish successfully.

        Polls every ``poll_interval`` seconds, at most ``max_attempts``
        times. Failed polls are logged and count as an attempt.

        Args:
            cloud_build_id: Remote build ID.
            on_progress: Called with (attempt, state) for unfinished builds.
            check_cancelled: Called after each wait; raises to stop polling.

        Returns:
            The finished, successful build state.

        Raises:
            ExternalServiceError: If the build failed or polling timed out.
        """
        for attempt in range(self.max_attempts):
            await asyncio.sleep(self.poll_interval)
            if check_cancelled is not None:
                check_cancelled()

            try:
                state = await self.get_status(cloud_build_id)
            except ExternalServiceError as e:
                logger.warning("Error polling CI build %s: %s", cloud_build_id, e)
                continue

            if state.finished:
                if state.succeeded:
                    return state
                raise ExternalServiceError(f"Cloud build failed: {state.build_status}")

            if on_progress is not None:
                on_progress(attempt, state)

        raise ExternalServiceError(
            f"Cloud build timed out after {self.max_attempts} status checks",
            code="cloud_timeout",
        )

    async def _download(self, url: str, dest_path: Path) -> None:
        """Stream a remote artefact to a local file."""
        try:
            async with self.client.stream(
                "GET", url, timeout=DOWNLOAD_TIMEOUT, follow_redirects=True
            ) as response:
                response.raise_for_status()
                with dest_path.open("wb") as f:
                    async for chunk in response.aiter_bytes(DOWNLOAD_CHUNK_SIZE):
                        f.write(chunk)
        except httpx.HTTPStatusError as e:
            raise ExternalServiceError(
                f"HTTP error downloading {url}: {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            raise ExternalServiceError(f"Network error downloading {url}: {e}") from e

    async def fetch_artifacts(
        self, tenant_id: str, state: CloudBuildState
    ) -> tuple[str | None, str | None]:
        """Download package artefacts of a finished build.

        Only ``.apk``, ``.aab`` and ``.ipa`` artefacts are downloaded. An
        ``.apk`` is preferred over an ``.aab`` for the Android URL.

        Args:
            tenant_id: Owning tenant.
            state: Finished build state.

        Returns:
            Tuple of (download_url, ios_download_url).

        Raises:
            ArtifactError: If no package artefact exists or writing fails.
            ExternalServiceError: If a download fails.
        """
        download_url: str | None = None
        ios_download_url: str | None = None
        android_is_apk = False

        for artefact in state.artefacts:
            name = artefact.get("name") or ""
            url = artefact.get("url")
            kind = classify_artifact(name)
            if kind is None or not url:
                continue

            filename = safe_filename(name)
            with tempfile.TemporaryDirectory(prefix="storeapp_dl_") as tmp_dir:
                tmp_path = Path(tmp_dir) / filename
                await self._download(url, tmp_path)
                public_url = self.publisher.publish_file(tenant_id, tmp_path, filename)

            if kind == "ios":
                ios_download_url = ios_download_url or public_url
            elif download_url is None or (
                not android_is_apk and filename.lower().endswith(".apk")
            ):
                download_url = public_url
                android_is_apk = filename.lower().endswith(".apk")

        if download_url is None and ios_download_url is None:
            raise ArtifactError("Cloud build finished without downloadable packages")
        return download_url, ios_download_url

    async def cancel(self, cloud_build_id: str) -> bool:
        """Ask the CI service to cancel a build. Never raises.

        Returns:
            True if the service accepted the request.
        """
        try:
            await self._request("POST", f"{self.api_url}/{cloud_build_id}/cancel")
        except ExternalServiceError as e:
            logger.error("Error cancelling CI build %s: %s", cloud_build_id, e)
            return False
        logger.info("Cancelled CI build %s", cloud_build_id)
        return True

    async def refresh(self, cloud_build_id: str) -> CloudBuildState | None:
        """Fetch remote state for a status read. Never raises.

        Returns:
            The remote state, or None when it could not be fetched.
        """
        if not self.is_configured:
            return None
        try:
            return await self.get_status(cloud_build_id)
        except ExternalServiceError as e:
            logger.error("Error refreshing CI build %s: %s", cloud_build_id, e)
            return None

    async def attempt(self, ctx: BuildContext) -> BuildArtifact:
        """Run the job on the CI service."""
        ctx.report(20, "Triggering cloud build...")
        cloud_build_id = await self.trigger(ctx.tenant_id, ctx.config)
        ctx.set_cloud_build_id(cloud_build_id)
        if ctx.cancelled:
            # Cancelled while the trigger was in flight
            await self.cancel(cloud_build_id)
            raise BuildCancelledError(ctx.build_id)
        ctx.report(POLL_PROGRESS_START, "Cloud build started, waiting for completion...")

        def on_progress(attempt: int, state: CloudBuildState) -> None:
            ctx.report(
                poll_progress(attempt), f"Cloud build in progress... ({state.status})"
            )

        try:
            state = await self.poll(
                cloud_build_id,
                on_progress=on_progress,
                check_cancelled=ctx.check_cancelled,
            )
        except ExternalServiceError as e:
            if e.code == "cloud_timeout":
                await self.cancel(cloud_build_id)
            raise

        ctx.check_cancelled()
        ctx.report(POLL_PROGRESS_CAP, "Downloading build artifacts...")
        download_url, ios_download_url = await self.fetch_artifacts(
            ctx.tenant_id, state
        )
        return BuildArtifact(
            download_url=download_url,
            ios_download_url=ios_download_url,
            message="Build completed successfully!",
        )


__all__ = ["CloudBuildClient", "CloudBuildState", "poll_progress"]
