"""PWA to native packaging client.

Sends the storefront's web app manifest data to a hosted packaging service
in a single request and extracts the Android package from the zip it
returns. Only public storefront URLs can be packaged; loopback and
otherwise unreachable URLs are rejected before any network call.
"""

from __future__ import annotations

import ipaddress
import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.parse import urljoin, urlparse

import httpx

from storeapp_builder.builds.artifacts import ArtifactPublisher, extract_package
from storeapp_builder.builds.errors import BuildValidationError, ExternalServiceError
from storeapp_builder.builds.models import safe_app_name
from storeapp_builder.types import BuildArtifact

if TYPE_CHECKING:
    from storeapp_builder.builds.models import BuildConfig
    from storeapp_builder.builds.orchestrator import BuildContext
    from storeapp_builder.config import Settings

logger = logging.getLogger(__name__)

DEFAULT_ICON_PATH = "/icons/icon-512x512.png"
LAUNCHER_NAME_MAX = 12


@dataclass
class PackageFile:
    """A package produced by the packaging service."""

    name: str
    content: bytes

    @property
    def extension(self) -> str:
        return Path(self.name).suffix.lower()


def _is_loopback_host(host: str) -> bool:
    host = host.lower().rstrip(".")
    if host == "localhost" or host.endswith(".localhost"):
        return True
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    return address.is_loopback or address.is_unspecified


def is_public_url(url: str) -> bool:
    """Whether a URL is a fully-qualified, non-loopback http(s) URL."""
    parsed = urlparse(url)
    host = parsed.hostname
    if parsed.scheme not in ("http", "https") or not host:
        return False
    if _is_loopback_host(host):
        return False
    try:
        ipaddress.ip_address(host)
        return True
    except ValueError:
        return "." in host.strip(".")


def validate_store_url(url: str) -> str:
    """Check a store URL can be reached by the packaging service.

    Args:
        url: Storefront URL.

    Returns:
        The URL without a trailing slash.

    Raises:
        BuildValidationError: If the URL is invalid, loopback, or not
            fully qualified.
    """
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise BuildValidationError(f"Invalid store URL: '{url}'")
    if _is_loopback_host(parsed.hostname):
        raise BuildValidationError("PWA packaging requires a public URL, not localhost")
    if not is_public_url(url):
        raise BuildValidationError(
            f"PWA packaging requires a fully-qualified host, got '{parsed.hostname}'"
        )
    return url.rstrip("/")


class PWAPackagingClient:
    """Build strategy backed by a hosted PWA packaging service.

    Args:
        api_url: Packaging endpoint.
        publisher: Publisher for the resulting package.
        work_dir: Scratch directory for archive extraction.
        timeout: Request timeout in seconds.
        client: Optional HTTPX client (one is created when omitted).
    """

    name = "pwa"

    def __init__(
        self,
        api_url: str,
        publisher: ArtifactPublisher,
        work_dir: Path | None = None,
        timeout: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_url = api_url
        self.publisher = publisher
        self.work_dir = work_dir
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        publisher: ArtifactPublisher,
        client: httpx.AsyncClient | None = None,
    ) -> PWAPackagingClient:
        """Create a client from application settings."""
        return cls(
            api_url=settings.pwa_api_url,
            publisher=publisher,
            work_dir=settings.work_dir,
            timeout=settings.pwa_timeout,
            client=client,
        )

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

    def is_available(self, config: BuildConfig) -> bool:
        return is_public_url(config.store_url)

    def build_manifest(self, config: BuildConfig, tenant_id: str) -> dict[str, Any]:
        """Compose the packaging request for a store.

        Args:
            config: Build input with a public store URL.
            tenant_id: Owning tenant, used to derive the package ID.

        Returns:
            Request body for the packaging service.
        """
        store_url = validate_store_url(config.store_url)
        icon = config.icon_url or DEFAULT_ICON_PATH
        if not icon.startswith(("http://", "https://")):
            icon = urljoin(f"{store_url}/", icon.lstrip("/"))

        return {
            "packageId": config.resolve_package_id(tenant_id),
            "name": config.app_name,
            "launcherName": config.app_name[:LAUNCHER_NAME_MAX],
            "appVersion": config.app_version,
            "appVersionCode": 1,
            "host": urlparse(store_url).netloc,
            "startUrl": "/",
            "webManifestUrl": f"{store_url}/manifest.json",
            "themeColor": config.primary_color,
            "navigationColor": config.primary_color,
            "backgroundColor": config.background_color,
            "display": "standalone",
            "iconUrl": icon,
            "maskableIconUrl": icon,
            "enableNotifications": True,
            "fallbackType": "customtabs",
            "signingMode": "none",
        }

    async def build(self, config: BuildConfig, tenant_id: str) -> PackageFile:
        """Package a storefront in one request.

        Args:
            config: Build input.
            tenant_id: Owning tenant.

        Returns:
            The first .apk in the returned archive, else the first .aab.

        Raises:
            BuildValidationError: If the store URL cannot be packaged.
            ExternalServiceError: If the service fails or times out.
            ArtifactError: If the archive is invalid or holds no package.
        """
        manifest = self.build_manifest(config, tenant_id)
        logger.info("Requesting PWA package for %s", manifest["host"])

        try:
            response = await self.client.post(
                self.api_url, json=manifest, timeout=self.timeout
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ExternalServiceError(
                f"PWA packaging error: {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.TimeoutException as e:
            raise ExternalServiceError(
                f"PWA packaging timed out after {self.timeout}s"
            ) from e
        except httpx.RequestError as e:
            raise ExternalServiceError(f"Network error calling PWA packaging: {e}") from e

        if self.work_dir is not None:
            self.work_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(
            prefix="storeapp_pwa_", dir=self.work_dir
        ) as tmp_dir:
            package_path = extract_package(response.content, Path(tmp_dir))
            return PackageFile(name=package_path.name, content=package_path.read_bytes())

    async def attempt(self, ctx: BuildContext) -> BuildArtifact:
        """Run the job through the packaging service."""
        validate_store_url(ctx.config.store_url)
        ctx.report(30, "Generating APK via PWA packaging service...")

        package = await self.build(ctx.config, ctx.tenant_id)
        ctx.check_cancelled()
        ctx.report(70, "Processing APK...")

        filename = (
            f"{safe_app_name(ctx.config.app_name)}-v{ctx.config.app_version}"
            f"{package.extension}"
        )
        download_url = self.publisher.publish_bytes(
            ctx.tenant_id, filename, package.content
        )
        return BuildArtifact(download_url=download_url)


__all__ = [
    "PWAPackagingClient",
    "PackageFile",
    "is_public_url",
    "validate_store_url",
]
