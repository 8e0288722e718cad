"""Local native build strategy.

Builds a debug APK from the Capacitor project checkout on this host. When
no checkout is available the build degrades to a simulated one that walks
through scripted progress and serves a generic package.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING

import httpx

from storeapp_builder.builds.artifacts import ArtifactPublisher, slugify_app_name
from storeapp_builder.builds.errors import ArtifactError
from storeapp_builder.builds.project import (
    NativeProject,
    apply_app_config,
    checkout_guard,
    inject_tenant_config,
    normalize_java_version,
    patch_build_descriptor,
    patch_strings,
    project_lock,
    resolve_project,
    set_icon,
    tenant_runtime_config,
)
from storeapp_builder.builds.runner import (
    INSTALL_COMMAND,
    SYNC_COMMAND,
    compose_assemble_command,
    run_step,
)
from storeapp_builder.types import BuildArtifact

if TYPE_CHECKING:
    from storeapp_builder.builds.models import BuildConfig
    from storeapp_builder.builds.orchestrator import BuildContext
    from storeapp_builder.config import Settings

logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "App built successfully! Download and install."

SIMULATED_STEPS = (
    (10, "Building application package..."),
    (30, "Compiling resources..."),
    (60, "Signing APK..."),
)


class SimulatedBuild:
    """Scripted stand-in for a build on hosts without a native checkout.

    Args:
        artifact_url: Generic package URL served on success.
        step_delay: Seconds between progress steps.
    """

    def __init__(self, artifact_url: str, step_delay: float = 2.0) -> None:
        self.artifact_url = artifact_url
        self.step_delay = step_delay

    async def run(self, ctx: BuildContext) -> BuildArtifact:
        logger.warning(
            "Build %s: no native project found, running simulated build", ctx.build_id
        )
        for progress, message in SIMULATED_STEPS:
            ctx.check_cancelled()
            ctx.report(progress, message)
            await asyncio.sleep(self.step_delay)
        ctx.check_cancelled()
        return BuildArtifact(download_url=self.artifact_url, is_simulated=True)


class LocalBuildExecutor:
    """Build strategy running the native toolchain on this host.

    Args:
        settings: Application settings.
        publisher: Publisher for the resulting package.
        cwd: Directory relative project candidates are resolved from.
        client: Optional HTTPX client for icon downloads.
    """

    name = "local"

    def __init__(
        self,
        settings: Settings,
        publisher: ArtifactPublisher,
        cwd: Path | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings
        self.publisher = publisher
        self.cwd = cwd
        self.simulated = SimulatedBuild(
            settings.simulated_artifact_url, settings.simulated_step_delay
        )
        self._client = client
        self._owns_client = client is None

    @classmethod
    def from_settings(
        cls, settings: Settings, publisher: ArtifactPublisher
    ) -> LocalBuildExecutor:
        """Create an executor from application settings."""
        return cls(settings, publisher)

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=30.0, follow_redirects=True)
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def is_available(self, config: BuildConfig) -> bool:
        return True

    async def attempt(self, ctx: BuildContext) -> BuildArtifact:
        """Build locally, or simulate when there is no native checkout.

        Raises:
            ConfigurationError: If project_dir_strict is set and the configured
                project_dir is unusable.
        """
        project = resolve_project(self.settings, self.cwd)
        if project is None:
            return await self.simulated.run(ctx)

        ctx.report(15, "Initializing local build environment...")
        logger.info("Build %s: using native project at %s", ctx.build_id, project.root)
        async with project_lock(
            self.settings.lock_dir, project.root, timeout=self.settings.lock_timeout
        ):
            ctx.check_cancelled()
            with checkout_guard(project, self.settings.work_dir):
                apk_path = await self._build(ctx, project)
                ctx.check_cancelled()
                ctx.report(90, "Finalizing APK...")
                filename = f"{slugify_app_name(ctx.config.app_name)}-debug.apk"
                download_url = self.publisher.publish_file(
                    ctx.tenant_id, apk_path, filename
                )

        return BuildArtifact(download_url=download_url, message=SUCCESS_MESSAGE)

    async def _build(self, ctx: BuildContext, project: NativeProject) -> Path:
        """Customize the checkout for the tenant and assemble the APK."""
        config = ctx.config
        package_id = config.resolve_package_id(ctx.tenant_id)
        log_dir = self.settings.work_dir / "logs" / ctx.build_id
        install_timeout = self.settings.dependency_install_timeout

        ctx.report(18, "Configuring app for your store...")
        apply_app_config(project, config.app_name, package_id, config.store_url)

        ctx.check_cancelled()
        ctx.report(20, "Syncing Android project...")
        await run_step(
            "Native project sync",
            SYNC_COMMAND,
            project.root,
            log_dir / "sync.log",
            timeout=install_timeout,
        )

        ctx.check_cancelled()
        inject_tenant_config(
            project,
            tenant_runtime_config(
                ctx.tenant_id,
                config.store_url,
                config.app_name,
                config.primary_color,
                config.runtime_config,
            ),
        )
        patch_build_descriptor(project, package_id)
        normalize_java_version(project)
        patch_strings(project, config.app_name)

        ctx.check_cancelled()
        ctx.report(30, "Installing dependencies...")
        await run_step(
            "Dependency install",
            INSTALL_COMMAND,
            project.root,
            log_dir / "install.log",
            timeout=install_timeout,
        )

        ctx.check_cancelled()
        if config.icon_url:
            await set_icon(project, config.icon_url, self.client)

        ctx.check_cancelled()
        ctx.report(40, "Building Android APK (this may take a few minutes)...")
        await run_step(
            "Gradle build",
            compose_assemble_command(),
            project.android_dir,
            log_dir / "gradle.log",
            timeout=self.settings.toolchain_timeout,
        )

        if not project.apk_path.is_file():
            raise ArtifactError(f"APK file not generated at {project.apk_path}")
        return project.apk_path


__all__ = ["LocalBuildExecutor", "SIMULATED_STEPS", "SimulatedBuild", "SUCCESS_MESSAGE"]
