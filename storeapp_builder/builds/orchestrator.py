"""Build orchestration.

This module provides the high-level build API:
- start_build(): validate input, register a job, run it in the background
- The fallback chain: cloud CI -> PWA packaging -> local toolchain
- get_build_status(): status with pull-based refresh of cloud builds
- cancel_build(): cooperative cancellation

Strategies share one interface (``is_available`` + ``attempt``) and are
tried in order; the first success wins and only the failure of the last
attempted strategy is terminal for the job.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from storeapp_builder.builds.errors import (
    CANCELLED,
    EXTERNAL_SERVICE,
    INTERNAL,
    BuildCancelledError,
    BuildPipelineError,
)
from storeapp_builder.builds.models import BuildConfig, BuildJob
from storeapp_builder.builds.registry import BuildRegistry, InMemoryBuildStore
from storeapp_builder.types import BuildArtifact, BuildStatus

if TYPE_CHECKING:
    from storeapp_builder.builds.cloud import CloudBuildClient
    from storeapp_builder.config import Settings

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Build cancelled by user"


@dataclass
class BuildContext:
    """Handle a strategy uses to report on the job it is running.

    Attributes:
        job: The job being built.
        config: Validated build input.
        registry: Registry the job lives in.
    """

    job: BuildJob
    config: BuildConfig
    registry: BuildRegistry

    @property
    def build_id(self) -> str:
        return self.job.build_id

    @property
    def tenant_id(self) -> str:
        return self.job.tenant_id

    @property
    def cancelled(self) -> bool:
        """Whether the job was finished behind the strategy's back."""
        return self.job.is_terminal

    def check_cancelled(self) -> None:
        """Stop the running strategy if its job is already terminal.

        Raises:
            BuildCancelledError: If the job was cancelled.
        """
        if self.job.is_terminal:
            raise BuildCancelledError(self.job.build_id)

    def report(self, progress: int, message: str | None = None) -> None:
        """Advance job progress and status message."""
        if self.job.update_progress(progress, message):
            self.registry.save(self.job)

    def set_cloud_build_id(self, cloud_build_id: str) -> None:
        """Record the remote CI correlation ID on the job.

        The ID is kept even when the job is already terminal.
        """
        self.job.cloud_build_id = cloud_build_id
        self.registry.save(self.job)


class BuildStrategy(Protocol):
    """One way of producing a package."""

    name: str

    def is_available(self, config: BuildConfig) -> bool:
        """Whether this strategy may be attempted for the config."""
        ...

    async def attempt(self, ctx: BuildContext) -> BuildArtifact:
        """Produce a package or raise BuildPipelineError."""
        ...


class BuildOrchestrator:
    """Drives build jobs through the strategy fallback chain.

    Args:
        registry: Job registry.
        strategies: Strategies in fallback order.
        cloud: Cloud CI client used for status refresh and cancellation.
    """

    def __init__(
        self,
        registry: BuildRegistry,
        strategies: list[BuildStrategy],
        cloud: CloudBuildClient | None = None,
    ) -> None:
        if not strategies:
            raise ValueError("At least one build strategy is required")
        self.registry = registry
        self.strategies = strategies
        self.cloud = cloud
        self._tasks: dict[str, asyncio.Task[None]] = {}

    def start_build(
        self, tenant_id: str, config: BuildConfig | dict[str, Any]
    ) -> str:
        """Register a build job and run it in the background.

        Must be called from within a running event loop. The job is
        created synchronously, so its status is queryable as soon as this
        returns.

        Args:
            tenant_id: Owning tenant.
            config: Build input (validated here).

        Returns:
            The new build ID.

        Raises:
            BuildValidationError: If the config is invalid.
        """
        build_config = BuildConfig.parse(config)
        job = self.registry.create(tenant_id)

        task = asyncio.get_running_loop().create_task(
            self.run_build(job, build_config), name=job.build_id
        )
        self._tasks[job.build_id] = task
        task.add_done_callback(lambda t: self._tasks.pop(job.build_id, None))
        return job.build_id

    async def run_build(self, job: BuildJob, config: BuildConfig) -> None:
        """Run one job through the fallback chain to a terminal state."""
        job.mark_building("Preparing build configuration...", progress=10)
        self.registry.save(job)

        candidates = [s for s in self.strategies if s.is_available(config)]
        if not candidates:
            job.mark_failed("No build strategy is available", code=INTERNAL)
            self.registry.save(job)
            return

        ctx = BuildContext(job=job, config=config, registry=self.registry)
        for index, strategy in enumerate(candidates):
            is_last = index == len(candidates) - 1
            if job.is_terminal:
                return
            job.strategy = strategy.name
            logger.info("Build %s: attempting %s build", job.build_id, strategy.name)

            try:
                artifact = await strategy.attempt(ctx)
            except BuildCancelledError:
                logger.info("Build %s: stopped after cancellation", job.build_id)
                return
            except BuildPipelineError as e:
                if ctx.cancelled:
                    return
                if is_last:
                    logger.error(
                        "Build %s: %s build failed: %s", job.build_id, strategy.name, e
                    )
                    job.mark_failed(f"Build failed: {e}", code=e.code)
                    self.registry.save(job)
                    return
                logger.warning(
                    "Build %s: %s build failed (%s), falling back",
                    job.build_id,
                    strategy.name,
                    e,
                )
                continue
            except Exception as e:
                logger.exception(
                    "Build %s: unexpected error in %s build", job.build_id, strategy.name
                )
                if ctx.cancelled:
                    return
                if is_last:
                    job.mark_failed(f"Build failed: {e}", code=INTERNAL)
                    self.registry.save(job)
                    return
                continue

            if job.mark_succeeded(
                download_url=artifact.download_url,
                ios_download_url=artifact.ios_download_url,
                message=artifact.message,
                is_simulated=artifact.is_simulated,
            ):
                self.registry.save(job)
                logger.info(
                    "Build %s succeeded via %s: %s",
                    job.build_id,
                    strategy.name,
                    artifact.download_url or artifact.ios_download_url,
                )
            return

    async def get_build_status(self, build_id: str) -> BuildJob | None:
        """Get a job, refreshing cloud-backed builds from the CI service.

        Args:
            build_id: Build ID.

        Returns:
            The job, or None if unknown.
        """
        job = self.registry.get(build_id)
        if job is None:
            return None

        if (
            job.status == BuildStatus.BUILDING
            and job.cloud_build_id
            and self.cloud is not None
            and job.strategy == self.cloud.name
        ):
            state = await self.cloud.refresh(job.cloud_build_id)
            if state is not None and not job.is_terminal:
                if state.finished and not state.succeeded:
                    job.mark_failed(
                        f"Build failed: {state.build_status}", code=EXTERNAL_SERVICE
                    )
                elif state.finished:
                    job.update_progress(90, "Cloud build finished, downloading artifacts...")
                else:
                    job.update_progress(
                        job.progress, f"Cloud build in progress... ({state.status})"
                    )
                self.registry.save(job)
        return job

    def get_tenant_builds(self, tenant_id: str) -> list[BuildJob]:
        """List a tenant's jobs, newest first."""
        return self.registry.list_for_tenant(tenant_id)

    async def cancel_build(self, build_id: str) -> bool:
        """Cancel a running build.

        The job is failed immediately; strategies notice at their next
        cancellation check. Remote CI builds are cancelled best-effort.

        Returns:
            True if the job was building and is now cancelled.
        """
        job = self.registry.get(build_id)
        if job is None or job.status != BuildStatus.BUILDING:
            return False

        if not job.mark_failed(CANCELLED_MESSAGE, code=CANCELLED):
            return False
        self.registry.save(job)
        logger.info("Build %s cancelled by user", build_id)

        if (
            job.cloud_build_id
            and self.cloud is not None
            and self.cloud.is_configured
            and job.strategy == self.cloud.name
        ):
            await self.cloud.cancel(job.cloud_build_id)
        return True

    async def wait_for(self, build_id: str) -> BuildJob | None:
        """Wait until a job's background task finished and return the job."""
        task = self._tasks.get(build_id)
        if task is not None:
            await asyncio.shield(task)
        return self.registry.get(build_id)

    async def shutdown(self) -> None:
        """Wait for running jobs and release HTTP clients."""
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)
        for strategy in self.strategies:
            aclose = getattr(strategy, "aclose", None)
            if aclose is not None:
                await aclose()


def create_orchestrator(
    settings: Settings | None = None,
    registry: BuildRegistry | None = None,
) -> BuildOrchestrator:
    """Build the default orchestrator from settings.

    Args:
        settings: Application settings.
        registry: Registry to use (a TTL-bounded in-memory one by default).

    Returns:
        BuildOrchestrator with cloud, PWA, and local strategies.
    """
    from storeapp_builder.builds.artifacts import ArtifactPublisher
    from storeapp_builder.builds.cloud import CloudBuildClient
    from storeapp_builder.builds.local import LocalBuildExecutor
    from storeapp_builder.builds.pwa import PWAPackagingClient
    from storeapp_builder.config import get_settings

    if settings is None:
        settings = get_settings()
    if registry is None:
        registry = BuildRegistry(InMemoryBuildStore(ttl_seconds=settings.build_ttl))

    publisher = ArtifactPublisher(settings.artifacts_dir, settings.public_url_prefix)
    cloud = CloudBuildClient.from_settings(settings, publisher)
    strategies: list[BuildStrategy] = [
        cloud,
        PWAPackagingClient.from_settings(settings, publisher),
        LocalBuildExecutor.from_settings(settings, publisher),
    ]
    return BuildOrchestrator(registry, strategies, cloud=cloud)


__all__ = [
    "BuildContext",
    "BuildOrchestrator",
    "BuildStrategy",
    "CANCELLED_MESSAGE",
    "create_orchestrator",
]
