"""Build job registry.

Jobs are kept behind a small store interface (get/set/list) so a durable
backend can replace the in-memory default without touching orchestration.
Finished jobs are evicted once their TTL expires.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Protocol

from storeapp_builder.builds.models import BuildJob, generate_build_id

logger = logging.getLogger(__name__)


class BuildStore(Protocol):
    """Storage backend for build jobs."""

    def get(self, build_id: str) -> BuildJob | None: ...

    def set(self, job: BuildJob) -> None: ...

    def list(self) -> list[BuildJob]: ...


class InMemoryBuildStore:
    """Process-lifetime build store with TTL eviction of finished jobs.

    Args:
        ttl_seconds: How long a terminal job stays queryable after
            completion. 0 disables eviction.
    """

    def __init__(self, ttl_seconds: int = 0) -> None:
        self._jobs: dict[str, BuildJob] = {}
        self._lock = threading.Lock()
        self.ttl_seconds = ttl_seconds

    def get(self, build_id: str) -> BuildJob | None:
        self.evict_expired()
        with self._lock:
            return self._jobs.get(build_id)

    def set(self, job: BuildJob) -> None:
        with self._lock:
            self._jobs[job.build_id] = job

    def list(self) -> list[BuildJob]:
        self.evict_expired()
        with self._lock:
            return list(self._jobs.values())

    def evict_expired(self, now: datetime | None = None) -> int:
        """Drop terminal jobs completed longer than the TTL ago.

        Args:
            now: Reference time (defaults to the current UTC time).

        Returns:
            Number of evicted jobs.
        """
        if not self.ttl_seconds:
            return 0
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(
            seconds=self.ttl_seconds
        )
        with self._lock:
            expired = [
                build_id
                for build_id, job in self._jobs.items()
                if job.is_terminal
                and job.completed_at is not None
                and job.completed_at < cutoff
            ]
            for build_id in expired:
                del self._jobs[build_id]
        if expired:
            logger.debug("Evicted %d expired build(s)", len(expired))
        return len(expired)


class BuildRegistry:
    """Creates, stores, and looks up build jobs."""

    def __init__(self, store: BuildStore | None = None) -> None:
        self.store: BuildStore = store if store is not None else InMemoryBuildStore()

    def create(self, tenant_id: str) -> BuildJob:
        """Create and store a new pending job for a tenant."""
        job = BuildJob(build_id=generate_build_id(tenant_id), tenant_id=tenant_id)
        self.store.set(job)
        logger.info("Created build %s for tenant %s", job.build_id, tenant_id)
        return job

    def get(self, build_id: str) -> BuildJob | None:
        """Get a job by ID, or None if unknown."""
        return self.store.get(build_id)

    def save(self, job: BuildJob) -> None:
        """Persist the current state of a job."""
        self.store.set(job)

    def list_for_tenant(self, tenant_id: str) -> list[BuildJob]:
        """List a tenant's jobs, newest first."""
        jobs = [job for job in self.store.list() if job.tenant_id == tenant_id]
        return sorted(jobs, key=lambda job: job.started_at, reverse=True)


__all__ = ["BuildRegistry", "BuildStore", "InMemoryBuildStore"]
