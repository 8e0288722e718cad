"""Build data model.

This module defines the BuildConfig input schema and the BuildJob record
that tracks one build from submission to its terminal state.
"""

from __future__ import annotations

import re
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlparse

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
)
from pydantic.alias_generators import to_camel

from storeapp_builder.builds.errors import INTERNAL, BuildValidationError
from storeapp_builder.types import BuildStatus, Platform

PACKAGE_ID_PREFIX = "com.storeapp"
PACKAGE_ID_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9_]*(\.[a-zA-Z][a-zA-Z0-9_]*)+$")


def safe_app_name(name: str | None) -> str:
    """Reduce an app name to lowercase ASCII letters and digits.

    Args:
        name: Display name.

    Returns:
        Sanitized name, or 'app' when nothing survives.
    """
    safe = re.sub(r"[^a-z0-9]", "", (name or "").lower())
    return safe or "app"


def _package_segment(value: str) -> str:
    """Make a package identifier segment start with a letter."""
    return f"t{value}" if value[:1].isdigit() else value


def derive_package_id(app_name: str, tenant_id: str) -> str:
    """Derive a unique package identifier from app name and tenant.

    Args:
        app_name: Display name of the app.
        tenant_id: Owning tenant ID.

    Returns:
        Package identifier like 'com.storeapp.mystore.a1b2c3d4'.
    """
    tenant_prefix = re.sub(r"[^a-z0-9]", "", tenant_id.lower())[:8] or "tenant"
    return ".".join(
        [
            PACKAGE_ID_PREFIX,
            _package_segment(safe_app_name(app_name)),
            _package_segment(tenant_prefix),
        ]
    )


def generate_build_id(tenant_id: str) -> str:
    """Generate an opaque build ID embedding tenant and submission time."""
    return f"build-{tenant_id}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"


class BuildConfig(BaseModel):
    """Input for one build request.

    Field names accept both snake_case and the camelCase used by the
    storefront admin UI.

    Attributes:
        app_name: Display name of the app.
        package_id: Explicit package identifier (derived when absent).
        store_url: Absolute URL of the storefront the app loads.
        primary_color: Primary brand color.
        secondary_color: Secondary brand color.
        icon_url: Icon as http(s) URL, data URI, or store-relative path.
        platform: Target platform(s).
        app_version: Version name for the package.
        background_color: Splash/background color.
        runtime_config: Arbitrary runtime configuration injected into the app.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    app_name: str = Field(default="My Store", min_length=1)
    package_id: str | None = Field(default=None)
    store_url: str = Field(description="Absolute http(s) URL of the storefront")
    primary_color: str = Field(default="#6366f1")
    secondary_color: str | None = Field(default="#4f46e5")
    icon_url: str | None = Field(default=None)
    platform: Platform = Field(default=Platform.ANDROID)
    app_version: str = Field(default="1.0.0")
    background_color: str = Field(default="#ffffff")
    runtime_config: dict[str, Any] | None = Field(default=None, alias="config")

    @field_validator("store_url")
    @classmethod
    def validate_store_url(cls, v: str) -> str:
        """Validate store URL is an absolute http(s) URL."""
        v = v.strip()
        if not v:
            raise ValueError("Store URL is required")
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise ValueError(f"Invalid store URL: '{v}'")
        return v.rstrip("/")

    @field_validator("package_id")
    @classmethod
    def validate_package_id(cls, v: str | None) -> str | None:
        """Validate explicit package IDs look like reverse-DNS names."""
        if v is None or not v.strip():
            return None
        if not PACKAGE_ID_PATTERN.match(v):
            raise ValueError(f"Invalid package ID: '{v}'")
        return v

    @classmethod
    def parse(cls, data: BuildConfig | dict[str, Any]) -> BuildConfig:
        """Validate raw request data into a BuildConfig.

        Args:
            data: Mapping of fields, or an existing BuildConfig.

        Returns:
            Validated BuildConfig.

        Raises:
            BuildValidationError: If the data is invalid.
        """
        if isinstance(data, cls):
            return data
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            messages = "; ".join(err["msg"] for err in e.errors())
            raise BuildValidationError(messages) from e

    def resolve_package_id(self, tenant_id: str) -> str:
        """Return the explicit package ID or derive one for the tenant."""
        return self.package_id or derive_package_id(self.app_name, tenant_id)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class BuildJob:
    """State of one build job.

    Only the orchestrator mutates a job after creation. Every mutator is a
    no-op once the job reached a terminal state, so a finished job can
    never be resurrected by late results of in-flight work.

    Attributes:
        build_id: Opaque unique ID.
        tenant_id: Owning tenant.
        status: Current status.
        progress: 0-100, never decreases.
        status_message: Human-readable progress description.
        started_at: Submission time.
        completed_at: Time the job reached a terminal state.
        download_url: Public URL of the Android package.
        ios_download_url: Public URL of the iOS package.
        error: Failure description.
        error_code: Stable error code for failures.
        is_simulated: Whether the result is the generic simulated package.
        cloud_build_id: Correlation ID of the remote CI build.
        strategy: Strategy currently running, or the one that ended the job.
    """

    build_id: str
    tenant_id: str
    status: BuildStatus = BuildStatus.PENDING
    progress: int = 0
    status_message: str = "Build queued..."
    started_at: datetime = field(default_factory=_utcnow)
    completed_at: datetime | None = None
    download_url: str | None = None
    ios_download_url: str | None = None
    error: str | None = None
    error_code: str | None = None
    is_simulated: bool = False
    cloud_build_id: str | None = None
    strategy: str | None = None

    def __repr__(self) -> str:
        """Return string representation of BuildJob."""
        return (
            f"<BuildJob(build_id='{self.build_id}', status='{self.status.value}', "
            f"progress={self.progress})>"
        )

    @property
    def is_terminal(self) -> bool:
        """Whether the job reached success or failed."""
        return self.status.is_terminal

    def mark_building(self, message: str, progress: int = 0) -> None:
        """Mark this job as building."""
        if self.is_terminal:
            return
        self.status = BuildStatus.BUILDING
        self.update_progress(progress, message)

    def update_progress(self, progress: int, message: str | None = None) -> bool:
        """Advance progress and optionally replace the status message.

        Progress is clamped to 0-100 and never moves backwards.

        Returns:
            False if the job is terminal and nothing changed.
        """
        if self.is_terminal:
            return False
        self.progress = max(self.progress, min(100, max(0, progress)))
        if message is not None:
            self.status_message = message
        return True

    def mark_succeeded(
        self,
        download_url: str | None = None,
        ios_download_url: str | None = None,
        message: str = "Build completed successfully!",
        is_simulated: bool = False,
        strategy: str | None = None,
    ) -> bool:
        """Mark this job as succeeded.

        Returns:
            False if the job was already terminal.
        """
        if self.is_terminal:
            return False
        self.status = BuildStatus.SUCCESS
        self.progress = 100
        self.status_message = message
        self.download_url = download_url
        self.ios_download_url = ios_download_url
        self.is_simulated = is_simulated
        if strategy is not None:
            self.strategy = strategy
        self.completed_at = _utcnow()
        return True

    def mark_failed(
        self,
        message: str,
        code: str = INTERNAL,
        strategy: str | None = None,
    ) -> bool:
        """Mark this job as failed.

        Args:
            message: Error description.
            code: Stable error code.
            strategy: Strategy whose failure ended the job.

        Returns:
            False if the job was already terminal.
        """
        if self.is_terminal:
            return False
        self.status = BuildStatus.FAILED
        self.status_message = "Build failed"
        self.error = message
        self.error_code = code
        if strategy is not None:
            self.strategy = strategy
        self.completed_at = _utcnow()
        return True

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "build_id": self.build_id,
            "tenant_id": self.tenant_id,
            "status": self.status.value,
            "progress": self.progress,
            "status_message": self.status_message,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat()
            if self.completed_at
            else None,
            "download_url": self.download_url,
            "ios_download_url": self.ios_download_url,
            "error": self.error,
            "error_code": self.error_code,
            "is_simulated": self.is_simulated,
            "cloud_build_id": self.cloud_build_id,
            "strategy": self.strategy,
        }


__all__ = [
    "BuildConfig",
    "BuildJob",
    "derive_package_id",
    "generate_build_id",
    "safe_app_name",
]
