"""Shared type definitions for storeapp_builder.

This module contains enums and dataclasses shared across subpackages
to avoid circular imports.
"""

from dataclasses import dataclass
from enum import Enum


class BuildStatus(str, Enum):
    """Status of a build job."""

    PENDING = "pending"
    BUILDING = "building"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transitions are allowed."""
        return self in (BuildStatus.SUCCESS, BuildStatus.FAILED)


class Platform(str, Enum):
    """Target platform(s) for a build."""

    ANDROID = "android"
    IOS = "ios"
    BOTH = "both"


@dataclass
class BuildArtifact:
    """Outcome of a successful build strategy.

    Attributes:
        download_url: Public URL of the Android package, if any.
        ios_download_url: Public URL of the iOS package, if any.
        is_simulated: Whether the package is the generic simulated one.
        message: Final human-readable status message.
    """

    download_url: str | None = None
    ios_download_url: str | None = None
    is_simulated: bool = False
    message: str = "Build completed successfully!"


__all__ = ["BuildArtifact", "BuildStatus", "Platform"]
