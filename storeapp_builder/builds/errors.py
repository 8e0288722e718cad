"""Error taxonomy for the build pipeline.

Every error carries a stable ``code`` that is recorded on the failed job
next to the human-readable message.
"""

from __future__ import annotations

import re

# Error code constants
VALIDATION = "validation"
EXTERNAL_SERVICE = "external_service"
TOOLCHAIN_FAILED = "toolchain_failed"
FILESYSTEM = "filesystem"
CONFIGURATION = "configuration"
PROJECT_BUSY = "project_busy"
CANCELLED = "cancelled"
INTERNAL = "internal_error"

# Longest toolchain excerpt attached to a job
MAX_OUTPUT_CHARS = 4000

_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]")


class BuildPipelineError(Exception):
    """Base error for build pipeline operations."""

    def __init__(self, message: str, code: str = INTERNAL) -> None:
        super().__init__(message)
        self.code = code


class BuildValidationError(BuildPipelineError):
    """Raised when build input is missing or malformed."""

    def __init__(self, message: str, code: str = VALIDATION) -> None:
        super().__init__(message, code)


class ExternalServiceError(BuildPipelineError):
    """Raised when the CI or packaging service fails or answers garbage."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str = EXTERNAL_SERVICE,
    ) -> None:
        super().__init__(message, code)
        self.status_code = status_code


class ToolchainError(BuildPipelineError):
    """Raised when a native toolchain command exits non-zero."""

    def __init__(
        self,
        message: str,
        output: str = "",
        exit_code: int | None = None,
        code: str = TOOLCHAIN_FAILED,
    ) -> None:
        super().__init__(message, code)
        self.output = sanitize_output(output)
        self.exit_code = exit_code

    def __str__(self) -> str:
        base = super().__str__()
        if self.output:
            return f"{base}\n{self.output}"
        return base


class ArtifactError(BuildPipelineError):
    """Raised when an expected package is missing or cannot be written."""

    def __init__(self, message: str, code: str = FILESYSTEM) -> None:
        super().__init__(message, code)


class ConfigurationError(BuildPipelineError):
    """Raised when the build environment is misconfigured."""

    def __init__(self, message: str, code: str = CONFIGURATION) -> None:
        super().__init__(message, code)


class ProjectBusyError(BuildPipelineError):
    """Raised when the native project lock cannot be acquired in time."""

    def __init__(self, message: str, code: str = PROJECT_BUSY) -> None:
        super().__init__(message, code)


class BuildCancelledError(BuildPipelineError):
    """Raised inside a strategy when its job was cancelled."""

    def __init__(self, build_id: str, code: str = CANCELLED) -> None:
        super().__init__(f"Build {build_id} was cancelled", code)
        self.build_id = build_id


def sanitize_output(output: str, limit: int = MAX_OUTPUT_CHARS) -> str:
    """Strip terminal escapes and keep the tail of toolchain output.

    Args:
        output: Raw combined stdout/stderr.
        limit: Maximum number of characters to keep.

    Returns:
        Cleaned output, truncated from the front.
    """
    cleaned = _ANSI_ESCAPE.sub("", output).replace("\r", "").strip()
    if len(cleaned) > limit:
        cleaned = "..." + cleaned[-limit:]
    return cleaned


__all__ = [
    "ArtifactError",
    "BuildCancelledError",
    "BuildPipelineError",
    "BuildValidationError",
    "ConfigurationError",
    "ExternalServiceError",
    "ProjectBusyError",
    "ToolchainError",
    "sanitize_output",
]
