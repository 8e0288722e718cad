"""Artifact publishing helpers.

This module handles:
- Classifying package files (.apk/.aab vs .ipa)
- Deriving artifact file names from app names
- Writing packages into the tenant-scoped public directory
- Extracting packages from archives returned by packaging services

Published packages are served at ``{url_prefix}/{tenant_id}/{filename}``.
"""

from __future__ import annotations

import hashlib
import io
import logging
import os
import re
import shutil
import tempfile
import zipfile
from pathlib import Path

from storeapp_builder.builds.errors import ArtifactError

logger = logging.getLogger(__name__)

ANDROID_EXTENSIONS = (".apk", ".aab")
IOS_EXTENSIONS = (".ipa",)
ARTIFACT_EXTENSIONS = ANDROID_EXTENSIONS + IOS_EXTENSIONS

# Default chunk size for hashing
HASH_CHUNK_SIZE = 64 * 1024  # 64KB

_TENANT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.\-]+$")


def classify_artifact(filename: str) -> str | None:
    """Classify a package by its extension.

    Args:
        filename: Artifact file name.

    Returns:
        'android', 'ios', or None for anything that is not a package.
    """
    name = filename.lower()
    if name.endswith(ANDROID_EXTENSIONS):
        return "android"
    if name.endswith(IOS_EXTENSIONS):
        return "ios"
    return None


def slugify_app_name(name: str | None) -> str:
    """Turn an app name into a file-name slug.

    Args:
        name: Display name.

    Returns:
        Lowercase slug with single dashes, or 'app' when empty.
    """
    slug = re.sub(r"[^a-z0-9]", "-", (name or "").lower())
    slug = re.sub(r"-+", "-", slug).strip("-")
    return slug or "app"


def safe_filename(name: str) -> str:
    """Reduce a remote artifact name to a bare file name.

    Raises:
        ArtifactError: If nothing usable remains.
    """
    base = Path(name.replace("\\", "/")).name
    if not base or base in (".", ".."):
        raise ArtifactError(f"Invalid artifact file name: {name!r}")
    return base


def compute_file_hash(file_path: Path, chunk_size: int = HASH_CHUNK_SIZE) -> str:
    """Compute SHA-256 hash of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks for streaming hash.

    Returns:
        SHA-256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


class ArtifactPublisher:
    """Writes packages into the tenant-scoped public directory.

    Files are written to a temporary name and renamed into place, so a
    concurrent reader never sees a partially written package.

    Args:
        artifacts_dir: Public root directory.
        url_prefix: URL prefix under which ``artifacts_dir/apks`` is served.
    """

    def __init__(self, artifacts_dir: Path, url_prefix: str = "/apks") -> None:
        self.artifacts_dir = artifacts_dir
        self.url_prefix = url_prefix.rstrip("/")

    def tenant_dir(self, tenant_id: str) -> Path:
        """Return (and create) the public directory of a tenant.

        Raises:
            ArtifactError: If the tenant ID is not safe as a path segment.
        """
        if not _TENANT_ID_PATTERN.match(tenant_id) or tenant_id in (".", ".."):
            raise ArtifactError(f"Invalid tenant ID for artifact path: {tenant_id!r}")
        path = self.artifacts_dir / "apks" / tenant_id
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ArtifactError(f"Failed to create {path}: {e}") from e
        return path

    def url_for(self, tenant_id: str, filename: str) -> str:
        """Return the public URL of a tenant's artifact."""
        return f"{self.url_prefix}/{tenant_id}/{filename}"

    def publish_bytes(self, tenant_id: str, filename: str, data: bytes) -> str:
        """Write package bytes for a tenant.

        Args:
            tenant_id: Owning tenant.
            filename: Target file name.
            data: Package content.

        Returns:
            Public download URL.

        Raises:
            ArtifactError: If the file cannot be written.
        """
        filename = safe_filename(filename)
        dest = self.tenant_dir(tenant_id) / filename
        tmp_path: Path | None = None
        try:
            with tempfile.NamedTemporaryFile(
                dir=dest.parent, prefix=f".{filename}.", suffix=".tmp", delete=False
            ) as tmp_file:
                tmp_path = Path(tmp_file.name)
                tmp_file.write(data)
            os.replace(tmp_path, dest)
        except OSError as e:
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)
            raise ArtifactError(f"Failed to write artifact {dest}: {e}") from e

        logger.info(
            "Published %s (%d bytes, sha256: %s...)",
            dest,
            len(data),
            hashlib.sha256(data).hexdigest()[:16],
        )
        return self.url_for(tenant_id, filename)

    def publish_file(self, tenant_id: str, source: Path, filename: str) -> str:
        """Copy a built package into the tenant's public directory.

        Raises:
            ArtifactError: If the source is missing or the copy fails.
        """
        if not source.is_file():
            raise ArtifactError(f"Artifact not found: {source}")
        filename = safe_filename(filename)
        dest = self.tenant_dir(tenant_id) / filename
        tmp_path = dest.with_name(f".{filename}.tmp")
        try:
            shutil.copyfile(source, tmp_path)
            os.replace(tmp_path, dest)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise ArtifactError(f"Failed to copy {source} to {dest}: {e}") from e

        logger.info(
            "Published %s (sha256: %s...)", dest, compute_file_hash(dest)[:16]
        )
        return self.url_for(tenant_id, filename)


def extract_package(archive: bytes, dest_dir: Path) -> Path:
    """Extract a zip archive and select the Android package inside it.

    The first ``.apk`` wins; an ``.aab`` is used only when no ``.apk``
    exists.

    Args:
        archive: Zip archive content.
        dest_dir: Directory to extract into.

    Returns:
        Path to the selected package.

    Raises:
        ArtifactError: If the archive is invalid, unsafe, or has no package.
    """
    dest_dir.mkdir(parents=True, exist_ok=True)
    try:
        with zipfile.ZipFile(io.BytesIO(archive)) as zf:
            names = zf.namelist()
            for name in names:
                # Security: prevent path traversal
                member_path = Path(name)
                if member_path.is_absolute() or ".." in member_path.parts:
                    raise ArtifactError(
                        f"Refusing to extract {name}: path traversal detected"
                    )
            zf.extractall(dest_dir)
    except zipfile.BadZipFile as e:
        raise ArtifactError(f"Packaging service returned an invalid archive: {e}") from e
    except OSError as e:
        raise ArtifactError(f"Failed to extract archive to {dest_dir}: {e}") from e

    for extension in ANDROID_EXTENSIONS:
        for name in sorted(names):
            if name.lower().endswith(extension) and not name.endswith("/"):
                return dest_dir / name

    raise ArtifactError("No APK found in build output")


__all__ = [
    "ANDROID_EXTENSIONS",
    "ARTIFACT_EXTENSIONS",
    "IOS_EXTENSIONS",
    "ArtifactPublisher",
    "classify_artifact",
    "compute_file_hash",
    "extract_package",
    "safe_filename",
    "slugify_app_name",
]
