"""Native project checkout handling for local builds.

This module handles:
- Locating the Capacitor project checkout
- Rewriting the per-tenant parts of the checkout (app config, Gradle
  descriptors, string resources, runtime tenant file, launcher icon)
- Snapshotting and restoring every file a build mutates
- Serializing builds that share a checkout with a file lock
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import contextlib
import fcntl
import hashlib
import json
import logging
import os
import re
import shutil
import tempfile
import time
from collections.abc import AsyncIterator, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

import httpx

from storeapp_builder.builds.errors import (
    ArtifactError,
    ConfigurationError,
    ProjectBusyError,
)

if TYPE_CHECKING:
    from storeapp_builder.config import Settings

logger = logging.getLogger(__name__)

CAPACITOR_CONFIG = "capacitor.config.json"
ICON_RESOURCE = "@drawable/app_custom_icon"

# Seconds between lock acquisition attempts
LOCK_POLL_INTERVAL = 0.5

_XML_UNSAFE = re.compile(r"[<>&'\"]")


@dataclass
class NativeProject:
    """A Capacitor project checkout with an Android platform.

    Attributes:
        root: Project root (the directory holding capacitor.config.json).
    """

    root: Path

    @property
    def config_path(self) -> Path:
        return self.root / CAPACITOR_CONFIG

    @property
    def android_dir(self) -> Path:
        return self.root / "android"

    @property
    def app_dir(self) -> Path:
        return self.android_dir / "app"

    @property
    def build_gradle(self) -> Path:
        return self.app_dir / "build.gradle"

    @property
    def capacitor_gradle(self) -> Path:
        return self.app_dir / "capacitor.build.gradle"

    @property
    def main_dir(self) -> Path:
        return self.app_dir / "src" / "main"

    @property
    def strings_path(self) -> Path:
        return self.main_dir / "res" / "values" / "strings.xml"

    @property
    def manifest_path(self) -> Path:
        return self.main_dir / "AndroidManifest.xml"

    @property
    def assets_dir(self) -> Path:
        return self.main_dir / "assets" / "public"

    @property
    def tenant_file(self) -> Path:
        return self.assets_dir / "tenant.json"

    @property
    def icon_path(self) -> Path:
        return self.main_dir / "res" / "drawable" / "app_custom_icon.png"

    @property
    def apk_path(self) -> Path:
        return self.app_dir / "build" / "outputs" / "apk" / "debug" / "app-debug.apk"

    @property
    def is_buildable(self) -> bool:
        """Whether the checkout has a Capacitor config and Android platform."""
        return self.config_path.is_file() and self.android_dir.is_dir()

    def mutable_files(self) -> list[Path]:
        """Files a build rewrites in place."""
        return [
            self.config_path,
            self.build_gradle,
            self.capacitor_gradle,
            self.strings_path,
            self.manifest_path,
        ]

    def generated_files(self) -> list[Path]:
        """Files a build may create."""
        return [self.tenant_file, self.icon_path]


def candidate_roots(settings: Settings, cwd: Path | None = None) -> list[Path]:
    """List the locations searched for the project checkout, in order.

    Args:
        settings: Application settings.
        cwd: Working directory used for relative candidates.

    Returns:
        Candidate project roots.
    """
    candidates = [settings.project_dir] if settings.project_dir is not None else []
    if not settings.project_autodiscovery:
        return candidates
    base = cwd or Path.cwd()
    return [
        *candidates,
        base.parent / "frontend",
        base.parent.parent / "frontend",
        *settings.project_search_paths,
    ]


def resolve_project(settings: Settings, cwd: Path | None = None) -> NativeProject | None:
    """Find the native project checkout to build in.

    The first buildable candidate wins. An unbuildable ``project_dir`` is
    logged and skipped unless ``project_dir_strict`` is set.

    Args:
        settings: Application settings.
        cwd: Working directory used for relative candidates.

    Returns:
        The project, or None when no checkout is available.

    Raises:
        ConfigurationError: If ``project_dir_strict`` is set and the
            configured project_dir is not buildable.
    """
    if settings.project_dir is not None:
        explicit = NativeProject(settings.project_dir.resolve())
        if not explicit.is_buildable:
            message = (
                f"Configured project_dir {settings.project_dir} has no "
                f"{CAPACITOR_CONFIG} and android/ directory"
            )
            if settings.project_dir_strict:
                raise ConfigurationError(message)
            logger.warning("%s, trying other locations", message)

    for candidate in candidate_roots(settings, cwd):
        project = NativeProject(candidate.resolve())
        if project.is_buildable:
            logger.debug("Found native project at %s", project.root)
            return project

    return None


def _read_json(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} does not hold a JSON object")
    return data


def _write_text(path: Path, content: str) -> None:
    try:
        path.write_text(content, encoding="utf-8")
    except OSError as e:
        raise ArtifactError(f"Failed to write {path}: {e}") from e


def apply_app_config(
    project: NativeProject, app_name: str, package_id: str, store_url: str
) -> None:
    """Point the Capacitor config at the tenant's store.

    Existing ``server`` options are preserved.
    """
    config = _read_json(project.config_path)
    config["appName"] = app_name
    config["appId"] = package_id
    server = config.get("server")
    config["server"] = {
        **(server if isinstance(server, dict) else {}),
        "url": store_url,
        "cleartext": True,
    }
    _write_text(project.config_path, json.dumps(config, indent=2))
    logger.info(
        "Applied app config: appName=%s, appId=%s, url=%s",
        app_name,
        package_id,
        store_url,
    )


def store_subdomain(store_url: str) -> str:
    """Return the first host label when the host has more than two labels."""
    parts = (urlparse(store_url).hostname or "").split(".")
    return parts[0] if len(parts) > 2 else ""


def tenant_runtime_config(
    tenant_id: str,
    store_url: str,
    app_name: str,
    primary_color: str,
    config: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Compose the runtime tenant file the app reads at startup."""
    return {
        "tenantId": tenant_id,
        "subdomain": store_subdomain(store_url),
        "storeUrl": store_url,
        "appName": app_name,
        "primaryColor": primary_color,
        "config": config,
    }


def inject_tenant_config(project: NativeProject, runtime_config: dict[str, Any]) -> bool:
    """Write the runtime tenant file into the Android web assets.

    Returns:
        True if written, False when the assets directory does not exist.
    """
    if not project.assets_dir.is_dir():
        logger.warning(
            "Android assets dir %s not found, skipping tenant.json", project.assets_dir
        )
        return False
    _write_text(project.tenant_file, json.dumps(runtime_config, indent=2))
    logger.info("Injected tenant.json for tenant %s", runtime_config.get("tenantId"))
    return True


def patch_build_descriptor(project: NativeProject, package_id: str) -> bool:
    """Set ``namespace`` and ``applicationId`` in the app's build.gradle.

    Returns:
        True if the descriptor exists and was rewritten.
    """
    path = project.build_gradle
    if not path.is_file():
        return False
    content = path.read_text(encoding="utf-8")
    content = re.sub(r'namespace\s+"[^"]+"', f'namespace "{package_id}"', content, count=1)
    content = re.sub(
        r'applicationId\s+"[^"]+"', f'applicationId "{package_id}"', content, count=1
    )
    _write_text(path, content)
    logger.info("Updated build.gradle with package ID %s", package_id)
    return True


def normalize_java_version(project: NativeProject) -> bool:
    """Pin Java 17 where the generated Gradle files ask for Java 21.

    Returns:
        True if any file changed.
    """
    changed = False
    for path in (project.capacitor_gradle, project.build_gradle):
        if not path.is_file():
            continue
        content = path.read_text(encoding="utf-8")
        if "JavaVersion.VERSION_21" in content:
            _write_text(
                path, content.replace("JavaVersion.VERSION_21", "JavaVersion.VERSION_17")
            )
            logger.info("Forced Java 17 in %s", path.name)
            changed = True
    return changed


def xml_safe_name(app_name: str) -> str:
    """Drop characters that would break an XML string resource."""
    return _XML_UNSAFE.sub("", app_name)


def patch_strings(project: NativeProject, app_name: str) -> bool:
    """Set the launcher label string resources.

    Returns:
        True if strings.xml exists and was rewritten.
    """
    path = project.strings_path
    if not path.is_file():
        return False
    name = xml_safe_name(app_name)
    content = path.read_text(encoding="utf-8")
    for key in ("app_name", "title_activity_main"):
        content = re.sub(
            rf'<string name="{key}">.*?</string>',
            lambda _m, key=key: f'<string name="{key}">{name}</string>',
            content,
            count=1,
        )
    _write_text(path, content)
    logger.info("Updated strings.xml with app name %s", name)
    return True


def decode_data_uri(uri: str) -> bytes:
    """Decode a base64 ``data:image/...`` URI.

    Raises:
        ValueError: If the URI carries no valid base64 payload.
    """
    header, sep, payload = uri.partition(";base64,")
    if not sep or not header.startswith("data:image"):
        raise ValueError("Icon data URI is not base64-encoded image data")
    try:
        return base64.b64decode(payload, validate=True)
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 icon data: {e}") from e


async def fetch_icon(icon_url: str, client: httpx.AsyncClient) -> bytes | None:
    """Load icon bytes from an http(s) URL or data URI.

    Returns:
        Icon bytes, or None for unsupported references.

    Raises:
        httpx.HTTPError: If the download fails.
        ValueError: If a data URI is malformed.
    """
    if icon_url.startswith(("http://", "https://")):
        response = await client.get(icon_url)
        response.raise_for_status()
        return response.content
    if icon_url.startswith("data:image"):
        return decode_data_uri(icon_url)
    return None


def point_manifest_at_icon(project: NativeProject) -> bool:
    """Repoint the launcher icons in AndroidManifest.xml at the custom icon."""
    path = project.manifest_path
    if not path.is_file():
        return False
    content = path.read_text(encoding="utf-8")
    content = re.sub(
        r'android:icon="@[^"]*"', f'android:icon="{ICON_RESOURCE}"', content, count=1
    )
    content = re.sub(
        r'android:roundIcon="@[^"]*"',
        f'android:roundIcon="{ICON_RESOURCE}"',
        content,
        count=1,
    )
    _write_text(path, content)
    return True


async def set_icon(
    project: NativeProject, icon_url: str, client: httpx.AsyncClient
) -> bool:
    """Install a custom launcher icon.

    Failures are logged and reported as False; they never fail a build.

    Returns:
        True if the icon was installed.
    """
    try:
        data = await fetch_icon(icon_url, client)
        if data is None:
            logger.warning("Skipping icon: unsupported reference %s", icon_url[:64])
            return False
        project.icon_path.parent.mkdir(parents=True, exist_ok=True)
        project.icon_path.write_bytes(data)
        point_manifest_at_icon(project)
    except (httpx.HTTPError, ValueError, OSError, ArtifactError) as e:
        logger.warning("Failed to set custom icon: %s", e)
        return False
    logger.info("Installed custom icon (%d bytes)", len(data))
    return True


@dataclass
class CheckoutSnapshot:
    """Saved state of the files a build touches.

    Attributes:
        backup_dir: Directory outside the checkout holding file copies.
        saved: Map of original path to its backup copy.
        absent: Paths that did not exist when the snapshot was taken.
        absent_dirs: Parent directories of ``absent`` paths that did not
            exist either.
    """

    backup_dir: Path
    saved: dict[Path, Path] = field(default_factory=dict)
    absent: list[Path] = field(default_factory=list)
    absent_dirs: list[Path] = field(default_factory=list)

    def restore(self) -> list[str]:
        """Put every file back the way it was.

        Directories created for generated files are removed again.

        Returns:
            Error descriptions for files that could not be restored.
        """
        errors: list[str] = []
        for original, backup in self.saved.items():
            try:
                shutil.copy2(backup, original)
            except OSError as e:
                errors.append(f"{original}: {e}")
        for path in self.absent:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                errors.append(f"{path}: {e}")
        # Deepest first so parents are empty when reached
        for directory in sorted(self.absent_dirs, key=lambda p: len(p.parts), reverse=True):
            try:
                directory.rmdir()
            except FileNotFoundError:
                continue
            except OSError as e:
                errors.append(f"{directory}: {e}")
        return errors


def _missing_parents(path: Path, root: Path) -> list[Path]:
    """Return the ancestors of ``path`` below ``root`` that do not exist."""
    missing: list[Path] = []
    parent = path.parent
    while parent != root and root in parent.parents and not parent.exists():
        missing.append(parent)
        parent = parent.parent
    return missing


def snapshot_checkout(project: NativeProject, backup_dir: Path) -> CheckoutSnapshot:
    """Copy the files a build mutates into ``backup_dir``."""
    snapshot = CheckoutSnapshot(backup_dir=backup_dir)
    for index, path in enumerate(project.mutable_files() + project.generated_files()):
        if path.is_file():
            backup = backup_dir / f"{index:02d}_{path.name}"
            shutil.copy2(path, backup)
            snapshot.saved[path] = backup
        else:
            snapshot.absent.append(path)
            for directory in _missing_parents(path, project.root):
                if directory not in snapshot.absent_dirs:
                    snapshot.absent_dirs.append(directory)
    return snapshot


@contextlib.contextmanager
def checkout_guard(
    project: NativeProject, work_dir: Path | None = None
) -> Iterator[CheckoutSnapshot]:
    """Snapshot the checkout and restore it on every exit path.

    Args:
        project: Native project checkout.
        work_dir: Parent for the backup directory.

    Yields:
        The snapshot.

    Raises:
        ArtifactError: If the snapshot cannot be taken, or restoring fails
            after the guarded block completed.
    """
    if work_dir is not None:
        work_dir.mkdir(parents=True, exist_ok=True)
    with tempfile.TemporaryDirectory(prefix="storeapp_backup_", dir=work_dir) as tmp:
        try:
            snapshot = snapshot_checkout(project, Path(tmp))
        except OSError as e:
            raise ArtifactError(f"Failed to snapshot {project.root}: {e}") from e

        try:
            yield snapshot
        finally:
            errors = snapshot.restore()
            if errors:
                logger.error("Failed to restore checkout: %s", "; ".join(errors))
            else:
                logger.debug("Restored checkout at %s", project.root)

        if errors:
            raise ArtifactError(f"Failed to restore checkout: {'; '.join(errors)}")


def lock_path_for(lock_dir: Path, root: Path) -> Path:
    """Return the lock file keyed by a project root."""
    digest = hashlib.sha256(str(root.resolve()).encode()).hexdigest()[:16]
    return lock_dir / f"project_{digest}.lock"


@contextlib.asynccontextmanager
async def project_lock(
    lock_dir: Path,
    root: Path,
    timeout: float | None = None,
) -> AsyncIterator[None]:
    """Acquire the exclusive lock of a project checkout.

    Serializes builds on one checkout within this process and across
    processes sharing ``lock_dir``.

    Args:
        lock_dir: Directory for lock files.
        root: Project root to lock.
        timeout: Lock acquisition timeout in seconds (None = wait forever).

    Yields:
        None when lock is acquired.

    Raises:
        ProjectBusyError: If lock cannot be acquired within timeout.
    """
    lock_dir.mkdir(parents=True, exist_ok=True)
    lock_file = lock_path_for(lock_dir, root)

    logger.debug("Acquiring project lock for %s", root)

    fd = os.open(str(lock_file), os.O_RDWR | os.O_CREAT, 0o600)
    lock_acquired = False
    try:
        start = time.monotonic()
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                lock_acquired = True
                break
            except BlockingIOError:
                if timeout is not None and time.monotonic() - start >= timeout:
                    raise ProjectBusyError(
                        f"Timeout waiting for project lock on {root}"
                    ) from None
                await asyncio.sleep(LOCK_POLL_INTERVAL)

        logger.debug("Project lock acquired for %s", root)
        yield
    finally:
        if lock_acquired:
            fcntl.flock(fd, fcntl.LOCK_UN)
            logger.debug("Project lock released for %s", root)
        os.close(fd)


__all__ = [
    "CheckoutSnapshot",
    "NativeProject",
    "apply_app_config",
    "candidate_roots",
    "checkout_guard",
    "decode_data_uri",
    "inject_tenant_config",
    "normalize_java_version",
    "patch_build_descriptor",
    "patch_strings",
    "project_lock",
    "resolve_project",
    "set_icon",
    "store_subdomain",
    "tenant_runtime_config",
]
