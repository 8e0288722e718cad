"""Shared fixtures for storeapp_builder tests."""

import json
from pathlib import Path

import pytest

from storeapp_builder.builds.artifacts import ArtifactPublisher
from storeapp_builder.builds.registry import BuildRegistry, InMemoryBuildStore
from storeapp_builder.config import Settings

CAPACITOR_CONFIG = {
    "appId": "com.template.app",
    "appName": "Template",
    "webDir": "dist",
    "server": {"androidScheme": "https"},
}

BUILD_GRADLE = """apply plugin: 'com.android.application'

android {
    namespace "com.template.app"
    compileSdk rootProject.ext.compileSdkVersion
    defaultConfig {
        applicationId "com.template.app"
        versionCode 1
        versionName "1.0"
    }
}
"""

CAPACITOR_GRADLE = """android {
  compileOptions {
      sourceCompatibility JavaVersion.VERSION_21
      targetCompatibility JavaVersion.VERSION_21
  }
}
"""

STRINGS_XML = """<?xml version='1.0' encoding='utf-8'?>
<resources>
    <string name="app_name">Template</string>
    <string name="title_activity_main">Template</string>
    <string name="package_name">com.template.app</string>
</resources>
"""

MANIFEST_XML = """<?xml version="1.0" encoding="utf-8"?>
<manifest xmlns:android="http://schemas.android.com/apk/res/android">
    <application
        android:icon="@mipmap/ic_launcher"
        android:roundIcon="@mipmap/ic_launcher_round"
        android:label="@string/app_name">
    </application>
</manifest>
"""


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings confined to tmp_path, with no cloud credentials or checkout."""
    return Settings(
        artifacts_dir=tmp_path / "public",
        work_dir=tmp_path / "work",
        lock_dir=tmp_path / "locks",
        db_url="sqlite://",
        project_dir=None,
        project_autodiscovery=False,
        cloud_api_token=None,
        cloud_app_id=None,
        cloud_poll_interval=0,
        simulated_step_delay=0,
        lock_timeout=5,
        build_ttl=0,
    )


@pytest.fixture
def publisher(settings: Settings) -> ArtifactPublisher:
    return ArtifactPublisher(settings.artifacts_dir, settings.public_url_prefix)


@pytest.fixture
def registry() -> BuildRegistry:
    return BuildRegistry(InMemoryBuildStore())


@pytest.fixture
def capacitor_project(tmp_path: Path) -> Path:
    """Create a minimal Capacitor checkout with an Android platform."""
    root = tmp_path / "frontend"
    app_dir = root / "android" / "app"
    main_dir = app_dir / "src" / "main"
    (main_dir / "res" / "values").mkdir(parents=True)
    (main_dir / "assets" / "public").mkdir(parents=True)

    (root / "capacitor.config.json").write_text(json.dumps(CAPACITOR_CONFIG, indent=2))
    (app_dir / "build.gradle").write_text(BUILD_GRADLE)
    (app_dir / "capacitor.build.gradle").write_text(CAPACITOR_GRADLE)
    (main_dir / "res" / "values" / "strings.xml").write_text(STRINGS_XML)
    (main_dir / "AndroidManifest.xml").write_text(MANIFEST_XML)
    return root


def snapshot_tree(root: Path) -> dict[str, bytes]:
    """Map every file under root to its content."""
    return {
        str(path.relative_to(root)): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }


@pytest.fixture
def tree_snapshot():
    """Return a helper that snapshots file contents under a directory."""
    return snapshot_tree
