"""Tests for shared types module."""

from storeapp_builder.types import BuildArtifact, BuildStatus, Platform


class TestEnums:
    """Test enum definitions."""

    def test_build_status_values(self) -> None:
        """BuildStatus should have expected values."""
        assert BuildStatus.PENDING.value == "pending"
        assert BuildStatus.BUILDING.value == "building"
        assert BuildStatus.SUCCESS.value == "success"
        assert BuildStatus.FAILED.value == "failed"

    def test_terminal_statuses(self) -> None:
        """Only success and failed are terminal."""
        assert not BuildStatus.PENDING.is_terminal
        assert not BuildStatus.BUILDING.is_terminal
        assert BuildStatus.SUCCESS.is_terminal
        assert BuildStatus.FAILED.is_terminal

    def test_platform_values(self) -> None:
        """Platform should have expected values."""
        assert Platform("android") is Platform.ANDROID
        assert Platform("ios") is Platform.IOS
        assert Platform("both") is Platform.BOTH


class TestBuildArtifact:
    """Test BuildArtifact dataclass."""

    def test_defaults(self) -> None:
        artifact = BuildArtifact(download_url="/apks/t1/app.apk")
        assert artifact.ios_download_url is None
        assert artifact.is_simulated is False
        assert artifact.message == "Build completed successfully!"
