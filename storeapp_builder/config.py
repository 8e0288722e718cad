"""Configuration settings for storeapp_builder.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_artifacts_dir() -> Path:
    """Return the default public artifacts directory."""
    return Path.home() / ".local" / "share" / "storeapp-builder" / "public"


def _default_work_dir() -> Path:
    """Return the default scratch directory for build logs and extraction."""
    return Path.home() / ".cache" / "storeapp-builder" / "work"


def _default_lock_dir() -> Path:
    """Return the default directory for project lock files."""
    return Path.home() / ".cache" / "storeapp-builder" / ".locks"


def _default_db_url() -> str:
    """Return the default database URL (SQLite)."""
    db_path = Path.home() / ".local" / "share" / "storeapp-builder" / "db.sqlite"
    return f"sqlite:///{db_path}"


def _default_search_paths() -> list[Path]:
    """Return deployment-standard locations of the native project checkout."""
    return [
        Path("/var/www/frontend"),
        Path("/app/frontend"),
        Path("/usr/src/app/frontend"),
        Path("/home/node/app/frontend"),
    ]


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the STOREAPP_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="STOREAPP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    artifacts_dir: Path = Field(
        default_factory=_default_artifacts_dir,
        description="Public root served to clients; packages land in apks/<tenant>/",
    )
    work_dir: Path = Field(
        default_factory=_default_work_dir,
        description="Scratch directory for build logs and archive extraction",
    )
    lock_dir: Path = Field(
        default_factory=_default_lock_dir,
        description="Directory for native project lock files",
    )
    db_url: str = Field(
        default_factory=_default_db_url,
        description="Database connection URL for tenant settings",
    )
    public_url_prefix: str = Field(
        default="/apks",
        description="URL prefix under which packages are served",
    )

    # Native project discovery
    project_dir: Path | None = Field(
        default=None,
        description="Explicit path to the Capacitor project checkout",
    )
    project_autodiscovery: bool = Field(
        default=True,
        description="Search conventional locations after project_dir",
    )
    project_dir_strict: bool = Field(
        default=False,
        description="Fail builds when project_dir is set but not buildable",
    )
    project_search_paths: list[Path] = Field(
        default_factory=_default_search_paths,
        description="Deployment-standard locations searched during discovery",
    )

    # Operational
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    encryption_key: SecretStr = Field(
        default=SecretStr("default-secret-key-must-be-32-chars-!!"),
        description="Secret used to encrypt tenant build settings",
    )

    # Cloud CI service
    cloud_api_url: str = Field(
        default="https://api.codemagic.io/builds",
        description="Base URL of the CI builds API",
    )
    cloud_api_token: str | None = Field(
        default=None,
        description="CI API token (cloud builds are skipped when unset)",
    )
    cloud_app_id: str | None = Field(
        default=None,
        description="CI application ID (cloud builds are skipped when unset)",
    )
    cloud_branch: str = Field(default="main", description="Branch to build")
    cloud_poll_interval: float = Field(
        default=30.0,
        ge=0,
        description="Seconds between CI status polls",
    )
    cloud_poll_max_attempts: int = Field(
        default=60,
        ge=1,
        description="Maximum number of CI status polls before timing out",
    )
    cloud_request_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for individual CI API requests",
    )

    # PWA packaging service
    pwa_api_url: str = Field(
        default="https://pwabuilder-cloudapk.azurewebsites.net/generateAppPackage",
        description="PWA to Android package conversion endpoint",
    )
    pwa_timeout: float = Field(
        default=120.0,
        gt=0,
        description="Timeout for the packaging request",
    )

    # Local toolchain (in seconds)
    toolchain_timeout: int = Field(
        default=1800,
        ge=60,
        description="Timeout for the Gradle assemble step",
    )
    dependency_install_timeout: int = Field(
        default=600,
        ge=30,
        description="Timeout for dependency install and native sync steps",
    )
    lock_timeout: float = Field(
        default=1800.0,
        ge=0,
        description="Timeout waiting for the native project lock",
    )
    simulated_step_delay: float = Field(
        default=2.0,
        ge=0,
        description="Delay between scripted progress steps of a simulated build",
    )
    simulated_artifact_url: str = Field(
        default="/apks/app-debug.apk",
        description="Generic package served by simulated builds",
    )

    # Registry
    build_ttl: int = Field(
        default=86400,
        ge=0,
        description="Seconds a finished build stays queryable (0 = forever)",
    )

    @property
    def cloud_configured(self) -> bool:
        """Whether cloud build credentials are present."""
        return bool(self.cloud_api_token and self.cloud_app_id)


def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    The encryption key and CI token are masked.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2, exclude={"cloud_api_token"})


__all__ = ["Settings", "get_settings", "print_settings_json"]
