"""
Configuration management for the azpim CLI.

Non-secret configuration loaded from a YAML file in the per-user config
directory, overridable through AZPIM_* environment variables.
"""

import os
import sys
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

APP_NAME = "azpim"

DEFAULT_JUSTIFICATION_ACTIVATE = f"Activated via {APP_NAME}"
DEFAULT_JUSTIFICATION_DEACTIVATE = f"Deactivated via {APP_NAME}"


def default_config_dir() -> Path:
    """Return the base config directory for azpim.

    - Windows: %APPDATA%/azpim
    - Unix: $XDG_CONFIG_HOME/azpim or ~/.config/azpim
    """
    if sys.platform == "win32":
        app_data = os.environ.get("APPDATA", "").strip()
        base = Path(app_data) if app_data else Path.home() / "AppData" / "Roaming"
        return base / APP_NAME

    xdg_config_home = os.environ.get("XDG_CONFIG_HOME", "").strip()
    base = Path(xdg_config_home) if xdg_config_home else Path.home() / ".config"
    return base / APP_NAME


def yaml_config_settings_source() -> dict[str, Any]:
    """Load configuration from YAML file."""
    config_dir = os.environ.get("AZPIM_CONFIG_DIR", "").strip()
    config_path = (Path(config_dir) if config_dir else default_config_dir()) / "config.yaml"
    if config_path.exists():
        with open(config_path) as f:
            return yaml.safe_load(f) or {}
    return {}


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="AZPIM_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Logging
    log_level: str = Field(default="WARNING")
    json_logs: bool = Field(default=False, description="Render log lines as JSON")

    # Per-user data
    config_dir: Path = Field(
        default_factory=default_config_dir,
        description="Base directory for presets, favorites and the subscription cache",
    )
    presets_path: Path | None = Field(
        default=None,
        description="Absolute presets file path. Overrides the per-user location.",
    )
    favorites_path: Path | None = Field(
        default=None,
        description="Absolute favorites file path. Overrides the per-user location.",
    )
    subscription_cache_ttl_hours: int = Field(
        default=6, description="Subscription cache freshness window in hours"
    )

    # Activation duration policy
    default_duration_hours: int = Field(default=8)
    min_duration_hours: int = Field(default=1)
    max_duration_hours: int = Field(default=8)

    # Azure Resource Manager
    arm_base_url: str = Field(default="https://management.azure.com")
    arm_api_version: str = Field(
        default="2020-10-01", description="Microsoft.Authorization PIM API version"
    )
    subscriptions_api_version: str = Field(default="2022-12-01")
    request_timeout_seconds: float = Field(
        default=30.0, description="HTTP transport timeout for ARM calls"
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: Any,
        env_settings: Any,
        dotenv_settings: Any,
        file_secret_settings: Any,
    ) -> tuple[Any, ...]:
        """Customize settings sources: env vars override YAML config."""
        return (
            init_settings,
            env_settings,
            yaml_config_settings_source,
            dotenv_settings,
            file_secret_settings,
        )


# Global settings instance
settings = Settings()
