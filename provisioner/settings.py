"""
Provisioner Settings - Configuration management using Pydantic Settings.

Loads configuration from environment variables and .env files.
"""

import logging
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Find project root (where .env file is located)
PROJECT_ROOT = Path(__file__).parent.parent


class ProvisionerSettings(BaseSettings):
    """
    Provisioner configuration settings.

    Settings are loaded from:
    1. Environment variables (highest priority)
    2. .env file in current directory
    3. Default values (lowest priority)
    """

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_prefix="PROV_",  # All provisioner env vars must start with PROV_
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR) (env: PROV_LOG_LEVEL)",
    )

    # Failure handling
    fail_mode: Literal["interactive", "retry", "skip", "skip_all", "abort", "quit"] = Field(
        default="interactive",
        description="Answer given when a step fails; 'interactive' asks the operator (env: PROV_FAIL_MODE)",
    )

    max_retries: int = Field(
        default=3,
        description="Retries allowed per step when fail_mode is 'retry' (env: PROV_MAX_RETRIES)",
    )

    # Wait loops
    poll_interval: float = Field(
        default=1.0,
        description="Seconds between status checks while draining VMs and images (env: PROV_POLL_INTERVAL)",
    )

    delete_timeout: int = Field(
        default=60,
        description="Default seconds to wait for each VM or image deletion (env: PROV_DELETE_TIMEOUT)",
    )

    # Local document store
    state_dir: Path = Field(
        default=Path(".provisioner/documents"),
        description="Directory used by the file document store (env: PROV_STATE_DIR)",
    )


# Global settings instance
_settings: ProvisionerSettings | None = None


def get_settings() -> ProvisionerSettings:
    """
    Get the global settings instance.

    Creates the settings instance on first call, then returns cached instance.

    Returns:
        ProvisionerSettings instance
    """
    global _settings
    if _settings is None:
        _settings = ProvisionerSettings()
    return _settings


def reload_settings() -> ProvisionerSettings:
    """
    Reload settings from environment/files.

    Useful for testing or when .env file changes.

    Returns:
        Fresh ProvisionerSettings instance
    """
    global _settings
    _settings = ProvisionerSettings()
    return _settings


def configure_logging(settings: ProvisionerSettings | None = None) -> None:
    """Configure logging based on settings."""
    settings = settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
