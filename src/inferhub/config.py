"""Configuration management for inferhub.

Settings come from ``INFERHUB_*`` environment variables (or a ``.env`` file).
Directory defaults hang off ``data_dir`` so a single variable relocates
everything the manager writes to disk.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


def _default_data_dir() -> Path:
    return Path.home() / ".inferhub"


class Settings(BaseSettings):
    """inferhub settings with env and file support."""

    model_config = SettingsConfigDict(
        env_prefix="INFERHUB_",
        env_file=".env",
        extra="ignore",
        protected_namespaces=("settings_",),
    )

    # Storage
    data_dir: Path = Field(
        default_factory=_default_data_dir, description="Root directory for models and logs"
    )
    models_dir: Path | None = Field(
        default=None, description="Default download root (defaults to <data_dir>/models)"
    )
    logs_dir: Path | None = Field(
        default=None, description="Service log directory (defaults to <data_dir>/logs)"
    )
    plugins_dir: Path | None = Field(
        default=None, description="Directory scanned for <plugin>/plugin.json manifests"
    )

    # Services
    plugin_binaries: dict[str, str] = Field(
        default_factory=dict,
        description="Default executable per plugin id, e.g. '{\"llmserver-rs\": \"/opt/llmserver\"}'",
    )
    stop_grace_period: float = Field(
        default=10.0, ge=0.0, description="Seconds to wait after SIGTERM before SIGKILL"
    )
    startup_check_seconds: float = Field(
        default=0.25,
        ge=0.0,
        description="A service exiting within this window counts as a failed start",
    )

    # Downloads
    model_repository_url: str = Field(
        default="https://huggingface.co", description="Base URL of the model repository"
    )
    download_chunk_size: int = Field(
        default=1024 * 1024, gt=0, description="Bytes read from the network per write"
    )
    download_timeout: float = Field(
        default=60.0, gt=0.0, description="Network timeout (per read) in seconds"
    )
    user_agent: str = Field(default="inferhub-plugin-manager/1.0")

    # Web Server
    web_host: str = Field(default="127.0.0.1", description="Web server host")
    web_port: int = Field(default=8890, description="Web server port")
    log_level: str = Field(default="INFO", description="Root log level")

    @model_validator(mode="after")
    def _fill_directories(self) -> "Settings":
        if self.models_dir is None:
            self.models_dir = self.data_dir / "models"
        if self.logs_dir is None:
            self.logs_dir = self.data_dir / "logs"
        return self

    def ensure_directories(self) -> None:
        """Create the data, models and logs directories."""
        for path in (self.data_dir, self.models_dir, self.logs_dir):
            path.mkdir(parents=True, exist_ok=True)
        logger.debug("Using data directory %s", self.data_dir)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
