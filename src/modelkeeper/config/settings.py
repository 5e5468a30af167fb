"""
Model Keeper Configuration

Settings for the model lifecycle manager with environment variable support.

Configuration is loaded from:
1. Explicit keyword arguments (highest priority)
2. Environment variables (``MODELKEEPER_*``)
3. ``.env`` files
4. Default values (lowest priority)
"""

import re
from enum import Enum
from pathlib import Path
from typing import Optional

from loguru import logger
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..core.error_handling import RetryPolicy


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


_VERSION_PATTERN = re.compile(r"^\d+(\.\d+)*$")


class ModelKeeperSettings(BaseSettings):
    """
    Runtime settings for model installs, updates and rollbacks.

    Example: ``MODELKEEPER_MODELS_DIR=/data/models`` maps to ``models_dir``.
    """

    model_config = SettingsConfigDict(
        env_prefix="MODELKEEPER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Required external inputs
    models_dir: Path = Field(default=Path("./models"), description="Directory holding installed artifacts")
    app_version: str = Field(default="1.0.0", description="Host application version for compatibility checks")

    # Store layout
    registry_filename: str = Field(default="registry.json", description="Registry document name")
    local_state_filename: str = Field(default="local-state.json", description="Local state document name")
    backup_dirname: str = Field(default="backups", description="Backup directory name inside models_dir")

    # Downloads
    max_retries: int = Field(default=3, ge=1, le=20, description="Download attempts per artifact")
    retry_delay_seconds: float = Field(default=2.0, ge=0.0, description="Delay between attempts")
    exponential_backoff: bool = Field(default=False, description="Double the delay after each attempt")
    max_retry_delay_seconds: float = Field(default=60.0, ge=0.0, description="Backoff cap")
    attempt_timeout_seconds: float = Field(default=300.0, gt=0.0, description="Bound on one transfer attempt")
    operation_timeout_seconds: Optional[float] = Field(default=None, gt=0.0, description="Bound on a whole retry loop")
    chunk_size: int = Field(default=65536, ge=1024, description="Streaming chunk size in bytes")

    # Verification
    size_tolerance_bytes: int = Field(default=1024, ge=0, le=1048576, description="Size slack for existing files")
    min_artifact_bytes: int = Field(default=1024, ge=1, description="Smallest plausible artifact")

    # Backups and locking
    backup_keep_count: int = Field(default=3, ge=1, description="Backups retained per model by cleanup")
    lock_timeout_seconds: float = Field(default=600.0, gt=0.0, description="Wait limit for store/model locks")

    # Resources
    enforce_ram_requirements: bool = Field(default=True, description="Refuse installs below minimum RAM")

    # Logging
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Console log level")
    log_file: Optional[Path] = Field(default=None, description="Optional rotating log file")
    log_json: bool = Field(default=False, description="Serialize log records as JSON")

    @field_validator("app_version")
    @classmethod
    def validate_app_version(cls, v: str) -> str:
        """Warn about versions the comparator will read lossily."""
        v = v.strip()
        if not _VERSION_PATTERN.match(v):
            logger.warning(f"App version '{v}' is not dotted numeric; non-numeric parts compare as 0")
        return v

    @field_validator("models_dir", mode="before")
    @classmethod
    def expand_models_dir(cls, v):
        return Path(v).expanduser()

    @property
    def registry_path(self) -> Path:
        return self.models_dir / self.registry_filename

    @property
    def local_state_path(self) -> Path:
        return self.models_dir / self.local_state_filename

    @property
    def backup_dir(self) -> Path:
        return self.models_dir / self.backup_dirname

    @property
    def lock_dir(self) -> Path:
        return self.models_dir / ".locks"

    def retry_policy(self) -> RetryPolicy:
        """Build the download retry policy from these settings."""
        return RetryPolicy(
            max_attempts=self.max_retries,
            base_delay=self.retry_delay_seconds,
            max_delay=self.max_retry_delay_seconds,
            exponential_backoff=self.exponential_backoff,
        )

    def ensure_directories(self) -> None:
        """Create the models, backup and lock directories."""
        for directory in (self.models_dir, self.backup_dir, self.lock_dir):
            directory.mkdir(parents=True, exist_ok=True)


def load_settings(**overrides) -> ModelKeeperSettings:
    """Load settings from the environment, applying explicit overrides."""
    overrides = {k: v for k, v in overrides.items() if v is not None}
    settings = ModelKeeperSettings(**overrides)
    logger.debug(f"Loaded settings for models dir {settings.models_dir}")
    return settings
