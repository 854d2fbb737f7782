"""Configuration models for the file synchronization task."""

from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from filesync.sync.models import SignatureMode


class SyncConfig(BaseModel):
    """Configuration of the replicas and the sync engine."""

    source_path: str = Field(default=..., description="Source replica root")
    destination_path: str = Field(default=..., description="Destination replica root")
    file_name_excludes: list[str] = Field(
        default_factory=list, description="fnmatch patterns of file names to ignore"
    )
    subdirectory_excludes: list[str] = Field(
        default_factory=list, description="Relative directories to ignore"
    )
    signature_mode: SignatureMode = Field(
        default=SignatureMode.METADATA,
        description="metadata (size + mtime) or hash (size + sha256) change signatures",
    )
    recycle_retention_days: int | None = Field(
        default=30, ge=0, description="Days recycled content is kept; None keeps it forever"
    )
    max_retries: int = Field(
        default=2, ge=0, le=10, description="Retries for items failing with transient errors"
    )
    retry_base_delay: float = Field(
        default=0.5, ge=0.0, le=60.0, description="Initial retry backoff in seconds"
    )


class RemoteConfig(BaseModel):
    """Configuration of the network share holding a replica."""

    computer_name: str = Field(default=..., description="Host exposing the share")
    domain: str = Field(default="", description="Authentication domain")
    username: str = Field(default=..., description="Share user name")
    password: SecretStr = Field(default=..., description="Share password")
    connect_command: list[str] = Field(
        default_factory=list, description="Command template connecting the share"
    )
    disconnect_command: list[str] = Field(
        default_factory=list, description="Command template disconnecting the share"
    )


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=True,
        description="If True, output JSON logs. If False, use console format.",
    )
    log_file: str | None = Field(
        default=None,
        description="Optional path to log file. If None, logs only to stdout.",
    )


class AppConfig(BaseSettings):
    """Main application configuration.

    This class uses pydantic-settings to load configuration from environment
    variables with the APP_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    sync: SyncConfig
    remote: RemoteConfig | None = None
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
