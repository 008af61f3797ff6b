"""Configuration models for thinker."""

from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

DEFAULT_PORT = 28015


class ConnectionConfig(BaseModel):
    """Connection settings for one RethinkDB endpoint."""

    host: str = Field(default="localhost", min_length=1, description="Server host name")
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535, description="Driver port")
    db: str | None = Field(default=None, description="Database name")
    user: str = Field(default="admin", description="User name")
    password: SecretStr = Field(default=SecretStr(""), description="User password")
    timeout: float = Field(default=20.0, gt=0, description="Connect timeout in seconds")

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


class SyncSettings(BaseModel):
    """Batching, concurrency and retry settings shared by clone and sync."""

    batch_size: int = Field(
        default=1000, ge=1, le=100_000, description="Documents fetched per page"
    )
    write_batch_size: int = Field(
        default=200, ge=1, le=100_000, description="Pending write operations before a flush"
    )
    workers: int = Field(default=4, ge=1, le=64, description="Tables processed concurrently")
    max_retries: int = Field(default=3, ge=0, le=20, description="Retries per page fetch or write")
    base_delay: float = Field(default=0.5, ge=0.0, description="Initial backoff delay in seconds")
    max_delay: float = Field(default=30.0, ge=0.0, description="Maximum backoff delay in seconds")


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=False,
        description="If True, output JSON logs. If False, use console format.",
    )
    log_file: str | None = Field(
        default=None,
        description="Optional path to log file. If None, logs only to stderr.",
    )


class AppConfig(BaseSettings):
    """Main application configuration.

    Values come from a YAML file (see ConfigLoader) and can be overridden with
    THINKER_-prefixed environment variables, e.g. THINKER_SYNC__WORKERS=8.
    """

    model_config = SettingsConfigDict(
        env_prefix="THINKER_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    source: ConnectionConfig = Field(default_factory=ConnectionConfig)
    target: ConnectionConfig = Field(default_factory=ConnectionConfig)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Environment beats the YAML values passed in by ConfigLoader
        return env_settings, init_settings, dotenv_settings, file_secret_settings
