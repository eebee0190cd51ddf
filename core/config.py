"""
Process settings using Pydantic Settings
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process-wide settings with environment variable support"""

    # Environment
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    SQL_ECHO: bool = False

    # Streams
    ETL_STREAM_BUFFER_SIZE: int = 1000

    # Source shard liveness checks
    SHARD_CONNECT_ATTEMPTS: int = 3
    SHARD_CONNECT_RETRY_DELAY: float = 2.0
    SHARD_PING_TIMEOUT: float = 10.0

    # Sink
    SINK_PING_TIMEOUT: float = 10.0
    LOADER_PROGRESS_INTERVAL: int = 100

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )


settings = Settings()
