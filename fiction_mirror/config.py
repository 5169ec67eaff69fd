"""Application configuration."""
from pydantic_settings import BaseSettings, SettingsConfigDict

from fiction_mirror.exceptions import ConfigError


class Settings(BaseSettings):
    """Application settings."""

    # Rate limiting
    time_limit_ms: int = 1500
    connections: int = 4

    # HTTP
    max_retries: int = 3
    retry_backoff: float = 1.0
    request_timeout: float = 30.0
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
    )

    # Archive
    manifest_name: str = "manifest.json"

    # Environment
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="FICTION_MIRROR_",
        case_sensitive=False,
        extra="ignore",
    )

    def validate_limits(self) -> None:
        """
        Reject throughput settings that cannot be honoured.

        Raises:
            ConfigError: spacing is not positive or connections is negative
        """
        if self.time_limit_ms <= 0:
            raise ConfigError(
                "time limit must be a positive number of milliseconds",
                {"time_limit_ms": self.time_limit_ms},
            )
        if self.connections < 0:
            raise ConfigError(
                "connections must be zero (unlimited) or positive",
                {"connections": self.connections},
            )
        if self.max_retries < 0:
            raise ConfigError(
                "max retries cannot be negative",
                {"max_retries": self.max_retries},
            )


settings = Settings()
