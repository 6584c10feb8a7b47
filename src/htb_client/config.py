"""Configuration settings for the HTB client."""

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SERVER = "https://labs.hackthebox.com/api"


class PacingConfig(BaseModel):
    """Configuration for the client-side request pacer.

    Controls the local token budget used when the API does not
    report its own rate limit, and the global pause applied after
    an edge (Cloudflare) throttle.
    """

    burst_size: int = Field(
        default=10,
        ge=1,
        description="Initial and maximum token budget without server headers",
    )
    refill_interval_ms: int = Field(
        default=250,
        ge=1,
        description="Milliseconds per token refilled (250ms = 4 req/s sustained)",
    )
    edge_pause_seconds: float = Field(
        default=10.0,
        ge=0.0,
        description="Global pause after a Cloudflare 429",
    )

    @property
    def refill_interval(self) -> float:
        """Refill interval in seconds."""
        return self.refill_interval_ms / 1000


class RetrySettings(BaseModel):
    """Configuration for request retries and exponential backoff."""

    max_attempts: int = Field(
        default=4,
        description="Total attempts per request; 1 disables retries, values <= 0 fall back to 3",
    )
    base_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Delay before the first retry",
    )
    max_delay_seconds: float = Field(
        default=30.0,
        ge=0.0,
        description="Upper bound on the backoff delay before jitter",
    )
    jitter_fraction: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Jitter applied as +/- fraction of the delay",
    )


class LoggingConfig(BaseModel):
    """Configuration for logging behavior.

    Controls file logging, rotation, and output format.
    """

    log_file: str | None = Field(
        default=None,
        description="Optional path for file logging (enables rotation)",
    )
    rotation: str = Field(
        default="10 MB",
        description="When to rotate log file (e.g., '10 MB', '1 day')",
    )
    retention: str = Field(
        default="7 days",
        description="How long to keep rotated logs",
    )
    serialize: bool = Field(
        default=False,
        description="If True, output JSON format to file",
    )


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --------------------------------------------------------------------------
    # Platform API
    # --------------------------------------------------------------------------
    htb_token: str = Field(
        default="",
        description="Platform API token (JWT)",
    )
    htb_server: str = Field(
        default=DEFAULT_SERVER,
        description="Base URL of the API, without the /v4 or /v5 suffix",
    )
    user_agent: str | None = Field(
        default=None,
        description="User-Agent override (defaults to htb-client/<version>)",
    )
    request_timeout_seconds: float = Field(
        default=60.0,
        gt=0.0,
        description="Per-attempt HTTP timeout",
    )

    # --------------------------------------------------------------------------
    # Application
    # --------------------------------------------------------------------------
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # --------------------------------------------------------------------------
    # Pacing & Retries
    # --------------------------------------------------------------------------
    pacing: PacingConfig = Field(
        default_factory=PacingConfig,
        description="Request pacing configuration",
    )
    retry: RetrySettings = Field(
        default_factory=RetrySettings,
        description="Retry and backoff configuration",
    )

    # --------------------------------------------------------------------------
    # Logging Configuration
    # --------------------------------------------------------------------------
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration (file output, rotation)",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
