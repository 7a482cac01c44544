from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via THROTTLE_-prefixed environment
    variables or a .env file.
    """

    # Debug mode - enables detailed error responses
    debug: bool = False

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # Redis settings (transactional counter backend)
    redis_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"

    # Memcached settings (increment/add counter backend)
    memcached_enabled: bool = False
    memcached_servers: str = "localhost:11211"
    memcached_timeout: float = 1.0  # Connect and socket timeout in seconds

    # API limiter: all /api/ traffic, per client
    api_rate_limit: int = 1000
    api_rate_period: int = 3600

    # Write limiter: bursts of POST/PUT/PATCH/DELETE, per client
    write_rate_limit: int = 50
    write_rate_period: int = 10

    # HTTP status of rejection responses
    rate_limit_status: int = 429

    # Classify by X-Forwarded-For; only safe behind a proxy that sets it
    trust_forwarded_for: bool = False

    @field_validator(
        "api_rate_limit",
        "api_rate_period",
        "write_rate_limit",
        "write_rate_period",
    )
    @classmethod
    def validate_rate_limit_positive(cls, v: int) -> int:
        """Validate rate limit values are positive."""
        if v < 1:
            raise ValueError("Rate limit values must be at least 1")
        return v

    @field_validator("rate_limit_status")
    @classmethod
    def validate_rate_limit_status(cls, v: int) -> int:
        """Validate the rejection status is an HTTP error status."""
        if not 400 <= v <= 599:
            raise ValueError("rate_limit_status must be a 4xx or 5xx status")
        return v

    @field_validator("memcached_timeout")
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    model_config = SettingsConfigDict(env_file=".env", env_prefix="THROTTLE_", extra="ignore")


# Global settings instance
settings = Settings()
