from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Conservative trade API budget used until the server advertises its own.
DEFAULT_RATE_LIMIT_RULES = "5:60:60,10:600:120,15:10800:3600"


class Settings(BaseSettings):
    """Overlay settings loaded from environment variables.

    All settings can be configured via ``OVERLAY_``-prefixed environment
    variables or a .env file.
    """

    # Trade API rate limiting
    rate_limit_default_rules: str = DEFAULT_RATE_LIMIT_RULES
    rate_limit_max_backoff_seconds: int = 300  # Cap for 4xx error backoff
    rate_limit_exhausted_fallback_seconds: int = 60  # Wait when no bucket reports a reset
    rate_limit_default_retry_after_seconds: int = 30  # 429 without a usable Retry-After
    rate_limit_safety_margin: float = 0.8  # Share of each window shown as "safe" in status

    # Rate limit persistence (None keeps state in memory only)
    rate_limit_state_file: Path | None = None

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    @field_validator("rate_limit_default_rules")
    @classmethod
    def validate_default_rules(cls, v: str) -> str:
        """Validate the default rule header is non-empty."""
        v = v.strip()
        if not v:
            raise ValueError("rate_limit_default_rules must not be empty")
        return v

    @field_validator(
        "rate_limit_max_backoff_seconds",
        "rate_limit_exhausted_fallback_seconds",
        "rate_limit_default_retry_after_seconds",
    )
    @classmethod
    def validate_seconds_positive(cls, v: int) -> int:
        """Validate cooldown durations are positive."""
        if v < 1:
            raise ValueError("Rate limit durations must be at least 1 second")
        return v

    @field_validator("rate_limit_safety_margin")
    @classmethod
    def validate_safety_margin(cls, v: float) -> float:
        """Validate the safety margin is a fraction of the budget."""
        if not 0 < v <= 1:
            raise ValueError("rate_limit_safety_margin must be in (0, 1]")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("text", "structured", "json"):
            raise ValueError("log_format must be one of: text, structured, json")
        return v

    model_config = SettingsConfigDict(
        env_prefix="OVERLAY_", env_file=".env", extra="ignore"
    )


# Global settings instance
settings = Settings()
