import json
import re
from typing import Annotated, Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _parse_cors_origins(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, list):
        items = [str(v).strip() for v in raw]
        return [v for v in items if v]

    raw = str(raw).strip()
    if not raw or raw == "[]":
        return []

    # Prefer JSON, but accept comma or whitespace separated values.
    if raw.startswith("["):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            items = [str(v).strip() for v in parsed]
            return [v for v in items if v]

    origins: list[str] = []
    for part in re.split(r"[,\s]+", raw):
        if not part:
            continue
        if part == "*":
            return ["*"]
        if part not in origins:
            origins.append(part)
    return origins


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables (prefixed with
    ``AIPROXY_``) or a .env file.
    """

    # Debug mode - enables detailed error logging
    debug: bool = False

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # Rate limiting settings
    rate_limit_ceiling: int = 20  # Requests admitted per window per client key
    rate_limit_window_seconds: float = 60.0
    rate_limit_idle_ttl_seconds: float = 600.0  # Drop windows idle this long
    rate_limit_cleanup_interval_seconds: float = 60.0
    rate_limit_max_entries: int = 10000
    rate_limit_fail_closed: bool = False  # If True, reject when Redis is unavailable
    rate_limit_key_prefix: str = "aiproxy:ratelimit"

    # Redis settings (optional, required for multi-instance deployments)
    redis_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"

    # Provider settings
    provider_backend: str = "http"  # http | openai | mock
    provider_base_url: str = "https://api.openai.com/v1"
    provider_api_key: str = ""
    provider_model: str = "gpt-4o-mini"
    provider_timeout_seconds: float = 30.0  # Overall deadline, all attempts included
    provider_max_retries: int = 2  # Additional attempts after the first
    retry_base_delay: float = 0.25
    retry_max_delay: float = 4.0

    # Request bounds
    max_prompt_chars: int = 4000
    max_tokens_ceiling: int = 4096
    default_max_tokens: int = 512
    temperature_min: float = 0.0
    temperature_max: float = 2.0
    default_temperature: float = 0.7
    max_body_bytes: int = 64 * 1024

    # Client identity
    trust_forwarded_for: bool = False  # Only enable behind a trusted reverse proxy

    # HTTP client connection pool settings
    httpx_connect_timeout: float = 5.0
    httpx_pool_timeout: float = 5.0
    httpx_keepalive_expiry: float = 30.0
    httpx_max_connections: int = 100
    httpx_max_keepalive_connections: int = 20

    # CORS settings
    cors_origins: Annotated[list[str], NoDecode] = ["*"]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def decode_cors_origins(cls, v: Any) -> list[str]:
        return _parse_cors_origins(v)

    @field_validator(
        "rate_limit_ceiling",
        "rate_limit_max_entries",
        "max_prompt_chars",
        "max_tokens_ceiling",
        "default_max_tokens",
        "max_body_bytes",
    )
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        """Validate count-like values are at least 1."""
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @field_validator(
        "rate_limit_window_seconds",
        "rate_limit_idle_ttl_seconds",
        "rate_limit_cleanup_interval_seconds",
        "provider_timeout_seconds",
        "httpx_connect_timeout",
        "httpx_pool_timeout",
    )
    @classmethod
    def validate_positive_seconds(cls, v: float) -> float:
        """Validate durations are positive."""
        if v <= 0:
            raise ValueError("duration must be positive")
        return v

    @field_validator("provider_max_retries")
    @classmethod
    def validate_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("provider_max_retries cannot be negative")
        return v

    @field_validator("provider_backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("http", "openai", "mock"):
            raise ValueError("provider_backend must be one of: http, openai, mock")
        return v

    @model_validator(mode="after")
    def validate_defaults_in_bounds(self) -> "Settings":
        """Defaults must themselves satisfy the request bounds."""
        if self.default_max_tokens > self.max_tokens_ceiling:
            raise ValueError("default_max_tokens exceeds max_tokens_ceiling")
        if not self.temperature_min <= self.default_temperature <= self.temperature_max:
            raise ValueError("default_temperature is outside the temperature bounds")
        return self

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="AIPROXY_", extra="ignore"
    )


# Global settings instance
settings = Settings()
