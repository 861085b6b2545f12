"""Configuration via Pydantic Settings.

Every knob is read from the environment (case-insensitive), with a ``.env``
file in the working directory loaded when present::

    from online_scan.config import get_settings

    settings = get_settings()
    print(settings.poll_attempts)

``get_settings`` is cached; call ``get_settings.cache_clear()`` between tests
that change the environment.
"""

from __future__ import annotations

import functools

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from online_scan.models import ProviderConfig, RateBudget


class Settings(BaseSettings):
    """Online scan settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Provider
    virustotal_api_key: str | None = Field(
        default=None,
        description="VirusTotal API key sent in the x-apikey header",
    )
    virustotal_base_url: str = Field(
        default="https://www.virustotal.com/api/v3",
        description="Root URL of the VirusTotal v3 API",
    )
    request_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Per-request timeout in seconds",
    )
    max_file_size: int = Field(
        default=32 * 1024 * 1024,
        ge=1,
        description="Largest file accepted for upload, in bytes",
    )
    rate_limit_requests: int = Field(
        default=4,
        ge=1,
        description="Requests the provider allows per window",
    )
    rate_limit_window_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Length of the provider's rate window in seconds",
    )

    # Dispatcher
    poll_attempts: int = Field(
        default=30,
        ge=1,
        description="Maximum number of analysis status polls per job",
    )
    poll_delay: float = Field(
        default=5.0,
        ge=0,
        description="Seconds between analysis status polls",
    )
    inter_job_delay: float = Field(
        default=1.0,
        ge=0,
        description="Courtesy pause in seconds after each finished job",
    )
    rate_limit_cooldown: float = Field(
        default=60.0,
        ge=0,
        description="Pause in seconds after a 429 without a Retry-After hint",
    )
    default_provider: str = Field(
        default="virustotal",
        description="Provider used when a scan does not name one",
    )

    @field_validator("default_provider")
    @classmethod
    def normalize_provider_name(cls, v: str) -> str:
        v = v.strip().lower()
        if not v:
            raise ValueError("default_provider must not be empty")
        return v

    def provider_config(self) -> ProviderConfig:
        return ProviderConfig(
            api_key=self.virustotal_api_key or None,
            base_url=self.virustotal_base_url,
            timeout=self.request_timeout,
            max_file_size=self.max_file_size,
            rate_limit=RateBudget(
                requests=self.rate_limit_requests,
                window_seconds=self.rate_limit_window_seconds,
            ),
        )


@functools.lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the cached settings instance."""
    return Settings()
