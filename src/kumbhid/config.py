"""Environment-based configuration for KumbhID."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from KUMBHID_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="KUMBHID_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8090

    # Authentication (None = disabled)
    api_key: str | None = None

    # Inference provider: tried in order, first success wins
    inference_endpoints: list[str] = Field(default_factory=lambda: ["http://localhost:8082/api/v1"])
    inference_timeout: float = Field(default=5.0, gt=0)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)
    compute_acquire_timeout: float = Field(default=5.0, gt=0)

    # Matching
    descriptor_length: int = Field(default=128, ge=1)
    match_max_distance: float = Field(default=0.6, ge=0)
    registration_top_k: int = Field(default=10, ge=1)
    lost_found_top_k: int = Field(default=5, ge=1)
    candidate_cache_ttl: int = Field(default=30, ge=0)

    # Liveness validation
    mouth_open_threshold: float = Field(default=0.06, gt=0)
    validator_poll_interval: float = Field(default=0.2, gt=0)

    # Input limits
    max_file_size: int = Field(default=20_971_520, ge=1)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
