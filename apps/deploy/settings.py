"""Operator settings read from the environment.

Secrets (API tokens) never live in the deployment settings document; they
come from `OUTPOST_*` environment variables or a local `.env` file.
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class OperatorSettings(BaseSettings):
    """Runtime settings for the operator's machine."""

    model_config = SettingsConfigDict(
        env_prefix="OUTPOST_",
        extra="ignore",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    provider: str = Field(
        default="cloud",
        description="Provider backend: 'cloud' (Hetzner + Cloudflare) or 'mock'.",
    )

    # Credentials
    hcloud_token: str | None = None
    cloudflare_api_token: str | None = None
    cloudflare_account_id: str | None = None
    r2_access_key_id: str | None = None
    r2_secret_access_key: str | None = None

    # State store
    state_dir: Path = Field(default=Path(".outpost/state"))

    # Retry policy for transient provider errors
    retry_max_attempts: int = Field(default=3, ge=1, le=10)
    retry_delays: list[float] = Field(default_factory=lambda: [5.0, 15.0, 30.0])

    # Convergence budgets (seconds)
    dns_timeout: float = Field(default=300.0, gt=0)
    dns_interval: float = Field(default=10.0, gt=0)
    http_initial_delay: float = Field(default=60.0, ge=0)
    http_timeout: float = Field(default=120.0, gt=0)
    http_interval: float = Field(default=10.0, gt=0)
    tls_timeout: float = Field(default=180.0, gt=0)
    tls_interval: float = Field(default=10.0, gt=0)
    # Cap across all checks; unset lets each check use its own budget
    verify_budget: float | None = Field(default=None, gt=0)

    http_timeout_seconds: float = Field(default=30.0, gt=0)
    log_level: str = "INFO"


def get_settings() -> OperatorSettings:
    return OperatorSettings()
