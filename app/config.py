"""
Configuration management via environment variables.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.models import RateLimitConfig


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Authentication settings
    secret_key: str = Field(
        default="change-me-to-a-random-string-at-least-32-chars",
        description="Secret key for signing session cookies",
    )
    session_cookie_name: str = Field(
        default="hospital_session",
        description="Name of the session cookie",
    )
    session_max_age: int = Field(
        default=86400,
        description="Session max age in seconds (default 24 hours)",
    )
    users_file: str = Field(
        default="config/staff.csv",
        description="Path to CSV file with staff credentials",
    )
    trust_proxy_headers: bool = Field(
        default=True,
        description="Take the client IP from X-Forwarded-For and similar headers",
    )

    # Login rate limiting
    rate_limit_max_attempts_per_ip: int = Field(default=10, ge=1)
    rate_limit_max_attempts_per_x_number: int = Field(default=5, ge=1)
    rate_limit_time_window_minutes: int = Field(default=15, ge=1)
    rate_limit_captcha_threshold: int = Field(default=3, ge=1)
    rate_limit_block_threshold: int = Field(default=8, ge=1)
    rate_limit_block_duration_minutes: int = Field(default=30, ge=1)
    rate_limit_suspicious_pattern_threshold: int = Field(default=5, ge=1)
    rate_limit_max_unique_x_numbers_per_ip: int = Field(default=10, ge=1)
    rate_limit_suspicion_ttl_minutes: int | None = Field(
        default=None,
        description="Expire suspicious-IP flags after this many minutes (None keeps them until success or reset)",
    )
    rate_limit_sweep_interval_seconds: int = Field(
        default=300,
        ge=0,
        description="Interval of the background cleanup sweep (0 disables it)",
    )
    rate_limit_fail_open: bool = Field(
        default=False,
        description="Let logins through if the rate limiter itself fails",
    )

    # Paths
    base_dir: Path = Field(
        default_factory=lambda: Path(__file__).parent.parent,
        description="Base directory of the application",
    )

    @computed_field
    @property
    def users_csv_path(self) -> Path:
        return self.base_dir / self.users_file

    def rate_limit_config(self) -> RateLimitConfig:
        """Build the initial rate limiter configuration."""
        return RateLimitConfig(
            max_attempts_per_ip=self.rate_limit_max_attempts_per_ip,
            max_attempts_per_x_number=self.rate_limit_max_attempts_per_x_number,
            time_window_minutes=self.rate_limit_time_window_minutes,
            captcha_threshold=self.rate_limit_captcha_threshold,
            block_threshold=self.rate_limit_block_threshold,
            block_duration_minutes=self.rate_limit_block_duration_minutes,
            suspicious_pattern_threshold=self.rate_limit_suspicious_pattern_threshold,
            max_unique_x_numbers_per_ip=self.rate_limit_max_unique_x_numbers_per_ip,
            suspicion_ttl_minutes=self.rate_limit_suspicion_ttl_minutes,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
