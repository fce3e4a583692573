"""
Pydantic models for request/response schemas and rate limiter state.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class StaffLoginRequest(BaseModel):
    """Request model for staff login."""

    username: str = Field(..., min_length=1, max_length=200)
    password: str = Field(..., min_length=1, max_length=200)


class UserInfo(BaseModel):
    """Authenticated staff member."""

    username: str
    name: str
    x_number: str
    role: Literal["admin", "receptionist"]


class LoginAttempt(BaseModel):
    """A single login try. Immutable once recorded."""

    model_config = ConfigDict(frozen=True)

    ip: str
    identifier: str | None = None
    timestamp: float
    success: bool
    metadata: str | None = None


class RateLimitConfig(BaseModel):
    """Thresholds used by the login rate limiter."""

    max_attempts_per_ip: int = 10
    max_attempts_per_x_number: int = 5
    time_window_minutes: int = 15

    # Progressive security
    captcha_threshold: int = 3
    block_threshold: int = 8
    block_duration_minutes: int = 30

    # Pattern detection
    suspicious_pattern_threshold: int = 5
    max_unique_x_numbers_per_ip: int = 10
    suspicion_ttl_minutes: int | None = None


class RateLimitConfigUpdate(BaseModel):
    """Partial configuration accepted by the admin endpoint."""

    model_config = ConfigDict(extra="forbid")

    max_attempts_per_ip: int | None = Field(default=None, ge=1, le=1000)
    max_attempts_per_x_number: int | None = Field(default=None, ge=1, le=1000)
    time_window_minutes: int | None = Field(default=None, ge=1, le=1440)
    captcha_threshold: int | None = Field(default=None, ge=1, le=1000)
    block_threshold: int | None = Field(default=None, ge=1, le=1000)
    block_duration_minutes: int | None = Field(default=None, ge=1, le=10080)
    suspicious_pattern_threshold: int | None = Field(default=None, ge=1, le=1000)
    max_unique_x_numbers_per_ip: int | None = Field(default=None, ge=1, le=1000)
    suspicion_ttl_minutes: int | None = Field(default=None, ge=1, le=10080)


class RateLimitDecision(BaseModel):
    """Outcome of a rate limit check."""

    allowed: bool
    remaining_attempts: int = Field(ge=0)
    reset_time: datetime
    requires_captcha: bool
    block_duration_minutes: int | None = None
    reason: str | None = None


class RateLimitStats(BaseModel):
    """Snapshot of limiter state for monitoring."""

    total_attempts: int
    failed_attempts: int
    blocked_ips: int
    suspicious_ips: int
    unique_ips: int


class ClientInfo(BaseModel):
    """Network details of the calling client."""

    ip: str
    user_agent: str
    is_local: bool
    headers: dict[str, str] = Field(default_factory=dict)


class AdminActionRequest(BaseModel):
    """Request model for rate limit admin actions."""

    action: str = Field(..., min_length=1, max_length=50)
    ip: str | None = Field(default=None, max_length=100)
    config: RateLimitConfigUpdate | None = None
