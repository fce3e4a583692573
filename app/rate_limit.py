"""
In-memory rate limiter for login endpoints.

Tracks attempts per IP and per account identifier (X-number / username)
over a sliding window and answers with a progressive policy: allow,
require CAPTCHA, or block the IP for a while. Also flags IPs that try
many different identifiers in one window.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Any

from app.config import get_settings
from app.models import LoginAttempt, RateLimitConfig, RateLimitDecision, RateLimitStats

logger = logging.getLogger(__name__)

REASON_BLOCKED = "IP temporarily blocked due to suspicious activity"
REASON_NEW_BLOCK = "Too many failed attempts. IP temporarily blocked."
REASON_IP_LIMIT = "Too many attempts from this device. Please try again later."
REASON_IDENTIFIER_LIMIT = "Too many attempts for this account. Please try again later."


def _require_ip(ip: str) -> str:
    if not isinstance(ip, str) or not ip.strip():
        raise ValueError("ip must be a non-empty string")
    return ip


def _to_datetime(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)


class LoginRateLimiter:
    """Sliding-window login limiter keyed by IP and account identifier."""

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config.model_copy() if config is not None else RateLimitConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._attempts: dict[str, list[LoginAttempt]] = {}
        self._blocked: dict[str, float] = {}
        # ip -> time the IP was flagged
        self._suspicious: dict[str, float] = {}

    @property
    def _window_seconds(self) -> float:
        return self._config.time_window_minutes * 60

    def check_rate_limit(
        self,
        ip: str,
        identifier: str | None = None,
        metadata: str | None = None,
    ) -> RateLimitDecision:
        """Decide whether a login attempt from ``ip`` may proceed.

        Does not record the attempt; call ``record_attempt`` once the
        credentials have been verified.
        """
        _require_ip(ip)
        identifier = identifier or None

        with self._lock:
            now = self._clock()
            self._cleanup(now)
            cfg = self._config

            block_until = self._blocked.get(ip)
            if block_until is not None and block_until > now:
                return RateLimitDecision(
                    allowed=False,
                    remaining_attempts=0,
                    reset_time=_to_datetime(block_until),
                    requires_captcha=True,
                    block_duration_minutes=math.ceil((block_until - now) / 60),
                    reason=REASON_BLOCKED,
                )

            ip_attempts = self._recent_attempts(ip, now)
            failed_ip = sum(1 for a in ip_attempts if not a.success)

            failed_identifier = 0
            if identifier is not None:
                failed_identifier = sum(
                    1 for a in self._recent_attempts_for_identifier(identifier, now)
                    if not a.success
                )

            unique_identifiers = {a.identifier for a in ip_attempts if a.identifier}
            if len(unique_identifiers) >= cfg.suspicious_pattern_threshold:
                if ip not in self._suspicious:
                    logger.warning(
                        "Suspicious login pattern from %s: %d distinct identifiers",
                        ip, len(unique_identifiers),
                    )
                self._suspicious[ip] = now

            requires_captcha = (
                failed_ip >= cfg.captcha_threshold
                or failed_identifier >= cfg.captcha_threshold
                or ip in self._suspicious
            )

            if failed_ip >= cfg.block_threshold:
                block_until = now + cfg.block_duration_minutes * 60
                self._blocked[ip] = block_until
                logger.warning(
                    "Blocking %s for %d minutes after %d failed attempts",
                    ip, cfg.block_duration_minutes, failed_ip,
                )
                return RateLimitDecision(
                    allowed=False,
                    remaining_attempts=0,
                    reset_time=_to_datetime(block_until),
                    requires_captcha=True,
                    block_duration_minutes=cfg.block_duration_minutes,
                    reason=REASON_NEW_BLOCK,
                )

            reset_time = _to_datetime(now + self._window_seconds)
            ip_exceeded = failed_ip >= cfg.max_attempts_per_ip
            identifier_exceeded = (
                identifier is not None
                and failed_identifier >= cfg.max_attempts_per_x_number
            )
            if ip_exceeded or identifier_exceeded:
                return RateLimitDecision(
                    allowed=False,
                    remaining_attempts=0,
                    reset_time=reset_time,
                    requires_captcha=True,
                    reason=REASON_IP_LIMIT if ip_exceeded else REASON_IDENTIFIER_LIMIT,
                )

            remaining = cfg.max_attempts_per_ip - failed_ip
            if identifier is not None:
                remaining = min(remaining, cfg.max_attempts_per_x_number - failed_identifier)

            return RateLimitDecision(
                allowed=True,
                remaining_attempts=max(remaining, 0),
                reset_time=reset_time,
                requires_captcha=requires_captcha,
            )

    def record_attempt(
        self,
        ip: str,
        success: bool,
        identifier: str | None = None,
        metadata: str | None = None,
    ) -> None:
        """Record a login attempt. A success clears the suspicious flag."""
        _require_ip(ip)
        identifier = identifier or None

        with self._lock:
            attempt = LoginAttempt(
                ip=ip,
                identifier=identifier,
                timestamp=self._clock(),
                success=success,
                metadata=metadata,
            )
            self._attempts.setdefault(ip, []).append(attempt)
            if success:
                self._suspicious.pop(ip, None)

        logger.info(
            "Login %s from %s%s",
            "success" if success else "failure",
            ip,
            f" for {identifier}" if identifier else "",
        )

    def _recent_attempts(self, ip: str, now: float) -> list[LoginAttempt]:
        window_start = now - self._window_seconds
        return [a for a in self._attempts.get(ip, []) if a.timestamp > window_start]

    def _recent_attempts_for_identifier(self, identifier: str, now: float) -> list[LoginAttempt]:
        """Attempts against ``identifier`` from every IP."""
        window_start = now - self._window_seconds
        return [
            a
            for attempts in self._attempts.values()
            for a in attempts
            if a.identifier == identifier and a.timestamp > window_start
        ]

    def _cleanup(self, now: float) -> int:
        """Drop stale state. Caller must hold the lock.

        Attempts are kept for twice the window. Returns the number of IP
        histories removed.
        """
        cutoff = now - 2 * self._window_seconds
        removed = 0
        for ip in list(self._attempts):
            recent = [a for a in self._attempts[ip] if a.timestamp > cutoff]
            if recent:
                self._attempts[ip] = recent
            else:
                del self._attempts[ip]
                removed += 1

        for ip in [ip for ip, until in self._blocked.items() if until <= now]:
            del self._blocked[ip]

        ttl = self._config.suspicion_ttl_minutes
        if ttl is not None:
            stale_after = now - ttl * 60
            for ip in [ip for ip, flagged in self._suspicious.items() if flagged <= stale_after]:
                del self._suspicious[ip]

        return removed

    def sweep(self) -> int:
        """Run cleanup now. Returns count of IP histories removed."""
        with self._lock:
            return self._cleanup(self._clock())

    def reset_ip(self, ip: str) -> None:
        """Forget everything about an IP (admin action)."""
        _require_ip(ip)
        with self._lock:
            self._attempts.pop(ip, None)
            self._blocked.pop(ip, None)
            self._suspicious.pop(ip, None)
        logger.info("Rate limits reset for %s", ip)

    def is_blocked(self, ip: str) -> bool:
        with self._lock:
            until = self._blocked.get(ip)
            return until is not None and until > self._clock()

    def is_suspicious(self, ip: str) -> bool:
        with self._lock:
            flagged = self._suspicious.get(ip)
            if flagged is None:
                return False
            ttl = self._config.suspicion_ttl_minutes
            return ttl is None or flagged > self._clock() - ttl * 60

    def get_stats(self) -> RateLimitStats:
        """Get statistics for monitoring."""
        with self._lock:
            self._cleanup(self._clock())
            total = 0
            failed = 0
            for attempts in self._attempts.values():
                total += len(attempts)
                failed += sum(1 for a in attempts if not a.success)
            return RateLimitStats(
                total_attempts=total,
                failed_attempts=failed,
                blocked_ips=len(self._blocked),
                suspicious_ips=len(self._suspicious),
                unique_ips=len(self._attempts),
            )

    def get_config(self) -> RateLimitConfig:
        with self._lock:
            return self._config.model_copy()

    def update_config(self, changes: Mapping[str, Any]) -> RateLimitConfig:
        """Merge ``changes`` into the live configuration.

        Only field names and types are checked here; range checks belong
        to the caller. Existing blocks keep their original expiry.
        """
        unknown = set(changes) - set(RateLimitConfig.model_fields)
        if unknown:
            raise ValueError(f"Unknown rate limit option(s): {', '.join(sorted(unknown))}")

        with self._lock:
            merged = {**self._config.model_dump(), **changes}
            self._config = RateLimitConfig.model_validate(merged)
            updated = self._config.model_copy()

        logger.info("Rate limit configuration updated: %s", dict(changes))
        return updated


# Global instance
_limiter: LoginRateLimiter | None = None
_limiter_lock = threading.Lock()


def get_login_limiter() -> LoginRateLimiter:
    """Get or create the global login rate limiter."""
    global _limiter
    if _limiter is None:
        with _limiter_lock:
            if _limiter is None:
                _limiter = LoginRateLimiter(config=get_settings().rate_limit_config())
    return _limiter
