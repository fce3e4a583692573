"""
FastAPI application with staff authentication, login rate limiting, and security headers.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.auth import (
    UserStore,
    create_session_token,
    get_user_store,
    require_admin,
    require_auth,
)
from app.client_ip import get_client_info
from app.config import get_settings
from app.models import (
    AdminActionRequest,
    RateLimitDecision,
    StaffLoginRequest,
    UserInfo,
)
from app.rate_limit import LoginRateLimiter, get_login_limiter

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# ---------- Security headers middleware ----------


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Permissions-Policy"] = "camera=(), microphone=(), geolocation=()"
        return response


# ---------- App setup ----------


async def sweep_rate_limiter(limiter: LoginRateLimiter, interval_seconds: int) -> None:
    """Periodically drop stale limiter state so idle IPs do not pile up."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            removed = limiter.sweep()
        except Exception:
            logger.exception("Rate limiter sweep failed")
            continue
        if removed:
            logger.info("Rate limiter sweep removed %d idle IPs", removed)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting hospital login service...")
    settings = get_settings()

    # Pre-load user store
    store = get_user_store()
    logger.info("User store loaded: %d staff accounts", store.user_count)

    limiter = get_login_limiter()

    sweeper: asyncio.Task | None = None
    if settings.rate_limit_sweep_interval_seconds > 0:
        sweeper = asyncio.create_task(
            sweep_rate_limiter(limiter, settings.rate_limit_sweep_interval_seconds)
        )
        logger.info(
            "Rate limiter sweep every %ds", settings.rate_limit_sweep_interval_seconds
        )

    yield

    # Cleanup
    if sweeper is not None:
        sweeper.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper
    logger.info("Hospital login service stopped")


app = FastAPI(
    title="Hospital Login Service",
    description="Staff authentication with progressive login rate limiting",
    version="0.1.0",
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
)

app.add_middleware(SecurityHeadersMiddleware)

settings = get_settings()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _rate_limited_response(decision: RateLimitDecision) -> JSONResponse:
    """429 response carrying everything the client needs to display."""
    retry_after = max(0, math.ceil(decision.reset_time.timestamp() - time.time()))
    return JSONResponse(
        status_code=429,
        content={
            "detail": decision.reason,
            "reset_time": decision.reset_time.isoformat(),
            "requires_captcha": decision.requires_captcha,
            "block_duration_minutes": decision.block_duration_minutes,
        },
        headers={"Retry-After": str(retry_after)},
    )


def _check_limit(
    limiter: LoginRateLimiter, ip: str, identifier: str, user_agent: str
) -> RateLimitDecision | None:
    """Run the limiter check. None means the limiter failed and policy is fail-open."""
    try:
        return limiter.check_rate_limit(ip, identifier, user_agent)
    except Exception:
        logger.exception("Rate limit check failed for %s", ip)
        if settings.rate_limit_fail_open:
            return None
        raise HTTPException(status_code=503, detail="Login temporarily unavailable")


def _record_attempt(
    limiter: LoginRateLimiter, ip: str, success: bool, identifier: str, user_agent: str
) -> None:
    try:
        limiter.record_attempt(ip, success, identifier, user_agent)
    except Exception:
        logger.exception("Failed to record login attempt from %s", ip)
        if not settings.rate_limit_fail_open:
            raise HTTPException(status_code=503, detail="Login temporarily unavailable")


# ---------- Auth routes ----------


@app.post("/api/auth/staff-login")
async def staff_login(
    body: StaffLoginRequest,
    request: Request,
    store: UserStore = Depends(get_user_store),
    limiter: LoginRateLimiter = Depends(get_login_limiter),
):
    """Authenticate staff and set session cookie."""
    client = get_client_info(request, settings.trust_proxy_headers)
    identifier = body.username.strip().lower()

    decision = _check_limit(limiter, client.ip, identifier, client.user_agent)
    if decision is not None and not decision.allowed:
        logger.warning(
            "Rate limited login attempt for %s from %s: %s",
            identifier, client.ip, decision.reason,
        )
        return _rate_limited_response(decision)

    user = store.verify(body.username, body.password)
    _record_attempt(limiter, client.ip, user is not None, identifier, client.user_agent)

    if user is None:
        logger.info("Failed login attempt for: %s from %s", identifier, client.ip)
        content: dict = {"detail": "Invalid username or password"}
        if decision is not None:
            content["remaining_attempts"] = max(decision.remaining_attempts - 1, 0)
            content["requires_captcha"] = decision.requires_captcha
        return JSONResponse(status_code=401, content=content)

    logger.info("Successful login: %s (role=%s)", user.username, user.role)
    token = create_session_token(user)

    response = JSONResponse(content={"success": True, "user": user.model_dump()})
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=settings.session_max_age,
        httponly=True,
        samesite="lax",
    )
    return response


@app.post("/api/auth/logout")
async def logout():
    """Clear session cookie."""
    response = JSONResponse(content={"success": True})
    response.delete_cookie(key=settings.session_cookie_name)
    return response


@app.get("/api/auth/session")
async def session(user: UserInfo = Depends(require_auth)):
    """Return the user behind the current session cookie."""
    return {"authenticated": True, "user": user.model_dump()}


# ---------- Admin routes ----------


@app.get("/api/admin/rate-limit-stats")
async def rate_limit_stats(
    request: Request,
    admin: UserInfo = Depends(require_admin),
    limiter: LoginRateLimiter = Depends(get_login_limiter),
):
    """Current limiter statistics and configuration."""
    client = get_client_info(request, settings.trust_proxy_headers)
    logger.info("Rate limit stats requested by %s from %s", admin.username, client.ip)
    return {
        "success": True,
        "timestamp": _now_iso(),
        "statistics": limiter.get_stats().model_dump(),
        "configuration": limiter.get_config().model_dump(),
        "client_info": {"request_ip": client.ip, "is_local": client.is_local},
    }


@app.post("/api/admin/rate-limit-stats")
async def rate_limit_admin_action(
    body: AdminActionRequest,
    request: Request,
    admin: UserInfo = Depends(require_admin),
    limiter: LoginRateLimiter = Depends(get_login_limiter),
):
    """Admin actions: reset an IP, update configuration, or fetch stats."""
    client = get_client_info(request, settings.trust_proxy_headers)
    logger.info(
        "Rate limit admin action %s by %s from %s", body.action, admin.username, client.ip
    )

    if body.action == "reset_ip":
        ip = (body.ip or "").strip()
        if not ip:
            raise HTTPException(status_code=400, detail="IP address is required for reset action")
        limiter.reset_ip(ip)
        return {
            "success": True,
            "message": f"Rate limits reset for IP: {ip}",
            "timestamp": _now_iso(),
        }

    if body.action == "update_config":
        if body.config is None:
            raise HTTPException(status_code=400, detail="Configuration object is required")
        try:
            new_config = limiter.update_config(body.config.model_dump(exclude_unset=True))
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=f"Invalid configuration: {exc}")
        return {
            "success": True,
            "message": "Rate limiting configuration updated",
            "new_config": new_config.model_dump(),
            "timestamp": _now_iso(),
        }

    if body.action == "get_stats":
        return {
            "success": True,
            "statistics": limiter.get_stats().model_dump(),
            "timestamp": _now_iso(),
        }

    raise HTTPException(status_code=400, detail=f"Unknown action: {body.action}")


@app.get("/api/health")
async def health():
    """Health check endpoint (no auth required)."""
    return {"status": "healthy"}


# ---------- Exception handlers ----------


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Render HTTP exceptions as JSON."""
    if exc.status_code == 401:
        return JSONResponse(status_code=401, content={"detail": "Not authenticated"})

    if exc.status_code == 403:
        return JSONResponse(status_code=403, content={"detail": "Forbidden"})

    if exc.status_code == 500:
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
