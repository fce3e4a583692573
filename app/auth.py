"""
Authentication module: CSV-based staff loading, session management, role checks.
"""

from __future__ import annotations

import csv
import hmac
import logging
from pathlib import Path
from typing import Any

from fastapi import Depends, HTTPException, Request, status
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from app.config import get_settings
from app.models import UserInfo

logger = logging.getLogger(__name__)

STAFF_ROLES = ("admin", "receptionist")


class UserStore:
    """Loads staff accounts from CSV."""

    def __init__(self, csv_path: Path) -> None:
        self._users: dict[str, dict[str, str]] = {}
        self._load_users(csv_path)

    def _load_users(self, csv_path: Path) -> None:
        """Load staff from CSV. Username is key."""
        if not csv_path.exists():
            logger.error("Staff CSV not found: %s", csv_path)
            return

        with open(csv_path, encoding="utf-8-sig", newline="") as f:
            reader = csv.DictReader(f)
            for row in reader:
                username = (row.get("USERNAME") or "").strip().lower()
                password = (row.get("PASSWORD") or "").strip()
                if not username or not password:
                    continue
                role = (row.get("ROLE") or "").strip().lower()
                if role not in STAFF_ROLES:
                    logger.warning("Skipping %s: unknown role %r", username, role)
                    continue
                self._users[username] = {
                    "password": password,
                    "name": (row.get("NAME") or "").strip(),
                    "x_number": (row.get("X_NUMBER") or "").strip(),
                    "role": role,
                }

        logger.info("Loaded %d staff accounts from CSV", len(self._users))

    def verify(self, username: str, password: str) -> UserInfo | None:
        """Verify credentials and return UserInfo or None."""
        username_lower = username.strip().lower()
        user = self._users.get(username_lower)
        if user is None:
            return None

        if not hmac.compare_digest(user["password"].encode(), password.strip().encode()):
            return None

        return UserInfo(
            username=username_lower,
            name=user["name"],
            x_number=user["x_number"],
            role=user["role"],
        )

    @property
    def user_count(self) -> int:
        return len(self._users)


_store: UserStore | None = None


def get_user_store() -> UserStore:
    """Get or create the global user store."""
    global _store
    if _store is None:
        settings = get_settings()
        _store = UserStore(csv_path=settings.users_csv_path)
    return _store


def _get_serializer() -> URLSafeTimedSerializer:
    """Get the session cookie serializer."""
    settings = get_settings()
    return URLSafeTimedSerializer(settings.secret_key)


def create_session_token(user: UserInfo) -> str:
    """Create a signed session token containing user info."""
    serializer = _get_serializer()
    return serializer.dumps(user.model_dump())


def decode_session_token(token: str) -> UserInfo | None:
    """Decode and verify a session token. Returns None if invalid/expired."""
    settings = get_settings()
    serializer = _get_serializer()
    try:
        data: dict[str, Any] = serializer.loads(
            token,
            max_age=settings.session_max_age,
        )
        return UserInfo(
            username=data["username"],
            name=data["name"],
            x_number=data["x_number"],
            role=data["role"],
        )
    except SignatureExpired:
        logger.info("Session token expired")
        return None
    except BadSignature:
        logger.warning("Invalid session token signature")
        return None
    except (KeyError, TypeError, ValueError) as exc:
        logger.warning("Malformed session token: %s", exc)
        return None


def get_current_user_from_cookie(request: Request) -> UserInfo | None:
    """Extract and validate user from session cookie. Returns None if not authenticated."""
    settings = get_settings()
    token = request.cookies.get(settings.session_cookie_name)
    if not token:
        return None
    return decode_session_token(token)


async def require_auth(request: Request) -> UserInfo:
    """FastAPI dependency: require authenticated user or raise 401."""
    user = get_current_user_from_cookie(request)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return user


async def require_admin(user: UserInfo = Depends(require_auth)) -> UserInfo:
    """FastAPI dependency: require an admin session or raise 403."""
    if user.role != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden",
        )
    return user
