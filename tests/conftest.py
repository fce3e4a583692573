"""
Shared fixtures: controllable clock, staff CSV, fresh rate limiter.
"""

from pathlib import Path

import pytest

from app.auth import UserStore
from app.models import RateLimitConfig
from app.rate_limit import LoginRateLimiter


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, minutes: float = 0, seconds: float = 0) -> None:
        self.now += minutes * 60 + seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def limiter(clock: FakeClock) -> LoginRateLimiter:
    """Rate limiter with default thresholds driven by the fake clock."""
    return LoginRateLimiter(config=RateLimitConfig(), clock=clock)


@pytest.fixture()
def staff_csv(tmp_path: Path) -> Path:
    """Create a sample staff CSV file."""
    csv_path = tmp_path / "staff.csv"
    csv_path.write_text(
        "USERNAME,PASSWORD,NAME,X_NUMBER,ROLE\n"
        "admin,admin123,Dr. Admin,A00001/00,admin\n"
        "Reception,recep123,Mary Johnson,R00001/00,receptionist\n"
        "ghost,ghost123,Nobody,G00001/00,janitor\n"
        ",nopass,No Username,N00001/00,admin\n",
        encoding="utf-8-sig",
    )
    return csv_path


@pytest.fixture()
def store(staff_csv: Path) -> UserStore:
    return UserStore(csv_path=staff_csv)
