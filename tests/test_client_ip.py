"""
Tests for client address extraction.
"""

import pytest
from starlette.requests import Request

from app.client_ip import (
    get_client_info,
    get_client_ip,
    get_user_agent,
    is_local_ip,
    is_valid_ip,
)


def _request(headers: dict[str, str] | None = None, client: tuple[str, int] | None = ("203.0.113.9", 5000)) -> Request:
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/api/auth/staff-login",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


class TestGetClientIP:
    """Test header precedence and fallbacks."""

    def test_peer_address_without_headers(self):
        assert get_client_ip(_request()) == "203.0.113.9"

    def test_first_forwarded_for_entry(self):
        r = _request({"X-Forwarded-For": "198.51.100.7, 10.0.0.1"})
        assert get_client_ip(r) == "198.51.100.7"

    def test_forwarded_for_wins_over_real_ip(self):
        r = _request({"X-Forwarded-For": "198.51.100.7", "X-Real-IP": "198.51.100.8"})
        assert get_client_ip(r) == "198.51.100.7"

    def test_invalid_header_skipped(self):
        r = _request({"X-Forwarded-For": "not-an-ip", "X-Real-IP": "198.51.100.8"})
        assert get_client_ip(r) == "198.51.100.8"

    def test_cloudflare_header(self):
        r = _request({"CF-Connecting-IP": "2001:db8::1"})
        assert get_client_ip(r) == "2001:db8::1"

    def test_port_stripped(self):
        r = _request({"X-Real-IP": "198.51.100.8:4431"})
        assert get_client_ip(r) == "198.51.100.8"

    def test_headers_ignored_when_untrusted(self):
        r = _request({"X-Forwarded-For": "198.51.100.7"})
        assert get_client_ip(r, trust_proxy_headers=False) == "203.0.113.9"

    def test_fallback_when_no_client(self):
        assert get_client_ip(_request(client=None)) == "127.0.0.1"

    def test_fallback_when_peer_not_an_ip(self):
        assert get_client_ip(_request(client=("testclient", 50000))) == "127.0.0.1"


class TestIPHelpers:
    """Test validation and locality checks."""

    @pytest.mark.parametrize("value", ["10.0.0.1", "255.255.255.255", "::1", "2001:db8::1", "1.2.3.4:80"])
    def test_valid(self, value: str):
        assert is_valid_ip(value)

    @pytest.mark.parametrize("value", ["", "256.1.1.1", "1.2.3", "hostname", "unknown"])
    def test_invalid(self, value: str):
        assert not is_valid_ip(value)

    @pytest.mark.parametrize("value", ["127.0.0.1", "10.1.2.3", "172.16.0.1", "192.168.1.1", "169.254.0.5"])
    def test_local(self, value: str):
        assert is_local_ip(value)

    @pytest.mark.parametrize("value", ["fd12:3456::1", "fe80::1"])
    def test_local_ipv6(self, value: str):
        assert is_local_ip(value)

    @pytest.mark.parametrize(
        "value",
        [
            "8.8.8.8",
            "172.32.0.1",
            "garbage",
            "203.0.113.9",
            "198.51.100.7",
            "198.18.0.1",
            "240.0.0.1",
            "0.0.0.1",
            "2001:db8::1",
        ],
    )
    def test_not_local(self, value: str):
        assert not is_local_ip(value)


class TestClientInfo:
    """Test the combined client summary."""

    def test_user_agent_default(self):
        assert get_user_agent(_request()) == "Unknown"

    def test_collects_audit_headers(self):
        r = _request({
            "User-Agent": "Mozilla/5.0",
            "Accept-Language": "en-GB",
            "X-Custom": "ignored",
        })
        info = get_client_info(r)
        assert info.ip == "203.0.113.9"
        assert info.user_agent == "Mozilla/5.0"
        assert not info.is_local
        assert info.headers == {"user-agent": "Mozilla/5.0", "accept-language": "en-GB"}

    def test_local_client(self):
        info = get_client_info(_request(client=("192.168.0.20", 1234)))
        assert info.is_local
