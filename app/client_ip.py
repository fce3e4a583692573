"""
Client address helpers for rate limiting and audit logging.
"""

from __future__ import annotations

import ipaddress

from fastapi import Request

from app.models import ClientInfo

# Checked in order of preference
IP_HEADERS = (
    "x-forwarded-for",
    "x-real-ip",
    "x-client-ip",
    "cf-connecting-ip",  # Cloudflare
    "x-forwarded",
    "forwarded-for",
    "forwarded",
)

AUDIT_HEADERS = (
    "x-forwarded-for",
    "x-real-ip",
    "cf-connecting-ip",
    "user-agent",
    "accept-language",
    "referer",
)

FALLBACK_IP = "127.0.0.1"

# RFC 1918 ranges and IPv6 unique local addresses
PRIVATE_NETWORKS = (
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("fc00::/7"),
)


def _strip_port(value: str) -> str:
    """Remove a port suffix from an IPv4 address (``1.2.3.4:8080``)."""
    if value.count(":") == 1:
        return value.split(":", 1)[0]
    return value


def is_valid_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(_strip_port(value.strip()))
    except ValueError:
        return False
    return True


def is_local_ip(value: str) -> bool:
    """True for loopback, RFC 1918 private, unique local and link-local addresses."""
    try:
        addr = ipaddress.ip_address(_strip_port(value.strip()))
    except ValueError:
        return False
    if addr.is_loopback or addr.is_link_local:
        return True
    return any(addr in network for network in PRIVATE_NETWORKS)


def get_client_ip(request: Request, trust_proxy_headers: bool = True) -> str:
    """Get client IP, respecting proxy headers when trusted."""
    if trust_proxy_headers:
        for header in IP_HEADERS:
            value = request.headers.get(header)
            if not value:
                continue
            # X-Forwarded-For may hold a chain, the first entry is the client
            candidate = value.split(",")[0].strip()
            if is_valid_ip(candidate):
                return _strip_port(candidate)

    if request.client and is_valid_ip(request.client.host):
        return request.client.host
    return FALLBACK_IP


def get_user_agent(request: Request) -> str:
    return request.headers.get("user-agent") or "Unknown"


def get_client_info(request: Request, trust_proxy_headers: bool = True) -> ClientInfo:
    """Collect client address, user agent and headers relevant for audit."""
    ip = get_client_ip(request, trust_proxy_headers)
    headers = {
        name: request.headers[name]
        for name in AUDIT_HEADERS
        if request.headers.get(name)
    }
    return ClientInfo(
        ip=ip,
        user_agent=get_user_agent(request),
        is_local=is_local_ip(ip),
        headers=headers,
    )
