"""Request helpers shared by the auth and admin routers."""

import ipaddress
import logging

from fastapi import Request

logger = logging.getLogger(__name__)

# Proxies allowed to set X-Real-IP
_TRUSTED_PROXY_HOSTS = ("127.0.0.1", "::1", "localhost")


def _is_valid_ip(ip_str: str) -> bool:
    """Check if a string is a valid IP address."""
    try:
        ipaddress.ip_address(ip_str)
        return True
    except ValueError:
        return False


def get_client_ip(request: Request) -> str | None:
    """Get the client IP address used for audit records and rate limiting.

    X-Real-IP is only honoured when the direct peer is a local reverse
    proxy. X-Forwarded-For is never trusted since clients can set it.
    """
    if request.client and request.client.host in _TRUSTED_PROXY_HOSTS:
        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            ip = real_ip.strip()
            if _is_valid_ip(ip):
                return ip
            logger.warning(f"Invalid X-Real-IP: {real_ip}")

    if request.client:
        return request.client.host

    return None


def extract_bearer_token(request: Request) -> str | None:
    """Return the token from an ``Authorization: Bearer <token>`` header."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        return token or None
    return None
