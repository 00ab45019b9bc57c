"""Request utility functions for identifying the client address."""

import ipaddress
import logging

from fastapi import Request

logger = logging.getLogger(__name__)

UNKNOWN_ADDRESS = "0.0.0.0"


def normalize_ip(ip: str) -> str:
    """
    Normalize an IP address so format variations cannot dodge rate limits.

    - IPv4-mapped IPv6 addresses become plain IPv4 (::ffff:192.0.2.1 -> 192.0.2.1)
    - IPv6 addresses are rendered in canonical compressed form
    - anything unparseable is returned stripped, unchanged
    """
    candidate = ip.strip()
    try:
        parsed = ipaddress.ip_address(candidate)
    except ValueError:
        return candidate
    if isinstance(parsed, ipaddress.IPv6Address) and parsed.ipv4_mapped is not None:
        return str(parsed.ipv4_mapped)
    return str(parsed)


def get_client_ip(request: Request, trust_proxy_headers: bool = False) -> str:
    """
    Get the client IP address for a request.

    With trust_proxy_headers enabled, X-Real-IP is preferred, then the
    first (leftmost) X-Forwarded-For entry. Only enable it behind a reverse
    proxy that overwrites these headers; otherwise clients can spoof them to
    escape address-based blocks.
    """
    if trust_proxy_headers:
        real_ip = request.headers.get("X-Real-IP")
        if real_ip and real_ip.strip():
            return normalize_ip(real_ip)

        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            client_ip = forwarded.split(",")[0].strip()
            if client_ip:
                return normalize_ip(client_ip)

    if request.client and request.client.host:
        return normalize_ip(request.client.host)

    logger.debug("Client address unavailable, using placeholder")
    return UNKNOWN_ADDRESS
