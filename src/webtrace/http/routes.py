from __future__ import annotations

import ipaddress
from typing import Optional, Tuple
from urllib.parse import parse_qs, urlsplit

MANAGEMENT_ROUTES = {
    "/trace": "trace",
    "/debug": "debug",
    "/health": "health",
}


def is_loopback_host(host: str) -> bool:
    normalized = (host or "").strip().lower()
    if not normalized:
        return False
    if normalized == "localhost":
        return True
    try:
        return ipaddress.ip_address(normalized).is_loopback
    except ValueError:
        return False


def split_target(target: str) -> Tuple[str, Optional[str]]:
    """Split a request target into path and raw query string (None when empty)."""
    parts = urlsplit(target or "/")
    path = parts.path or "/"
    if not path.startswith("/"):
        path = f"/{path}"
    return path, parts.query or None


def management_route(target: str) -> Optional[str]:
    path, _query = split_target(target)
    return MANAGEMENT_ROUTES.get(path)


def parse_limit(query: Optional[str], default: int = 0) -> int:
    if not query:
        return default
    values = parse_qs(query).get("limit")
    if not values:
        return default
    try:
        return max(0, int(values[0]))
    except (ValueError, TypeError):
        return default
