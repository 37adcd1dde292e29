"""Security helpers for headers, input sanitation, and request throttling."""
import html
import time
from typing import Mapping

from flask import request


def sanitize_input(data: Mapping) -> dict:
    """Return a sanitized copy of incoming data to reduce injection risk."""
    sanitized = {}
    for key, value in data.items():
        sanitized[html.escape(str(key))] = html.escape(str(value))
    return sanitized


def apply_security_headers(response, force_https: bool = False):
    """Lock down responses from a JSON-only API."""
    response.headers.setdefault("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "no-referrer")
    response.headers.setdefault("Cache-Control", "no-store")
    if force_https or request.is_secure:
        response.headers.setdefault("Strict-Transport-Security", "max-age=63072000; includeSubDomains; preload")
    return response


def client_address() -> str:
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.remote_addr or "unknown"


# In-process counters; swap for a shared store when running several workers.
_attempts: dict[str, tuple[int, float]] = {}  # key -> (count, window expiry)


def track_attempt(key: str, limit: int = 10, window_seconds: int = 3600) -> bool:
    """Count an attempt for ``key``; False once ``limit`` is exceeded inside the window."""
    now = time.monotonic()
    for expired in [name for name, (_count, expires) in _attempts.items() if expires < now]:
        del _attempts[expired]
    count, expires = _attempts.get(key, (0, now + window_seconds))
    count += 1
    _attempts[key] = (count, expires)
    return count <= limit


def reset_attempts() -> None:
    _attempts.clear()
