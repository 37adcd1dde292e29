"""Injectable time source so escalation and timeline stamps can be driven by tests."""
from datetime import datetime, timedelta

from flask import current_app, has_app_context


class SystemClock:
    def now(self) -> datetime:
        # Naive UTC, matching how every timestamp column is stored.
        return datetime.utcnow()


class FixedClock:
    """Clock frozen at a given instant until moved with ``advance`` or ``set``."""

    def __init__(self, instant: datetime) -> None:
        self._instant = instant

    def now(self) -> datetime:
        return self._instant

    def set(self, instant: datetime) -> None:
        self._instant = instant

    def advance(self, **delta) -> datetime:
        self._instant = self._instant + timedelta(**delta)
        return self._instant


_system_clock = SystemClock()


def init_clock(app, clock=None) -> None:
    app.extensions["clock"] = clock or _system_clock


def current_clock():
    if has_app_context():
        return current_app.extensions.get("clock") or _system_clock
    return _system_clock


def utcnow() -> datetime:
    return current_clock().now()
