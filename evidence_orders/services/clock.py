"""Time source for the order engine.

Every expiry, OTP window and audit timestamp reads the clock registered on
the application (``app.extensions['order_clock']``), so tests can freeze and
advance time instead of sleeping.
"""
from datetime import datetime, timedelta, timezone

from flask import current_app


class SystemClock:
    def now(self) -> datetime:
        # Naive UTC, matching what the database columns store.
        return datetime.now(timezone.utc).replace(tzinfo=None)


class FrozenClock:
    def __init__(self, start: datetime):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current

    def set(self, value: datetime) -> None:
        self.current = value


_system_clock = SystemClock()


def get_clock():
    try:
        return current_app.extensions.get('order_clock') or _system_clock
    except RuntimeError:
        # Outside an application context.
        return _system_clock


def utcnow() -> datetime:
    return get_clock().now()
