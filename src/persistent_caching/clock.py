"""
Time helpers shared by cached values and stores.

Timestamps are POSIX seconds (float). A timestamp of 0.0 means "never set"
for a cached value and "miss" for a store read.
"""

from __future__ import annotations

import time
from datetime import timedelta
from typing import Union


class _Forever:
    """Sentinel TTL: values cached with it never expire."""

    _instance: "_Forever | None" = None

    def __new__(cls) -> "_Forever":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "FOREVER"

    def __reduce__(self):
        return (_Forever, ())


FOREVER = _Forever()

TTL = Union[float, int, timedelta, _Forever]


def now() -> float:
    """Current wall-clock time. Every freshness check goes through here."""
    return time.time()


def validate_ttl(ttl: TTL) -> float | _Forever:
    """Normalize a TTL to seconds, or return FOREVER untouched."""
    if ttl is FOREVER:
        return FOREVER
    if isinstance(ttl, timedelta):
        ttl = ttl.total_seconds()
    if isinstance(ttl, bool) or not isinstance(ttl, (int, float)):
        raise TypeError(f"ttl must be seconds, a timedelta or FOREVER, got {ttl!r}")
    if ttl < 0:
        raise ValueError(f"ttl must not be negative, got {ttl!r}")
    return float(ttl)


def is_expired(last_set: float, ttl: float | _Forever) -> bool:
    """True when a value written at `last_set` is older than `ttl`."""
    if ttl is FOREVER:
        return False
    return now() - last_set > ttl
