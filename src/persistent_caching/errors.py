"""
Exception hierarchy for persistent_caching.

Store and serialization failures never invalidate the in-memory value; they
are reported so callers can decide whether to log, ignore or fail.
"""

from __future__ import annotations


class CacheError(Exception):
    """Base exception for cache-side failures (never producer failures)."""


class ExternalCacheError(CacheError):
    """Reading or writing the backing store failed."""

    def __init__(self, message: str = "could not read/write from the external cache"):
        super().__init__(message)


class NotSerializableError(CacheError):
    """The cached value could not be encoded to or decoded from bytes."""

    def __init__(self, message: str = "value could not be serialized/deserialized"):
        super().__init__(message)


class FailedKeyError(CacheError):
    """A memoization input could not be converted into a derived key."""

    def __init__(self, message: str = "failed to convert input into valid key"):
        super().__init__(message)


class AggregateStoreError(ExternalCacheError):
    """
    One or more stores of a MultiStore failed.

    The individual exceptions are kept in `errors`; the message is only the
    joined text and is meant for logging.
    """

    def __init__(self, errors: list[Exception]):
        self.errors = list(errors)
        super().__init__("errs: " + "|".join(str(e) for e in self.errors))
