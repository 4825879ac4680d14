"""
KeyedCache: one CachedValue per distinct input, with TTL-driven eviction.

Eviction runs as an APScheduler interval job on a scheduler shared by every
KeyedCache in the process.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from typing import Any, Callable, ClassVar

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from . import clock
from .errors import CacheError, FailedKeyError
from .serialization import Serializer
from .storage import Store
from .value import CachedValue

logger = logging.getLogger(__name__)


def derive_key(key_input: Any, keyer: Callable[[Any], str] | None = None) -> str:
    """
    Convert a memoization input into a string key.

    Uses `keyer` when given, otherwise canonical JSON (sorted object keys,
    compact separators).

    Raises:
        FailedKeyError: the input could not be converted
    """
    try:
        if keyer is not None:
            return str(keyer(key_input))
        return json.dumps(key_input, sort_keys=True, separators=(",", ":"))
    except Exception as e:
        raise FailedKeyError(f"failed to convert input into valid key: {e}") from e


# ============================================================================
# Shared Scheduler - Singleton for all eviction sweeps
# ============================================================================


class _SharedScheduler:
    """
    Shared BackgroundScheduler instance - singleton for all eviction sweeps.
    """

    _scheduler: ClassVar[BackgroundScheduler | None] = None
    _lock: ClassVar[threading.RLock] = threading.RLock()
    _started: ClassVar[bool] = False

    @classmethod
    def get_scheduler(cls) -> BackgroundScheduler:
        """Get or create the shared background scheduler instance."""
        with cls._lock:
            if cls._scheduler is None:
                cls._scheduler = BackgroundScheduler(daemon=True)
            return cls._scheduler

    @classmethod
    def add_job(cls, func: Callable[[], Any], seconds: float, job_id: str) -> None:
        with cls._lock:
            scheduler = cls.get_scheduler()
            scheduler.add_job(
                func,
                trigger=IntervalTrigger(seconds=seconds),
                id=job_id,
                replace_existing=True,
            )
            if not cls._started:
                scheduler.start()
                cls._started = True
                logger.info("Shared eviction scheduler started")

    @classmethod
    def remove_job(cls, job_id: str) -> None:
        with cls._lock:
            if cls._scheduler is None:
                return
            try:
                cls._scheduler.remove_job(job_id)
            except JobLookupError:
                pass

    @classmethod
    def shutdown(cls, wait: bool = True) -> None:
        """Stop the shared scheduler; every registered sweep stops with it."""
        with cls._lock:
            if cls._started and cls._scheduler is not None:
                cls._scheduler.shutdown(wait=wait)
                logger.info("Shared eviction scheduler stopped")
            cls._started = False
            cls._scheduler = None


def shutdown_scheduler(wait: bool = True) -> None:
    """Stop every running eviction sweep in the process."""
    _SharedScheduler.shutdown(wait)


# ============================================================================
# KeyedCache
# ============================================================================


class KeyedCache:
    """
    Mapping of derived key -> CachedValue sharing one store, TTL and prefix.

    When `eviction_interval` is set, a sweep removes expired entries from
    memory and from the store right away and then every interval until
    close() is called. A cache that is never closed keeps its sweep job for
    the life of the process.

    Example:
        with KeyedCache(ttl=60, store=store, key_prefix="user:",
                        eviction_interval=30) as users:
            users.set(42, {"name": "Ada"})
            users.get(42)
    """

    def __init__(
        self,
        ttl: clock.TTL,
        store: Store | None = None,
        key_prefix: str = "",
        keyer: Callable[[Any], str] | None = None,
        serializer: Serializer | None = None,
        eviction_interval: float | None = None,
    ):
        """
        Args:
            ttl: Entry time-to-live in seconds, or FOREVER
            store: Optional store shared by all entries
            key_prefix: Prepended to every derived key in the store
            keyer: Converts an input to its key (default: canonical JSON)
            serializer: Value encoding for the store (default: JSON)
            eviction_interval: Seconds between sweeps; None disables eviction
        """
        self.ttl = clock.validate_ttl(ttl)
        self.store = store
        self.key_prefix = key_prefix
        self.keyer = keyer
        self.serializer = serializer
        self.eviction_interval = eviction_interval
        self._entries: dict[str, CachedValue] = {}
        self._lock = threading.RLock()
        self._job_id: str | None = None

        if eviction_interval is not None:
            self.start()

    def derive_key(self, key_input: Any) -> str:
        return derive_key(key_input, self.keyer)

    def entry(self, key_input: Any) -> CachedValue:
        """Return the CachedValue for an input, creating it on first use."""
        key = self.derive_key(key_input)
        with self._lock:
            data = self._entries.get(key)
            if data is None:
                data = CachedValue(
                    self.store, self.key_prefix + key, serializer=self.serializer
                )
                self._entries[key] = data
            return data

    def get(self, key_input: Any, default: Any = None) -> Any:
        """Return the fresh value for an input, or `default`."""
        key = self.derive_key(key_input)
        with self._lock:
            data = self._entries.get(key)
        if data is None or data.is_unset() or data.is_expired(self.ttl):
            return default
        return data.get()

    def set(self, key_input: Any, value: Any) -> None:
        """
        Set the value for an input.

        The in-memory entry is kept even when the store write raises.
        """
        self.entry(key_input).set(value)

    def delete(self, key_input: Any) -> None:
        """Forget an input and delete it from the store."""
        key = self.derive_key(key_input)
        with self._lock:
            data = self._entries.pop(key, None)
        if data is not None:
            data.delete()

    def sweep(self) -> int:
        """
        Remove expired entries. Store deletions are best-effort.

        Entries that were never loaded or set are left alone, in memory and
        in the store, which may hold a value this process has not read yet.
        Entries whose lock is held by an in-flight call are skipped until
        the next sweep.

        Returns:
            Number of entries removed
        """
        with self._lock:
            candidates = [
                (key, data)
                for key, data in self._entries.items()
                if not data.is_unset() and data.is_expired(self.ttl)
            ]

        removed = 0
        for key, data in candidates:
            if not data.lock.acquire(blocking=False):
                continue
            try:
                if data.is_unset() or not data.is_expired(self.ttl):
                    continue
                with self._lock:
                    if self._entries.get(key) is data:
                        del self._entries[key]
                        removed += 1
                try:
                    data.delete()
                except CacheError as e:
                    logger.warning(f"Failed to delete evicted key {data.key}: {e}")
            finally:
                data.lock.release()

        if removed:
            logger.debug(f"Evicted {removed} expired entries")
        return removed

    def _sweep_job(self) -> None:
        try:
            self.sweep()
        except Exception as e:
            logger.error(f"Eviction sweep failed: {e}", exc_info=True)

    def start(self) -> None:
        """Run a sweep now and schedule one every `eviction_interval` seconds."""
        if self.eviction_interval is None:
            raise ValueError("eviction_interval is required to start eviction")
        if self.eviction_interval <= 0:
            raise ValueError("eviction_interval must be positive")
        if self._job_id is not None:
            return

        self._sweep_job()
        self._job_id = f"persistent_caching.sweep.{uuid.uuid4().hex}"
        _SharedScheduler.add_job(self._sweep_job, self.eviction_interval, self._job_id)

    def close(self) -> None:
        """Cancel the eviction sweep. Safe to call more than once."""
        if self._job_id is not None:
            _SharedScheduler.remove_job(self._job_id)
            self._job_id = None

    @property
    def running(self) -> bool:
        return self._job_id is not None

    def __enter__(self) -> "KeyedCache":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key_input: Any) -> bool:
        key = self.derive_key(key_input)
        with self._lock:
            return key in self._entries
