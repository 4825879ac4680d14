"""
CachedValue: one in-memory value optionally mirrored to a Store.

The in-memory value is authoritative once set. Store and serialization
failures are raised to the caller but never roll back the in-memory state.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from . import clock
from .errors import ExternalCacheError, NotSerializableError
from .serialization import DEFAULT_SERIALIZER, Serializer
from .storage import Store, supports_delete

logger = logging.getLogger(__name__)


class CachedValue:
    """
    A value, the time it was last set, and an optional backing store.

    Attributes:
        key: key used in the backing store
        store: shared store reference (not owned), or None for memory only
        serializer: encoding used for the store

    Example:
        data = CachedValue(FsStore("/tmp/cache"), "teams")
        data.load()
        if data.is_unset() or data.is_expired(60):
            data.set(fetch_teams())
        teams = data.get()
    """

    def __init__(
        self,
        store: Store | None = None,
        key: str = "",
        serializer: Serializer | None = None,
    ):
        self.key = key
        self.store = store
        self.serializer = serializer if serializer is not None else DEFAULT_SERIALIZER
        self._value: Any = None
        self._last_set = 0.0
        self._load_attempted = False
        self._lock = threading.RLock()

    @property
    def last_set(self) -> float:
        return self._last_set

    @property
    def lock(self) -> threading.RLock:
        """Lock guarding load/decide/compute/commit sequences."""
        return self._lock

    def load(self) -> None:
        """
        Populate the value from the store.

        No-op when already set, when there is no store, or when a load was
        already attempted. A store miss is not an error.

        Raises:
            ExternalCacheError: the store read failed; value stays unset
            NotSerializableError: stored bytes could not be decoded
        """
        with self._lock:
            if not self.is_unset() or self.store is None or self._load_attempted:
                return
            self._load_attempted = True

            try:
                raw, last_update = self.store.get(self.key)
            except Exception as e:
                raise ExternalCacheError(
                    f"could not read {self.key!r} from the external cache: {e}"
                ) from e

            if not last_update:
                logger.debug(f"Store MISS: {self.key}")
                return

            try:
                value = self.serializer.loads(raw)
            except Exception as e:
                raise NotSerializableError(
                    f"could not deserialize {self.key!r}: {e}"
                ) from e

            self._value = value
            self._last_set = last_update
            logger.debug(f"Loaded {self.key} from store, age={self.age():.1f}s")

    def get(self) -> Any:
        """Return the in-memory value (None if never set)."""
        return self._value

    def set(self, value: Any) -> None:
        """
        Update the value and write it through to the store.

        The in-memory update always happens first and is kept even if the
        write fails.

        Raises:
            NotSerializableError: value could not be encoded
            ExternalCacheError: the store write failed
        """
        with self._lock:
            self._value = value
            self._last_set = clock.now()
            if self.store is None:
                return

            try:
                raw = self.serializer.dumps(value)
            except Exception as e:
                raise NotSerializableError(
                    f"could not serialize {self.key!r}: {e}"
                ) from e

            try:
                self.store.set(self.key, raw)
            except Exception as e:
                raise ExternalCacheError(
                    f"could not write {self.key!r} to the external cache: {e}"
                ) from e

    def delete(self) -> None:
        """Remove the value from the store, if the store supports it."""
        if self.store is None or not supports_delete(self.store):
            return
        with self._lock:
            try:
                self.store.delete(self.key)
            except Exception as e:
                raise ExternalCacheError(
                    f"could not delete {self.key!r} from the external cache: {e}"
                ) from e

    def is_unset(self) -> bool:
        return not self._last_set

    def age(self) -> float:
        """Seconds since the value was last set."""
        return clock.now() - self._last_set

    def is_expired(self, ttl: clock.TTL) -> bool:
        return clock.is_expired(self._last_set, clock.validate_ttl(ttl))

    def reset_ttl(self) -> None:
        """Restart the freshness clock in memory only; the store is untouched."""
        with self._lock:
            self._last_set = clock.now()

    def __repr__(self) -> str:
        return (
            f"CachedValue(key={self.key!r}, last_set={self._last_set}, "
            f"value={self._value!r})"
        )
