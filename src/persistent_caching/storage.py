"""
Storage backends for persisting cached values.

Provides the Store protocol, key sanitization, and the InMemStore, FsStore,
RedisStore, DocumentStore and MultiStore backends. Stores move raw bytes
plus a last-write timestamp; decoding and freshness belong to CachedValue.
"""

from __future__ import annotations

import base64
import json
import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, Sequence

from . import clock
from .errors import AggregateStoreError

try:
    import redis
except ImportError:
    redis = None  # type: ignore

logger = logging.getLogger(__name__)

MISS: tuple[bytes | None, float] = (None, 0.0)


# ============================================================================
# Store Protocol - Common interface for all backends
# ============================================================================


class Store(Protocol):
    """
    Protocol for persistent backends of cached values.

    get() returns (raw bytes, last-write timestamp). A clean miss is
    (None, 0.0) and must not raise; exceptions mean a genuine I/O failure.
    delete() is optional.

    Example:
        class MyStore:
            def get(self, key: str) -> tuple[bytes | None, float]: ...
            def set(self, key: str, raw: bytes) -> None: ...
    """

    def get(self, key: str) -> tuple[bytes | None, float]:
        """Return stored bytes and their write time, or (None, 0.0)."""
        ...

    def set(self, key: str, raw: bytes) -> None:
        """Store raw bytes under key."""
        ...


def validate_store(store: Any) -> bool:
    """
    Validate that an object implements the Store protocol.
    Useful for debugging custom store implementations.
    """
    return all(
        hasattr(store, method) and callable(getattr(store, method))
        for method in ("get", "set")
    )


def supports_delete(store: Any) -> bool:
    return callable(getattr(store, "delete", None))


def safe_key(key: str) -> str:
    """
    Encode an arbitrary key using only [0-9a-zA-Z-_.].

    Standard base64 with '+' -> '-', '/' -> '_' and '=' -> '.'.
    """
    encoded = base64.b64encode(key.encode("utf-8")).decode("ascii")
    return encoded.replace("+", "-").replace("/", "_").replace("=", ".")


# ============================================================================
# RawData - envelope for backends without a native modification time
# ============================================================================


@dataclass
class RawData:
    """Stored bytes along with the time they were written."""

    last_set: float
    raw: bytes

    def to_json(self) -> bytes:
        return json.dumps(
            {
                "last_set": self.last_set,
                "raw": base64.b64encode(self.raw).decode("ascii"),
            },
            separators=(",", ":"),
        ).encode("utf-8")

    @classmethod
    def from_json(cls, data: bytes | str) -> "RawData":
        doc = json.loads(data)
        return cls(last_set=float(doc["last_set"]), raw=base64.b64decode(doc["raw"]))


# ============================================================================
# InMemStore - process-local store
# ============================================================================


class InMemStore:
    """
    Thread-safe in-memory store.

    Keeps bytes rather than objects, so values round-trip through the
    configured serializer exactly as they would with a remote backend.
    """

    def __init__(self):
        self._data: dict[str, RawData] = {}
        self._lock = threading.RLock()

    def get(self, key: str) -> tuple[bytes | None, float]:
        with self._lock:
            entry = self._data.get(key)
        if entry is None:
            return MISS
        return entry.raw, entry.last_set

    def set(self, key: str, raw: bytes) -> None:
        entry = RawData(last_set=clock.now(), raw=bytes(raw))
        with self._lock:
            self._data[key] = entry

    def set_entry(self, key: str, entry: RawData) -> None:
        """Store a raw entry with an explicit timestamp."""
        with self._lock:
            self._data[key] = entry

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._data)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()


# ============================================================================
# FsStore - one file per key
# ============================================================================


class FsStore:
    """
    Filesystem store: one file per key directly under `directory`.

    Files hold the serialized bytes only; the file mtime is the write time.

    Example:
        store = FsStore("/var/cache/myapp")
        store.set("teams", b'"test"')   # writes /var/cache/myapp/teams
    """

    def __init__(self, directory: str | os.PathLike, use_safe_key: bool = False):
        """
        Args:
            directory: Root directory, created on first write
            use_safe_key: Encode keys with safe_key() before using them as names
        """
        self.directory = Path(directory)
        self.use_safe_key = use_safe_key

    def _path(self, key: str) -> Path:
        if self.use_safe_key:
            key = safe_key(key)
        return self.directory / key

    def get(self, key: str) -> tuple[bytes | None, float]:
        path = self._path(key)
        try:
            stat = path.stat()
            raw = path.read_bytes()
        except FileNotFoundError:
            return MISS
        return raw, stat.st_mtime

    def set(self, key: str, raw: bytes) -> None:
        if not self.directory.exists():
            self.directory.mkdir(mode=0o750, parents=True, exist_ok=True)
        self._path(key).write_bytes(raw)

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


# ============================================================================
# RedisStore - Redis-backed storage
# ============================================================================


class RedisStore:
    """
    Redis-backed store.

    Values are written as a JSON RawData envelope with no Redis expiry;
    freshness is decided by the cache, not by Redis.

    Example:
        import redis
        client = redis.Redis(host='localhost', port=6379)
        store = RedisStore(client, prefix="app:")
    """

    def __init__(self, redis_client: Any, prefix: str = ""):
        """
        Initialize Redis store.

        Args:
            redis_client: Redis client instance
            prefix: Key prefix for namespacing
        """
        if redis is None:
            raise ImportError("redis package required. Install: pip install redis")
        self.client = redis_client
        self.prefix = prefix

    def _make_key(self, key: str) -> str:
        return f"{self.prefix}{safe_key(key)}"

    def get(self, key: str) -> tuple[bytes | None, float]:
        data = self.client.get(self._make_key(key))
        if data is None:
            return MISS
        entry = RawData.from_json(data)
        return entry.raw, entry.last_set

    def set(self, key: str, raw: bytes) -> None:
        entry = RawData(last_set=clock.now(), raw=raw)
        self.client.set(self._make_key(key), entry.to_json())

    def delete(self, key: str) -> None:
        self.client.delete(self._make_key(key))


# ============================================================================
# DocumentStore - document database collection
# ============================================================================


class DocumentStore:
    """
    Document-database store over a Firestore-style collection.

    The collection must provide document(id) returning a reference with
    get() (a snapshot with `exists` and `to_dict()`), set(mapping) and
    delete(). Document ids are safe_key(key).

    Example:
        from google.cloud import firestore
        store = DocumentStore(firestore.Client().collection("cache"))
    """

    def __init__(self, collection: Any):
        self.collection = collection

    def get(self, key: str) -> tuple[bytes | None, float]:
        snapshot = self.collection.document(safe_key(key)).get()
        if not snapshot.exists:
            return MISS
        doc = snapshot.to_dict() or {}
        return bytes(doc["raw"]), float(doc["last_set"])

    def set(self, key: str, raw: bytes) -> None:
        self.collection.document(safe_key(key)).set(
            {"last_set": clock.now(), "raw": bytes(raw)}
        )

    def delete(self, key: str) -> None:
        self.collection.document(safe_key(key)).delete()


# ============================================================================
# MultiStore - fan-out over several stores
# ============================================================================


class MultiStore:
    """
    Several stores behind one Store.

    Reads return the first store holding data younger than `expire`;
    writes and deletes go to every store.

    Example:
        store = MultiStore(
            [FsStore("/tmp/cache"), RedisStore(client)],
            expire=3600,
        )
    """

    def __init__(self, stores: Sequence[Any], expire: clock.TTL):
        """
        Args:
            stores: Stores in lookup order
            expire: Freshness window in seconds (or FOREVER) for reads
        """
        self.stores = list(stores)
        self.expire = clock.validate_ttl(expire)

    def _is_fresh(self, last_update: float) -> bool:
        if not last_update:
            return False
        if self.expire is clock.FOREVER:
            return True
        return clock.now() - last_update < self.expire

    def get(self, key: str) -> tuple[bytes | None, float]:
        errors: list[Exception] = []
        for store in self.stores:
            try:
                raw, last_update = store.get(key)
            except Exception as e:
                logger.debug(f"MultiStore read failed for {key}: {e}")
                errors.append(e)
                continue
            if self._is_fresh(last_update):
                return raw, last_update

        if errors:
            raise AggregateStoreError(errors)
        return MISS

    def set(self, key: str, raw: bytes) -> None:
        errors: list[Exception] = []
        for store in self.stores:
            try:
                store.set(key, raw)
            except Exception as e:
                errors.append(e)
        if errors:
            raise AggregateStoreError(errors)

    def delete(self, key: str) -> None:
        errors: list[Exception] = []
        for store in self.stores:
            if not supports_delete(store):
                continue
            try:
                store.delete(key)
            except Exception as e:
                errors.append(e)
        if errors:
            raise AggregateStoreError(errors)
