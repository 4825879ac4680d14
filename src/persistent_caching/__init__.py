"""
Persistent read-through caching: TTL decorators, memoization, and pluggable stores.

Expose cached values, stores, decorators and errors under `persistent_caching`.
"""

from .clock import FOREVER
from .errors import (
    CacheError,
    ExternalCacheError,
    NotSerializableError,
    FailedKeyError,
    AggregateStoreError,
)
from .serialization import (
    Serializer,
    Serializable,
    JsonSerializer,
    PickleSerializer,
    BytesSerializer,
)
from .storage import (
    Store,
    RawData,
    InMemStore,
    FsStore,
    RedisStore,
    DocumentStore,
    MultiStore,
    safe_key,
    validate_store,
)
from .value import CachedValue
from .keyed import KeyedCache, derive_key, shutdown_scheduler
from .decorators import (
    CacheResult,
    Result,
    ReadThroughCache,
    Memoize,
    skip_err,
    log_err,
)

__all__ = [
    "FOREVER",
    "CacheError",
    "ExternalCacheError",
    "NotSerializableError",
    "FailedKeyError",
    "AggregateStoreError",
    "Serializer",
    "Serializable",
    "JsonSerializer",
    "PickleSerializer",
    "BytesSerializer",
    "Store",
    "RawData",
    "InMemStore",
    "FsStore",
    "RedisStore",
    "DocumentStore",
    "MultiStore",
    "safe_key",
    "validate_store",
    "CachedValue",
    "KeyedCache",
    "derive_key",
    "shutdown_scheduler",
    "CacheResult",
    "Result",
    "ReadThroughCache",
    "Memoize",
    "skip_err",
    "log_err",
]
