"""
Read-through cache decorators.

Provides:
- ReadThroughCache: one cached result per function
- Memoize: one cached result per distinct input
- skip_err / log_err: drop or log cache errors

Wrapped functions return CacheResult(value, cache_error, error). Producer
exceptions are caught and returned next to the last known-good value;
store failures are reported separately and never hide a fresh value.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Callable, NamedTuple, TypeVar

from . import clock
from .errors import CacheError
from .keyed import KeyedCache
from .serialization import Serializer
from .storage import FsStore, Store
from .value import CachedValue

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CacheResult(NamedTuple):
    """Value plus the cache error and producer error of one call."""

    value: Any
    cache_error: CacheError | None
    error: Exception | None

    def unwrap(self) -> Any:
        """Return the value, or raise the producer error."""
        if self.error is not None:
            raise self.error
        return self.value


class Result(NamedTuple):
    """Value plus the producer error of one call."""

    value: Any
    error: Exception | None

    def unwrap(self) -> Any:
        if self.error is not None:
            raise self.error
        return self.value


def _read_through(
    data: CachedValue,
    ttl: float | Any,
    produce: Callable[[], Any],
    force_refresh: bool,
    refresh_ttl: bool,
) -> CacheResult:
    with data.lock:
        load_error: CacheError | None = None
        try:
            data.load()
        except CacheError as e:
            load_error = e

        if refresh_ttl and not data.is_unset() and not data.is_expired(ttl):
            data.reset_ttl()

        if not (force_refresh or data.is_unset() or data.is_expired(ttl)):
            logger.debug(f"Cache HIT: {data.key}")
            return CacheResult(data.get(), None, None)

        logger.debug(f"Cache MISS: {data.key}")
        try:
            result = produce()
        except Exception as e:
            return CacheResult(data.get(), load_error, e)

        try:
            data.set(result)
        except CacheError as e:
            return CacheResult(result, e, None)

        return CacheResult(data.get(), None, None)


def _copy_metadata(wrapper: Callable, func: Callable) -> None:
    wrapper.__wrapped__ = func  # type: ignore
    wrapper.__name__ = func.__name__  # type: ignore
    wrapper.__qualname__ = getattr(func, "__qualname__", func.__name__)  # type: ignore
    wrapper.__doc__ = func.__doc__  # type: ignore


def _copy_cache_handles(wrapper: Callable, fn: Callable) -> None:
    for name in ("_cache", "close"):
        if hasattr(fn, name):
            setattr(wrapper, name, getattr(fn, name))


# ============================================================================
# ReadThroughCache - one cached result per function
# ============================================================================


class ReadThroughCache:
    """
    Cache the result of a zero-argument function for `ttl` seconds.

    Example:
        @ReadThroughCache.cached(ttl=300, store=FsStore("/tmp/cache"), key="teams")
        def load_teams():
            return api.fetch_teams()

        teams, cache_err, err = load_teams()
        teams = load_teams(force_refresh=True).unwrap()
    """

    @classmethod
    def cached(
        cls,
        ttl: clock.TTL,
        store: Store | None = None,
        key: str | None = None,
        serializer: Serializer | None = None,
    ) -> Callable[[Callable[[], T]], Callable[..., CacheResult]]:
        """
        Read-through decorator.

        Args:
            ttl: Seconds before the value is recomputed, or FOREVER
            store: Optional store to persist the value across restarts
            key: Store key (defaults to the function's qualified name)
            serializer: Encoding for the store (default: JSON)

        The wrapped function accepts keyword-only `force_refresh` (always
        recompute) and `refresh_ttl` (restart the clock of a fresh value).
        """
        ttl = clock.validate_ttl(ttl)

        def decorator(func: Callable[[], T]) -> Callable[..., CacheResult]:
            data = CachedValue(
                store, key if key is not None else func.__qualname__, serializer
            )

            def wrapper(
                *, force_refresh: bool = False, refresh_ttl: bool = False
            ) -> CacheResult:
                return _read_through(data, ttl, func, force_refresh, refresh_ttl)

            _copy_metadata(wrapper, func)
            wrapper._cache = data  # type: ignore
            return wrapper

        return decorator

    @classmethod
    def in_memory(
        cls, ttl: clock.TTL
    ) -> Callable[[Callable[[], T]], Callable[..., Result]]:
        """In-memory only; cache errors cannot happen so results are Result."""

        def decorator(func: Callable[[], T]) -> Callable[..., Result]:
            return skip_err(cls.cached(ttl)(func))

        return decorator

    @classmethod
    def on_disk(
        cls,
        file: str | os.PathLike,
        ttl: clock.TTL,
        serializer: Serializer | None = None,
    ) -> Callable[[Callable[[], T]], Callable[..., CacheResult]]:
        """
        Persist the value to `file`; its mtime carries the freshness clock
        across process restarts.
        """
        path = os.fspath(file)
        store = FsStore(os.path.dirname(path) or ".")
        return cls.cached(
            ttl, store=store, key=os.path.basename(path), serializer=serializer
        )


# ============================================================================
# Memoize - one cached result per distinct input
# ============================================================================


def _key_input(args: tuple, kwargs: dict) -> Any:
    if len(args) == 1 and not kwargs:
        return args[0]
    return [list(args), kwargs]


class Memoize:
    """
    Cache a function's result per distinct input.

    The input is the single positional argument, or [args, kwargs] for any
    other call shape. It is keyed with `keyer` when given, otherwise as
    canonical JSON.

    Example:
        @Memoize.cached(ttl=60, store=RedisStore(client), key_prefix="user:")
        def get_user(user_id):
            return db.fetch_user(user_id)

        user, cache_err, err = get_user(42)
    """

    @classmethod
    def cached(
        cls,
        ttl: clock.TTL,
        store: Store | None = None,
        key_prefix: str = "",
        keyer: Callable[[Any], str] | None = None,
        serializer: Serializer | None = None,
        eviction_interval: float | None = None,
    ) -> Callable[[Callable[..., T]], Callable[..., CacheResult]]:
        """
        Memoizing read-through decorator.

        Args:
            ttl: Seconds before an input's value is recomputed, or FOREVER
            store: Optional store shared by every input
            key_prefix: Prefix for store keys
            keyer: Input -> key conversion (default: canonical JSON)
            serializer: Encoding for the store (default: JSON)
            eviction_interval: Seconds between sweeps of expired inputs;
                call `wrapper.close()` to stop it

        Raises (from the wrapped call):
            FailedKeyError: the input could not be keyed
        """
        ttl = clock.validate_ttl(ttl)

        def decorator(func: Callable[..., T]) -> Callable[..., CacheResult]:
            cache = KeyedCache(
                ttl,
                store=store,
                key_prefix=key_prefix,
                keyer=keyer,
                serializer=serializer,
                eviction_interval=eviction_interval,
            )

            def wrapper(
                *args, force_refresh: bool = False, refresh_ttl: bool = False, **kwargs
            ) -> CacheResult:
                data = cache.entry(_key_input(args, kwargs))
                return _read_through(
                    data,
                    cache.ttl,
                    lambda: func(*args, **kwargs),
                    force_refresh,
                    refresh_ttl,
                )

            _copy_metadata(wrapper, func)
            wrapper._cache = cache  # type: ignore
            wrapper.close = cache.close  # type: ignore
            return wrapper

        return decorator

    @classmethod
    def in_memory(
        cls,
        ttl: clock.TTL,
        keyer: Callable[[Any], str] | None = None,
        eviction_interval: float | None = None,
    ) -> Callable[[Callable[..., T]], Callable[..., Result]]:
        """In-memory memoization returning Result."""

        def decorator(func: Callable[..., T]) -> Callable[..., Result]:
            wrapped = cls.cached(ttl, keyer=keyer, eviction_interval=eviction_interval)(
                func
            )
            return skip_err(wrapped)

        return decorator

    @classmethod
    def on_disk(
        cls,
        directory: str | os.PathLike,
        ttl: clock.TTL,
        keyer: Callable[[Any], str] | None = None,
        serializer: Serializer | None = None,
        eviction_interval: float | None = None,
    ) -> Callable[[Callable[..., T]], Callable[..., CacheResult]]:
        """One file per input under `directory`, named with safe_key()."""
        return cls.cached(
            ttl,
            store=FsStore(directory, use_safe_key=True),
            keyer=keyer,
            serializer=serializer,
            eviction_interval=eviction_interval,
        )


# ============================================================================
# Cache error reductions
# ============================================================================


def skip_err(fn: Callable[..., CacheResult]) -> Callable[..., Result]:
    """Drop cache errors, keeping (value, producer error)."""

    def wrapper(*args, **kwargs) -> Result:
        value, _, error = fn(*args, **kwargs)
        return Result(value, error)

    _copy_metadata(wrapper, fn)
    _copy_cache_handles(wrapper, fn)
    return wrapper


def _log_cache_error(error: CacheError) -> None:
    logger.warning(f"Cache error: {error}")


def log_err(
    fn: Callable[..., CacheResult],
    log: Callable[[CacheError], None] | None = None,
) -> Callable[..., Result]:
    """
    Pass cache errors to `log` (default: a module logger warning),
    keeping (value, producer error).
    """
    sink = log if log is not None else _log_cache_error

    def wrapper(*args, **kwargs) -> Result:
        value, cache_error, error = fn(*args, **kwargs)
        if cache_error is not None:
            sink(cache_error)
        return Result(value, error)

    _copy_metadata(wrapper, fn)
    _copy_cache_handles(wrapper, fn)
    return wrapper
