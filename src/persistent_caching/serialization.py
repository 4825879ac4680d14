"""
Value encoding strategies.

A CachedValue is given one Serializer at construction time. JSON is the
default; types with their own byte format use BytesSerializer.
"""

from __future__ import annotations

import json
import pickle
from typing import Any, Protocol


class Serializer(Protocol):
    """Turns cached values into bytes and back."""

    def dumps(self, value: Any) -> bytes:
        ...

    def loads(self, raw: bytes) -> Any:
        ...


class Serializable(Protocol):
    """
    Custom byte-encoding capability for cached types.

    Example:
        class Hex:
            def __init__(self, n): self.n = n
            def to_bytes(self): return b"%X" % self.n
            @classmethod
            def from_bytes(cls, raw): return cls(int(raw, 16))
    """

    def to_bytes(self) -> bytes:
        ...

    @classmethod
    def from_bytes(cls, raw: bytes) -> Any:
        ...


class JsonSerializer:
    """Compact UTF-8 JSON."""

    def dumps(self, value: Any) -> bytes:
        return json.dumps(value, ensure_ascii=False, separators=(",", ":")).encode(
            "utf-8"
        )

    def loads(self, raw: bytes) -> Any:
        return json.loads(raw.decode("utf-8"))


class PickleSerializer:
    """Pickle, for values JSON cannot represent. Only load trusted data."""

    def __init__(self, protocol: int = pickle.HIGHEST_PROTOCOL):
        self.protocol = protocol

    def dumps(self, value: Any) -> bytes:
        return pickle.dumps(value, protocol=self.protocol)

    def loads(self, raw: bytes) -> Any:
        return pickle.loads(raw)


class BytesSerializer:
    """Delegates to a Serializable type's own to_bytes/from_bytes."""

    def __init__(self, cls: type):
        if not callable(getattr(cls, "from_bytes", None)):
            raise TypeError(f"{cls.__name__} does not define from_bytes()")
        self.cls = cls

    def dumps(self, value: Any) -> bytes:
        return value.to_bytes()

    def loads(self, raw: bytes) -> Any:
        return self.cls.from_bytes(raw)


DEFAULT_SERIALIZER = JsonSerializer()
