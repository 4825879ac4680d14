"""
Unit tests for store backends, key sanitization and the multi-store.
"""

import pathlib
import re

import pytest

from persistent_caching import (
    FOREVER,
    AggregateStoreError,
    CachedValue,
    DocumentStore,
    FsStore,
    InMemStore,
    MultiStore,
    RawData,
    RedisStore,
    clock,
    safe_key,
    validate_store,
)

from conftest import FailingStore


class TestSafeKey:
    """safe_key() encoding tests."""

    def test_empty_key(self):
        assert safe_key("") == ""

    def test_known_encoding(self):
        assert safe_key("key123") == "a2V5MTIz"

    def test_only_safe_characters(self):
        """Characters that base64 maps to +, / and = are substituted."""
        for key in ["a/b+c?d", "??>>", "x", '{"user":1}', "ünïcødé"]:
            assert re.fullmatch(r"[0-9a-zA-Z\-_.]*", safe_key(key)), key

    def test_substitutions(self):
        # "??>" encodes to "Pz8+", "??" to "Pz8="
        assert safe_key("??>") == "Pz8-"
        assert safe_key("??") == "Pz8."
        assert safe_key("???") == "Pz8_"


class TestRawData:
    def test_json_envelope(self):
        entry = RawData(last_set=1589536800.0, raw=b'"test value"')
        restored = RawData.from_json(entry.to_json())
        assert restored == entry


class TestValidateStore:
    def test_valid_stores(self, tmp_path):
        assert validate_store(InMemStore())
        assert validate_store(FsStore(tmp_path))

    def test_invalid_store(self):
        assert not validate_store(object())
        assert not validate_store({"get": 1})


class TestInMemStore:
    def test_miss(self):
        assert InMemStore().get("missing") == (None, 0.0)

    def test_set_get_delete(self, fake_clock):
        store = InMemStore()
        store.set("key", b"value")
        assert store.get("key") == (b"value", fake_clock.current)

        store.delete("key")
        assert store.get("key") == (None, 0.0)
        store.delete("key")  # missing is fine


class TestFsStore:
    """Filesystem backend tests."""

    def test_missing_file_is_clean_miss(self, tmp_path):
        assert FsStore(tmp_path).get("test_key") == (None, 0.0)

    def test_missing_directory_is_clean_miss(self, tmp_path):
        assert FsStore(tmp_path / "nope").get("test_key") == (None, 0.0)

    def test_get_returns_bytes_and_mtime(self, tmp_path):
        path = tmp_path / "test_key"
        path.write_bytes(b"test")
        raw, ts = FsStore(tmp_path).get("test_key")
        assert raw == b"test"
        assert ts == path.stat().st_mtime

    def test_get_safe_key(self, tmp_path):
        (tmp_path / safe_key("safe_key")).write_bytes(b"test")
        raw, ts = FsStore(tmp_path, use_safe_key=True).get("safe_key")
        assert raw == b"test"
        assert ts > 0

    def test_get_unreadable_raises(self, tmp_path):
        """A directory where the file should be is an I/O failure, not a miss."""
        (tmp_path / "test_key").mkdir()
        with pytest.raises(OSError):
            FsStore(tmp_path).get("test_key")

    def test_file_removed_between_stat_and_read_is_miss(self, tmp_path, monkeypatch):
        (tmp_path / "test_key").write_bytes(b"test")

        def removed(self):
            raise FileNotFoundError(2, "No such file or directory", str(self))

        monkeypatch.setattr(pathlib.Path, "read_bytes", removed)
        assert FsStore(tmp_path).get("test_key") == (None, 0.0)

    def test_set_creates_nested_directory(self, tmp_path):
        store = FsStore(tmp_path / "nested" / "dir")
        store.set("test_key", b"test")
        assert (tmp_path / "nested" / "dir" / "test_key").read_bytes() == b"test"

    def test_set_safe_key(self, tmp_path):
        FsStore(tmp_path, use_safe_key=True).set("safe_key", b"test")
        assert (tmp_path / safe_key("safe_key")).read_bytes() == b"test"

    def test_delete(self, tmp_path):
        store = FsStore(tmp_path)
        store.set("test_key", b"test")
        store.delete("test_key")
        assert not (tmp_path / "test_key").exists()
        store.delete("test_key")

    def test_cached_value_file_contents(self, tmp_path):
        """The file holds exactly the serialized value, no envelope."""
        data = CachedValue(FsStore(tmp_path), "teams")
        data.set("test")
        assert (tmp_path / "teams").read_bytes() == b'"test"'


class FakeRedis:
    """Just enough of redis.Redis for RedisStore."""

    def __init__(self):
        self.data = {}
        self.expiries = {}

    def get(self, name):
        return self.data.get(name)

    def set(self, name, value, ex=None):
        self.data[name] = value
        self.expiries[name] = ex

    def delete(self, *names):
        for name in names:
            self.data.pop(name, None)


class TestRedisStore:
    """RedisStore against an in-process fake client."""

    def test_miss(self):
        assert RedisStore(FakeRedis()).get("missing") == (None, 0.0)

    def test_set_writes_envelope_without_expiry(self, fake_clock):
        client = FakeRedis()
        store = RedisStore(client, prefix="app:")
        store.set("user:1", b'{"id":1}')

        name = "app:" + safe_key("user:1")
        assert client.expiries[name] is None
        entry = RawData.from_json(client.data[name])
        assert entry == RawData(last_set=fake_clock.current, raw=b'{"id":1}')
        assert store.get("user:1") == (b'{"id":1}', fake_clock.current)

    def test_delete(self):
        store = RedisStore(FakeRedis())
        store.set("k", b"v")
        store.delete("k")
        assert store.get("k") == (None, 0.0)


class FakeSnapshot:
    def __init__(self, doc):
        self._doc = doc

    @property
    def exists(self):
        return self._doc is not None

    def to_dict(self):
        return dict(self._doc) if self._doc is not None else None


class FakeDocument:
    def __init__(self, collection, doc_id):
        self.collection = collection
        self.doc_id = doc_id

    def get(self):
        return FakeSnapshot(self.collection.docs.get(self.doc_id))

    def set(self, doc):
        self.collection.docs[self.doc_id] = doc

    def delete(self):
        self.collection.docs.pop(self.doc_id, None)


class FakeCollection:
    def __init__(self):
        self.docs = {}

    def document(self, doc_id):
        return FakeDocument(self, doc_id)


class TestDocumentStore:
    """DocumentStore against a Firestore-shaped fake collection."""

    def test_miss(self):
        assert DocumentStore(FakeCollection()).get("missing") == (None, 0.0)

    def test_set_get_delete(self, fake_clock):
        collection = FakeCollection()
        store = DocumentStore(collection)
        store.set("a/b", b"payload")

        assert collection.docs[safe_key("a/b")] == {
            "last_set": fake_clock.current,
            "raw": b"payload",
        }
        assert store.get("a/b") == (b"payload", fake_clock.current)

        store.delete("a/b")
        assert store.get("a/b") == (None, 0.0)


class TestMultiStore:
    """Fan-out reads and writes."""

    def _store_with(self, raw, age):
        store = InMemStore()
        store.set_entry("key", RawData(last_set=clock.now() - age, raw=raw))
        return store

    def test_first_fresh_store_wins(self, fake_clock):
        fresh = self._store_with(b"A", age=1)
        stale = self._store_with(b"B", age=100)
        store = MultiStore([fresh, stale], expire=10)
        assert store.get("key") == (b"A", fake_clock.current - 1)

    def test_stale_store_is_skipped(self, fake_clock):
        stale = self._store_with(b"A", age=100)
        fresh = self._store_with(b"B", age=1)
        assert MultiStore([stale, fresh], expire=10).get("key")[0] == b"B"

    def test_error_then_fresh_ignores_error(self, fake_clock):
        fresh = self._store_with(b"B", age=1)
        store = MultiStore([FailingStore(), fresh], expire=10)
        assert store.get("key")[0] == b"B"

    def test_errors_without_hit_are_aggregated(self, fake_clock):
        store = MultiStore(
            [FailingStore("first down"), InMemStore(), FailingStore("second down")],
            expire=10,
        )
        with pytest.raises(AggregateStoreError) as excinfo:
            store.get("key")
        assert str(excinfo.value) == "errs: first down|second down"
        assert len(excinfo.value.errors) == 2

    def test_clean_miss(self):
        assert MultiStore([InMemStore(), InMemStore()], expire=10).get("k") == (
            None,
            0.0,
        )

    def test_forever_accepts_any_written_data(self, fake_clock):
        old = self._store_with(b"A", age=10**9)
        assert MultiStore([old], expire=FOREVER).get("key")[0] == b"A"

    def test_set_writes_everywhere(self):
        a, b = InMemStore(), InMemStore()
        MultiStore([a, b], expire=10).set("key", b"v")
        assert a.get("key")[0] == b"v"
        assert b.get("key")[0] == b"v"

    def test_set_failure_still_writes_other_stores(self):
        a = InMemStore()
        store = MultiStore([FailingStore("down"), a], expire=10)
        with pytest.raises(AggregateStoreError, match="down"):
            store.set("key", b"v")
        assert a.get("key")[0] == b"v"

    def test_delete_fans_out_and_skips_stores_without_delete(self):
        class NoDelete:
            def get(self, key):
                return None, 0.0

            def set(self, key, raw):
                pass

        a = InMemStore()
        a.set("key", b"v")
        MultiStore([NoDelete(), a], expire=10).delete("key")
        assert a.get("key") == (None, 0.0)

    def test_delete_failure_is_aggregated(self):
        with pytest.raises(AggregateStoreError):
            MultiStore([FailingStore(), InMemStore()], expire=10).delete("key")
