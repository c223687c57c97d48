"""Tests for the in-memory key-value store and storage URI resolution."""

from __future__ import annotations

import asyncio

import pytest

from kvtable.config import KvTableConfig
from kvtable.errors import StorageTargetError
from kvtable.kv import (
    KeyValueProtocol,
    MemoryKeyValue,
    Operation,
    literal_prefix,
    match_pattern,
    open_store,
    parse_storage_target,
    validate_key,
)


class TestPatterns:
    @pytest.mark.parametrize(
        "pattern,key,expected",
        [
            ("User.shard_1.>", "User.shard_1.5", True),
            ("User.shard_1.>", "User.shard_1", False),
            ("User.shard_1.>", "User.shard_10.5", False),
            ("User.*.5", "User.shard_1.5", True),
            ("User.*", "User.shard_1.5", False),
            ("User.>", "User.index.email.a", True),
            ("User.index.email.a", "User.index.email.a", True),
        ],
    )
    def test_match_pattern(self, pattern, key, expected):
        assert match_pattern(pattern, key) is expected

    def test_literal_prefix(self):
        assert literal_prefix("User.shard_1.>") == "User.shard_1."
        assert literal_prefix("*.x") == ""
        assert literal_prefix(None) == ""
        assert literal_prefix("a.b") == "a.b"

    @pytest.mark.parametrize("key", ["", "a b", "a..b", ".a", "a.", "a.*", "a.>"])
    def test_invalid_keys(self, key):
        with pytest.raises(ValueError):
            validate_key(key)


class TestMemoryStore:
    def test_satisfies_protocol(self, kv):
        assert isinstance(kv, KeyValueProtocol)

    async def test_put_get(self, kv):
        rev = await kv.put("a.b", b"1")
        entry = await kv.get("a.b")
        assert entry is not None
        assert entry.value == b"1"
        assert entry.revision == rev
        assert entry.operation is Operation.PUT

    async def test_revisions_increase(self, kv):
        r1 = await kv.put("a.b", b"1")
        r2 = await kv.put("a.c", b"2")
        assert r2 > r1

    async def test_get_missing(self, kv):
        assert await kv.get("nope") is None

    async def test_delete_leaves_tombstone(self, kv):
        await kv.put("a.b", b"1")
        await kv.delete("a.b")
        entry = await kv.get("a.b")
        assert entry is not None and entry.is_tombstone
        assert entry.operation is Operation.DEL
        assert [k async for k in kv.keys()] == []

    async def test_purge_drops_history(self):
        kv = MemoryKeyValue("hist", history=5)
        await kv.put("a.b", b"1")
        await kv.put("a.b", b"2")
        assert len(await kv.history("a.b")) == 2
        await kv.purge("a.b")
        history = await kv.history("a.b")
        assert [e.operation for e in history] == [Operation.PURGE]

    async def test_keys_pattern(self, kv):
        await kv.put("User.shard_0.4", b"{}")
        await kv.put("User.shard_1.5", b"{}")
        await kv.put("User.index.email.x", b"[]")
        keys = sorted([k async for k in kv.keys("User.shard_1.>")])
        assert keys == ["User.shard_1.5"]
        assert len([k async for k in kv.keys()]) == 3

    async def test_watch_delivers_updates_in_order(self, kv):
        watcher = await kv.watch("a.b")
        await kv.put("a.b", b"1")
        await kv.put("a.c", b"x")
        await kv.delete("a.b")
        first = await asyncio.wait_for(watcher.__anext__(), 1)
        second = await asyncio.wait_for(watcher.__anext__(), 1)
        assert first.value == b"1"
        assert second.operation is Operation.DEL
        watcher.stop()
        with pytest.raises(StopAsyncIteration):
            await watcher.__anext__()

    async def test_storage_info(self, kv):
        await kv.put("a.b", b"1")
        info = kv.storage_info()
        assert info["backend"] == "memory"
        assert info["live_keys"] == 1

    def test_named_buckets_are_shared(self):
        a = MemoryKeyValue.named("shared-test")
        b = MemoryKeyValue.named("shared-test")
        assert a is b
        MemoryKeyValue.drop_named("shared-test")
        assert MemoryKeyValue.named("shared-test") is not a
        MemoryKeyValue.drop_named("shared-test")


class TestStorageTarget:
    def test_default_is_memory(self):
        target = parse_storage_target()
        assert target.backend == "memory"
        assert target.bucket == "kvtable"

    def test_memory_bucket(self):
        assert parse_storage_target("memory://app").bucket == "app"

    def test_s3(self):
        target = parse_storage_target("s3://bucket/some/prefix/")
        assert target.backend == "s3"
        assert target.bucket == "bucket"
        assert target.prefix == "some/prefix"

    def test_s3_requires_bucket(self):
        with pytest.raises(StorageTargetError):
            parse_storage_target("s3:///prefix")

    def test_unknown_scheme(self):
        with pytest.raises(StorageTargetError, match="unsupported scheme"):
            parse_storage_target("nats://localhost")

    def test_open_store_memory(self):
        store = open_store("memory://open-test", config=KvTableConfig(memory_history=3))
        assert isinstance(store, MemoryKeyValue)
        assert store.bucket == "open-test"
        MemoryKeyValue.drop_named("open-test")
