"""Tests for IndexManager maintenance, lookups, truncation and rebuild."""

from __future__ import annotations

import pytest

from kvtable.errors import CorruptRecordError
from kvtable.indexes import IndexManager, decode_ids, encode_ids
from kvtable.records import RecordStore
from kvtable.types import ModelDescriptor


@pytest.fixture
def indexed() -> ModelDescriptor:
    return ModelDescriptor("User", shard_count=4, indexes=["email", "tier"])


@pytest.fixture
def manager(kv, indexed) -> IndexManager:
    return IndexManager(kv, indexed, RecordStore(kv, indexed.router))


async def _raw_ids(kv, key):
    entry = await kv.get(key)
    if entry is None or entry.is_tombstone:
        return None
    return decode_ids(key, entry.value)


async def test_on_create_appends_in_order(kv, manager):
    await manager.on_create({"id": 2, "tier": "gold"})
    await manager.on_create({"id": 1, "tier": "gold"})
    await manager.on_create({"id": 2, "tier": "gold"})
    assert await _raw_ids(kv, "User.index.tier.gold") == [2, 1]


async def test_on_create_skips_absent_fields(kv, manager):
    await manager.on_create({"id": 1, "tier": "gold"})
    assert [k async for k in kv.keys("User.index.email.>")] == []


async def test_none_value_is_indexed(manager):
    await manager.on_create({"id": 1, "email": None})
    assert await manager.lookup("email", None) == [1]


async def test_on_update_moves_id(kv, manager):
    await manager.on_create({"id": 1, "tier": "gold"})
    await manager.on_create({"id": 2, "tier": "gold"})
    await manager.on_update({"id": 1, "tier": "gold"}, {"id": 1, "tier": "silver"})
    assert await manager.lookup("tier", "gold") == [2]
    assert await manager.lookup("tier", "silver") == [1]


async def test_on_update_deletes_emptied_key(kv, manager):
    await manager.on_create({"id": 1, "tier": "gold"})
    await manager.on_update({"id": 1, "tier": "gold"}, {"id": 1, "tier": "silver"})
    assert await _raw_ids(kv, "User.index.tier.gold") is None
    assert "User.index.tier.gold" not in [k async for k in kv.keys()]


async def test_on_update_field_added_and_removed(manager):
    await manager.on_create({"id": 1, "tier": "gold"})
    await manager.on_update({"id": 1, "tier": "gold"}, {"id": 1, "email": "a@x"})
    assert await manager.lookup("tier", "gold") == []
    assert await manager.lookup("email", "a@x") == [1]


async def test_on_update_unchanged_value_is_noop(kv, manager):
    await manager.on_create({"id": 1, "tier": "gold"})
    before = (await kv.get("User.index.tier.gold")).revision
    await manager.on_update({"id": 1, "tier": "gold", "n": 1}, {"id": 1, "tier": "gold", "n": 2})
    assert (await kv.get("User.index.tier.gold")).revision == before


async def test_on_destroy(manager):
    await manager.on_create({"id": 1, "tier": "gold", "email": "a"})
    await manager.on_create({"id": 2, "tier": "gold"})
    await manager.on_destroy({"id": 1, "tier": "gold", "email": "a"})
    assert await manager.lookup("tier", "gold") == [2]
    assert await manager.lookup("email", "a") == []


async def test_lookup_uses_sanitized_key(kv, manager):
    await manager.on_create({"id": 1, "email": "a@b.com"})
    assert await _raw_ids(kv, "User.index.email.a_b_com") == [1]
    # Sanitization collision shares the entry.
    assert await manager.lookup("email", "a_b_com") == [1]


async def test_lookup_corrupt_raises(kv, manager):
    await kv.put("User.index.tier.gold", b"{oops")
    with pytest.raises(CorruptRecordError):
        await manager.lookup("tier", "gold")


async def test_maintenance_overwrites_corrupt_entry(kv, manager):
    await kv.put("User.index.tier.gold", b"{oops")
    await manager.on_create({"id": 3, "tier": "gold"})
    assert await manager.lookup("tier", "gold") == [3]


async def test_truncate_indexes_sweeps_orphans(kv, manager):
    await manager.on_create({"id": 1, "tier": "gold", "email": "a"})
    await kv.put("User.index.tier.orphan", encode_ids([9]))
    removed = await manager.truncate_indexes([{"id": 1, "tier": "gold", "email": "a"}])
    assert removed == 3
    assert [k async for k in kv.keys("User.index.>")] == []


async def test_truncate_indexes_deletes_without_purge(kv, manager):
    await manager.on_create({"id": 1, "tier": "gold"})
    await manager.truncate_indexes([{"id": 1, "tier": "gold"}])
    entry = await kv.get("User.index.tier.gold")
    assert entry.operation.value == "DEL"


async def test_truncate_indexes_purges_when_enabled(kv, indexed):
    manager = IndexManager(kv, indexed, RecordStore(kv, indexed.router), purge=True)
    await manager.on_create({"id": 1, "tier": "gold"})
    await manager.truncate_indexes([{"id": 1, "tier": "gold"}])
    entry = await kv.get("User.index.tier.gold")
    assert entry.operation.value == "PURGE"


async def test_rebuild_restores_convergence(kv, indexed, manager):
    records = RecordStore(kv, indexed.router)
    await records.create({"id": 1, "tier": "gold", "email": "a"})
    await records.create({"id": 2, "tier": "gold"})
    await records.create({"id": 3, "tier": "silver"})
    await kv.put("User.index.tier.bronze", encode_ids([1]))

    written = await manager.rebuild()

    assert written == 3
    assert await manager.lookup("tier", "gold") == [1, 2]
    assert await manager.lookup("tier", "silver") == [3]
    assert await manager.lookup("tier", "bronze") == []
    assert await manager.lookup("email", "a") == [1]
