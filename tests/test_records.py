"""Tests for RecordStore CRUD and shard scans."""

from __future__ import annotations

import logging

import pytest

from kvtable.errors import (
    CorruptRecordError,
    InvalidPrimaryKeyError,
    MissingPrimaryKeyError,
    NotFoundError,
)
from kvtable.records import decode_record, encode_record


async def test_create_and_get(records):
    created = await records.create({"id": 7, "name": "Ann"})
    assert created == {"id": 7, "name": "Ann"}
    assert await records.get(7) == {"id": 7, "name": "Ann"}


async def test_create_writes_to_routed_key(kv, records):
    await records.create({"id": 7, "name": "Ann"})
    entry = await kv.get("User.shard_3.7")
    assert entry is not None
    assert decode_record(entry.key, entry.value) == {"id": 7, "name": "Ann"}


async def test_create_is_last_write_wins(records):
    await records.create({"id": 1, "name": "Ann"})
    await records.create({"id": 1, "name": "Bea"})
    assert (await records.get(1))["name"] == "Bea"


async def test_create_requires_id(records):
    with pytest.raises(MissingPrimaryKeyError):
        await records.create({"name": "Ann"})


@pytest.mark.parametrize("bad_id", ["1", 1.5, True, None])
async def test_create_requires_integer_id(records, bad_id):
    with pytest.raises(InvalidPrimaryKeyError):
        await records.create({"id": bad_id})


async def test_get_missing_raises(records):
    with pytest.raises(NotFoundError) as exc_info:
        await records.get(99)
    assert exc_info.value.key == "User.shard_3.99"
    assert await records.find(99) is None


async def test_get_after_delete_raises(records):
    await records.create({"id": 1})
    await records.delete(1)
    with pytest.raises(NotFoundError):
        await records.get(1)


async def test_get_after_purge_raises(records):
    await records.create({"id": 1})
    await records.purge(1)
    assert await records.find(1) is None


async def test_get_corrupt_raises(kv, records):
    await kv.put("User.shard_1.1", b"not json")
    with pytest.raises(CorruptRecordError):
        await records.get(1)
    await kv.put("User.shard_1.1", b"[1,2]")
    with pytest.raises(CorruptRecordError, match="JSON object"):
        await records.get(1)


async def test_put_sets_and_checks_id(records):
    assert await records.put(5, {"name": "x"}) == {"id": 5, "name": "x"}
    with pytest.raises(ValueError):
        await records.put(5, {"id": 6})


async def test_scan_orders_by_shard_then_id(records):
    for i in [10, 3, 2, 7, 6, 1, -1]:
        await records.create({"id": i})
    scan = await records.scan_all()
    # shard_count is 4
    assert [r["id"] for r in scan.values()] == [1, 2, 6, 10, -1, 3, 7]
    assert scan.errors == []


async def test_scan_shard(records):
    for i in range(8):
        await records.create({"id": i})
    scan = await records.scan_shard(1)
    assert [r["id"] for r in scan.values()] == [1, 5]
    assert scan.keys() == ["User.shard_1.1", "User.shard_1.5"]


async def test_scan_skips_corrupt_and_reports(kv, records, caplog):
    await records.create({"id": 1})
    await kv.put("User.shard_2.2", b"\xff\xfe")
    await records.create({"id": 6})
    with caplog.at_level(logging.WARNING, logger="kvtable.records"):
        scan = await records.scan_all()
    assert [r["id"] for r in scan.values()] == [1, 6]
    assert len(scan.errors) == 1
    assert scan.errors[0].key == "User.shard_2.2"
    assert "Skipping corrupt record User.shard_2.2" in caplog.text


async def test_scan_ignores_other_models(kv, records):
    await records.create({"id": 1})
    await kv.put("Users.shard_1.1", encode_record({"id": 1}))
    await kv.put("User.index.email.x", b"[1]")
    assert len(await records.scan_all()) == 1


async def test_scan_skips_deleted(records):
    await records.create({"id": 1})
    await records.create({"id": 2})
    await records.delete(1)
    assert [r["id"] for r in (await records.scan_all()).values()] == [2]
