"""Tests for record watches and model-level subscribers."""

from __future__ import annotations

import asyncio
import logging

import pytest

from kvtable.errors import InvalidPrimaryKeyError
from kvtable.watch import ChangeEvent


async def _next(queue: asyncio.Queue, timeout: float = 1.0):
    return await asyncio.wait_for(queue.get(), timeout)


class TestRecordWatch:
    async def test_every_update_without_columns(self, seeded_users):
        received: asyncio.Queue = asyncio.Queue()
        sub = await seeded_users.watch(1, received.put_nowait)
        assert sub.last_delivered["name"] == "Ann"

        await seeded_users.update(1, {"name": "Anna"})
        await seeded_users.update(1, {"age": 35})

        assert (await _next(received))["name"] == "Anna"
        assert (await _next(received))["age"] == 35
        sub.stop()
        await sub.wait_closed()

    async def test_column_filter(self, seeded_users):
        received: asyncio.Queue = asyncio.Queue()
        sub = await seeded_users.watch(1, received.put_nowait, columns=["age"])

        await seeded_users.update(1, {"name": "Anna"})
        await seeded_users.update(1, {"age": 35})

        delivered = await _next(received)
        assert delivered == {
            "id": 1,
            "name": "Anna",
            "age": 35,
            "email": "ann@example.com",
            "tier": "gold",
        }
        assert received.empty()
        assert sub.last_delivered == delivered
        sub.stop()
        await sub.wait_closed()

    async def test_column_compared_against_last_delivered(self, seeded_users):
        received: asyncio.Queue = asyncio.Queue()
        sub = await seeded_users.watch(1, received.put_nowait, columns=["age"])

        await seeded_users.update(1, {"age": 35})
        await seeded_users.update(1, {"age": 35, "name": "x"})
        await seeded_users.update(1, {"age": 34})

        assert (await _next(received))["age"] == 35
        assert (await _next(received))["age"] == 34
        assert received.empty()
        sub.stop()
        await sub.wait_closed()

    async def test_missing_baseline_differs_from_everything(self, users):
        received: asyncio.Queue = asyncio.Queue()
        sub = await users.watch(77, received.put_nowait, columns=["age"])
        assert sub.last_delivered is None

        await users.create({"id": 77, "name": "New"})

        assert (await _next(received)) == {"id": 77, "name": "New"}
        sub.stop()
        await sub.wait_closed()

    async def test_delete_delivers_none(self, seeded_users):
        received: asyncio.Queue = asyncio.Queue()
        sub = await seeded_users.watch(2, received.put_nowait)

        assert await seeded_users.destroy(2)

        assert await _next(received) is None
        assert sub.last_delivered is None
        sub.stop()
        await sub.wait_closed()

    async def test_corrupt_update_is_skipped(self, kv, seeded_users, caplog):
        received: asyncio.Queue = asyncio.Queue()
        sub = await seeded_users.watch(1, received.put_nowait)

        with caplog.at_level(logging.WARNING, logger="kvtable.watch"):
            await kv.put("User.shard_1.1", b"garbage")
            await seeded_users.create({"id": 1, "name": "Fixed"})
            delivered = await _next(received)

        assert delivered == {"id": 1, "name": "Fixed"}
        assert "Skipping corrupt update on User.shard_1.1" in caplog.text
        sub.stop()
        await sub.wait_closed()

    async def test_async_callback(self, seeded_users):
        received: asyncio.Queue = asyncio.Queue()

        async def on_change(record):
            await asyncio.sleep(0)
            await received.put(record)

        sub = await seeded_users.watch(3, on_change)
        await seeded_users.update(3, {"tier": "silver"})
        assert (await _next(received))["tier"] == "silver"
        sub.stop()
        await sub.wait_closed()

    async def test_failing_callback_keeps_watching(self, seeded_users, caplog):
        received: asyncio.Queue = asyncio.Queue()
        calls = []

        def flaky(record):
            calls.append(record)
            if len(calls) == 1:
                raise RuntimeError("boom")
            received.put_nowait(record)

        sub = await seeded_users.watch(1, flaky)
        with caplog.at_level(logging.ERROR, logger="kvtable.watch"):
            await seeded_users.update(1, {"age": 1})
            await seeded_users.update(1, {"age": 2})
            assert (await _next(received))["age"] == 2
        assert "Watch callback failed" in caplog.text
        sub.stop()
        await sub.wait_closed()

    async def test_stop_prevents_further_callbacks(self, seeded_users):
        received: asyncio.Queue = asyncio.Queue()
        sub = await seeded_users.watch(1, received.put_nowait)
        assert sub.active

        sub.stop()
        await sub.wait_closed()
        await seeded_users.update(1, {"age": 50})
        await asyncio.sleep(0.01)

        assert received.empty()
        assert not sub.active

    async def test_stop_from_inside_callback(self, seeded_users):
        received: asyncio.Queue = asyncio.Queue()
        holder = {}

        async def once(record):
            received.put_nowait(record)
            holder["sub"].stop()
            await holder["sub"].wait_closed()

        holder["sub"] = await seeded_users.watch(1, once)
        await seeded_users.update(1, {"age": 1})
        await seeded_users.update(1, {"age": 2})
        assert (await _next(received))["age"] == 1
        await holder["sub"].wait_closed()
        assert received.empty()

    async def test_rejects_non_integer_id(self, users):
        with pytest.raises(InvalidPrimaryKeyError):
            await users.watch("1", print)


class TestSubscribers:
    async def test_events_for_each_mutation(self, users):
        events: list[ChangeEvent] = []
        users.subscribe(events.append)

        await users.create({"id": 1, "name": "Ann", "age": 3})
        await users.update(1, {"age": 4})
        await users.destroy(1)

        assert [e.operation for e in events] == ["create", "update", "destroy"]
        created, updated, destroyed = events
        assert created.model == "User"
        assert created.data == {"id": 1, "name": "Ann", "age": 3}
        assert created.changed_columns == ["id", "name", "age"]
        assert updated.changed_columns == ["age"]
        assert updated.old["age"] == 3 and updated.new["age"] == 4
        assert destroyed.old == {"id": 1, "name": "Ann", "age": 4}

    async def test_column_filter(self, users):
        events: list[ChangeEvent] = []
        users.subscribe(events.append, columns=["age"])

        await users.create({"id": 1, "name": "Ann"})
        await users.update(1, {"name": "Bea"})
        await users.update(1, {"age": 9})

        assert [e.operation for e in events] == ["update"]

    async def test_registration_order_and_failures(self, users, caplog):
        order: list[str] = []

        def first(event):
            order.append("first")
            raise ValueError("nope")

        async def second(event):
            order.append("second")

        users.subscribe(first)
        users.subscribe(second)
        with caplog.at_level(logging.ERROR, logger="kvtable.watch"):
            record = await users.create({"id": 1})

        assert record == {"id": 1}
        assert order == ["first", "second"]
        assert "Subscriber" in caplog.text

    async def test_unsubscribe(self, users):
        events: list[ChangeEvent] = []
        users.subscribe(events.append)
        assert users.unsubscribe(events.append)
        assert not users.unsubscribe(events.append)
        await users.create({"id": 1})
        assert events == []

    async def test_unsubscribe_removes_every_registration(self, users):
        events: list[ChangeEvent] = []
        users.subscribe(events.append)
        users.subscribe(events.append, columns=["age"])
        assert users.unsubscribe(events.append)
        await users.create({"id": 1, "age": 3})
        assert events == []

    async def test_missing_update_does_not_notify(self, users):
        events: list[ChangeEvent] = []
        users.subscribe(events.append)
        assert await users.update(5, {"age": 1}) is None
        assert not await users.destroy(5)
        assert events == []
