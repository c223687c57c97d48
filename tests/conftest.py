"""Shared test fixtures for kvtable tests."""

from __future__ import annotations

import uuid

import pytest
import pytest_asyncio

from kvtable import Database, KvTableConfig, MemoryKeyValue
from kvtable.keys import KeyRouter
from kvtable.records import RecordStore
from kvtable.types import ModelDescriptor


@pytest.fixture
def kv() -> MemoryKeyValue:
    """A private in-memory bucket."""
    return MemoryKeyValue(f"test-{uuid.uuid4().hex[:8]}")


@pytest.fixture
def router() -> KeyRouter:
    return KeyRouter("User", 4)


@pytest.fixture
def records(kv: MemoryKeyValue, router: KeyRouter) -> RecordStore:
    return RecordStore(kv, router)


@pytest.fixture
def descriptor() -> ModelDescriptor:
    return ModelDescriptor("User", {"name": "string", "age": "integer"}, shard_count=4)


@pytest_asyncio.fixture
async def db(kv: MemoryKeyValue):
    database = Database(store=kv, config=KvTableConfig(default_shard_count=4))
    await database.connect()
    yield database
    await database.close()


@pytest.fixture
def users(db: Database):
    return db.define("User", {"name": "string", "age": "integer"}, indexes=["email", "tier"])


PEOPLE = [
    {"id": 1, "name": "Ann", "age": 34, "email": "ann@example.com", "tier": "gold"},
    {"id": 2, "name": "Bob", "age": 27, "email": "bob@example.com", "tier": "silver"},
    {"id": 3, "name": "Cid", "age": 41, "email": "cid@example.com", "tier": "gold"},
    {"id": 4, "name": "Dee", "age": 27, "email": "dee@example.com", "tier": "bronze"},
    {"id": 5, "name": "Eve", "email": "eve@example.com", "tier": "gold"},
]


@pytest_asyncio.fixture
async def seeded_users(users):
    for person in PEOPLE:
        await users.create(dict(person))
    return users
