"""Shared fixtures for CLI tests."""

from __future__ import annotations

import asyncio
import uuid

import pytest
from typer.testing import CliRunner

from kvtable import Database, MemoryKeyValue
from kvtable.cli import app

PEOPLE = [
    {"id": 1, "name": "Ann", "age": 34, "tier": "gold"},
    {"id": 2, "name": "Bob", "age": 27, "tier": "silver"},
    {"id": 3, "name": "Cid", "age": 41, "tier": "gold"},
]


@pytest.fixture
def runner():
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def bucket():
    """A unique process-wide memory bucket, dropped after the test."""
    name = f"cli-{uuid.uuid4().hex[:8]}"
    yield name
    MemoryKeyValue.drop_named(name)


@pytest.fixture
def seeded_bucket(bucket):
    """A bucket holding three User records indexed on tier, with 4 shards."""

    async def _seed() -> None:
        async with Database(f"memory://{bucket}") as db:
            users = db.define("User", shard_count=4, indexes=["tier"])
            for person in PEOPLE:
                await users.create(dict(person))

    asyncio.run(_seed())
    return bucket


@pytest.fixture
def invoke(runner):
    """Invoke the CLI against a memory bucket."""

    def _invoke(args: list[str], bucket: str | None = None):
        if bucket:
            args = ["--storage-uri", f"memory://{bucket}"] + args
        return runner.invoke(app, args, catch_exceptions=False)

    return _invoke
