"""Record CRUD and shard scans against the key-value store."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Iterator

from kvtable.errors import (
    CorruptRecordError,
    InvalidPrimaryKeyError,
    MissingPrimaryKeyError,
    NotFoundError,
)
from kvtable.keys import KeyRouter
from kvtable.kv import KeyValueProtocol
from kvtable.types import PRIMARY_KEY

logger = logging.getLogger(__name__)


def encode_record(values: dict[str, Any]) -> bytes:
    return json.dumps(values, separators=(",", ":"), default=str).encode("utf-8")


def decode_record(key: str, raw: bytes) -> dict[str, Any]:
    """Decode stored bytes into a record, raising CorruptRecordError on bad data."""
    try:
        value = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CorruptRecordError(key, str(e)) from e
    if not isinstance(value, dict):
        raise CorruptRecordError(key, f"expected a JSON object, got {type(value).__name__}")
    return value


def primary_id(model: str, values: dict[str, Any]) -> int:
    """Extract and validate the integer primary key of a record."""
    if PRIMARY_KEY not in values:
        raise MissingPrimaryKeyError(model)
    record_id = values[PRIMARY_KEY]
    if isinstance(record_id, bool) or not isinstance(record_id, int):
        raise InvalidPrimaryKeyError(model, record_id)
    return record_id


@dataclass
class ScanResult:
    """Records read by a scan plus the corrupt entries that were skipped."""

    records: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    errors: list[CorruptRecordError] = field(default_factory=list)

    def __iter__(self) -> Iterator[tuple[str, dict[str, Any]]]:
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)

    def values(self) -> list[dict[str, Any]]:
        return [record for _key, record in self.records]

    def keys(self) -> list[str]:
        return [key for key, _record in self.records]

    def extend(self, other: ScanResult) -> None:
        self.records.extend(other.records)
        self.errors.extend(other.errors)


class RecordStore:
    """Reads and writes one model's records under router-built keys."""

    def __init__(self, kv: KeyValueProtocol, router: KeyRouter) -> None:
        self._kv = kv
        self.router = router

    @property
    def model(self) -> str:
        return self.router.model

    async def create(self, values: dict[str, Any]) -> dict[str, Any]:
        """Write a record unconditionally; an existing record with the same id is replaced."""
        record_id = primary_id(self.model, values)
        record = dict(values)
        await self._kv.put(self.router.record_key(record_id), encode_record(record))
        return record

    async def get(self, record_id: int) -> dict[str, Any]:
        key = self.router.record_key(record_id)
        entry = await self._kv.get(key)
        if entry is None or entry.is_tombstone:
            raise NotFoundError(key)
        return decode_record(key, entry.value)

    async def find(self, record_id: int) -> dict[str, Any] | None:
        """Like get(), but None when the record is absent or tombstoned."""
        try:
            return await self.get(record_id)
        except NotFoundError:
            return None

    async def put(self, record_id: int, values: dict[str, Any]) -> dict[str, Any]:
        record = dict(values)
        if record.setdefault(PRIMARY_KEY, record_id) != record_id:
            raise ValueError(
                f"Record id {record[PRIMARY_KEY]!r} does not match key id {record_id!r}"
            )
        await self._kv.put(self.router.record_key(record_id), encode_record(record))
        return record

    async def delete(self, record_id: int) -> None:
        await self._kv.delete(self.router.record_key(record_id))

    async def purge(self, record_id: int) -> None:
        await self._kv.purge(self.router.record_key(record_id))

    # --- Scans ---

    def _sort_key(self, key: str) -> tuple[int, int, str]:
        record_id = self.router.id_from_key(key)
        if record_id is None:
            return (1, 0, key)
        return (0, record_id, key)

    async def iter_shard(
        self, shard: int, errors: list[CorruptRecordError]
    ) -> AsyncIterator[tuple[str, dict[str, Any]]]:
        """Yield live records of one shard in id order; corrupt values go to `errors`."""
        keys = [key async for key in self._kv.keys(self.router.shard_pattern(shard))]
        keys.sort(key=self._sort_key)
        for key in keys:
            entry = await self._kv.get(key)
            if entry is None or entry.is_tombstone:
                continue
            try:
                record = decode_record(key, entry.value)
            except CorruptRecordError as e:
                logger.warning("Skipping corrupt record %s: %s", key, e.detail)
                errors.append(e)
                continue
            yield key, record

    async def iter_all(
        self, errors: list[CorruptRecordError]
    ) -> AsyncIterator[tuple[str, dict[str, Any]]]:
        for shard in range(self.router.shard_count):
            async for item in self.iter_shard(shard, errors):
                yield item

    async def scan_shard(self, shard: int) -> ScanResult:
        result = ScanResult()
        async for item in self.iter_shard(shard, result.errors):
            result.records.append(item)
        return result

    async def scan_all(self) -> ScanResult:
        result = ScanResult()
        async for item in self.iter_all(result.errors):
            result.records.append(item)
        return result
