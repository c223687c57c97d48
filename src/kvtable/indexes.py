"""Inverted indexes mapping (field, value) to the ids of records holding that value.

Every update is a read-modify-write of one index key without a revision
check, so two writers touching the same key concurrently can lose an update.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable

from kvtable.errors import CorruptRecordError
from kvtable.keys import KeyRouter
from kvtable.kv import KeyValueProtocol
from kvtable.records import RecordStore
from kvtable.types import PRIMARY_KEY, ModelDescriptor

logger = logging.getLogger(__name__)


def encode_ids(ids: list[int]) -> bytes:
    return json.dumps(ids, separators=(",", ":")).encode("utf-8")


def decode_ids(key: str, raw: bytes) -> list[int]:
    try:
        value = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CorruptRecordError(key, str(e)) from e
    if not isinstance(value, list):
        raise CorruptRecordError(key, f"expected a JSON array, got {type(value).__name__}")
    return value


class IndexManager:
    """Keeps a model's index entries in step with its record mutations."""

    def __init__(
        self,
        kv: KeyValueProtocol,
        descriptor: ModelDescriptor,
        records: RecordStore,
        *,
        purge: bool = False,
    ) -> None:
        self._kv = kv
        self.descriptor = descriptor
        self._records = records
        self._purge = purge and kv.supports_purge

    @property
    def router(self) -> KeyRouter:
        return self.descriptor.router

    async def _read_ids(self, key: str, *, strict: bool) -> list[int]:
        entry = await self._kv.get(key)
        if entry is None or entry.is_tombstone:
            return []
        try:
            return decode_ids(key, entry.value)
        except CorruptRecordError as e:
            if strict:
                raise
            logger.warning("Discarding corrupt index entry %s: %s", key, e.detail)
            return []

    async def _write_ids(self, key: str, ids: list[int]) -> None:
        if ids:
            await self._kv.put(key, encode_ids(ids))
        else:
            await self._kv.delete(key)

    async def _remove_key(self, key: str) -> None:
        if self._purge:
            await self._kv.purge(key)
        else:
            await self._kv.delete(key)

    async def _add(self, field: str, value: Any, record_id: int) -> None:
        key = self.router.index_key(field, value)
        ids = await self._read_ids(key, strict=False)
        if record_id in ids:
            return
        ids.append(record_id)
        await self._write_ids(key, ids)

    async def _discard(self, field: str, value: Any, record_id: int) -> None:
        key = self.router.index_key(field, value)
        ids = await self._read_ids(key, strict=False)
        if record_id not in ids:
            return
        await self._write_ids(key, [i for i in ids if i != record_id])

    # --- Mutation hooks ---

    async def on_create(self, record: dict[str, Any]) -> None:
        record_id = record[PRIMARY_KEY]
        for field in self.descriptor.indexes:
            if field in record:
                await self._add(field, record[field], record_id)

    async def on_update(self, old: dict[str, Any], new: dict[str, Any]) -> None:
        """Move the id between index entries for every indexed field whose value changed."""
        record_id = new[PRIMARY_KEY]
        for field in self.descriptor.indexes:
            old_key = self.router.index_key(field, old[field]) if field in old else None
            new_key = self.router.index_key(field, new[field]) if field in new else None
            if old_key == new_key:
                continue
            if old_key is not None:
                await self._discard(field, old[field], record_id)
            if new_key is not None:
                await self._add(field, new[field], record_id)

    async def on_destroy(self, record: dict[str, Any]) -> None:
        record_id = record[PRIMARY_KEY]
        for field in self.descriptor.indexes:
            if field in record:
                await self._discard(field, record[field], record_id)

    # --- Reads ---

    async def lookup(self, field: str, value: Any) -> list[int]:
        """Ids stored under (field, value), in insertion order."""
        return await self._read_ids(self.router.index_key(field, value), strict=True)

    async def index_keys(self, field: str) -> list[str]:
        return [key async for key in self._kv.keys(self.router.index_pattern(field))]

    # --- Bulk maintenance ---

    async def _sweep(self, fields: Iterable[str]) -> int:
        removed = 0
        for field in fields:
            for key in await self.index_keys(field):
                await self._remove_key(key)
                removed += 1
        return removed

    async def truncate_indexes(self, records: Iterable[dict[str, Any]]) -> int:
        """Remove index keys for every value seen in `records`, then sweep leftovers."""
        removed = 0
        records = list(records)
        fields = self.descriptor.indexes
        for field in fields:
            keys = {self.router.index_key(field, r[field]) for r in records if field in r}
            for key in sorted(keys):
                await self._remove_key(key)
                removed += 1
        removed += await self._sweep(fields)
        return removed

    async def rebuild(self) -> int:
        """Drop all index entries of the model and rebuild them from a full scan.

        Returns the number of index keys written.
        """
        fields = self.descriptor.indexes
        await self._sweep(fields)
        scan = await self._records.scan_all()
        entries: dict[str, list[int]] = {}
        for record in scan.values():
            record_id = record.get(PRIMARY_KEY)
            if record_id is None:
                continue
            for field in fields:
                if field not in record:
                    continue
                ids = entries.setdefault(self.router.index_key(field, record[field]), [])
                if record_id not in ids:
                    ids.append(record_id)
        for key, ids in entries.items():
            await self._write_ids(key, ids)
        logger.debug(
            "Rebuilt %d index keys for %s from %d records",
            len(entries),
            self.descriptor.name,
            len(scan),
        )
        return len(entries)
