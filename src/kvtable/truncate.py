"""Bulk removal of a model's records and index entries."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from kvtable.errors import CorruptRecordError
from kvtable.indexes import IndexManager
from kvtable.kv import KeyValueProtocol
from kvtable.records import RecordStore

logger = logging.getLogger(__name__)


@dataclass
class TruncateResult:
    records_removed: int = 0
    index_keys_removed: int = 0
    errors: list[CorruptRecordError] = field(default_factory=list)


class TruncateOperator:
    """Clears every record of a model, then its index keys.

    Not atomic: records written concurrently may survive, and a failure
    part-way leaves the model partially cleared.
    """

    def __init__(
        self,
        kv: KeyValueProtocol,
        records: RecordStore,
        indexes: IndexManager,
        *,
        purge: bool = False,
    ) -> None:
        self._kv = kv
        self._records = records
        self._indexes = indexes
        self._purge = purge and kv.supports_purge

    async def truncate(self) -> TruncateResult:
        scan = await self._records.scan_all()
        result = TruncateResult(errors=list(scan.errors))
        for key in scan.keys() + [e.key for e in scan.errors]:
            if self._purge:
                await self._kv.purge(key)
            else:
                await self._kv.delete(key)
            result.records_removed += 1
        result.index_keys_removed = await self._indexes.truncate_indexes(scan.values())
        logger.debug(
            "Truncated %s: %d records, %d index keys",
            self._records.model,
            result.records_removed,
            result.index_keys_removed,
        )
        return result
