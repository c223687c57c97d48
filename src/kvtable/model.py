"""Model facade: CRUD, queries, watches and subscribers for one record type."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Iterable

from kvtable.errors import CorruptRecordError
from kvtable.filters import Predicate
from kvtable.indexes import IndexManager
from kvtable.kv import KeyValueProtocol
from kvtable.query import OrderSpec, QueryEngine, QueryPlan, RecordQuery
from kvtable.records import RecordStore, primary_id
from kvtable.truncate import TruncateOperator, TruncateResult
from kvtable.types import PRIMARY_KEY, ModelDescriptor
from kvtable.watch import (
    ChangeEvent,
    ChangeWatcher,
    RecordCallback,
    SubscriberRegistry,
    Subscription,
)

if TYPE_CHECKING:
    from kvtable.database import Database

logger = logging.getLogger(__name__)


class Model:
    """A named record type bound to a Database.

    Components are rebuilt whenever the database's store handle changes,
    so a model defined before ``connect()`` works once connected.
    """

    def __init__(self, db: Database, descriptor: ModelDescriptor) -> None:
        self._db = db
        self.descriptor = descriptor
        self._subscribers = SubscriberRegistry(descriptor.name)
        self._bound: KeyValueProtocol | None = None
        self._records: RecordStore | None = None
        self._indexes: IndexManager | None = None
        self._engine: QueryEngine | None = None
        self._watcher: ChangeWatcher | None = None
        self._truncator: TruncateOperator | None = None

    def __repr__(self) -> str:
        return f"Model({self.descriptor!r})"

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def shard_count(self) -> int:
        return self.descriptor.shard_count

    @property
    def indexes(self) -> tuple[str, ...]:
        return self.descriptor.indexes

    @indexes.setter
    def indexes(self, fields: Iterable[str]) -> None:
        self.descriptor.indexes = fields  # type: ignore[assignment]

    def _bind(self) -> None:
        kv = self._db.store
        if self._bound is kv:
            return
        purge = kv.supports_purge and self._db.config.truncate_purge
        records = RecordStore(kv, self.descriptor.router)
        indexes = IndexManager(kv, self.descriptor, records, purge=purge)
        self._records = records
        self._indexes = indexes
        self._engine = QueryEngine(self.descriptor, records, indexes)
        self._watcher = ChangeWatcher(kv, records)
        self._truncator = TruncateOperator(kv, records, indexes, purge=purge)
        self._bound = kv

    @property
    def records(self) -> RecordStore:
        self._bind()
        assert self._records is not None
        return self._records

    @property
    def index_manager(self) -> IndexManager:
        self._bind()
        assert self._indexes is not None
        return self._indexes

    @property
    def engine(self) -> QueryEngine:
        self._bind()
        assert self._engine is not None
        return self._engine

    async def _current(self, record_id: int) -> dict[str, Any] | None:
        try:
            return await self.records.find(record_id)
        except CorruptRecordError as e:
            logger.warning("Ignoring corrupt previous value at %s: %s", e.key, e.detail)
            return None

    # --- Writes ---

    async def create(self, values: dict[str, Any]) -> dict[str, Any]:
        """Write a record and index it. An existing record with the same id is replaced."""
        record_id = primary_id(self.name, values)
        previous = await self._current(record_id)
        record = await self.records.create(values)
        if previous is None:
            await self.index_manager.on_create(record)
        else:
            await self.index_manager.on_update(previous, record)
        await self._subscribers.notify(ChangeEvent.created(self.name, record))
        return record

    async def bulk_create(self, records: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
        return [await self.create(values) for values in records]

    async def update(self, record_id: int, values: dict[str, Any]) -> dict[str, Any] | None:
        """Shallow-merge `values` into the stored record. Returns None if it does not exist."""
        if PRIMARY_KEY in values and values[PRIMARY_KEY] != record_id:
            raise ValueError(
                f"Cannot change primary key of {self.name} {record_id!r} to {values[PRIMARY_KEY]!r}"
            )
        old = await self.records.find(record_id)
        if old is None:
            return None
        new = {**old, **values, PRIMARY_KEY: record_id}
        await self.records.put(record_id, new)
        await self.index_manager.on_update(old, new)
        await self._subscribers.notify(ChangeEvent.updated(self.name, old, new, values))
        return new

    async def update_where(self, values: dict[str, Any], where: Predicate) -> int:
        updated = 0
        for record in await self.engine.find_all(where):
            if await self.update(record[PRIMARY_KEY], values) is not None:
                updated += 1
        return updated

    async def upsert(self, values: dict[str, Any]) -> tuple[dict[str, Any], bool]:
        """Update the record if it exists, otherwise create it. Returns (record, created)."""
        record_id = primary_id(self.name, values)
        updated = await self.update(record_id, values)
        if updated is not None:
            return updated, False
        return await self.create(values), True

    async def destroy(self, record_id: int) -> bool:
        try:
            old = await self.records.find(record_id)
        except CorruptRecordError as e:
            logger.warning("Deleting corrupt record %s without index cleanup", e.key)
            await self.records.delete(record_id)
            return True
        if old is None:
            return False
        await self.records.delete(record_id)
        await self.index_manager.on_destroy(old)
        await self._subscribers.notify(ChangeEvent.destroyed(self.name, old))
        return True

    async def destroy_where(self, where: Predicate) -> int:
        destroyed = 0
        for record in await self.engine.find_all(where):
            if await self.destroy(record[PRIMARY_KEY]):
                destroyed += 1
        return destroyed

    async def truncate(self) -> TruncateResult:
        self._bind()
        assert self._truncator is not None
        return await self._truncator.truncate()

    async def reindex(self) -> int:
        return await self.index_manager.rebuild()

    # --- Reads ---

    async def find_by_pk(self, record_id: int) -> dict[str, Any] | None:
        return await self.engine.find_one({PRIMARY_KEY: record_id})

    async def find_one(self, where: Predicate = None) -> dict[str, Any] | None:
        return await self.engine.find_one(where)

    async def find_all(
        self,
        where: Predicate = None,
        *,
        order: OrderSpec | None = None,
        limit: int | None = None,
        offset: int | None = None,
        attributes: Iterable[str] | None = None,
    ) -> list[dict[str, Any]]:
        return await self.engine.find_all(
            where, order=order, limit=limit, offset=offset, attributes=attributes
        )

    async def count(self, where: Predicate = None) -> int:
        return await self.engine.count(where)

    def plan(self, where: Predicate = None) -> QueryPlan:
        return self.engine.plan(where)

    def query(self) -> RecordQuery:
        return RecordQuery(lambda: self.engine)

    # --- Change notification ---

    async def watch(
        self,
        record_id: int,
        callback: RecordCallback,
        columns: Iterable[str] | None = None,
    ) -> Subscription:
        self._bind()
        assert self._watcher is not None
        return await self._watcher.watch(record_id, callback, columns)

    def subscribe(
        self, callback: Callable[[ChangeEvent], Any], columns: Iterable[str] | None = None
    ) -> None:
        self._subscribers.subscribe(callback, columns)

    def unsubscribe(self, callback: Callable[[ChangeEvent], Any]) -> bool:
        return self._subscribers.unsubscribe(callback)
