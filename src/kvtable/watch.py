"""Change notification: per-record watches and model-level subscribers."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Iterable, Literal, Union

from pydantic import BaseModel, Field

from kvtable.errors import ConnectionFailureError, CorruptRecordError, InvalidPrimaryKeyError
from kvtable.kv import KeyValueProtocol, KvWatcher
from kvtable.records import RecordStore, decode_record

logger = logging.getLogger(__name__)

RecordCallback = Callable[[Union[dict[str, Any], None]], Union[Awaitable[None], None]]


async def _invoke(callback: Callable[..., Any], *args: Any) -> None:
    """Call a sync or async callback."""
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class ChangeEvent(BaseModel):
    """A create/update/destroy notification delivered to model subscribers."""

    operation: Literal["create", "update", "destroy"]
    model: str
    changed_columns: list[str] = Field(default_factory=list)
    data: dict[str, Any] | None = None
    old: dict[str, Any] | None = None
    new: dict[str, Any] | None = None

    @classmethod
    def created(cls, model: str, record: dict[str, Any]) -> ChangeEvent:
        return cls(operation="create", model=model, changed_columns=list(record), data=record)

    @classmethod
    def updated(
        cls,
        model: str,
        old: dict[str, Any],
        new: dict[str, Any],
        values: dict[str, Any],
    ) -> ChangeEvent:
        return cls(operation="update", model=model, changed_columns=list(values), old=old, new=new)

    @classmethod
    def destroyed(cls, model: str, record: dict[str, Any]) -> ChangeEvent:
        return cls(operation="destroy", model=model, changed_columns=list(record), old=record)


class SubscriberRegistry:
    """Model-level subscribers, notified in registration order."""

    def __init__(self, model: str) -> None:
        self.model = model
        self._subscribers: list[tuple[Callable[..., Any], frozenset[str] | None]] = []

    def __len__(self) -> int:
        return len(self._subscribers)

    def subscribe(
        self, callback: Callable[..., Any], columns: Iterable[str] | None = None
    ) -> None:
        cols = frozenset(columns) if columns is not None else None
        self._subscribers.append((callback, cols))

    def unsubscribe(self, callback: Callable[..., Any]) -> bool:
        """Remove every registration of `callback`. Returns False if it was not registered."""
        kept = [
            (registered, cols)
            for registered, cols in self._subscribers
            if not (registered is callback or registered == callback)
        ]
        removed = len(kept) != len(self._subscribers)
        self._subscribers = kept
        return removed

    async def notify(self, event: ChangeEvent) -> None:
        changed = set(event.changed_columns)
        for callback, cols in list(self._subscribers):
            if cols is not None and not (cols & changed):
                continue
            try:
                await _invoke(callback, event)
            except Exception:
                logger.exception(
                    "Subscriber %r failed on %s %s", callback, self.model, event.operation
                )


class Subscription:
    """A running watch on one record key.

    The callback receives the decoded record after each change, or None when
    the record is deleted or purged.
    """

    def __init__(
        self,
        kv: KeyValueProtocol,
        records: RecordStore,
        record_id: int,
        callback: RecordCallback,
        columns: Iterable[str] | None = None,
    ) -> None:
        self._kv = kv
        self._records = records
        self.record_id = record_id
        self.key = records.router.record_key(record_id)
        self._callback = callback
        self.columns: tuple[str, ...] | None = tuple(columns) if columns is not None else None
        self.last_delivered: dict[str, Any] | None = None
        self._watcher: KvWatcher | None = None
        self._task: asyncio.Task[None] | None = None
        self._stopped = False

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done() and not self._stopped

    async def start(self) -> Subscription:
        # Stream must be open before the baseline read.
        self._watcher = await self._kv.watch(self.key)
        try:
            self.last_delivered = await self._records.find(self.record_id)
        except CorruptRecordError as e:
            logger.warning("Corrupt baseline for watch on %s: %s", self.key, e.detail)
            self.last_delivered = None
        self._task = asyncio.create_task(self._run(), name=f"kvtable-watch:{self.key}")
        logger.debug("Watch started on %s (columns=%s)", self.key, self.columns)
        return self

    def _should_deliver(self, record: dict[str, Any] | None) -> bool:
        if self.columns is None:
            return True
        previous = self.last_delivered
        if previous is None or record is None:
            return True
        for column in self.columns:
            if column in previous or column in record:
                if column not in previous or column not in record:
                    return True
                if previous[column] != record[column]:
                    return True
        return False

    async def _run(self) -> None:
        assert self._watcher is not None
        try:
            async for entry in self._watcher:
                if self._stopped:
                    break
                if entry.is_tombstone:
                    record = None
                else:
                    try:
                        record = decode_record(entry.key, entry.value)
                    except CorruptRecordError as e:
                        logger.warning("Skipping corrupt update on %s: %s", entry.key, e.detail)
                        continue
                if not self._should_deliver(record):
                    continue
                try:
                    await _invoke(self._callback, record)
                except Exception:
                    logger.exception("Watch callback failed for %s", self.key)
                self.last_delivered = record
        except ConnectionFailureError as e:
            logger.warning("Watch on %s ended: %s", self.key, e)
        finally:
            logger.debug("Watch stopped on %s", self.key)

    def stop(self) -> None:
        """Detach from the store; no callback starts after this returns."""
        self._stopped = True
        if self._watcher is not None:
            self._watcher.stop()

    async def wait_closed(self) -> None:
        task = self._task
        if task is None or task is asyncio.current_task():
            return
        await task


class ChangeWatcher:
    """Opens record watches for one model."""

    def __init__(self, kv: KeyValueProtocol, records: RecordStore) -> None:
        self._kv = kv
        self._records = records

    async def watch(
        self,
        record_id: int,
        callback: RecordCallback,
        columns: Iterable[str] | None = None,
    ) -> Subscription:
        if isinstance(record_id, bool) or not isinstance(record_id, int):
            raise InvalidPrimaryKeyError(self._records.model, record_id)
        subscription = Subscription(self._kv, self._records, record_id, callback, columns)
        return await subscription.start()
