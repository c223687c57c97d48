"""Key-value store contract, storage URI resolution and the in-memory backend."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Protocol, runtime_checkable
from urllib.parse import urlparse

from kvtable.config import KvTableConfig
from kvtable.errors import StorageTargetError

logger = logging.getLogger(__name__)

_KEY_RE = re.compile(r"^[-/_=.A-Za-z0-9]+$")


class Operation(str, Enum):
    """Operation tag carried by the latest revision of a key."""

    PUT = "PUT"
    DEL = "DEL"
    PURGE = "PURGE"


@dataclass(frozen=True)
class KvEntry:
    """One revision of a key."""

    key: str
    value: bytes
    revision: int
    operation: Operation = Operation.PUT

    @property
    def is_tombstone(self) -> bool:
        return self.operation is not Operation.PUT


def validate_key(key: str) -> None:
    """Reject keys the store cannot hold (wildcards, spaces, empty tokens)."""
    if not _KEY_RE.match(key) or key.startswith(".") or key.endswith(".") or ".." in key:
        raise ValueError(f"Invalid key '{key}'")


def match_pattern(pattern: str, key: str) -> bool:
    """Match a key against a dotted pattern.

    ``*`` matches exactly one token; a trailing ``>`` matches one or more.
    """
    p_tokens = pattern.split(".")
    k_tokens = key.split(".")
    for i, token in enumerate(p_tokens):
        if token == ">":
            return len(k_tokens) > i
        if i >= len(k_tokens):
            return False
        if token != "*" and token != k_tokens[i]:
            return False
    return len(p_tokens) == len(k_tokens)


def literal_prefix(pattern: str | None) -> str:
    """Longest key prefix shared by every key a pattern can match."""
    if not pattern:
        return ""
    literal: list[str] = []
    for token in pattern.split("."):
        if token in ("*", ">"):
            return ".".join(literal) + "." if literal else ""
        literal.append(token)
    return ".".join(literal)


@runtime_checkable
class KvWatcher(Protocol):
    """Async iterator of entries for one key, in write order."""

    def stop(self) -> None: ...

    def __aiter__(self) -> AsyncIterator[KvEntry]: ...

    async def __anext__(self) -> KvEntry: ...


@runtime_checkable
class KeyValueProtocol(Protocol):
    """Backend-agnostic key-value contract used by records, indexes and watches."""

    supports_purge: bool

    async def put(self, key: str, value: bytes) -> int: ...

    async def get(self, key: str) -> KvEntry | None: ...

    async def delete(self, key: str) -> None: ...

    async def purge(self, key: str) -> None: ...

    def keys(self, pattern: str | None = None) -> AsyncIterator[str]: ...

    async def watch(self, key: str) -> KvWatcher: ...

    async def close(self) -> None: ...

    def storage_info(self) -> dict[str, object]: ...


# --- In-memory backend ---


class MemoryWatcher:
    """Queue-fed watcher over a MemoryKeyValue key."""

    def __init__(self, store: MemoryKeyValue, key: str) -> None:
        self._store = store
        self.key = key
        self._queue: asyncio.Queue[KvEntry | None] = asyncio.Queue()
        self._stopped = False

    def accepts(self, key: str) -> bool:
        return match_pattern(self.key, key)

    def push(self, entry: KvEntry) -> None:
        if not self._stopped:
            self._queue.put_nowait(entry)

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self._store._detach(self)
        self._queue.put_nowait(None)

    def __aiter__(self) -> MemoryWatcher:
        return self

    async def __anext__(self) -> KvEntry:
        if self._stopped:
            raise StopAsyncIteration
        entry = await self._queue.get()
        if entry is None or self._stopped:
            raise StopAsyncIteration
        return entry


_BUCKETS: dict[str, MemoryKeyValue] = {}


class MemoryKeyValue:
    """In-process key-value bucket with revisions, tombstones and watches."""

    supports_purge = True

    def __init__(self, bucket: str = "kvtable", *, history: int = 1) -> None:
        self.bucket = bucket
        self._history = max(1, history)
        self._entries: dict[str, list[KvEntry]] = {}
        self._revision = 0
        self._watchers: list[MemoryWatcher] = []

    @classmethod
    def named(cls, bucket: str, *, history: int = 1) -> MemoryKeyValue:
        """Return the process-wide bucket with this name, creating it if needed."""
        store = _BUCKETS.get(bucket)
        if store is None:
            store = cls(bucket, history=history)
            _BUCKETS[bucket] = store
        return store

    @staticmethod
    def drop_named(bucket: str) -> None:
        _BUCKETS.pop(bucket, None)

    def _append(self, key: str, value: bytes, operation: Operation) -> KvEntry:
        validate_key(key)
        self._revision += 1
        entry = KvEntry(key=key, value=value, revision=self._revision, operation=operation)
        history = self._entries.setdefault(key, [])
        if operation is Operation.PURGE:
            history.clear()
        history.append(entry)
        del history[: -self._history]
        for watcher in list(self._watchers):
            if watcher.accepts(key):
                watcher.push(entry)
        return entry

    def _detach(self, watcher: MemoryWatcher) -> None:
        if watcher in self._watchers:
            self._watchers.remove(watcher)

    async def put(self, key: str, value: bytes) -> int:
        return self._append(key, bytes(value), Operation.PUT).revision

    async def get(self, key: str) -> KvEntry | None:
        history = self._entries.get(key)
        if not history:
            return None
        return history[-1]

    async def history(self, key: str) -> list[KvEntry]:
        return list(self._entries.get(key, []))

    async def delete(self, key: str) -> None:
        self._append(key, b"", Operation.DEL)

    async def purge(self, key: str) -> None:
        self._append(key, b"", Operation.PURGE)

    async def keys(self, pattern: str | None = None) -> AsyncIterator[str]:
        live = [k for k, h in self._entries.items() if h and h[-1].operation is Operation.PUT]
        for key in live:
            if pattern is None or match_pattern(pattern, key):
                yield key

    async def watch(self, key: str) -> MemoryWatcher:
        watcher = MemoryWatcher(self, key)
        self._watchers.append(watcher)
        return watcher

    async def close(self) -> None:
        for watcher in list(self._watchers):
            watcher.stop()

    def storage_info(self) -> dict[str, object]:
        live = sum(1 for h in self._entries.values() if h and h[-1].operation is Operation.PUT)
        return {
            "backend": "memory",
            "bucket": self.bucket,
            "live_keys": live,
            "revision": self._revision,
        }


# --- Storage target resolution ---


@dataclass(frozen=True)
class StorageTarget:
    """Resolved storage target from a URI."""

    backend: str
    uri: str
    bucket: str
    prefix: str = ""


def parse_storage_target(
    storage_uri: str | None = None,
    *,
    config: KvTableConfig | None = None,
) -> StorageTarget:
    """Resolve a backend target from `memory://bucket` or `s3://bucket/prefix`."""
    cfg = config or KvTableConfig()
    if storage_uri is None:
        storage_uri = f"memory://{cfg.default_bucket}"

    parsed = urlparse(storage_uri)

    if parsed.scheme == "memory":
        bucket = parsed.netloc or parsed.path.strip("/") or cfg.default_bucket
        return StorageTarget(backend="memory", uri=storage_uri, bucket=bucket)

    if parsed.scheme == "s3":
        bucket = parsed.netloc
        if not bucket:
            raise StorageTargetError(storage_uri, "missing bucket name")
        prefix = parsed.path.strip("/")
        return StorageTarget(backend="s3", uri=storage_uri, bucket=bucket, prefix=prefix)

    raise StorageTargetError(storage_uri, f"unsupported scheme '{parsed.scheme}'")


def open_store(
    storage_uri: str | None = None,
    *,
    config: KvTableConfig | None = None,
) -> KeyValueProtocol:
    """Open a key-value store from a storage URI."""
    cfg = config or KvTableConfig()
    target = parse_storage_target(storage_uri, config=cfg)
    logger.debug("Opening %s store for %s", target.backend, target.uri)
    if target.backend == "memory":
        return MemoryKeyValue.named(target.bucket, history=cfg.memory_history)
    if target.backend == "s3":
        from kvtable.kv_s3 import S3KeyValue

        return S3KeyValue(bucket=target.bucket, prefix=target.prefix, config=cfg)
    raise StorageTargetError(target.uri, f"unsupported backend '{target.backend}'")


__all__ = [
    "KeyValueProtocol",
    "KvEntry",
    "KvWatcher",
    "MemoryKeyValue",
    "MemoryWatcher",
    "Operation",
    "StorageTarget",
    "literal_prefix",
    "match_pattern",
    "open_store",
    "parse_storage_target",
    "validate_key",
]
