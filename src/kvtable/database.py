"""Database: store lifecycle and the registry of models sharing it."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from kvtable.backup import backup_store, restore_store
from kvtable.config import KvTableConfig, ModelSpec
from kvtable.errors import NotConnectedError
from kvtable.kv import KeyValueProtocol, open_store
from kvtable.model import Model
from kvtable.types import ModelDescriptor

logger = logging.getLogger(__name__)


class Database:
    """Entry point: connect to a store, define models, back up and restore.

    Usage::

        async with Database("memory://app") as db:
            users = db.define("User", indexes=["email"])
            await users.create({"id": 1, "email": "a@example.com"})
    """

    def __init__(
        self,
        storage_uri: str | None = None,
        *,
        store: KeyValueProtocol | None = None,
        config: KvTableConfig | None = None,
    ) -> None:
        self.config = config or KvTableConfig()
        self.storage_uri = storage_uri
        self._provided_store = store
        self._store: KeyValueProtocol | None = None
        self._models: dict[str, Model] = {}

    async def __aenter__(self) -> Database:
        return await self.connect()

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def connect(self) -> Database:
        if self._store is None:
            if self._provided_store is not None:
                self._store = self._provided_store
            else:
                self._store = open_store(self.storage_uri, config=self.config)
        return self

    @property
    def connected(self) -> bool:
        return self._store is not None

    @property
    def store(self) -> KeyValueProtocol:
        if self._store is None:
            raise NotConnectedError()
        return self._store

    async def close(self) -> None:
        store, self._store = self._store, None
        if store is not None:
            await store.close()

    # --- Models ---

    def define(
        self,
        name: str,
        attributes: Mapping[str, Any] | None = None,
        *,
        shard_count: int | None = None,
        indexes: Iterable[str] = (),
    ) -> Model:
        if name in self._models:
            raise ValueError(f"Model '{name}' is already defined")
        descriptor = ModelDescriptor(
            name,
            attributes,
            shard_count=shard_count or self.config.default_shard_count,
            indexes=indexes,
        )
        model = Model(self, descriptor)
        self._models[name] = model
        logger.debug("Defined %r", descriptor)
        return model

    def define_from_spec(self, spec: ModelSpec) -> Model:
        return self.define(
            spec.name,
            spec.attributes,
            shard_count=spec.shard_count,
            indexes=spec.indexes,
        )

    def get_model(self, name: str) -> Model:
        try:
            return self._models[name]
        except KeyError:
            raise KeyError(f"Unknown model '{name}'") from None

    @property
    def models(self) -> dict[str, Model]:
        return dict(self._models)

    # --- Backup ---

    async def backup(self, path: str) -> int:
        return await backup_store(self.store, path)

    async def restore(self, path: str, clear: bool = False) -> int:
        return await restore_store(self.store, path, clear=clear)
