"""Model descriptors: name, informational schema, shard count and index set."""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from kvtable.keys import KeyRouter, validate_token

DEFAULT_SHARD_COUNT = 16
PRIMARY_KEY = "id"


class ModelDescriptor:
    """Describes one logical record type.

    Everything except ``indexes`` is fixed at construction. Reassigning
    ``indexes`` changes query planning immediately but does not rebuild
    index entries already in the store.
    """

    def __init__(
        self,
        name: str,
        attributes: Mapping[str, Any] | None = None,
        *,
        shard_count: int = DEFAULT_SHARD_COUNT,
        indexes: Iterable[str] = (),
    ) -> None:
        self.router = KeyRouter(name, shard_count)
        self.name = name
        self.attributes: dict[str, Any] = dict(attributes or {})
        self._indexes: tuple[str, ...] = ()
        self.indexes = indexes  # type: ignore[assignment]

    @property
    def shard_count(self) -> int:
        return self.router.shard_count

    @property
    def indexes(self) -> tuple[str, ...]:
        return self._indexes

    @indexes.setter
    def indexes(self, fields: Iterable[str]) -> None:
        if isinstance(fields, str):
            fields = [fields]
        seen: list[str] = []
        for name in fields:
            validate_token("index field", name)
            if name not in seen:
                seen.append(name)
        self._indexes = tuple(seen)

    def is_indexed(self, field: str) -> bool:
        return field in self._indexes

    def __repr__(self) -> str:
        return (
            f"ModelDescriptor(name={self.name!r}, shard_count={self.shard_count}, "
            f"indexes={list(self._indexes)!r})"
        )
