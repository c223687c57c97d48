"""Query planning and execution: primary-key get, index lookup or sharded scan."""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Iterable, Sequence

from kvtable.errors import CorruptRecordError
from kvtable.filters import (
    FieldProxy,
    FilterExpression,
    Predicate,
    compile_predicate,
    matches_filter,
    resolve_nested_path,
    single_equality,
)
from kvtable.indexes import IndexManager
from kvtable.records import RecordStore
from kvtable.types import PRIMARY_KEY, ModelDescriptor

logger = logging.getLogger(__name__)

PLAN_PRIMARY = "primary"
PLAN_INDEX = "index"
PLAN_SCAN = "scan"

OrderSpec = Sequence[Any]


@dataclass(frozen=True)
class QueryPlan:
    """How a predicate will be resolved."""

    kind: str  # "primary", "index" or "scan"
    field: str | None = None
    value: Any = None


def matches(record: dict[str, Any], predicate: Predicate) -> bool:
    """Evaluate a `where` mapping or FilterExpression against one record."""
    return matches_filter(record, compile_predicate(predicate))


def _normalize_order(order: OrderSpec | None) -> list[tuple[str, bool]]:
    """Normalize order specs to (field, descending) pairs.

    Accepts ``"age"``, ``("age", "DESC")`` or ``["age", "desc"]`` items.
    """
    if not order:
        return []
    if isinstance(order, str):
        order = [order]
    normalized: list[tuple[str, bool]] = []
    for item in order:
        if isinstance(item, str):
            normalized.append((item, False))
            continue
        field_name, direction = item
        direction = str(direction or "ASC").upper()
        if direction not in ("ASC", "DESC"):
            raise ValueError(f"Invalid sort direction '{direction}' for field '{field_name}'")
        normalized.append((field_name, direction == "DESC"))
    return normalized


def _compare_values(a: Any, b: Any) -> int:
    try:
        if a < b:
            return -1
        if a > b:
            return 1
        return 0
    except TypeError:
        ta, tb = type(a).__name__, type(b).__name__
        return (ta > tb) - (ta < tb)


def sort_records(records: list[dict[str, Any]], order: OrderSpec | None) -> list[dict[str, Any]]:
    """Stable multi-key sort; missing/None values sort last in either direction."""
    keys = _normalize_order(order)
    if not keys:
        return records

    def _cmp(x: dict[str, Any], y: dict[str, Any]) -> int:
        for field_name, desc in keys:
            a = resolve_nested_path(x, field_name)
            b = resolve_nested_path(y, field_name)
            if a is None or b is None:
                if a is None and b is None:
                    continue
                return 1 if a is None else -1
            c = _compare_values(a, b)
            if c:
                return -c if desc else c
        return 0

    return sorted(records, key=functools.cmp_to_key(_cmp))


def paginate(
    records: list[dict[str, Any]], *, limit: int | None = None, offset: int | None = None
) -> list[dict[str, Any]]:
    start = offset or 0
    if start < 0:
        raise ValueError(f"offset must be >= 0, got {start}")
    if limit is None:
        return records[start:]
    if limit < 0:
        raise ValueError(f"limit must be >= 0, got {limit}")
    return records[start : start + limit]


def project(
    records: list[dict[str, Any]], attributes: Iterable[str] | None
) -> list[dict[str, Any]]:
    if attributes is None:
        return records
    names = list(attributes)
    return [{name: r[name] for name in names if name in r} for r in records]


class QueryEngine:
    """Resolves find_one/find_all predicates for one model."""

    def __init__(
        self, descriptor: ModelDescriptor, records: RecordStore, indexes: IndexManager
    ) -> None:
        self.descriptor = descriptor
        self._records = records
        self._indexes = indexes

    def plan(self, predicate: Predicate) -> QueryPlan:
        """Pick primary get, index lookup or full scan for a predicate.

        Reads the descriptor's index set on every call.
        """
        equality = single_equality(compile_predicate(predicate))
        if equality is not None:
            field_name, value = equality
            if field_name == PRIMARY_KEY:
                return QueryPlan(PLAN_PRIMARY, field_name, value)
            if self.descriptor.is_indexed(field_name):
                return QueryPlan(PLAN_INDEX, field_name, value)
        return QueryPlan(PLAN_SCAN)

    async def _get_quiet(self, record_id: Any) -> dict[str, Any] | None:
        if isinstance(record_id, bool) or not isinstance(record_id, int):
            return None
        try:
            return await self._records.find(record_id)
        except CorruptRecordError as e:
            logger.warning("Skipping corrupt record %s: %s", e.key, e.detail)
            return None

    async def _iter_scan(self, expr: FilterExpression | None) -> AsyncIterator[dict[str, Any]]:
        errors: list[CorruptRecordError] = []
        async for _key, record in self._records.iter_all(errors):
            if matches_filter(record, expr):
                yield record

    async def _iter_matches(
        self, plan: QueryPlan, expr: FilterExpression | None
    ) -> AsyncIterator[dict[str, Any]]:
        logger.debug("Query on %s using %s plan", self.descriptor.name, plan.kind)
        if plan.kind == PLAN_PRIMARY:
            record = await self._get_quiet(plan.value)
            if record is not None and matches_filter(record, expr):
                yield record
            return

        if plan.kind == PLAN_INDEX:
            assert plan.field is not None
            try:
                ids = await self._indexes.lookup(plan.field, plan.value)
            except CorruptRecordError as e:
                logger.warning("Corrupt index entry %s, falling back to scan: %s", e.key, e.detail)
            else:
                for record_id in ids:
                    record = await self._get_quiet(record_id)
                    if record is None:
                        logger.warning(
                            "Index %s.%s lists id %r with no live record",
                            self.descriptor.name,
                            plan.field,
                            record_id,
                        )
                        continue
                    # Sanitized index keys can collide, so re-check the value.
                    if matches_filter(record, expr):
                        yield record
                return

        async for record in self._iter_scan(expr):
            yield record

    async def find_one(self, predicate: Predicate = None) -> dict[str, Any] | None:
        expr = compile_predicate(predicate)
        async for record in self._iter_matches(self.plan(expr), expr):
            return record
        return None

    async def find_all(
        self,
        predicate: Predicate = None,
        *,
        order: OrderSpec | None = None,
        limit: int | None = None,
        offset: int | None = None,
        attributes: Iterable[str] | None = None,
    ) -> list[dict[str, Any]]:
        expr = compile_predicate(predicate)
        results = [record async for record in self._iter_matches(self.plan(expr), expr)]
        results = sort_records(results, order)
        results = paginate(results, limit=limit, offset=offset)
        return project(results, attributes)

    async def count(self, predicate: Predicate = None) -> int:
        expr = compile_predicate(predicate)
        total = 0
        async for _record in self._iter_matches(self.plan(expr), expr):
            total += 1
        return total


class RecordQuery:
    """Chainable query builder bound to a model.

    Usage: await users.query().where(field("age") > 30).order_by("name").limit(10).collect()
    """

    def __init__(self, engine_factory: Any) -> None:
        self._engine_factory = engine_factory
        self._filter: FilterExpression | None = None
        self._order: list[tuple[str, str]] = []
        self._limit: int | None = None
        self._offset: int | None = None
        self._attributes: list[str] | None = None

    def where(self, predicate: Predicate) -> RecordQuery:
        expr = compile_predicate(predicate)
        if expr is None:
            return self
        if self._filter is not None:
            self._filter = self._filter & expr
        else:
            self._filter = expr
        return self

    def order_by(self, field_ref: Any, *, desc: bool = False) -> RecordQuery:
        if isinstance(field_ref, FieldProxy):
            field_ref = field_ref._field_path
        self._order.append((str(field_ref), "DESC" if desc else "ASC"))
        return self

    def limit(self, n: int) -> RecordQuery:
        self._limit = n
        return self

    def offset(self, n: int) -> RecordQuery:
        self._offset = n
        return self

    def select(self, *attributes: str) -> RecordQuery:
        self._attributes = list(attributes)
        return self

    def plan(self) -> QueryPlan:
        return self._engine_factory().plan(self._filter)

    async def collect(self) -> list[dict[str, Any]]:
        return await self._engine_factory().find_all(
            self._filter,
            order=self._order,
            limit=self._limit,
            offset=self._offset,
            attributes=self._attributes,
        )

    async def first(self) -> dict[str, Any] | None:
        self._limit = 1
        results = await self.collect()
        return results[0] if results else None

    async def count(self) -> int:
        return await self._engine_factory().count(self._filter)
