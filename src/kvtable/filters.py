"""Filter expressions: the predicate tree evaluated against stored records."""

from __future__ import annotations

import functools
import re
from dataclasses import dataclass, field as dc_field
from typing import Any, Mapping, Union

_SEGMENT_RE = re.compile(r"^[A-Za-z0-9_-]+$")


def _validate_path(path: str) -> None:
    """Validate a dotted field path (one or more segments)."""
    if not path:
        raise ValueError("Field path must not be empty")
    for segment in path.split("."):
        if not _SEGMENT_RE.match(segment):
            raise ValueError(f"Invalid path segment '{segment}': must match [A-Za-z0-9_-]+")


def resolve_nested_path(data: Mapping[str, Any], dotted_path: str) -> Any:
    """Resolve a dotted path against a nested dict, returning None on missing keys."""
    if dotted_path in data:
        return data[dotted_path]
    current: Any = data
    for segment in dotted_path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(segment)
        if current is None:
            return None
    return current


NULL_EQ_ERROR = "Use .is_null() instead of == None in kvtable filter expressions."
NULL_NE_ERROR = "Use .is_not_null() instead of != None in kvtable filter expressions."

# Operator names accepted in mapping predicates, including the $-prefixed
# forms used by ORM-style `where` objects.
OPERATOR_ALIASES: dict[str, str] = {
    "equal": "==",
    "eq": "==",
    "$eq": "==",
    "notEqual": "!=",
    "ne": "!=",
    "$ne": "!=",
    "greaterThan": ">",
    "gt": ">",
    "$gt": ">",
    "greaterOrEqual": ">=",
    "gte": ">=",
    "$gte": ">=",
    "lessThan": "<",
    "lt": "<",
    "$lt": "<",
    "lessOrEqual": "<=",
    "lte": "<=",
    "$lte": "<=",
    "in": "IN",
    "$in": "IN",
    "notIn": "NOT_IN",
    "not_in": "NOT_IN",
    "$notIn": "NOT_IN",
    "like": "LIKE",
    "$like": "LIKE",
}


class FilterExpression:
    """Base class for filter expressions."""

    def __and__(self, other: FilterExpression) -> LogicalExpression:
        return LogicalExpression(op="AND", children=[self, other])

    def __or__(self, other: FilterExpression) -> LogicalExpression:
        return LogicalExpression(op="OR", children=[self, other])

    def __invert__(self) -> LogicalExpression:
        return LogicalExpression(op="NOT", children=[self])


@dataclass
class ComparisonExpression(FilterExpression):
    """A comparison between a field path and a value."""

    field_path: str
    op: str  # "==", "!=", ">", ">=", "<", "<=", "IN", "NOT_IN", "LIKE", "IS_NULL", "IS_NOT_NULL"
    value: Any = None

    def __hash__(self) -> int:
        v = self.value
        if isinstance(v, list):
            v = tuple(v)
        return hash((self.field_path, self.op, v))

    def __eq__(self, other: object) -> bool:  # type: ignore[override]
        if not isinstance(other, ComparisonExpression):
            return NotImplemented
        return (
            self.field_path == other.field_path
            and self.op == other.op
            and self.value == other.value
        )


@dataclass
class LogicalExpression(FilterExpression):
    """A logical combination of filter expressions."""

    op: str  # "AND", "OR", "NOT"
    children: list[FilterExpression] = dc_field(default_factory=list)


class FieldProxy:
    """Proxy that generates FilterExpression from field operations.

    Usage: field("age") >= 21
    """

    def __init__(self, field_path: str) -> None:
        _validate_path(field_path)
        self._field_path = field_path

    def __eq__(self, other: object) -> ComparisonExpression:  # type: ignore[override]
        if other is None:
            raise TypeError(NULL_EQ_ERROR)
        return ComparisonExpression(self._field_path, "==", other)

    def __ne__(self, other: object) -> ComparisonExpression:  # type: ignore[override]
        if other is None:
            raise TypeError(NULL_NE_ERROR)
        return ComparisonExpression(self._field_path, "!=", other)

    def __gt__(self, other: Any) -> ComparisonExpression:
        return ComparisonExpression(self._field_path, ">", other)

    def __ge__(self, other: Any) -> ComparisonExpression:
        return ComparisonExpression(self._field_path, ">=", other)

    def __lt__(self, other: Any) -> ComparisonExpression:
        return ComparisonExpression(self._field_path, "<", other)

    def __le__(self, other: Any) -> ComparisonExpression:
        return ComparisonExpression(self._field_path, "<=", other)

    __hash__ = None  # type: ignore[assignment]

    def like(self, pattern: str) -> ComparisonExpression:
        return ComparisonExpression(self._field_path, "LIKE", pattern)

    def startswith(self, prefix: str) -> ComparisonExpression:
        return ComparisonExpression(self._field_path, "LIKE", f"{prefix}%")

    def endswith(self, suffix: str) -> ComparisonExpression:
        return ComparisonExpression(self._field_path, "LIKE", f"%{suffix}")

    def contains(self, substring: str) -> ComparisonExpression:
        return ComparisonExpression(self._field_path, "LIKE", f"%{substring}%")

    def in_(self, values: list[Any]) -> ComparisonExpression:
        return ComparisonExpression(self._field_path, "IN", list(values))

    def not_in(self, values: list[Any]) -> ComparisonExpression:
        return ComparisonExpression(self._field_path, "NOT_IN", list(values))

    def is_null(self) -> ComparisonExpression:
        return ComparisonExpression(self._field_path, "IS_NULL")

    def is_not_null(self) -> ComparisonExpression:
        return ComparisonExpression(self._field_path, "IS_NOT_NULL")

    def path(self, sub_path: str) -> FieldProxy:
        """Navigate into a nested dict field via dotted sub-path."""
        _validate_path(sub_path)
        return FieldProxy(f"{self._field_path}.{sub_path}")


def field(name: str) -> FieldProxy:
    """Create a proxy for building filter expressions on a record field."""
    return FieldProxy(name)


Predicate = Union[Mapping[str, Any], FilterExpression, None]


def compile_predicate(where: Predicate) -> FilterExpression | None:
    """Turn a `where` mapping (or expression) into a FilterExpression tree.

    ``{"name": "Ann"}`` is equality; ``{"age": {"gt": 30, "lte": 60}}``
    ANDs each operator in the order given.
    """
    if where is None:
        return None
    if isinstance(where, FilterExpression):
        return where
    if not isinstance(where, Mapping):
        raise TypeError(f"Unsupported predicate type: {type(where).__name__}")

    children: list[FilterExpression] = []
    for path, condition in where.items():
        _validate_path(path)
        if isinstance(condition, Mapping):
            if not condition:
                raise ValueError(f"Empty operator object for field '{path}'")
            for op_name, rhs in condition.items():
                op = OPERATOR_ALIASES.get(op_name)
                if op is None:
                    raise ValueError(
                        f"Unknown operator '{op_name}' for field '{path}'. "
                        f"Valid operators: {', '.join(sorted(OPERATOR_ALIASES))}"
                    )
                children.append(ComparisonExpression(path, op, rhs))
        else:
            children.append(ComparisonExpression(path, "==", condition))

    if not children:
        return None
    if len(children) == 1:
        return children[0]
    return LogicalExpression(op="AND", children=children)


def single_equality(expr: FilterExpression | None) -> tuple[str, Any] | None:
    """Return (field, value) when the expression is one top-level equality."""
    if isinstance(expr, ComparisonExpression) and expr.op == "==" and "." not in expr.field_path:
        return expr.field_path, expr.value
    return None


@functools.lru_cache(maxsize=256)
def like_to_regex(pattern: str) -> re.Pattern[str]:
    """Translate a SQL LIKE pattern into an anchored, case-insensitive regex."""
    parts: list[str] = []
    for ch in pattern:
        if ch == "%":
            parts.append(".*")
        elif ch == "_":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("".join(parts), re.IGNORECASE | re.DOTALL)


def _strict_equal(left: Any, right: Any) -> bool:
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return left == right


def _ordered(value: Any, op: str, rhs: Any) -> bool:
    if value is None or rhs is None:
        return False
    try:
        if op == ">":
            return value > rhs
        if op == ">=":
            return value >= rhs
        if op == "<":
            return value < rhs
        return value <= rhs
    except TypeError:
        return False


def compare_value(value: Any, op: str, rhs: Any) -> bool:
    """Compare a single value against an operator and right-hand side."""
    if op == "==":
        return _strict_equal(value, rhs)
    elif op == "!=":
        return not _strict_equal(value, rhs)
    elif op in (">", ">=", "<", "<="):
        return _ordered(value, op, rhs)
    elif op == "IN":
        if not isinstance(rhs, (list, tuple, set, frozenset)):
            return False
        return any(_strict_equal(value, item) for item in rhs)
    elif op == "NOT_IN":
        if not isinstance(rhs, (list, tuple, set, frozenset)):
            return True
        return not any(_strict_equal(value, item) for item in rhs)
    elif op == "IS_NULL":
        return value is None
    elif op == "IS_NOT_NULL":
        return value is not None
    elif op == "LIKE":
        if not isinstance(value, str) or not isinstance(rhs, str):
            return False
        return like_to_regex(rhs).fullmatch(value) is not None
    raise ValueError(f"Unknown filter operator: {op}")


def matches_filter(data: Mapping[str, Any], expr: FilterExpression | None) -> bool:
    """Evaluate a FilterExpression against a record."""
    if expr is None:
        return True

    if isinstance(expr, ComparisonExpression):
        value = resolve_nested_path(data, expr.field_path)
        return compare_value(value, expr.op, expr.value)

    if isinstance(expr, LogicalExpression):
        if expr.op == "AND":
            return all(matches_filter(data, c) for c in expr.children)
        elif expr.op == "OR":
            return any(matches_filter(data, c) for c in expr.children)
        elif expr.op == "NOT":
            return not matches_filter(data, expr.children[0])
        raise ValueError(f"Unknown logical operator: {expr.op}")

    raise ValueError(f"Unknown filter expression type: {type(expr)}")
