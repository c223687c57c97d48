"""CLI filter token parser: converts CLI triples to FilterExpression."""

from __future__ import annotations

import json
from typing import Any

from kvtable.filters import ComparisonExpression, FilterExpression, LogicalExpression

# Map CLI operator tokens to internal operator strings
_OP_MAP: dict[str, str] = {
    "eq": "==",
    "ne": "!=",
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
    "in": "IN",
    "not_in": "NOT_IN",
    "like": "LIKE",
    "is_null": "IS_NULL",
    "is_not_null": "IS_NOT_NULL",
}

_NO_VALUE_OPS = ("IS_NULL", "IS_NOT_NULL")


def split_filter_arg(raw: str) -> tuple[str, str, str]:
    """Split one ``--filter`` argument ("FIELD OP VALUE_JSON") into a triple."""
    parts = raw.split(None, 2)
    if len(parts) == 2:
        return parts[0], parts[1], ""
    if len(parts) < 3:
        raise ValueError(f"Invalid filter '{raw}': expected 'FIELD OP VALUE_JSON'")
    return parts[0], parts[1], parts[2]


def parse_cli_filters(triples: list[tuple[str, str, str]]) -> FilterExpression | None:
    """Parse CLI filter triples (FIELD, OP, VALUE_JSON) into a FilterExpression.

    Multiple filters are AND-combined. A value that is not valid JSON is
    taken as a plain string.
    """
    if not triples:
        return None

    exprs: list[FilterExpression] = []
    for path, op_token, value_json in triples:
        op = _OP_MAP.get(op_token)
        if op is None:
            raise ValueError(
                f"Unknown filter operator '{op_token}'. "
                f"Valid operators: {', '.join(sorted(_OP_MAP.keys()))}"
            )

        value: Any = None
        if op not in _NO_VALUE_OPS:
            if not value_json:
                raise ValueError(f"Filter operator '{op_token}' requires a value")
            try:
                value = json.loads(value_json)
            except json.JSONDecodeError:
                value = value_json

        exprs.append(ComparisonExpression(field_path=path, op=op, value=value))

    if len(exprs) == 1:
        return exprs[0]
    return LogicalExpression(op="AND", children=exprs)


def parse_order(raw: list[str] | None) -> list[tuple[str, str]]:
    """Parse ``FIELD[:asc|desc]`` tokens into order pairs."""
    order: list[tuple[str, str]] = []
    for token in raw or []:
        name, _, direction = token.partition(":")
        direction = (direction or "asc").upper()
        if not name or direction not in ("ASC", "DESC"):
            raise ValueError(f"Invalid order '{token}': expected FIELD[:asc|desc]")
        order.append((name, direction))
    return order
