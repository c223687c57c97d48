"""Shard routing and canonical storage key construction."""

from __future__ import annotations

import json
import re
from typing import Any

_TOKEN_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_UNSAFE_RE = re.compile(r"[^A-Za-z0-9/_-]")


def validate_token(kind: str, value: str) -> None:
    """Validate a model or field name used as a single key token."""
    if not isinstance(value, str) or not _TOKEN_RE.match(value):
        raise ValueError(f"Invalid {kind} '{value}': must match [A-Za-z0-9_-]+")


def index_value_text(value: Any) -> str:
    """Render a field value as text before sanitization.

    Strings are used as-is; everything else is compact JSON so that
    ``True`` and ``"True"`` do not share an index key. Integral floats
    render like ints, since ``2 == 2.0`` must land on one key.
    """
    if isinstance(value, str):
        return value
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def sanitize(text: str) -> str:
    """Replace characters the store rejects in keys with ``_``."""
    cleaned = _UNSAFE_RE.sub("_", text)
    return cleaned or "_"


class KeyRouter:
    """Maps primary ids to shards and builds keys for one model."""

    def __init__(self, model: str, shard_count: int) -> None:
        validate_token("model name", model)
        if shard_count < 1:
            raise ValueError(f"shard_count must be >= 1, got {shard_count}")
        self.model = model
        self.shard_count = shard_count

    def shard_of(self, record_id: int) -> int:
        return record_id % self.shard_count

    def record_key(self, record_id: int) -> str:
        return f"{self.model}.shard_{self.shard_of(record_id)}.{record_id}"

    def index_key(self, field: str, value: Any) -> str:
        return f"{self.model}.index.{field}.{sanitize(index_value_text(value))}"

    # --- Enumeration patterns ---

    def shard_pattern(self, shard: int) -> str:
        return f"{self.model}.shard_{shard}.>"

    def records_pattern(self) -> str:
        return f"{self.model}.>"

    def index_pattern(self, field: str) -> str:
        return f"{self.model}.index.{field}.>"

    def id_from_key(self, key: str) -> int | None:
        """Parse the primary id out of a record key, or None if the key is not one."""
        parts = key.split(".")
        if len(parts) != 3 or parts[0] != self.model or not parts[1].startswith("shard_"):
            return None
        try:
            return int(parts[2])
        except ValueError:
            return None
