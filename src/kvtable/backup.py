"""Whole-bucket backup and restore as a JSON document of base64 values."""

from __future__ import annotations

import base64
import binascii
import json
import logging

from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from kvtable.errors import BackupFormatError
from kvtable.kv import KeyValueProtocol, validate_key

logger = logging.getLogger(__name__)


class BackupEntry(BaseModel):
    value: str
    revision: int


_BACKUP_ADAPTER: TypeAdapter[dict[str, BackupEntry]] = TypeAdapter(dict[str, BackupEntry])


async def backup_store(kv: KeyValueProtocol, path: str) -> int:
    """Write every live key to `path`. Returns the number of keys written."""
    data: dict[str, dict[str, object]] = {}
    keys = [key async for key in kv.keys()]
    for key in sorted(keys):
        entry = await kv.get(key)
        if entry is None or entry.is_tombstone:
            continue
        data[key] = BackupEntry(
            value=base64.b64encode(entry.value).decode("ascii"),
            revision=entry.revision,
        ).model_dump()
    with open(path, "w") as f:
        json.dump(data, f, indent=2)
        f.write("\n")
    logger.debug("Backed up %d keys to %s", len(data), path)
    return len(data)


def load_backup(path: str) -> dict[str, bytes]:
    """Read and validate a backup file into key -> raw value."""
    try:
        with open(path) as f:
            raw = json.load(f)
    except json.JSONDecodeError as e:
        raise BackupFormatError(path, f"invalid JSON: {e}") from e
    try:
        entries = _BACKUP_ADAPTER.validate_python(raw)
    except PydanticValidationError as e:
        raise BackupFormatError(path, str(e)) from e

    values: dict[str, bytes] = {}
    for key, entry in entries.items():
        try:
            validate_key(key)
        except ValueError as e:
            raise BackupFormatError(path, str(e)) from e
        try:
            values[key] = base64.b64decode(entry.value, validate=True)
        except binascii.Error as e:
            raise BackupFormatError(path, f"bad base64 value for '{key}': {e}") from e
    return values


async def restore_store(kv: KeyValueProtocol, path: str, *, clear: bool = False) -> int:
    """Put every value from a backup file. With `clear`, delete all existing keys first.

    The file is validated completely before anything is written.
    """
    values = load_backup(path)
    if clear:
        existing = [key async for key in kv.keys()]
        for key in existing:
            await kv.delete(key)
        logger.debug("Cleared %d keys before restore", len(existing))
    for key, value in values.items():
        await kv.put(key, value)
    logger.debug("Restored %d keys from %s", len(values), path)
    return len(values)
