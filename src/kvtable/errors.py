"""Structured error types for kvtable."""

from __future__ import annotations

from typing import Any


class KvTableError(Exception):
    """Base error for all kvtable errors."""


class NotFoundError(KvTableError):
    """Raised when a key is absent or its latest entry is a delete/purge tombstone."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Key not found: '{key}'")


class NotConnectedError(KvTableError):
    """Raised when the store is used before connect() or after close()."""

    def __init__(self) -> None:
        super().__init__("Not connected to a key-value store. Call `await db.connect()` first.")


class CorruptRecordError(KvTableError):
    """Raised when stored bytes cannot be decoded into a record."""

    def __init__(self, key: str, detail: str) -> None:
        self.key = key
        self.detail = detail
        super().__init__(f"Corrupt value at '{key}': {detail}")


class ConnectionFailureError(KvTableError):
    """Raised when the underlying transport fails."""

    def __init__(self, operation: str, detail: str) -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"Key-value store error during {operation}: {detail}")


class StorageTargetError(KvTableError):
    """Raised when a storage URI cannot be resolved to a backend."""

    def __init__(self, uri: str, detail: str) -> None:
        self.uri = uri
        self.detail = detail
        super().__init__(f"Invalid storage target '{uri}': {detail}")


class ValidationError(KvTableError):
    """Raised when a record fails validation."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class MissingPrimaryKeyError(ValidationError):
    """Raised when a record has no `id` field."""

    def __init__(self, model: str) -> None:
        self.model = model
        super().__init__(f"Record for model '{model}' is missing primary key field 'id'")


class InvalidPrimaryKeyError(ValidationError):
    """Raised when a record's `id` is not an integer."""

    def __init__(self, model: str, value: Any) -> None:
        self.model = model
        self.value = value
        super().__init__(
            f"Primary key for model '{model}' must be an integer, got {type(value).__name__}: "
            f"{value!r}"
        )


class BackupFormatError(KvTableError):
    """Raised when a backup file cannot be parsed."""

    def __init__(self, path: str, detail: str) -> None:
        self.path = path
        self.detail = detail
        super().__init__(f"Invalid backup file '{path}': {detail}")
