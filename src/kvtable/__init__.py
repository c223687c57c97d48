"""kvtable: relational-style records and secondary indexes over a key-value store."""

__version__ = "0.1.0"

from kvtable.config import KvTableConfig, load_config_file
from kvtable.database import Database
from kvtable.errors import (
    BackupFormatError,
    ConnectionFailureError,
    CorruptRecordError,
    InvalidPrimaryKeyError,
    KvTableError,
    MissingPrimaryKeyError,
    NotConnectedError,
    NotFoundError,
    StorageTargetError,
    ValidationError,
)
from kvtable.filters import field
from kvtable.indexes import IndexManager
from kvtable.keys import KeyRouter
from kvtable.kv import KeyValueProtocol, KvEntry, MemoryKeyValue, Operation, open_store
from kvtable.model import Model
from kvtable.query import QueryEngine, QueryPlan
from kvtable.records import RecordStore, ScanResult
from kvtable.truncate import TruncateOperator, TruncateResult
from kvtable.types import ModelDescriptor
from kvtable.watch import ChangeEvent, ChangeWatcher, Subscription

__all__ = [
    "__version__",
    "Database",
    "Model",
    "ModelDescriptor",
    "KeyRouter",
    "RecordStore",
    "ScanResult",
    "IndexManager",
    "QueryEngine",
    "QueryPlan",
    "ChangeWatcher",
    "ChangeEvent",
    "Subscription",
    "TruncateOperator",
    "TruncateResult",
    "field",
    "KeyValueProtocol",
    "KvEntry",
    "MemoryKeyValue",
    "Operation",
    "open_store",
    "KvTableConfig",
    "load_config_file",
    "KvTableError",
    "NotFoundError",
    "NotConnectedError",
    "CorruptRecordError",
    "ConnectionFailureError",
    "StorageTargetError",
    "ValidationError",
    "MissingPrimaryKeyError",
    "InvalidPrimaryKeyError",
    "BackupFormatError",
]
