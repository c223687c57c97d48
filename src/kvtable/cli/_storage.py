"""CLI helpers for building a Database from global options and the config file."""

from __future__ import annotations

import asyncio
import os
from typing import Any, Awaitable, Optional, TypeVar

import typer

from kvtable.cli import _exitcodes as ec
from kvtable.cli._output import print_error
from kvtable.config import KvTableConfig, LoadedConfig, load_config_file
from kvtable.database import Database
from kvtable.errors import (
    BackupFormatError,
    ConnectionFailureError,
    CorruptRecordError,
    NotFoundError,
    StorageTargetError,
    ValidationError,
)
from kvtable.model import Model

DEFAULT_STORAGE_URI = "memory://kvtable"

T = TypeVar("T")


def load_cli_config() -> Optional[LoadedConfig]:
    from kvtable.cli import state

    if not state.config:
        return None
    try:
        return load_config_file(state.config)
    except (OSError, ValueError, TypeError) as e:
        print_error(f"Cannot load config file '{state.config}': {e}")
        raise typer.Exit(ec.USAGE_ERROR)


def _apply_env(config: KvTableConfig) -> KvTableConfig:
    """Overlay S3 settings from the environment."""
    endpoint = os.getenv("KVTABLE_S3_ENDPOINT_URL")
    region = os.getenv("KVTABLE_S3_REGION")
    if endpoint:
        config.s3_endpoint_url = endpoint
    if region:
        config.s3_region = region
    return config


def resolve_storage_uri(loaded: Optional[LoadedConfig] = None) -> str:
    """Precedence: --storage-uri, config file storage_uri, KVTABLE_STORAGE_URI, default."""
    from kvtable.cli import state

    if state.storage_uri and state.storage_uri_explicit:
        return state.storage_uri
    if loaded is not None and loaded.storage_uri:
        return loaded.storage_uri
    return state.storage_uri or DEFAULT_STORAGE_URI


def open_database() -> Database:
    """Build an unconnected Database from global CLI options and declared models."""
    loaded = load_cli_config()
    config = _apply_env(loaded.config if loaded else KvTableConfig())
    db = Database(resolve_storage_uri(loaded), config=config)
    for spec in loaded.models if loaded else []:
        db.define_from_spec(spec)
    return db


def resolve_model(
    db: Database,
    name: str,
    *,
    shards: Optional[int] = None,
    index: Optional[list[str]] = None,
) -> Model:
    """Return a declared model, or define one ad hoc from --shards/--index."""
    if name in db.models:
        model = db.get_model(name)
        if shards is not None and shards != model.shard_count:
            raise ValueError(
                f"Model '{name}' is declared with {model.shard_count} shards, not {shards}"
            )
        if index:
            model.indexes = list(model.indexes) + list(index)
        return model
    return db.define(name, shard_count=shards, indexes=index or ())


def run(coro: Awaitable[T]) -> T:
    """Run a coroutine, mapping kvtable errors onto CLI exit codes."""
    try:
        return asyncio.run(coro)  # type: ignore[arg-type]
    except NotFoundError as e:
        print_error(str(e))
        raise typer.Exit(ec.NOT_FOUND)
    except (ConnectionFailureError, StorageTargetError) as e:
        print_error(f"Storage error: {e}")
        raise typer.Exit(ec.STORAGE_ERROR)
    except (BackupFormatError, CorruptRecordError) as e:
        print_error(str(e))
        raise typer.Exit(ec.GENERAL_ERROR)
    except KeyError as e:
        print_error(str(e.args[0]) if e.args else str(e))
        raise typer.Exit(ec.USAGE_ERROR)
    except (ValidationError, ValueError) as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)
    except OSError as e:
        print_error(str(e))
        raise typer.Exit(ec.GENERAL_ERROR)


async def with_database(fn: Any, *args: Any, **kwargs: Any) -> Any:
    """Connect, call ``await fn(db, ...)``, close."""
    db = open_database()
    async with db:
        return await fn(db, *args, **kwargs)
