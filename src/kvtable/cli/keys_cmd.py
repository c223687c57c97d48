"""kvt keys: list live keys in the bucket."""

from __future__ import annotations

import json
from typing import Optional

import typer

from kvtable.cli._storage import run, with_database
from kvtable.database import Database


def keys_cmd(
    pattern: Optional[str] = typer.Argument(
        None, help="Dotted key pattern; '*' matches one token, trailing '>' the rest"
    ),
    limit: Optional[int] = typer.Option(None, "--limit", help="Max keys to print"),
) -> None:
    """List live keys, optionally filtered by pattern."""
    from kvtable.cli import state

    async def _collect(db: Database) -> list[str]:
        keys: list[str] = []
        async for key in db.store.keys(pattern):
            keys.append(key)
        keys.sort()
        return keys[:limit] if limit is not None else keys

    keys = run(with_database(_collect))
    if state.json_output:
        print(json.dumps(keys, indent=2))
        return
    for key in keys:
        print(key)
