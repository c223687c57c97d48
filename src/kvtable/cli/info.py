"""kvt info: show store status and declared models."""

from __future__ import annotations

from typing import Any

import typer

from kvtable.cli._output import print_object
from kvtable.cli._storage import run, with_database
from kvtable.database import Database


def info_cmd(
    stats: bool = typer.Option(False, "--stats", help="Count live records per declared model"),
) -> None:
    """Show store status and the models declared in the config file."""
    from kvtable.cli import state

    async def _collect(db: Database) -> dict[str, Any]:
        data: dict[str, Any] = {"storage_uri": db.storage_uri, **db.store.storage_info()}
        models = db.models
        if models:
            data["models"] = {
                name: {"shard_count": m.shard_count, "indexes": list(m.indexes)}
                for name, m in models.items()
            }
        if stats:
            data["record_counts"] = {name: await m.count() for name, m in models.items()}
        return data

    print_object(run(with_database(_collect)), json_mode=state.json_output)
