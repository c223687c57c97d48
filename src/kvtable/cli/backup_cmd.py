"""kvt backup / kvt restore: whole-bucket JSON snapshots."""

from __future__ import annotations

import typer

from kvtable.cli._output import print_object
from kvtable.cli._storage import run, with_database
from kvtable.database import Database


def backup_cmd(
    output: str = typer.Option(..., "--output", "-o", help="Backup file to write"),
) -> None:
    """Write every live key and value to a JSON backup file."""
    from kvtable.cli import state

    async def _backup(db: Database) -> int:
        return await db.backup(output)

    count = run(with_database(_backup))
    print_object({"keys_written": count, "path": output}, json_mode=state.json_output)


def restore_cmd(
    input_path: str = typer.Option(..., "--input", "-i", help="Backup file to read"),
    clear: bool = typer.Option(False, "--clear", help="Delete every existing key first"),
) -> None:
    """Restore keys from a JSON backup file."""
    from kvtable.cli import state

    async def _restore(db: Database) -> int:
        return await db.restore(input_path, clear=clear)

    count = run(with_database(_restore))
    print_object({"keys_restored": count, "path": input_path}, json_mode=state.json_output)
