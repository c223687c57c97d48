"""kvt get / find / truncate / reindex: per-model record commands."""

from __future__ import annotations

from typing import Any, Optional

import typer

from kvtable.cli import _exitcodes as ec
from kvtable.cli._filters import parse_cli_filters, parse_order, split_filter_arg
from kvtable.cli._output import print_error, print_object, print_records
from kvtable.cli._storage import resolve_model, run, with_database
from kvtable.database import Database
from kvtable.errors import NotFoundError

_SHARDS_HELP = "Shard count for a model not declared in the config file"
_INDEX_HELP = "Indexed field (repeatable) for a model not declared in the config file"


def get_cmd(
    model_name: str = typer.Argument(..., help="Model name"),
    record_id: int = typer.Argument(..., help="Primary id"),
    shards: Optional[int] = typer.Option(None, "--shards", help=_SHARDS_HELP),
    index: Optional[list[str]] = typer.Option(None, "--index", help=_INDEX_HELP),
) -> None:
    """Fetch one record by primary id."""
    from kvtable.cli import state

    async def _get(db: Database) -> dict[str, Any]:
        model = resolve_model(db, model_name, shards=shards, index=index)
        record = await model.find_by_pk(record_id)
        if record is None:
            raise NotFoundError(model.records.router.record_key(record_id))
        return record

    print_object(run(with_database(_get)), json_mode=state.json_output)


def find_cmd(
    model_name: str = typer.Argument(..., help="Model name"),
    filter_args: Optional[list[str]] = typer.Option(
        None, "--filter", help="'FIELD OP VALUE_JSON' (repeatable, AND-combined)"
    ),
    order: Optional[list[str]] = typer.Option(
        None, "--order", help="FIELD[:asc|desc] (repeatable)"
    ),
    limit: Optional[int] = typer.Option(None, "--limit", help="Max results"),
    offset: Optional[int] = typer.Option(None, "--offset", help="Skip first N results"),
    select: Optional[list[str]] = typer.Option(
        None, "--select", help="Only return these fields (repeatable)"
    ),
    explain: bool = typer.Option(False, "--explain", help="Print the query plan to stderr"),
    shards: Optional[int] = typer.Option(None, "--shards", help=_SHARDS_HELP),
    index: Optional[list[str]] = typer.Option(None, "--index", help=_INDEX_HELP),
) -> None:
    """Find records matching filters."""
    from kvtable.cli import state

    try:
        where = parse_cli_filters([split_filter_arg(raw) for raw in filter_args or []])
        order_pairs = parse_order(order)
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)

    async def _find(db: Database) -> list[dict[str, Any]]:
        model = resolve_model(db, model_name, shards=shards, index=index)
        if explain:
            plan = model.plan(where)
            typer.echo(f"plan: {plan.kind}" + (f" ({plan.field})" if plan.field else ""), err=True)
        return await model.find_all(
            where, order=order_pairs, limit=limit, offset=offset, attributes=select
        )

    print_records(run(with_database(_find)), json_mode=state.json_output)


def truncate_cmd(
    model_name: str = typer.Argument(..., help="Model name"),
    yes: bool = typer.Option(False, "--yes", help="Confirm removal of every record"),
    shards: Optional[int] = typer.Option(None, "--shards", help=_SHARDS_HELP),
    index: Optional[list[str]] = typer.Option(None, "--index", help=_INDEX_HELP),
) -> None:
    """Remove every record and index entry of a model."""
    from kvtable.cli import state

    if not yes:
        print_error("truncate removes every record of the model; pass --yes to confirm")
        raise typer.Exit(ec.USAGE_ERROR)

    async def _truncate(db: Database) -> dict[str, Any]:
        model = resolve_model(db, model_name, shards=shards, index=index)
        result = await model.truncate()
        return {
            "model": model.name,
            "records_removed": result.records_removed,
            "index_keys_removed": result.index_keys_removed,
            "corrupt_records": len(result.errors),
        }

    print_object(run(with_database(_truncate)), json_mode=state.json_output)


def reindex_cmd(
    model_name: str = typer.Argument(..., help="Model name"),
    shards: Optional[int] = typer.Option(None, "--shards", help=_SHARDS_HELP),
    index: Optional[list[str]] = typer.Option(None, "--index", help=_INDEX_HELP),
) -> None:
    """Rebuild a model's index entries from its records."""
    from kvtable.cli import state

    async def _reindex(db: Database) -> dict[str, Any]:
        model = resolve_model(db, model_name, shards=shards, index=index)
        if not model.indexes:
            raise ValueError(f"Model '{model.name}' has no indexed fields")
        written = await model.reindex()
        return {"model": model.name, "indexes": list(model.indexes), "index_keys_written": written}

    print_object(run(with_database(_reindex)), json_mode=state.json_output)
