"""kvtable CLI: operator console for inspecting and maintaining a bucket."""

from __future__ import annotations

import logging
from typing import Optional

import typer

from kvtable.cli import backup_cmd, info, keys_cmd, records

app = typer.Typer(
    name="kvt",
    help="kvtable CLI: inspect and maintain records and indexes in a key-value bucket.",
    no_args_is_help=True,
)


class _State:
    """Global CLI state shared across subcommands."""

    storage_uri: str | None = None
    storage_uri_explicit: bool = False
    config: str | None = None
    json_output: bool = False
    verbose: bool = False


state = _State()


def _version_callback(value: bool) -> None:
    if value:
        try:
            from importlib.metadata import version

            v = version("kvtable")
        except Exception:
            v = "unknown"
        print(f"kvt {v}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    storage_uri: Optional[str] = typer.Option(
        None,
        "--storage-uri",
        envvar="KVTABLE_STORAGE_URI",
        help="Store URI (memory://bucket or s3://bucket/prefix; default memory://kvtable)",
    ),
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        envvar="KVTABLE_CONFIG",
        help="YAML config file path",
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output when supported"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    version: bool = typer.Option(
        False, "--version", help="Show version", is_eager=True, callback=_version_callback
    ),
) -> None:
    """Global options for all kvt commands."""
    from kvtable.kv import parse_storage_target

    if storage_uri:
        try:
            parse_storage_target(storage_uri)
        except Exception as e:
            raise typer.BadParameter(str(e))

    state.storage_uri = storage_uri
    # An explicit --storage-uri beats the config file; KVTABLE_STORAGE_URI does not.
    # Compared by name: typer may hand back its bundled click's ParameterSource.
    uri_source = ctx.get_parameter_source("storage_uri")
    state.storage_uri_explicit = uri_source is not None and uri_source.name == "COMMANDLINE"
    state.config = config
    state.json_output = json_output
    state.verbose = verbose
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    if ctx.invoked_subcommand is None and not version:
        print(ctx.get_help())
        raise typer.Exit()


app.command(name="info")(info.info_cmd)
app.command(name="keys")(keys_cmd.keys_cmd)
app.command(name="get")(records.get_cmd)
app.command(name="find")(records.find_cmd)
app.command(name="truncate")(records.truncate_cmd)
app.command(name="reindex")(records.reindex_cmd)
app.command(name="backup")(backup_cmd.backup_cmd)
app.command(name="restore")(backup_cmd.restore_cmd)


def main() -> None:
    """Entry point for the kvt CLI."""
    app()
