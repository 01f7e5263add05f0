"""Typer-powered command line for ``pgscratch``.

``pgscratch run`` starts a throwaway server for manual poking or for scripts
that need a database for the duration of a command; ``pgscratch locate``
reports which installation would be used.
"""
from __future__ import annotations

import json
import time
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
import yaml
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from . import options as opt
from .config import ConfigError, ScratchConfig, load_config
from .errors import PgScratchError
from .exit_codes import ExitCode
from .instance import ScratchPostgres
from .locator import REQUIRED_UTILITIES, locate

console = Console()

app = typer.Typer(help="Disposable PostgreSQL servers for test suites.")
config_app = typer.Typer(help="Inspect the resolved pgscratch configuration.")
app.add_typer(config_app, name="config")

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to pgscratch's YAML config file.",
)
POSTGRES_PATH_OPTION = typer.Option(
    None,
    "--postgres-path",
    file_okay=False,
    help="Directory holding psql, initdb, pg_ctl and pg_dump.",
)
WORKING_DIR_OPTION = typer.Option(
    None,
    "--working-dir",
    file_okay=False,
    help="Existing directory to hold the data directory (kept after exit).",
)
ENCODING_OPTION = typer.Option(
    None,
    "--encoding",
    help="Encoding passed to initdb (default UNICODE).",
)
DB_OPTION = typer.Option(
    None,
    "--db",
    help="Create this database after starting (repeatable).",
)
VERBOSE_OPTION = typer.Option(
    None,
    "--verbose/--quiet",
    help="Echo the commands pgscratch runs and their output.",
)
HOLD_OPTION = typer.Option(
    True,
    "--hold/--no-hold",
    help="Keep the server running until interrupted with Ctrl-C.",
)
JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit JSON instead of formatted output.",
)


@dataclass(slots=True)
class RuntimeContext:
    """State shared between the root callback and subcommands."""

    config_file: Path | None
    config: ScratchConfig


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        _command_error("Invalid configuration", exc)
    runtime = RuntimeContext(config_file=config_file, config=config)
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


def _config_with(ctx: typer.Context, overrides: dict[str, object]) -> ScratchConfig:
    runtime = _get_runtime(ctx)
    if all(value is None for value in overrides.values()):
        return runtime.config
    try:
        return load_config(config_file=runtime.config_file, overrides=overrides)
    except ConfigError as exc:
        _command_error("Invalid configuration", exc)


def _command_error(message: str, exc: BaseException) -> NoReturn:
    console.print(f"[bold red]{message}:[/bold red] {escape(str(exc))}")
    raise typer.Exit(code=int(ExitCode.for_exception(exc)))


def _console_sink(line: str) -> None:
    console.print(escape(line), style="dim", soft_wrap=True)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the pgscratch version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"pgscratch {__version__}")
        raise typer.Exit(code=0)

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


@app.command("locate")
def locate_command(
    ctx: typer.Context,
    postgres_path: Path | None = POSTGRES_PATH_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Show the PostgreSQL installation pgscratch would use."""
    config = _config_with(ctx, {"postgres_path": postgres_path})
    try:
        installation = locate(config.postgres_path)
    except PgScratchError as exc:
        _command_error("PostgreSQL not usable", exc)

    if json_output:
        payload = {
            "version": installation.version,
            "bin_dir": str(installation.bin_dir),
            "commands": {name: str(path) for name, path in installation.commands.items()},
        }
        typer.echo(json.dumps(payload, indent=2, sort_keys=True))
        return

    table = Table(title=f"PostgreSQL {installation.version}")
    table.add_column("Utility", style="cyan")
    table.add_column("Path", overflow="fold")
    for name in REQUIRED_UTILITIES:
        table.add_row(name, str(installation.commands[name]))
    console.print(table)


@app.command("run")
def run_command(
    ctx: typer.Context,
    db: list[str] | None = DB_OPTION,
    postgres_path: Path | None = POSTGRES_PATH_OPTION,
    working_dir: Path | None = WORKING_DIR_OPTION,
    encoding: str | None = ENCODING_OPTION,
    verbose: bool | None = VERBOSE_OPTION,
    hold: bool = HOLD_OPTION,
) -> None:
    """Start a scratch server, create databases and print their URIs."""
    config = _config_with(
        ctx,
        {
            "postgres_path": postgres_path,
            "working_dir": working_dir,
            "encoding": encoding,
            "verbose": verbose,
        },
    )
    try:
        instance_options = config.options()
    except ConfigError as exc:
        _command_error("Invalid configuration", exc)
    if config.verbose:
        instance_options.insert(0, opt.log_func(_console_sink))

    try:
        instance = ScratchPostgres(*instance_options)
    except PgScratchError as exc:
        _command_error("Failed to configure PostgreSQL", exc)

    failure: PgScratchError | None = None
    try:
        instance.start()
        uris = {name: instance.create_db(name) for name in db or []}
        _render_instance(instance, uris)
        if hold:
            console.print("Server running; press Ctrl-C to stop.")
            try:
                while True:
                    time.sleep(1)
            except KeyboardInterrupt:
                console.print("Stopping server.")
    except PgScratchError as exc:
        failure = exc
    finally:
        _teardown(instance)
    if failure is not None:
        _command_error("PostgreSQL run failed", failure)


def _render_instance(instance: ScratchPostgres, uris: dict[str, str]) -> None:
    console.print(f"PostgreSQL {instance.pg_version} running in {instance.working_dir}")
    console.print(f"admin: {instance.db_uri('postgres')}", soft_wrap=True)
    for name, uri in uris.items():
        console.print(f"{name}: {uri}", soft_wrap=True)


def _teardown(instance: ScratchPostgres) -> None:
    try:
        instance.fini()
    except PgScratchError as exc:
        _command_error("Teardown failed", exc)


@config_app.command("show")
def config_show(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Print the merged configuration."""
    config = _get_runtime(ctx).config
    if json_output:
        typer.echo(json.dumps(config.to_dict(), indent=2, sort_keys=True))
        return
    typer.echo(yaml.safe_dump(config.to_dict(), sort_keys=False).rstrip())


def main() -> None:  # pragma: no cover - thin wrapper for console_scripts
    """Entry point used by the ``pgscratch`` console script."""
    app()


__all__ = ["app", "main"]
