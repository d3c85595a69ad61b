"""
CLI entry point for Rewind.

This module provides the Typer-based command-line interface for inspecting
and driving the history of a SQLite database.

Commands:
    init        Create the history tables
    track       Install history triggers on tables
    untrack     Remove history triggers from tables
    tables      List tracked tables and their trigger mode
    seal        Close the current undo group
    undo        Undo the newest group
    redo        Redo the newest undone group
    status      Show group counters, limit and log sizes
    log         List undo or redo log entries
    size        Show the approximate history size
    limit       Change the group limit
    flatten     Merge undo groups above a group number
    clear       Empty both history logs

The CLI is thin: every command opens a HistoryEngine and calls one of its
methods, so the same operations are available programmatically.
"""

import json
import logging
import traceback
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, NoReturn, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from rewind import __version__, sql
from rewind.engine import HistoryEngine, HistoryResponse
from rewind.errors import RewindError
from rewind.schema import HISTORY_TABLES, HistoryConfig, HistoryDirection, load_config
from rewind.triggers import trigger_mode

app = typer.Typer(
    name="rewind",
    help="SQL-native undo/redo history for SQLite databases.",
    add_completion=False,
    no_args_is_help=True,
)

# Rich consoles for formatted output; logs go to stderr
console = Console()
err_console = Console(stderr=True)


@dataclass
class CliState:
    """Options shared by every command."""

    config: HistoryConfig
    json_output: bool = False
    debug: bool = False


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]rewind[/bold] version {__version__}")
        raise typer.Exit()


def _setup_logging(verbose: bool) -> None:
    """Route library logging through Rich when verbose output is requested."""
    if not verbose:
        return
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


@app.callback()
def main(
    ctx: typer.Context,
    db: Annotated[
        Optional[Path],
        typer.Option(
            "--db",
            help="Path to the SQLite database. Overrides the config file.",
            resolve_path=True,
        ),
    ] = None,
    config_path: Annotated[
        Optional[Path],
        typer.Option(
            "--config",
            "-c",
            help="Path to a YAML configuration file.",
            exists=True,
            readable=True,
            resolve_path=True,
        ),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            help="Output results in JSON format.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            help="Log every history operation to stderr.",
        ),
    ] = False,
    debug: Annotated[
        bool,
        typer.Option(
            "--debug",
            help="Show full error tracebacks.",
        ),
    ] = False,
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """
    Rewind - undo/redo history recorded by triggers inside SQLite.
    """
    _setup_logging(verbose)
    try:
        config = load_config(config_path) if config_path else HistoryConfig()
    except RewindError as e:
        err_console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)
    if db is not None:
        config = config.model_copy(update={"database": db})
    ctx.obj = CliState(config=config, json_output=json_output, debug=debug)


def _open(ctx: typer.Context) -> HistoryEngine:
    state: CliState = ctx.obj
    return HistoryEngine.from_config(state.config)


def _fail(ctx: typer.Context, error_type: str, error: Exception) -> NoReturn:
    """Report an error and exit with code 1."""
    state: CliState = ctx.obj
    if state.json_output:
        output = {"error": True, "error_type": error_type, "message": str(error)}
        if isinstance(error, RewindError):
            output["details"] = error.to_dict()
        if state.debug:
            output["traceback"] = traceback.format_exc()
        print(json.dumps(output, indent=2))
    else:
        console.print(f"[red]{escape(str(error))}[/red]")
        if state.debug:
            console.print(f"[dim]{traceback.format_exc()}[/dim]")
    raise typer.Exit(code=1)


def _print_json(data: object) -> None:
    print(json.dumps(data, indent=2))


@app.command()
def init(ctx: typer.Context) -> None:
    """
    Create the history tables in the database.

    Safe to run repeatedly; an existing history is left untouched.

    Example:
        $ rewind --db drill.db init
    """
    state: CliState = ctx.obj
    try:
        with _open(ctx) as engine:
            stats = engine.stats()
    except RewindError as e:
        _fail(ctx, "init_error", e)

    if state.json_output:
        _print_json({"database": str(state.config.database), **stats.model_dump()})
    else:
        console.print(f"[green]✓[/green] History initialized in [bold]{state.config.database}[/bold]")


@app.command()
def track(
    ctx: typer.Context,
    tables: Annotated[list[str], typer.Argument(help="Tables to track.")],
) -> None:
    """
    Install history triggers on tables.

    Example:
        $ rewind --db drill.db track marcher page
    """
    try:
        with _open(ctx) as engine:
            engine.track(*tables)
    except RewindError as e:
        _fail(ctx, "track_error", e)

    if ctx.obj.json_output:
        _print_json({"tracked": tables})
    else:
        for table in tables:
            console.print(f"[green]✓[/green] Tracking [cyan]{table}[/cyan]")


@app.command()
def untrack(
    ctx: typer.Context,
    tables: Annotated[list[str], typer.Argument(help="Tables to stop tracking.")],
) -> None:
    """
    Remove history triggers from tables. Recorded history is kept.
    """
    try:
        with _open(ctx) as engine:
            engine.untrack(*tables)
    except RewindError as e:
        _fail(ctx, "untrack_error", e)

    if ctx.obj.json_output:
        _print_json({"untracked": tables})
    else:
        for table in tables:
            console.print(f"[yellow]-[/yellow] Stopped tracking [cyan]{table}[/cyan]")


@app.command("tables")
def list_tables(
    ctx: typer.Context,
    all_tables: Annotated[
        bool,
        typer.Option("--all", "-a", help="Include untracked tables."),
    ] = False,
) -> None:
    """
    List tracked tables and the log their triggers write to.
    """
    try:
        with _open(ctx) as engine:
            names = engine.tracked_tables()
            if all_tables:
                names = [t for t in sql.list_tables(engine.conn) if t not in HISTORY_TABLES]
            modes = {t: trigger_mode(engine.conn, t) for t in names}
    except RewindError as e:
        _fail(ctx, "tables_error", e)

    if ctx.obj.json_output:
        _print_json({t: m.value if m else None for t, m in modes.items()})
        return

    if not modes:
        console.print("[dim]No tracked tables.[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Table", style="cyan")
    table.add_column("Mode", width=6)
    for name, mode in modes.items():
        table.add_row(name, mode.value if mode else "-")
    console.print(table)


@app.command()
def seal(ctx: typer.Context) -> None:
    """
    Close the current undo group so the next change starts a new step.
    """
    try:
        with _open(ctx) as engine:
            group = engine.increment_group()
    except RewindError as e:
        _fail(ctx, "seal_error", e)

    if ctx.obj.json_output:
        _print_json({"cur_undo_group": group})
    else:
        console.print(f"Current undo group is now [bold]{group}[/bold]")


def _run_history_action(ctx: typer.Context, direction: HistoryDirection, count: int) -> None:
    """Perform up to `count` undos or redos and report them."""
    state: CliState = ctx.obj
    responses: list[HistoryResponse] = []
    try:
        with _open(ctx) as engine:
            action = engine.undo if direction is HistoryDirection.UNDO else engine.redo
            for _ in range(count):
                response = action()
                responses.append(response)
                if not response.success or response.noop:
                    break
    except RewindError as e:
        _fail(ctx, f"{direction.value}_error", e)

    failed = any(not r.success for r in responses)
    if state.json_output:
        _print_json([r.to_dict() for r in responses])
    else:
        _display_history_responses(responses, direction, state.debug)

    if failed:
        raise typer.Exit(code=1)


def _display_history_responses(
    responses: list[HistoryResponse],
    direction: HistoryDirection,
    debug: bool,
) -> None:
    """Display undo/redo results in a formatted way."""
    for response in responses:
        if not response.success:
            message = response.error.message if response.error else "unknown error"
            console.print(f"[red]✗[/red] {direction.value} failed: {escape(message)}")
            if debug and response.error:
                console.print(f"[dim]{response.error.detail}[/dim]")
            continue
        if response.noop:
            console.print(f"[dim]Nothing to {direction.value}.[/dim]")
            continue
        tables = ", ".join(sorted(response.table_names))
        console.print(
            f"[green]✓[/green] {direction.value} group [bold]{response.group}[/bold]: "
            f"{len(response.sql_statements)} statements on [cyan]{tables}[/cyan]"
        )


@app.command()
def undo(
    ctx: typer.Context,
    count: Annotated[
        int,
        typer.Option("--count", "-n", help="Number of groups to undo.", min=1),
    ] = 1,
) -> None:
    """
    Undo the newest group of changes.

    Example:
        $ rewind --db drill.db undo -n 3
    """
    _run_history_action(ctx, HistoryDirection.UNDO, count)


@app.command()
def redo(
    ctx: typer.Context,
    count: Annotated[
        int,
        typer.Option("--count", "-n", help="Number of groups to redo.", min=1),
    ] = 1,
) -> None:
    """
    Redo the newest undone group.
    """
    _run_history_action(ctx, HistoryDirection.REDO, count)


@app.command()
def status(ctx: typer.Context) -> None:
    """
    Show group counters, the group limit and the size of both logs.
    """
    try:
        with _open(ctx) as engine:
            stats = engine.stats()
            undo_groups = engine.list_groups(HistoryDirection.UNDO)
            redo_groups = engine.list_groups(HistoryDirection.REDO)
            size = engine.history_size()
            tracked = engine.tracked_tables()
    except RewindError as e:
        _fail(ctx, "status_error", e)

    if ctx.obj.json_output:
        _print_json({
            **stats.model_dump(),
            "undo_groups": len(undo_groups),
            "redo_groups": len(redo_groups),
            "history_size": size,
            "tracked_tables": tracked,
        })
        return

    limit = "unlimited" if stats.unlimited else str(stats.group_limit)
    console.print(f"Undo groups: [bold]{len(undo_groups)}[/bold] (current {stats.cur_undo_group})")
    console.print(f"Redo groups: [bold]{len(redo_groups)}[/bold] (current {stats.cur_redo_group})")
    console.print(f"Group limit: {limit}")
    console.print(f"History size: {size} characters")
    console.print(f"Tracked tables: {', '.join(tracked) if tracked else '-'}")


@app.command()
def log(
    ctx: typer.Context,
    redo_log: Annotated[
        bool,
        typer.Option("--redo", help="Show the redo log instead of the undo log."),
    ] = False,
    group: Annotated[
        Optional[int],
        typer.Option("--group", "-g", help="Only show entries of this group."),
    ] = None,
) -> None:
    """
    List history log entries in insertion order.
    """
    direction = HistoryDirection.REDO if redo_log else HistoryDirection.UNDO
    try:
        with _open(ctx) as engine:
            entries = engine.entries(direction, group)
    except RewindError as e:
        _fail(ctx, "log_error", e)

    if ctx.obj.json_output:
        _print_json([e.model_dump() for e in entries])
        return

    if not entries:
        console.print(f"[dim]The {direction.value} log is empty.[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Seq", style="dim", justify="right")
    table.add_column("Group", justify="right")
    table.add_column("SQL")
    for entry in entries:
        table.add_row(str(entry.sequence), str(entry.history_group), escape(entry.sql))
    console.print(table)


@app.command()
def size(ctx: typer.Context) -> None:
    """
    Show the total length of stored inverse statements.
    """
    try:
        with _open(ctx) as engine:
            total = engine.history_size()
    except RewindError as e:
        _fail(ctx, "size_error", e)

    if ctx.obj.json_output:
        _print_json({"history_size": total})
    else:
        console.print(f"{total}")


@app.command()
def limit(
    ctx: typer.Context,
    group_limit: Annotated[
        int,
        typer.Argument(help="Maximum undo groups to keep (0 or less = unlimited)."),
    ],
) -> None:
    """
    Change the group limit, evicting the oldest groups beyond it.
    """
    try:
        with _open(ctx) as engine:
            evicted = engine.set_group_limit(group_limit)
    except RewindError as e:
        _fail(ctx, "limit_error", e)

    if ctx.obj.json_output:
        _print_json({"group_limit": group_limit, "evicted_groups": evicted})
    else:
        console.print(f"Group limit set to [bold]{group_limit}[/bold]")
        if evicted:
            console.print(f"[yellow]Evicted {evicted} oldest groups[/yellow]")


@app.command()
def flatten(
    ctx: typer.Context,
    group: Annotated[int, typer.Argument(help="Group to merge newer groups into.")],
) -> None:
    """
    Merge every undo group above GROUP into GROUP.
    """
    try:
        with _open(ctx) as engine:
            engine.flatten_groups_above(group)
    except RewindError as e:
        _fail(ctx, "flatten_error", e)

    if ctx.obj.json_output:
        _print_json({"flattened_above": group})
    else:
        console.print(f"Undo groups above {group} merged into {group}")


@app.command()
def clear(
    ctx: typer.Context,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Do not ask for confirmation."),
    ] = False,
) -> None:
    """
    Empty both history logs and reset the group counters.
    """
    if not yes and not typer.confirm("Discard all undo and redo history?"):
        raise typer.Exit(code=1)

    try:
        with _open(ctx) as engine:
            engine.clear()
    except RewindError as e:
        _fail(ctx, "clear_error", e)

    if ctx.obj.json_output:
        _print_json({"cleared": True})
    else:
        console.print("[green]✓[/green] History cleared")


if __name__ == "__main__":
    app()
