"""
mgit: run git operations across a registered fleet of repositories.

The command line loads the configuration, selects repositories with a
pattern, and hands one operation per repository to the fleet executor.
Registry commands (init, add, remove, tag) edit the configuration file in
place and never touch the executor.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn

from ._version import __version__
from .config import Config, load_config, normalize_path, resolve_config_path
from .editor import ConfigEditor
from .errors import ConfigError, MgitError, RepositoryError
from .executor import FleetExecutor, Operation, ResultOrder
from .formatters import OutputFormatter
from .git import GitAdapter, Shell, launch_editor
from .logger import configure_logging, level_for
from .models import RepositoryEntry
from .operations import (
    checkout_operation,
    exec_operation,
    fetch_operation,
    status_operation,
    sync_operation,
)
from .schema import get_tool_schema
from .selector import select

EXIT_FATAL = 2

REMOTE_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")

err_console = Console(stderr=True)


@dataclass
class AppState:
    """Global options shared by every command."""

    config_path: Path


# =============================================================================
# CLI Application
# =============================================================================


app = typer.Typer(
    name="mgit",
    help="Run git operations across a fleet of repositories.",
    no_args_is_help=True,
)


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        print(f"mgit {__version__}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Path = typer.Option(
        None,
        "--config",
        "-c",
        help="Configuration file (default: $MGIT_CONFIG_PATH or ~/.config/mgit/config.toml)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log progress information"),
    debug: bool = typer.Option(False, "--debug", help="Log git invocations and internals"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Disable logging"),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    schema: bool = typer.Option(
        False,
        "--schema",
        help="Output MCP-compatible tool schema for AI agents",
    ),
):
    """mgit: run git operations across a fleet of repositories."""
    if schema:
        print(json.dumps(get_tool_schema(), indent=2))
        raise typer.Exit()

    configure_logging(level_for(verbose=verbose, debug=debug, quiet=quiet))
    ctx.obj = AppState(config_path=resolve_config_path(config))


def get_console_and_formatter(json_output: bool) -> tuple[Console, OutputFormatter]:
    """Create console and formatter."""
    console = Console(force_terminal=not json_output)
    formatter = OutputFormatter(console, use_json=json_output)
    return console, formatter


@contextmanager
def fatal_errors() -> Iterator[None]:
    """Report mgit errors as `error: ...` and exit with status 2."""
    try:
        yield
    except MgitError as e:
        err_console.print(f"[red]error:[/] {escape(str(e))}", highlight=False, soft_wrap=True)
        raise typer.Exit(EXIT_FATAL) from None


def parse_remotes(values: list[str]) -> dict[str, str]:
    """Parse `--remote` values: `URL` for origin or `NAME=URL`."""
    remotes: dict[str, str] = {}
    for value in values:
        name, sep, url = value.partition("=")
        if not sep or not REMOTE_NAME_RE.match(name):
            name, url = "origin", value
        if not url:
            raise typer.BadParameter(f"empty URL in `{value}`", param_hint="--remote")
        if name in remotes:
            raise typer.BadParameter(f"remote `{name}` given twice", param_hint="--remote")
        remotes[name] = url
    return remotes


# =============================================================================
# Registry commands
# =============================================================================


@app.command()
def init(ctx: typer.Context):
    """Create an empty configuration file."""
    state: AppState = ctx.obj
    with fatal_errors():
        editor = ConfigEditor.create(state.config_path)
        editor.persist()
    err_console.print(f"[green]✓[/] Created {escape(str(state.config_path))}")


@app.command()
def add(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="Work tree of the repository"),
    name: str = typer.Option(None, "--name", "-n", help="Registry name (default: directory name)"),
    remote: list[str] = typer.Option(
        [],
        "--remote",
        "-r",
        help="Remote as URL (origin) or NAME=URL; read from the repository when omitted",
    ),
    tag: list[str] = typer.Option([], "--tag", "-t", help="Tag to attach (repeatable)"),
    branch: str = typer.Option(None, "--branch", "-b", help="Default branch for sync"),
    clone: str = typer.Option(None, "--clone", help="Clone this URL into PATH first"),
):
    """Register a repository, optionally cloning it first."""
    state: AppState = ctx.obj
    remotes = parse_remotes(remote)
    adapter = GitAdapter()

    with fatal_errors():
        editor = ConfigEditor.load(state.config_path)
        repo_path = normalize_path(path, Path.cwd())
        entry_name = name or repo_path.name

        # Fail on a name or path clash before any cloning happens
        editor.registry.add(RepositoryEntry(name=entry_name, path=repo_path))

        if clone:
            err_console.print(f"Cloning {escape(clone)} into {escape(str(repo_path))}...")
            adapter.clone(clone, repo_path)
            remotes.setdefault("origin", clone)

        if not remotes:
            try:
                with adapter.open(repo_path) as handle:
                    remotes = adapter.remotes(handle)
            except RepositoryError as e:
                err_console.print(
                    f"[yellow]warning:[/] {escape(e.message)}; registering without remotes",
                    soft_wrap=True,
                )

        entry = RepositoryEntry(
            name=entry_name,
            path=repo_path,
            remotes=remotes,
            tags=frozenset(tag),
            branch=branch,
        )
        editor.add(entry)
        editor.persist()

    err_console.print(f"[green]✓[/] Added [cyan]{escape(entry.name)}[/] ({escape(str(entry.path))})")


@app.command()
def remove(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Registry name"),
):
    """Unregister a repository; its work tree is left alone."""
    state: AppState = ctx.obj
    with fatal_errors():
        editor = ConfigEditor.load(state.config_path)
        editor.remove(name)
        editor.persist()
    err_console.print(f"[green]✓[/] Removed [cyan]{escape(name)}[/]")


@app.command()
def tag(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Registry name"),
    add_tags: list[str] = typer.Option([], "--add", "-a", help="Tag to add (repeatable)"),
    remove_tags: list[str] = typer.Option([], "--remove", "-r", help="Tag to remove (repeatable)"),
):
    """Add or remove tags; without options, print the current tags."""
    state: AppState = ctx.obj
    with fatal_errors():
        editor = ConfigEditor.load(state.config_path)
        if add_tags or remove_tags:
            editor.edit(name, add_tags=tuple(add_tags), remove_tags=tuple(remove_tags))
            editor.persist()
        entry = editor.registry.get(name)

    for t in sorted(entry.tags):
        print(t)


@app.command("list")
def list_repos(
    ctx: typer.Context,
    match: str = typer.Option("", "--match", "-m", help="Selection pattern"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
    paths: bool = typer.Option(
        False,
        "--paths",
        help="Output only paths (one per line, for piping to fzf etc.)",
    ),
):
    """List registered repositories, ignored ones included."""
    state: AppState = ctx.obj
    _, formatter = get_console_and_formatter(json_output)

    with fatal_errors():
        config = load_config(state.config_path)
        entries = select(config.registry, match, include_ignored=True)

    if paths:
        for entry in entries:
            print(entry.path)
        return

    formatter.print_repo_list(entries, config)


@app.command()
def resolve(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name or unique name prefix"),
):
    """Print the path of a repository, e.g. `cd "$(mgit resolve api)"`."""
    state: AppState = ctx.obj
    with fatal_errors():
        config = load_config(state.config_path)
        entry = config.registry.resolve(name)
    print(entry.path)


@app.command()
def edit(
    ctx: typer.Context,
    target: str = typer.Argument(None, help="Name or unique name prefix of the repository"),
    editor: str = typer.Option(
        None, "--editor", "-e", help="Editor program (default: `editor` setting)"
    ),
    branch: str = typer.Option(
        None, "--branch", "-b", help="Create and switch to a new branch first"
    ),
    config_file: bool = typer.Option(False, "--config", help="Open the configuration file instead"),
):
    """Open a repository, or the configuration file, in an editor."""
    state: AppState = ctx.obj
    if config_file == (target is not None):
        raise typer.BadParameter("give either TARGET or --config", param_hint="TARGET")
    if config_file and branch:
        raise typer.BadParameter("cannot be combined with --config", param_hint="--branch")

    with fatal_errors():
        config = load_config(state.config_path)
        if config_file:
            path, settings = config.path, config.defaults
        else:
            entry = config.registry.resolve(target)
            path, settings = entry.path, config.settings_for(entry)

        program = editor or settings.editor
        if not program:
            raise ConfigError(
                "either the `--editor` option or the `editor` setting must be provided",
                config.path,
            )

        if branch:
            adapter = GitAdapter()
            with adapter.open(path) as handle:
                adapter.create_branch(handle, branch, settings.default_branch)
            err_console.print(f"[green]✓[/] Created branch [blue]{escape(branch)}[/]")

        launch_editor(program, path, settings.shell or Shell.default())


# =============================================================================
# Fleet commands
# =============================================================================

MATCH_OPTION = typer.Option("", "--match", "-m", help="Selection pattern (default: all)")
JOBS_OPTION = typer.Option(
    None,
    "--jobs",
    "-J",
    min=0,
    help="Number of parallel workers (0 = number of CPUs; default from config)",
)
SEQUENTIAL_OPTION = typer.Option(
    False,
    "--sequential",
    "-s",
    help="Run sequentially instead of parallel",
)
ORDER_OPTION = typer.Option(
    None,
    "--order",
    help="Emit results in input or completion order (default from config)",
)
JSON_OPTION = typer.Option(False, "--json", "-j", help="Output as JSON")
INCLUDE_IGNORED_OPTION = typer.Option(
    False,
    "--include-ignored",
    help="Include repositories marked as ignored",
)


def run_fleet(
    ctx: typer.Context,
    operation: str,
    build: Callable[[Config], Operation],
    match: str,
    jobs: int | None,
    sequential: bool,
    order: ResultOrder | None,
    json_output: bool,
    include_ignored: bool,
) -> None:
    """Select repositories, run the operation on each and report.

    Exits with 0 when every repository succeeded and 1 otherwise.
    """
    state: AppState = ctx.obj
    console, formatter = get_console_and_formatter(json_output)

    with fatal_errors():
        config = load_config(state.config_path)
        entries = select(
            config.registry,
            match,
            include_ignored=include_ignored,
            is_ignored=config.is_ignored,
        )
        op = build(config)

    executor = FleetExecutor(
        concurrency=1 if sequential else (config.jobs if jobs is None else jobs),
        order=order or config.order,
    )

    if json_output or not entries:
        report = executor.execute(entries, op)
    else:
        name_width = max(len(entry.name) for entry in entries)
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            console=console,
            transient=True,
        ) as progress:
            task = progress.add_task(f"Running {operation}...", total=len(entries))

            def on_result(result):
                formatter.print_result(result, name_width, console=progress.console)
                progress.advance(task)

            report = executor.execute(entries, op, on_result=on_result)

    formatter.print_report(report, operation)
    raise typer.Exit(report.exit_code)


@app.command()
def status(
    ctx: typer.Context,
    fetch_first: bool = typer.Option(False, "--fetch", "-f", help="Fetch before reading status"),
    match: str = MATCH_OPTION,
    jobs: int = JOBS_OPTION,
    sequential: bool = SEQUENTIAL_OPTION,
    order: ResultOrder = ORDER_OPTION,
    json_output: bool = JSON_OPTION,
    include_ignored: bool = INCLUDE_IGNORED_OPTION,
):
    """Show branch, upstream and working tree state of each repository."""
    adapter = GitAdapter()
    run_fleet(
        ctx,
        "status",
        lambda config: status_operation(adapter, fetch_first, config.settings_for),
        match,
        jobs,
        sequential,
        order,
        json_output,
        include_ignored,
    )


@app.command()
def fetch(
    ctx: typer.Context,
    remote: str = typer.Option(
        None,
        "--remote",
        "-r",
        help="Remote to fetch (default: configured default remote, else all)",
    ),
    match: str = MATCH_OPTION,
    jobs: int = JOBS_OPTION,
    sequential: bool = SEQUENTIAL_OPTION,
    order: ResultOrder = ORDER_OPTION,
    json_output: bool = JSON_OPTION,
    include_ignored: bool = INCLUDE_IGNORED_OPTION,
):
    """Fetch remotes of each repository."""
    adapter = GitAdapter()
    run_fleet(
        ctx,
        "fetch",
        lambda config: fetch_operation(adapter, remote, config.settings_for),
        match,
        jobs,
        sequential,
        order,
        json_output,
        include_ignored,
    )


@app.command()
def sync(
    ctx: typer.Context,
    switch: bool = typer.Option(
        False,
        "--switch",
        help="Check out the default branch first when on another branch",
    ),
    match: str = MATCH_OPTION,
    jobs: int = JOBS_OPTION,
    sequential: bool = SEQUENTIAL_OPTION,
    order: ResultOrder = ORDER_OPTION,
    json_output: bool = JSON_OPTION,
    include_ignored: bool = INCLUDE_IGNORED_OPTION,
):
    """Fetch and fast-forward the default branch onto its upstream."""
    adapter = GitAdapter()
    run_fleet(
        ctx,
        "sync",
        lambda config: sync_operation(adapter, switch, config.settings_for),
        match,
        jobs,
        sequential,
        order,
        json_output,
        include_ignored,
    )


@app.command()
def checkout(
    ctx: typer.Context,
    ref: str = typer.Argument(..., help="Branch, tag or commit to check out"),
    match: str = MATCH_OPTION,
    jobs: int = JOBS_OPTION,
    sequential: bool = SEQUENTIAL_OPTION,
    order: ResultOrder = ORDER_OPTION,
    json_output: bool = JSON_OPTION,
    include_ignored: bool = INCLUDE_IGNORED_OPTION,
):
    """Check out REF in each repository; dirty work trees are refused."""
    adapter = GitAdapter()
    run_fleet(
        ctx,
        "checkout",
        lambda config: checkout_operation(adapter, ref),
        match,
        jobs,
        sequential,
        order,
        json_output,
        include_ignored,
    )


@app.command("exec", context_settings={"allow_interspersed_args": False})
def exec_command(
    ctx: typer.Context,
    command: list[str] = typer.Argument(..., help="Command to run in each work tree"),
    shell: Shell = typer.Option(
        None,
        "--shell",
        help="Shell used to run the command (default from config, else the platform shell)",
    ),
    match: str = MATCH_OPTION,
    jobs: int = JOBS_OPTION,
    sequential: bool = SEQUENTIAL_OPTION,
    order: ResultOrder = ORDER_OPTION,
    json_output: bool = JSON_OPTION,
    include_ignored: bool = INCLUDE_IGNORED_OPTION,
):
    """Run a command in each repository; a non-zero exit is a failure."""
    adapter = GitAdapter()
    run_fleet(
        ctx,
        "exec",
        lambda config: exec_operation(adapter, command, shell, config.settings_for),
        match,
        jobs,
        sequential,
        order,
        json_output,
        include_ignored,
    )


if __name__ == "__main__":
    app()
