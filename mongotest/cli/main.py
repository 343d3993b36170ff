"""Main CLI entry point for mongotest."""

import threading
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from ..core.config import get_config, load_config
from ..core.errors import MongotestError
from ..core.log import configure_logging, get_logger
from ..core.reporter import LoggingReporter
from ..instances.replica_set import ReplicaSet
from ..instances.server import new_started_server

app = typer.Typer(
    name="mongotest",
    help="Throwaway MongoDB servers for tests and manual inspection",
    no_args_is_help=True,
)
console = Console()
logger = get_logger(__name__)


def _idle() -> None:
    """Block until interrupted."""
    threading.Event().wait()


@app.callback()
def main(
    verbose: int = typer.Option(
        0, "--verbose", "-v", count=True, help="Increase verbosity level"
    ),
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Framework logging level (DEBUG, INFO, WARNING, ERROR)"
    ),
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c", help="YAML configuration file"
    ),
    log_file: Optional[Path] = typer.Option(
        None, "--log-file", help="Write structured JSON logs to this file"
    ),
) -> None:
    """mongotest: throwaway MongoDB servers."""
    if verbose > 0 and log_level is not None:
        console.print("[red]Error: Cannot specify both --verbose and --log-level[/red]")
        raise typer.Exit(1)

    if log_level is None:
        log_level = "DEBUG" if verbose >= 2 else "INFO" if verbose == 1 else "WARNING"

    overrides = {"log_level": log_level}
    if log_file is not None:
        overrides["log_file"] = log_file
    current = load_config(config_file=config_file, **overrides)
    configure_logging(
        level=log_level,
        log_file=current.log_file,
        enable_json=current.log_file is not None,
        enable_console=True,
    )


@app.command()
def replset(
    members: Optional[int] = typer.Option(
        None, "--members", "-n", min=1, help="Number of members (default from config)"
    ),
    name: Optional[str] = typer.Option(None, "--name", help="Replica set name"),
) -> None:
    """Start a replica set, print its member addresses and wait for Ctrl-C."""
    try:
        if members is None:
            members = get_config().replica_set.members
        replica_set = ReplicaSet.create(members, LoggingReporter(), name=name)
    except MongotestError as e:
        console.print(f"[red]Failed to start replica set: {e}[/red]")
        raise typer.Exit(1) from e

    try:
        console.print(" ".join(replica_set.addrs()))
        _idle()
    except KeyboardInterrupt:
        console.print("Stopping replica set")
    finally:
        replica_set.stop()


@app.command()
def single(
    repl_set: bool = typer.Option(
        False, "--repl-set", help="Start in replica set mode (not initiated)"
    ),
) -> None:
    """Start one server, print its address and wait for Ctrl-C."""
    try:
        server = new_started_server(LoggingReporter(), repl_set=repl_set)
    except MongotestError as e:
        console.print(f"[red]Failed to start mongod: {e}[/red]")
        raise typer.Exit(1) from e

    try:
        console.print(server.url())
        _idle()
    except KeyboardInterrupt:
        console.print("Stopping server")
    finally:
        server.stop()


@app.command()
def version() -> None:
    """Show version information."""
    from .. import __version__

    table = Table(title="mongotest Version Information")
    table.add_column("Component", style="cyan")
    table.add_column("Version", style="green")
    table.add_row("mongotest", __version__)
    try:
        import pymongo

        table.add_row("pymongo", pymongo.version)
    except ImportError:
        table.add_row("pymongo", "[red]Not installed[/red]")
    console.print(table)


@app.command()
def config() -> None:
    """Show current configuration."""
    current = get_config()
    table = Table(title="mongotest Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("mongod Binary", current.mongod_binary)
    table.add_row("Test Commands", str(current.enable_test_commands))
    table.add_row("Verbose", str(current.verbose))
    table.add_row("Temp Directory", str(current.temp_dir or "system default"))
    table.add_row(
        "Start Attempts",
        "unbounded" if current.start_attempts is None else str(current.start_attempts),
    )
    table.add_row("Start Attempt Timeout", f"{current.timeouts.start_attempt}s")
    table.add_row("Stop Timeout", f"{current.timeouts.server_stop}s")
    table.add_row("Replica Set Name", current.replica_set.name)
    table.add_row("Replica Set Members", str(current.replica_set.members))
    table.add_row("Log Level", current.log_level)
    table.add_row("Log File", str(current.log_file or "none"))
    console.print(table)


if __name__ == "__main__":
    app()
