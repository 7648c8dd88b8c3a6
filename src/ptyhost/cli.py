"""CLI entry point for ptyhost."""

from __future__ import annotations

import logging
import sys
import uuid

import typer
from rich.console import Console
from rich.table import Table

from ptyhost import __version__
from ptyhost.config import HostConfig
from ptyhost.host import TerminalHost
from ptyhost.session.wire import EventType

app = typer.Typer(
    name="ptyhost",
    help="Run terminal sessions and one-shot commands for a desktop UI host.",
    no_args_is_help=True,
)

_PASSTHROUGH = {"allow_extra_args": True, "ignore_unknown_options": True}


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


@app.command(context_settings=_PASSTHROUGH)
def run(
    command: str = typer.Argument(help="Executable to run."),
    args: list[str] | None = typer.Argument(None, help="Arguments for the command."),
    cwd: str | None = typer.Option(None, "--cwd", help="Working directory."),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
    config_file: str | None = typer.Option(
        None, "--config", help="Path to a JSON config file."
    ),
) -> None:
    """Stream a command's output line by line and exit with its code."""
    setup_logging(verbose)
    process_id = uuid.uuid4().hex[:8]

    with TerminalHost(HostConfig.load(config_file)) as host:
        events = host.wire.subscribe()
        host.run_streaming(process_id, command, args or [], cwd)
        while True:
            event = events.get()
            if event is None:
                raise typer.Exit(1)
            if event.session_id != process_id:
                continue
            if event.type is EventType.OUTPUT:
                typer.echo(event.data["chunk"], err=event.data["stream"] == "stderr")
            elif event.type is EventType.EXIT:
                code = event.data["code"]
                raise typer.Exit(code if code is not None and code >= 0 else 1)
            else:
                typer.echo(f"Error: {event.data['message']}", err=True)
                raise typer.Exit(127)


@app.command("exec", context_settings=_PASSTHROUGH)
def exec_(
    command: str = typer.Argument(help="Executable to run."),
    args: list[str] | None = typer.Argument(None, help="Arguments for the command."),
    cwd: str | None = typer.Option(None, "--cwd", help="Working directory."),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
    config_file: str | None = typer.Option(
        None, "--config", help="Path to a JSON config file."
    ),
) -> None:
    """Run a command to completion; print stdout, or stderr on failure."""
    setup_logging(verbose)
    with TerminalHost(HostConfig.load(config_file)) as host:
        result = host.run_collecting(command, args or [], cwd)
    if result.is_error:
        typer.echo(result.output, err=True, nl=False)
        raise typer.Exit(1)
    typer.echo(result.output, nl=False)


@app.command()
def envs(
    project: str = typer.Argument(".", help="Project directory to inspect."),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
    config_file: str | None = typer.Option(
        None, "--config", help="Path to a JSON config file."
    ),
) -> None:
    """List Python environments detected for a project."""
    setup_logging(verbose)
    with TerminalHost(HostConfig.load(config_file)) as host:
        found = host.detect_environments(project)

    console = Console()
    if not found:
        console.print("No environments found.")
        return
    table = Table("Kind", "Path")
    for env in found:
        table.add_row(env.kind, env.path)
    console.print(table)


@app.command()
def version() -> None:
    """Print the ptyhost version."""
    typer.echo(f"ptyhost v{__version__}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
