"""CLI entry point for archiveloop using Typer."""

from __future__ import annotations

import asyncio
import signal
import sys
from importlib.resources import files
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.text import Text

from archiveloop import __version__
from archiveloop.config import Configuration, ConfigurationError
from archiveloop.context import DaemonContext
from archiveloop.lock import InstanceLock, get_self_path
from archiveloop.logger import configure_logging, read_log_tail
from archiveloop.models import EXIT_ALREADY_RUNNING, EXIT_CONFIG_ERROR, EXIT_OK
from archiveloop.orchestrator import LifecycleLoop

app = typer.Typer(
    name="archiveloop",
    help="Expose dashcam storage over USB and offload it whenever the archive is reachable",
    no_args_is_help=True,
)

console = Console()

ConfigOption = Annotated[
    Path | None,
    typer.Option(
        "--config",
        "-c",
        help="Path to config file (default: /root/archiveloop.yaml)",
    ),
]


def _version_callback(value: bool) -> None:
    """Print version and exit if --version flag is provided."""
    if value:
        console.print(f"archiveloop {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version_flag: Annotated[
        bool,
        typer.Option("--version", "-v", callback=_version_callback, is_eager=True, help="Show version and exit"),
    ] = False,
) -> None:
    """archiveloop device-mode lifecycle daemon."""


def _load_config(config: Path | None) -> Configuration:
    """Load configuration or exit with the configuration error status."""
    config_path = config or Configuration.get_default_config_path()
    try:
        return Configuration.from_yaml(config_path)
    except ConfigurationError as e:
        console.print("[bold red]Configuration error:[/bold red]")
        for error in e.errors:
            console.print(f"  {error.path}: {error.message}")
        sys.exit(EXIT_CONFIG_ERROR)


@app.command()
def run(config: ConfigOption = None) -> None:
    """Run the lifecycle loop until the process is terminated."""
    cfg = _load_config(config)

    lock = InstanceLock(get_self_path())
    try:
        acquired = lock.acquire()
    except OSError as e:
        console.print(f"[bold red]Cannot take the instance lock on {lock.path}:[/bold red] {e.strerror}")
        sys.exit(EXIT_CONFIG_ERROR)
    if not acquired:
        console.print(f"[yellow]archiveloop is already running[/yellow] (lock: {lock.path})")
        sys.exit(EXIT_ALREADY_RUNNING)

    configure_logging(cfg.paths.log_file, cfg.log_file_level, cfg.log_cli_level)
    try:
        sys.exit(asyncio.run(_async_run(cfg)))
    finally:
        lock.release()


async def _async_run(cfg: Configuration) -> int:
    """Run the loop, turning SIGINT/SIGTERM into a clean cancellation."""
    loop = asyncio.get_running_loop()
    main_task = asyncio.create_task(LifecycleLoop(DaemonContext.create(cfg)).run())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, main_task.cancel)

    try:
        await main_task
    except asyncio.CancelledError:
        console.print("[yellow]archiveloop stopped[/yellow]")
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
    return EXIT_OK


@app.command()
def logs(
    lines: Annotated[int, typer.Option("--lines", "-n", min=1, help="Number of lines to show")] = 50,
    config: ConfigOption = None,
) -> None:
    """Show the end of the daemon log."""
    cfg = _load_config(config)
    log_file = cfg.paths.log_file

    if not log_file.exists():
        console.print(f"[yellow]No log file yet:[/yellow] {log_file}")
        raise typer.Exit(1)

    console.print(f"\n[bold]Log file:[/bold] {log_file}\n")
    for line in read_log_tail(log_file, lines):
        text = Text(line)
        if "[error" in line or "[critical" in line:
            text.stylize("red")
        elif "[warning" in line:
            text.stylize("yellow")
        console.print(text)


@app.command()
def init(
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Overwrite existing configuration file"),
    ] = False,
    config: ConfigOption = None,
) -> None:
    """Write the default configuration file.

    Use --force to overwrite an existing configuration.
    """
    config_path = config or Configuration.get_default_config_path()

    if config_path.exists() and not force:
        console.print(f"[yellow]Configuration file already exists:[/yellow] {config_path}")
        console.print("Use --force to overwrite")
        raise typer.Exit(1)

    config_path.parent.mkdir(parents=True, exist_ok=True)
    default_config = files("archiveloop").joinpath("default-config.yaml").read_text()
    config_path.write_text(default_config)

    console.print(f"[green]Created configuration file:[/green] {config_path}")
    console.print("[dim]Set ARCHIVE_HOST_NAME before starting the daemon.[/dim]")


if __name__ == "__main__":
    app()
