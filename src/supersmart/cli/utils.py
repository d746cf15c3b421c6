"""
Shared CLI utilities for supersmart commands.

Provides the console helpers, logging setup and the loading of the
run configuration used by every stage command.
"""

from __future__ import annotations

import logging
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import (
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)

from supersmart.core.context import RunContext
from supersmart.core.exceptions import SupersmartError
from supersmart.models.config import load_config
from supersmart.models.taxonomy import TaxaTable

console = Console()
err_console = Console(stderr=True)

# Options shared by every stage command
WORKDIR_OPTION = typer.Option(
    Path("."),
    "--workdir",
    "-w",
    help="Working directory for stage inputs and outputs",
    file_okay=False,
)
CONFIG_OPTION = typer.Option(
    None,
    "--config",
    "-c",
    help="YAML configuration file",
    exists=True,
    dir_okay=False,
)
VERBOSE_OPTION = typer.Option(False, "--verbose", "-v", help="Enable debug logging")
QUIET_OPTION = typer.Option(False, "--quiet", "-q", help="Suppress progress output")


@contextmanager
def spinner_progress(
    description: str,
    console: Console | None = None,
    quiet: bool = False,
) -> Generator[Progress, None, None]:
    """Spinner shown while a stage runs; suppressed in quiet mode.

    Example:
        >>> with spinner_progress("Inferring backbone...", console, quiet):
        ...     infer_backbone(...)
    """
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console if not quiet else None,
        disable=quiet,
    ) as progress:
        progress.add_task(description=description, total=None)
        yield progress


class QuietConsole:
    """Console wrapper that suppresses ``print`` in quiet mode.

    Everything else is delegated to the wrapped console.
    """

    def __init__(self, console: Console, quiet: bool = False):
        self._console = console
        self._quiet = quiet

    @property
    def console(self) -> Console:
        return self._console

    def print(self, *args: Any, **kwargs: Any) -> None:
        if not self._quiet:
            self._console.print(*args, **kwargs)

    def __getattr__(self, name: str) -> Any:
        return getattr(self._console, name)


def configure_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Route the package logger through rich.

    ``verbose`` shows debug messages, ``quiet`` only warnings and errors.
    """
    level = logging.DEBUG if verbose else logging.WARNING if quiet else logging.INFO
    logger = logging.getLogger("supersmart")
    logger.handlers.clear()
    handler = RichHandler(console=err_console, show_path=verbose, rich_tracebacks=verbose)
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    logger.addHandler(handler)
    logger.setLevel(level)


def fail(message: str) -> NoReturn:
    """Print an error and exit with status 1."""
    console.print(f"[red]Error: {message}[/red]")
    raise typer.Exit(code=1) from None


def report_error(error: SupersmartError) -> NoReturn:
    console.print(f"[red]Error: {error.message}[/red]")
    if error.suggestion:
        console.print(f"[dim]{error.suggestion}[/dim]")
    raise typer.Exit(code=1) from None


def make_context(
    workdir: Path,
    config_file: Path | None,
    *,
    verbose: bool = False,
    quiet: bool = False,
    taxa_file: Path | None = None,
    **overrides: Any,
) -> RunContext:
    """
    Set up logging and build the run context of a stage command.

    ``overrides`` are command-line values for configuration fields; None
    means not given. A taxa table is loaded when ``taxa_file`` is given.
    """
    configure_logging(verbose=verbose, quiet=quiet)
    try:
        config = load_config(config_file, **overrides)
        workdir.mkdir(parents=True, exist_ok=True)
        context = RunContext(config=config, workdir=workdir, logger=logging.getLogger("supersmart"))
        if taxa_file is not None:
            context = context.with_taxa(TaxaTable.from_tsv(context.path(taxa_file)))
    except SupersmartError as e:
        report_error(e)
    return context