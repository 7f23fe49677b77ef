"""Typer CLI entrypoint for the contract test harness."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from .config import load_config
from .errors import ConfigurationError
from .logging_utils import configure_logging
from .orchestrator import AggregateResult, Orchestrator, exit_status

app = typer.Typer(help="Run smart-contract test files in isolated worker processes")
console = Console()

_MAX_EXIT_CODE = 255


def _report(aggregate: AggregateResult) -> None:
    for result in aggregate.crashed:
        console.print(f"[yellow]   • {result.file} crashed (exit code {result.exit_code})[/]")
    failures = exit_status(aggregate)
    if failures:
        console.print(f"[bold red] > Total number of failures: {failures}[/]")
    else:
        console.print("[bold green] > All tests passed[/]")


@app.callback()
def main_callback() -> None:
    """Contract test harness."""


@app.command()
def run(
    path: Optional[Path] = typer.Argument(None, help="Test file or directory (default: test/)"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to harness.yaml"),
    log_file: Optional[Path] = typer.Option(None, help="Append JSON log lines to this file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Compile once, then run every test file against fresh deployments."""

    try:
        config = load_config(config_path)
    except ConfigurationError as exc:
        console.print(f"[red]{exc}[/]")
        raise typer.Exit(code=1)

    updates = {}
    if log_file is not None:
        updates["log_file"] = str(log_file.resolve())
    if verbose:
        updates["log_level"] = "DEBUG"
    if updates:
        config = config.model_copy(update=updates)
    configure_logging(config.log_file, level=config.log_level)

    orchestrator = Orchestrator(config)
    try:
        aggregate = orchestrator.execute(path)
    except FileNotFoundError as exc:
        console.print(f"[red]{exc}[/]")
        raise typer.Exit(code=1)

    if aggregate is None:
        console.print("[red]Error while building contracts[/]")
        raise typer.Exit(code=1)
    _report(aggregate)
    raise typer.Exit(code=min(exit_status(aggregate), _MAX_EXIT_CODE))


def main() -> None:
    logging.captureWarnings(True)
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
