"""Entry point for voicelog."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from voicelog import __version__
from voicelog.commands import config as config_commands
from voicelog.commands.parse import match_command, parse_command
from voicelog.commands.session import session_command
from voicelog.core.config import ConfigError, default_config_path, load_config
from voicelog.core.state import CLIState

app = typer.Typer(
    add_completion=False,
    help="Voice command pipeline for workout logging",
    invoke_without_command=True,
)


def configure_logging(state: CLIState) -> None:
    """Route the package logger through rich on stderr."""
    logger = logging.getLogger("voicelog")
    logger.setLevel(state.log_level)
    logger.handlers.clear()
    handler = RichHandler(
        console=Console(stderr=True, no_color=state.plain_output),
        show_time=False,
        show_path=False,
        markup=False,
    )
    handler.setLevel(state.log_level)
    logger.addHandler(handler)
    logger.propagate = False


@app.callback()
def main_callback(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", help="Output JSON where available"),
    plain_output: bool = typer.Option(
        False,
        "--plain",
        help="Output plain text (no rich formatting/tables)",
    ),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to config file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Quiet output"),
    version: bool = typer.Option(False, "--version", help="Show version and exit"),
) -> None:
    """Initialize global CLI state."""
    if version:
        typer.echo(__version__)
        raise typer.Exit(code=0)

    if json_output and plain_output:
        typer.echo("Options --json and --plain are mutually exclusive.")
        raise typer.Exit(code=2)

    cfg_path = (config or default_config_path()).expanduser().resolve()
    try:
        cfg = load_config(cfg_path)
    except ConfigError as exc:
        typer.echo(f"Config error: {exc}")
        raise typer.Exit(code=2)

    console = Console(
        quiet=quiet,
        no_color=plain_output,
        log_time=False,
        log_path=False,
    )
    ctx.obj = CLIState(
        json_output=(json_output and not plain_output),
        plain_output=plain_output,
        verbose=verbose,
        quiet=quiet,
        config_path=cfg_path,
        config=cfg,
        console=console,
    )
    configure_logging(ctx.obj)

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit(code=0)


# Top-level commands
app.command("parse")(parse_command)
app.command("match")(match_command)
app.command("session")(session_command)
app.add_typer(config_commands.app, name="config")


def main() -> None:
    """Console script entrypoint."""
    app()


if __name__ == "__main__":
    main()
