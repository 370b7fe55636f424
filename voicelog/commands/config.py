"""Configuration commands."""

from __future__ import annotations

import typer

from voicelog.commands.common import get_state, print_json_payload
from voicelog.core.config import DEFAULT_CONFIG, _dict_to_toml, save_config

app = typer.Typer(help="Inspect and initialize configuration")


@app.command("show")
def show_command(ctx: typer.Context) -> None:
    """Print the merged configuration."""
    state = get_state(ctx)
    if state.json_output:
        print_json_payload(state, state.config)
        return
    if not state.plain_output:
        state.console.print(f"[dim]# {state.config_path}[/dim]")
    typer.echo(_dict_to_toml(state.config).strip())


@app.command("init")
def init_command(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", help="Overwrite an existing config file"),
) -> None:
    """Write the default configuration to the config path."""
    state = get_state(ctx)
    if state.config_path.exists() and not force:
        typer.echo(f"Config file already exists: {state.config_path} (use --force to overwrite)")
        raise typer.Exit(code=1)

    path = save_config(DEFAULT_CONFIG, state.config_path)
    if state.json_output:
        print_json_payload(state, {"status": "success", "path": str(path)})
        return
    typer.echo(f"Wrote {path}")
