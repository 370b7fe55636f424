"""Utterance parsing and exercise matching commands."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.table import Table

from voicelog.commands.common import get_state, load_file_library, print_json_payload
from voicelog.core.config import resolve_library_file
from voicelog.core.intents import missing_slots, parse_intent
from voicelog.core.matcher import match_exercise
from voicelog.core.models import MatchStatus


def parse_command(
    ctx: typer.Context,
    utterance: str = typer.Argument(..., help="Utterance text to parse"),
    confidence: float = typer.Option(1.0, "--confidence", min=0.0, max=1.0, help="Speech recognition confidence"),
    library: Optional[Path] = typer.Option(None, "--library", help="Exercise library file used as vocabulary"),
) -> None:
    """Parse an utterance into an intent with slots."""
    state = get_state(ctx)
    vocabulary = None
    if library is not None:
        vocabulary = [exercise.name for exercise in load_file_library(library).get_active_exercises("")]

    threshold = float(state.config.get("matching", {}).get("threshold", 0.6))
    intent = parse_intent(utterance, stt_confidence=confidence, vocabulary=vocabulary, vocabulary_threshold=threshold)
    payload = intent.to_dict()
    payload["missingSlots"] = missing_slots(intent)

    if state.json_output:
        print_json_payload(state, payload)
        return

    if state.plain_output:
        typer.echo(f"kind\t{payload['kind']}")
        for name, value in payload["slots"].items():
            typer.echo(f"{name}\t{value}")
        if payload["missingSlots"]:
            typer.echo(f"missing\t{','.join(payload['missingSlots'])}")
        return

    table = Table(title=f"Intent: {payload['kind']}")
    table.add_column("Slot")
    table.add_column("Value")
    for name, value in payload["slots"].items():
        table.add_row(name, str(value))
    state.console.print(table)
    if payload["missingSlots"]:
        state.console.print(f"[yellow]Missing:[/yellow] {', '.join(payload['missingSlots'])}")


def match_command(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Spoken exercise name"),
    library: Optional[Path] = typer.Option(None, "--library", help="Exercise library file (YAML or JSON)"),
) -> None:
    """Resolve a spoken exercise name against the exercise library."""
    state = get_state(ctx)
    path = resolve_library_file(state.config, explicit=library)
    if path is None or not path.exists():
        typer.echo("An exercise library file is required (--library or library.file).")
        raise typer.Exit(code=1)

    matching = state.config.get("matching", {})
    result = match_exercise(
        name,
        load_file_library(path).get_active_exercises(""),
        threshold=float(matching.get("threshold", 0.6)),
        accept_score=float(matching.get("accept_score", 0.8)),
        tie_band=float(matching.get("tie_band", 0.2)),
        max_candidates=int(matching.get("max_candidates", 5)),
    )
    payload = result.to_dict()

    if state.json_output:
        print_json_payload(state, payload)
        return

    if state.plain_output:
        typer.echo(f"status\t{payload['status']}")
        if result.status == MatchStatus.MATCHED:
            typer.echo(f"exercise\t{result.exercise_name}\t{result.exercise_id}\t{payload['score']}")
        for candidate in payload.get("candidates", []):
            typer.echo(f"candidate\t{candidate['name']}\t{candidate['exerciseId']}\t{candidate['score']}")
        return

    if result.status == MatchStatus.MATCHED:
        state.console.print(f"Matched [bold]{result.exercise_name}[/bold] (score {payload['score']})")
    elif result.status == MatchStatus.AMBIGUOUS:
        table = Table(title="Ambiguous match")
        table.add_column("#", justify="right")
        table.add_column("Exercise")
        table.add_column("Score", justify="right")
        for index, candidate in enumerate(payload["candidates"], start=1):
            table.add_row(str(index), candidate["name"], f"{candidate['score']:.3f}")
        state.console.print(table)
    else:
        state.console.print("[yellow]No matching exercise.[/yellow]")
