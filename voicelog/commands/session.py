"""Interactive voice session over typed utterances."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import typer

from voicelog.commands.common import build_collaborators, build_pipeline, get_state, print_json_payload
from voicelog.core.connectivity import HttpConnectivityProbe, ManualConnectivity
from voicelog.core.models import SessionType
from voicelog.core.pipeline import PipelineResponse, VoicePipeline
from voicelog.core.scheduler import PollingScheduler
from voicelog.core.state import CLIState

CONFIDENCE_SUFFIX = re.compile(r"^(?P<text>.*?)\s*@\s*(?P<confidence>(?:0|1)(?:\.\d+)?|\.\d+)\s*$")
META_COMMANDS = (":online", ":offline", ":status", ":quit")


def split_confidence(line: str) -> Tuple[str, float]:
    """'five reps squat @0.55' -> ('five reps squat', 0.55)."""
    match = CONFIDENCE_SUFFIX.match(line)
    if not match:
        return line.strip(), 1.0
    return match.group("text").strip(), min(1.0, float(match.group("confidence")))


def _status_payload(pipeline: VoicePipeline, probe: ManualConnectivity) -> Dict[str, Any]:
    session = pipeline.sessions.get_current_session()
    return {
        "state": pipeline.state.value,
        "online": probe.is_online(),
        "queued": len(pipeline.sessions.queue),
        "sessionId": session.id if session else None,
        "workoutId": session.metadata.get("workoutId") if session else None,
        "events": len(session.events) if session else 0,
        "committedSets": len(pipeline.committed_sets()),
    }


def _emit(state: CLIState, response: PipelineResponse) -> None:
    if state.json_output:
        print_json_payload(state, response.to_dict())
    elif state.plain_output:
        typer.echo(f"{response.outcome.value}\t{response.state.value}")


def _run_meta(command: str, state: CLIState, pipeline: VoicePipeline, probe: ManualConnectivity) -> None:
    if command == ":online":
        probe.set_online(True)
    elif command == ":offline":
        probe.set_online(False)
    elif command == ":status":
        payload = _status_payload(pipeline, probe)
        if state.json_output:
            print_json_payload(state, payload)
        else:
            for key, value in payload.items():
                typer.echo(f"{key}\t{value}")


def session_command(
    ctx: typer.Context,
    library: Optional[Path] = typer.Option(None, "--library", help="Exercise library file (YAML or JSON)"),
    local: bool = typer.Option(False, "--local", help="Keep sessions and sets in memory instead of the API"),
    offline: bool = typer.Option(False, "--offline", help="Start offline; events queue until :online"),
    session_type: Optional[str] = typer.Option(None, "--type", help="Session type: workout|free"),
    workout_id: Optional[str] = typer.Option(None, "--workout-id", help="Log sets into an existing workout"),
) -> None:
    """Run a voice session reading one utterance per line from stdin.

    A trailing ``@0.55`` sets the recognition confidence for that line.
    Meta-commands: :online, :offline, :status, :quit.
    """
    state = get_state(ctx)
    kind = session_type or state.config.get("session", {}).get("default_type", "workout")
    if kind not in {item.value for item in SessionType}:
        raise typer.BadParameter("--type must be one of: workout, free")

    gateway, exercise_library = build_collaborators(state, library_file=library, local=local)
    scheduler = PollingScheduler()
    pipeline, probe = build_pipeline(state, gateway, exercise_library, scheduler, online=not offline)
    session = pipeline.start(SessionType(kind), workout_id=workout_id)

    if not state.json_output and not state.plain_output:
        state.console.print(f"Voice session [bold]{session.id}[/bold] started. Type utterances, :quit to finish.")

    responses: List[PipelineResponse] = []
    stream = typer.get_text_stream("stdin")
    for raw in stream:
        scheduler.poll()
        if isinstance(probe, HttpConnectivityProbe) and not offline:
            probe.poll()
        pipeline.sessions.retry_pending()

        line = raw.strip()
        if not line:
            continue
        if line in META_COMMANDS:
            if line == ":quit":
                break
            _run_meta(line, state, pipeline, probe)
            continue

        text, confidence = split_confidence(line)
        response = pipeline.handle_utterance(text, confidence)
        responses.append(response)
        _emit(state, response)

    scheduler.poll()
    summary = _status_payload(pipeline, probe)
    ended = pipeline.shutdown()
    summary["state"] = pipeline.state.value
    summary["queued"] = len(pipeline.sessions.queue)
    summary["utterances"] = len(responses)
    summary["sessionId"] = ended.id if ended else session.id

    if state.json_output:
        print_json_payload(state, summary)
        return
    if state.plain_output:
        for key, value in summary.items():
            typer.echo(f"{key}\t{value}")
        return
    state.console.print(
        f"Session ended: {summary['committedSets']} sets logged, {summary['queued']} events waiting to sync."
    )
