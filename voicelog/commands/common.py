"""Shared command helpers: state access, output and collaborator wiring."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import typer

from voicelog.core.api import VoiceLogAPI
from voicelog.core.config import resolve_api_token, resolve_library_file
from voicelog.core.connectivity import ManualConnectivity, build_probe
from voicelog.core.gateway import LibraryProvider, PersistenceGateway
from voicelog.core.local import FileLibrary, InMemoryGateway, LibraryFileError
from voicelog.core.pipeline import PipelineSettings, VoicePipeline
from voicelog.core.providers import ConsoleSpeaker, NullSpeaker, ProviderRegistry, WhisperProvider
from voicelog.core.scheduler import Scheduler
from voicelog.core.session import SessionManager
from voicelog.core.state import CLIState
from voicelog.core.sync_queue import SyncQueue


def get_state(ctx: typer.Context) -> CLIState:
    """Extract validated CLI state from Typer context."""
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=2)
    return state


def print_json_payload(state: CLIState, payload: Any) -> None:
    """Print JSON payload with plain-mode fallback for piping."""
    if state.plain_output:
        typer.echo(json.dumps(payload, separators=(",", ":")))
        return
    state.console.print_json(data=payload)


def build_api(state: CLIState) -> VoiceLogAPI:
    """Create the REST gateway; exits when no token is configured."""
    token = resolve_api_token(state.config)
    api_cfg = state.config.get("api", {})
    if not token:
        typer.echo(f"Missing API token: set {api_cfg.get('token_env', 'VOICELOG_API_TOKEN')} or use --local.")
        raise typer.Exit(code=1)
    return VoiceLogAPI(
        token=token,
        base_url=str(api_cfg.get("base_url")),
        rate_limit_delay=float(api_cfg.get("rate_limit_delay", 0.0)),
        max_retries=int(api_cfg.get("max_retries", 3)),
        timeout_seconds=int(api_cfg.get("timeout_seconds", 10)),
    )


def load_file_library(path: Path) -> FileLibrary:
    try:
        return FileLibrary.from_path(path)
    except LibraryFileError as exc:
        typer.echo(f"Library error: {exc}")
        raise typer.Exit(code=1)


def build_collaborators(
    state: CLIState,
    library_file: Optional[Path] = None,
    local: bool = False,
) -> Tuple[PersistenceGateway, LibraryProvider]:
    """Pick the gateway and library: in-memory/file-backed locally, REST otherwise.

    An explicit ``--library`` file always wins over the remote library.
    """
    if local:
        path = resolve_library_file(state.config, explicit=library_file)
        if path is None or not path.exists():
            typer.echo("Local mode needs an exercise library file (--library or library.file).")
            raise typer.Exit(code=1)
        library = load_file_library(path)
        return InMemoryGateway({exercise.id for exercise in library.get_active_exercises("")}), library

    api = build_api(state)
    if library_file is not None:
        return api, load_file_library(library_file.expanduser().resolve())
    return api, api


def build_providers(state: CLIState) -> ProviderRegistry:
    whisper_cfg: Dict[str, Any] = state.config.get("providers", {}).get("whisper", {})
    registry = ProviderRegistry()
    registry.register(
        "whisper",
        WhisperProvider(
            model=str(whisper_cfg.get("model", "whisper-1")),
            language=whisper_cfg.get("language"),
            endpoint=str(whisper_cfg.get("endpoint")),
            timeout_seconds=float(whisper_cfg.get("timeout_seconds", 30)),
            api_key_env=str(whisper_cfg.get("api_key_env", "OPENAI_API_KEY")),
        ),
    )
    registry.register("console", ConsoleSpeaker(state.console))
    registry.register("null", NullSpeaker())
    return registry


def build_pipeline(
    state: CLIState,
    gateway: PersistenceGateway,
    library: LibraryProvider,
    scheduler: Scheduler,
    online: bool = True,
) -> Tuple[VoicePipeline, ManualConnectivity]:
    """Wire the session manager and confirmation pipeline from config."""
    config = state.config
    providers_cfg = config.get("providers", {})
    connectivity_cfg = config.get("connectivity", {})
    sync_cfg = config.get("sync", {})

    probe = build_probe(
        connectivity_cfg.get("health_url"),
        timeout_seconds=float(connectivity_cfg.get("timeout_seconds", 3)),
        online=online,
    )
    # JSON output must stay machine readable, so prompts are not printed.
    tts = "null" if state.json_output else providers_cfg.get("tts")
    manager = SessionManager(
        gateway=gateway,
        connectivity=probe,
        providers=build_providers(state),
        session_timeout=float(config.get("session", {}).get("timeout_seconds", 300)),
        stt_provider=providers_cfg.get("stt"),
        stt_fallback=providers_cfg.get("stt_fallback"),
        tts_provider=tts,
        tts_fallback=providers_cfg.get("tts_fallback"),
        queue=SyncQueue(int(sync_cfg.get("max_queue_size", 1000))),
        max_drain_passes=int(sync_cfg.get("max_drain_passes", 3)),
        retry_backoff=float(sync_cfg.get("retry_backoff_seconds", 2.0)),
        max_retry_backoff=float(sync_cfg.get("max_retry_backoff_seconds", 60.0)),
    )
    pipeline = VoicePipeline(manager, library, scheduler, PipelineSettings.from_config(config))
    return pipeline, probe
