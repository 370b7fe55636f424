from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest
from typer.testing import CliRunner

from voicelog.core.connectivity import ManualConnectivity
from voicelog.core.models import Exercise, SetDraft, VoiceEvent
from voicelog.core.pipeline import PipelineSettings, VoicePipeline
from voicelog.core.providers import NullSpeaker, ProviderRegistry
from voicelog.core.scheduler import ManualScheduler
from voicelog.core.session import SessionManager


class FakeGateway:
    """Records every call; failures can be scheduled per method and call number."""

    def __init__(self) -> None:
        self.calls: List[Tuple[Any, ...]] = []
        self.appended: List[VoiceEvent] = []
        self.sets: List[SetDraft] = []
        self.updates: List[Dict[str, Any]] = []
        self._counts: Dict[str, int] = {}
        self._scheduled: Dict[str, Dict[int, Exception]] = {}
        self._always: Dict[str, Exception] = {}

    def fail(self, method: str, error: Exception, on_call: int) -> None:
        self._scheduled.setdefault(method, {})[on_call] = error

    def fail_always(self, method: str, error: Optional[Exception]) -> None:
        if error is None:
            self._always.pop(method, None)
        else:
            self._always[method] = error

    def calls_to(self, method: str) -> List[Tuple[Any, ...]]:
        return [call for call in self.calls if call[0] == method]

    def _call(self, method: str, *args: Any) -> None:
        self.calls.append((method,) + args)
        self._counts[method] = self._counts.get(method, 0) + 1
        error = self._scheduled.get(method, {}).pop(self._counts[method], None) or self._always.get(method)
        if error is not None:
            raise error

    def create_session(self, session_type: str, metadata: Dict[str, Any]) -> str:
        self._call("create_session", session_type, dict(metadata))
        return f"remote-{len(self.calls_to('create_session'))}"

    def end_session(self, remote_session_id: str) -> bool:
        self._call("end_session", remote_session_id)
        return True

    def append_event(self, remote_session_id: str, event: VoiceEvent) -> Any:
        self._call("append_event", remote_session_id, event)
        self.appended.append(event)
        return {"ok": True}

    def create_workout(self, title: Optional[str]) -> str:
        self._call("create_workout", title)
        return "workout-new"

    def commit_set(self, workout_id: str, draft: SetDraft) -> str:
        self._call("commit_set", workout_id, draft)
        self.sets.append(draft)
        return f"set-{len(self.sets)}"

    def revert_last_set(self, workout_id: str) -> bool:
        self._call("revert_last_set", workout_id)
        if not self.sets:
            return False
        self.sets.pop()
        return True

    def update_last_set(self, workout_id: str, changes: Dict[str, Any]) -> bool:
        self._call("update_last_set", workout_id, dict(changes))
        self.updates.append(dict(changes))
        return bool(self.sets)


class FakeLibrary:
    def __init__(self, exercises: List[Exercise], equipment: Optional[Set[str]] = None) -> None:
        self.exercises = exercises
        self.equipment = equipment or set()
        self.calls = 0

    def get_active_exercises(self, user_id: str) -> List[Exercise]:
        self.calls += 1
        return [exercise for exercise in self.exercises if exercise.status == "active"]

    def get_available_equipment(self, user_id: str) -> Set[str]:
        return set(self.equipment)


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def exercises() -> List[Exercise]:
    return [
        Exercise(id="ex-squat", name="Back squat", equipment_required=("barbell", "rack")),
        Exercise(id="ex-seated", name="Seated Dumbbell Press", equipment_required=("dumbbells",)),
        Exercise(id="ex-standing", name="Standing Press", equipment_required=("barbell",)),
        Exercise(id="ex-bench", name="Bench Press", equipment_required=("barbell", "bench")),
        Exercise(id="ex-deadlift", name="Deadlift", equipment_required=("barbell",)),
        Exercise(id="ex-old", name="Cable Crossover", status="archived"),
    ]


@pytest.fixture()
def library(exercises: List[Exercise]) -> FakeLibrary:
    return FakeLibrary(exercises, equipment={"barbell", "rack", "bench"})


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def scheduler() -> ManualScheduler:
    return ManualScheduler(start=1_000.0)


@pytest.fixture()
def connectivity() -> ManualConnectivity:
    return ManualConnectivity(online=True)


@pytest.fixture()
def speaker() -> NullSpeaker:
    return NullSpeaker()


@pytest.fixture()
def manager(gateway: FakeGateway, connectivity: ManualConnectivity, speaker: NullSpeaker, scheduler: ManualScheduler) -> SessionManager:
    providers = ProviderRegistry()
    providers.register("null", speaker)
    return SessionManager(
        gateway=gateway,
        connectivity=connectivity,
        providers=providers,
        tts_provider="null",
        clock=scheduler.now,
    )


@pytest.fixture()
def make_pipeline(manager: SessionManager, library: FakeLibrary, scheduler: ManualScheduler):
    def _make(workout_id: Optional[str] = "workout-1", **settings: Any) -> VoicePipeline:
        pipeline = VoicePipeline(manager, library, scheduler, PipelineSettings(**settings))
        pipeline.start(workout_id=workout_id)
        return pipeline

    return _make


@pytest.fixture()
def pipeline(make_pipeline) -> VoicePipeline:
    return make_pipeline()


@pytest.fixture()
def library_file(tmp_path: Path) -> Path:
    path = tmp_path / "library.yaml"
    path.write_text(
        """
exercises:
  - id: ex-squat
    name: Back squat
    equipmentRequired: [barbell, rack]
  - id: ex-seated
    name: Seated Dumbbell Press
  - id: ex-standing
    name: Standing Press
  - id: ex-old
    name: Cable Crossover
    status: archived
equipment:
  - id: barbell
  - id: rack
    available: true
  - id: kettlebell
    available: false
""".strip()
        + "\n"
    )
    return path


@pytest.fixture()
def write_temp_json(tmp_path: Path):
    def _write(name: str, payload: Any) -> Path:
        path = tmp_path / name
        path.write_text(json.dumps(payload, indent=2) + "\n")
        return path

    return _write
