from __future__ import annotations

import math
from typing import Any, Dict

import pytest
import requests
from rich.console import Console

from voicelog.core.providers import (
    ConsoleSpeaker,
    NullSpeaker,
    ProviderError,
    ProviderNotFoundError,
    ProviderRegistry,
    WhisperProvider,
)


class _Response:
    def __init__(self, payload: Dict[str, Any], status_code: int = 200) -> None:
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError("failed", response=self)

    def json(self) -> Dict[str, Any]:
        return self._payload


def test_registry_hands_out_by_capability() -> None:
    registry = ProviderRegistry()
    speaker = NullSpeaker()
    registry.register("null", speaker)
    registry.register("whisper", WhisperProvider(api_key="key"))

    assert registry.tts("null") is speaker
    assert isinstance(registry.stt("whisper"), WhisperProvider)
    assert registry.names() == ["null", "whisper"]
    with pytest.raises(ProviderNotFoundError, match="speech-to-text"):
        registry.stt("null")
    with pytest.raises(ProviderNotFoundError, match="text-to-speech"):
        registry.tts("missing")


def test_registry_rejects_objects_without_capabilities() -> None:
    with pytest.raises(TypeError):
        ProviderRegistry().register("bogus", object())  # type: ignore[arg-type]


def test_whisper_requires_api_key(monkeypatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(ProviderError, match="API key required"):
        WhisperProvider().transcribe(b"RIFF")


def test_whisper_transcribes_with_confidence(monkeypatch) -> None:
    seen: Dict[str, Any] = {}

    def fake_post(url, headers, files, data, timeout):  # type: ignore[no-untyped-def]
        seen.update(url=url, headers=headers, data=data)
        return _Response(
            {
                "text": " Bench press, 5 reps ",
                "language": "english",
                "segments": [{"avg_logprob": -0.1}, {"avg_logprob": -0.3}],
            }
        )

    monkeypatch.setattr("voicelog.core.providers.requests.post", fake_post)
    transcript = WhisperProvider(api_key="key").transcribe(b"RIFF", prompt="Back squat")

    assert transcript.text == "Bench press, 5 reps"
    assert transcript.confidence == pytest.approx(math.exp(-0.2))
    assert transcript.provider == "whisper"
    assert seen["headers"] == {"Authorization": "Bearer key"}
    assert seen["data"]["language"] == "en"
    assert seen["data"]["prompt"] == "Back squat"


def test_whisper_default_confidence_without_segments(monkeypatch) -> None:
    sent: Dict[str, Any] = {}

    def fake_post(url, **kwargs):  # type: ignore[no-untyped-def]
        sent.update(kwargs["data"])
        return _Response({"text": "undo"})

    monkeypatch.setattr("voicelog.core.providers.requests.post", fake_post)
    transcript = WhisperProvider(api_key="key", language="auto").transcribe(b"RIFF")
    assert transcript.confidence == 0.95
    assert "language" not in sent


def test_whisper_http_failure_is_provider_error(monkeypatch) -> None:
    monkeypatch.setattr(
        "voicelog.core.providers.requests.post",
        lambda *args, **kwargs: _Response({}, status_code=500),
    )
    with pytest.raises(ProviderError, match="Whisper transcription failed"):
        WhisperProvider(api_key="key").transcribe(b"RIFF")


def test_console_speaker_prints_prompt() -> None:
    console = Console(record=True, width=120)
    ConsoleSpeaker(console=console).speak("Back squat, 5 reps [heavy]. Log it?")
    output = console.export_text()
    assert "voicelog:" in output
    assert "Back squat, 5 reps [heavy]. Log it?" in output
