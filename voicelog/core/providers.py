"""Speech-to-text and text-to-speech providers.

A provider declares its capabilities by subclassing ``SpeechToTextProvider``,
``TextToSpeechProvider`` or both; the registry only hands out a provider for
a capability it actually implements.
"""

from __future__ import annotations

import abc
import math
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar, Union

import requests
from rich.console import Console
from rich.markup import escape

WHISPER_ENDPOINT = "https://api.openai.com/v1/audio/transcriptions"
WHISPER_DEFAULT_CONFIDENCE = 0.95


class ProviderError(RuntimeError):
    """Raised when a speech provider fails."""


class ProviderNotFoundError(ProviderError):
    """Raised when no provider with the requested capability is registered."""


@dataclass(frozen=True)
class Transcript:
    text: str
    confidence: float
    provider: str = ""
    language: Optional[str] = None
    alternatives: Tuple[str, ...] = field(default_factory=tuple)


class SpeechToTextProvider(abc.ABC):
    @abc.abstractmethod
    def transcribe(self, audio: bytes, **options: Any) -> Transcript:
        """Turn audio bytes into text with a confidence in [0, 1]."""


class TextToSpeechProvider(abc.ABC):
    @abc.abstractmethod
    def speak(self, text: str, **options: Any) -> None:
        """Render ``text`` as speech."""


Provider = Union[SpeechToTextProvider, TextToSpeechProvider]
P = TypeVar("P", SpeechToTextProvider, TextToSpeechProvider)


class ProviderRegistry:
    """Named providers, looked up by capability."""

    def __init__(self) -> None:
        self._providers: Dict[str, Provider] = {}

    def register(self, name: str, provider: Provider) -> None:
        if not isinstance(provider, (SpeechToTextProvider, TextToSpeechProvider)):
            raise TypeError(f"{type(provider).__name__} implements neither speech-to-text nor text-to-speech")
        self._providers[name] = provider

    def _lookup(self, name: str, capability: Type[P]) -> P:
        provider = self._providers.get(name)
        if not isinstance(provider, capability):
            label = "speech-to-text" if capability is SpeechToTextProvider else "text-to-speech"
            raise ProviderNotFoundError(f"No {label} provider registered as {name!r}")
        return provider

    def stt(self, name: str) -> SpeechToTextProvider:
        return self._lookup(name, SpeechToTextProvider)

    def tts(self, name: str) -> TextToSpeechProvider:
        return self._lookup(name, TextToSpeechProvider)

    def names(self, capability: Optional[Type[Provider]] = None) -> List[str]:
        if capability is None:
            return list(self._providers)
        return [name for name, provider in self._providers.items() if isinstance(provider, capability)]


class WhisperProvider(SpeechToTextProvider):
    """OpenAI Whisper transcription over HTTP."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "whisper-1",
        language: Optional[str] = "en",
        endpoint: str = WHISPER_ENDPOINT,
        timeout_seconds: float = 30.0,
        api_key_env: str = "OPENAI_API_KEY",
    ) -> None:
        self.api_key = api_key or os.getenv(api_key_env)
        self.model = model
        self.language = language
        self.endpoint = endpoint
        self.timeout_seconds = timeout_seconds

    @staticmethod
    def _confidence(result: Dict[str, Any]) -> float:
        segments = result.get("segments") or []
        logprobs = [segment["avg_logprob"] for segment in segments if segment.get("avg_logprob") is not None]
        if not logprobs:
            return WHISPER_DEFAULT_CONFIDENCE
        mean = sum(logprobs) / len(logprobs)
        return max(0.0, min(1.0, math.exp(mean)))

    def transcribe(self, audio: bytes, **options: Any) -> Transcript:
        if not self.api_key:
            raise ProviderError("Whisper provider not configured: API key required")

        data = {
            "model": options.get("model", self.model),
            "response_format": "verbose_json",
            "temperature": "0",
        }
        language = options.get("language", self.language)
        if language and language != "auto":
            data["language"] = language
        if options.get("prompt"):
            data["prompt"] = options["prompt"]

        try:
            response = requests.post(
                self.endpoint,
                headers={"Authorization": f"Bearer {self.api_key}"},
                files={"file": (options.get("filename", "utterance.wav"), audio, "audio/wav")},
                data=data,
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
            result = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise ProviderError(f"Whisper transcription failed: {exc}") from exc

        return Transcript(
            text=str(result.get("text", "")).strip(),
            confidence=self._confidence(result),
            provider="whisper",
            language=result.get("language") or language,
        )


class ConsoleSpeaker(TextToSpeechProvider):
    """Prints prompts instead of synthesizing audio."""

    def __init__(self, console: Optional[Console] = None, prefix: str = "voicelog") -> None:
        self.console = console or Console()
        self.prefix = prefix

    def speak(self, text: str, **options: Any) -> None:
        self.console.print(f"[bold cyan]{escape(self.prefix)}:[/bold cyan] {escape(text)}")


class NullSpeaker(TextToSpeechProvider):
    """Keeps spoken prompts in memory."""

    def __init__(self) -> None:
        self.spoken: List[str] = []

    def speak(self, text: str, **options: Any) -> None:
        self.spoken.append(text)
