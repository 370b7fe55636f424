"""Configuration loading and persistence."""

from __future__ import annotations

import copy
import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

try:  # Python 3.11+
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # Python 3.9-3.10
    import tomli as tomllib  # type: ignore[no-redef]

from voicelog.core.constants import API_BASE


class ConfigError(RuntimeError):
    """Raised when config file parsing fails."""


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def expand_path(path_str: str) -> Path:
    """Expand user/env vars and return absolute path."""
    return Path(os.path.expandvars(path_str)).expanduser().resolve()


def default_data_dir() -> Path:
    """Resolve XDG-style data directory with env override."""
    raw = os.getenv("VOICELOG_DATA_DIR", "~/.local/share/voicelog")
    return expand_path(raw)


def default_config_path() -> Path:
    """Get default config file path."""
    raw = os.getenv("VOICELOG_CONFIG_FILE", "~/.config/voicelog/config.toml")
    return expand_path(raw)


def _default_config() -> Dict[str, Any]:
    data_dir = default_data_dir()
    return {
        "api": {
            "base_url": API_BASE,
            "token_env": "VOICELOG_API_TOKEN",
            "rate_limit_delay": 0.0,
            "max_retries": 3,
            "timeout_seconds": 10,
        },
        "voice": {
            "confidence_threshold": 0.7,
            "response_timeout_seconds": 8.0,
            "accept_on_timeout": False,
            "implicit_continuation": False,
            "confirmation_style": "concise",
            "disambiguation_choices": 3,
            "max_disambiguation_attempts": 2,
            "locale": "en-US",
        },
        "matching": {
            "threshold": 0.6,
            "accept_score": 0.8,
            "tie_band": 0.2,
            "max_candidates": 5,
            "require_equipment": False,
        },
        "session": {
            "timeout_seconds": 300,
            "default_type": "workout",
        },
        "sync": {
            "max_queue_size": 1000,
            "max_drain_passes": 3,
            "retry_backoff_seconds": 2.0,
            "max_retry_backoff_seconds": 60.0,
        },
        "providers": {
            "stt": "whisper",
            "stt_fallback": None,
            "tts": "console",
            "tts_fallback": None,
            "whisper": {
                "model": "whisper-1",
                "endpoint": "https://api.openai.com/v1/audio/transcriptions",
                "api_key_env": "OPENAI_API_KEY",
                "language": "en",
                "timeout_seconds": 30,
            },
        },
        "library": {
            "file": str(data_dir / "library.yaml"),
            "user_id": "",
        },
        "connectivity": {
            "health_url": None,
            "timeout_seconds": 3,
        },
    }


DEFAULT_CONFIG: Dict[str, Any] = _default_config()


def _read_config(path: Path) -> Dict[str, Any]:
    suffix = path.suffix.lower()
    text = path.read_text()
    try:
        if suffix in {".toml", ""}:
            loaded = tomllib.loads(text)
        else:
            loaded = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON in config file {path}: {exc}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in config file {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ConfigError(f"Config file {path} must contain an object/table at the root")
    return loaded


def load_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Load configuration from disk, merged with defaults."""
    cfg_path = path or default_config_path()
    cfg = _default_config()
    if cfg_path.exists():
        cfg = _deep_merge(cfg, _read_config(cfg_path))
    return cfg


def _toml_literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    if isinstance(value, list):
        items = ", ".join(_toml_literal(item) for item in value if item is not None)
        return f"[{items}]"
    raise TypeError(f"Unsupported TOML value type: {type(value)!r}")


def _dict_to_toml(data: Dict[str, Any], prefix: Optional[str] = None) -> str:
    lines = []
    plain_keys = []
    nested_keys = []

    for key, value in data.items():
        if value is None:
            continue
        if isinstance(value, dict):
            nested_keys.append((key, value))
        else:
            plain_keys.append((key, value))

    if prefix is not None:
        lines.append(f"[{prefix}]")

    for key, value in plain_keys:
        lines.append(f"{key} = {_toml_literal(value)}")

    if plain_keys and nested_keys:
        lines.append("")

    for index, (key, value) in enumerate(nested_keys):
        table_name = key if prefix is None else f"{prefix}.{key}"
        lines.append(_dict_to_toml(value, prefix=table_name))
        if index != len(nested_keys) - 1:
            lines.append("")

    return "\n".join(lines)


def save_config(config: Dict[str, Any], path: Optional[Path] = None) -> Path:
    """Save configuration to disk as TOML (default) or JSON."""
    cfg_path = path or default_config_path()
    cfg_path.parent.mkdir(parents=True, exist_ok=True)

    if cfg_path.suffix.lower() == ".json":
        cfg_path.write_text(json.dumps(config, indent=2) + "\n")
        return cfg_path

    cfg_path.write_text(_dict_to_toml(config).strip() + "\n")
    return cfg_path


def resolve_api_token(config: Dict[str, Any]) -> Optional[str]:
    """Read the API bearer token from the env var named in config."""
    env_name = config.get("api", {}).get("token_env") or "VOICELOG_API_TOKEN"
    return os.getenv(env_name) or None


def resolve_library_file(config: Dict[str, Any], explicit: Optional[Path] = None) -> Optional[Path]:
    """Resolve the exercise library file with CLI override first."""
    if explicit is not None:
        return explicit.expanduser().resolve()
    raw = os.getenv("VOICELOG_LIBRARY_FILE") or config.get("library", {}).get("file")
    if not raw:
        return None
    return expand_path(raw)
