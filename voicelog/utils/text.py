"""Text helpers."""

from __future__ import annotations

import re
from typing import Dict, Optional

from voicelog.core.constants import EXERCISE_ABBREVIATIONS


def normalize_text(value: str) -> str:
    """Lowercase, replace punctuation with spaces and collapse whitespace."""
    cleaned = re.sub(r"[^a-z0-9\s]", " ", value.lower())
    return re.sub(r"\s+", " ", cleaned).strip()


def expand_abbreviations(value: str, abbreviations: Optional[Dict[str, str]] = None) -> str:
    """Expand gym shorthand word by word ("db press" -> "dumbbell press")."""
    table = EXERCISE_ABBREVIATIONS if abbreviations is None else abbreviations
    return " ".join(table.get(word, word) for word in value.split())


def normalize_exercise_name(value: str) -> str:
    """Canonical form used when comparing spoken and stored exercise names."""
    return expand_abbreviations(normalize_text(value))


def pluralize(word: str, count: float) -> str:
    """Return ``word`` with a naive plural suffix unless count is exactly one."""
    if count == 1:
        return word
    if word.endswith("s"):
        return word
    return f"{word}s"
