"""Templated spoken prompts and speech-friendly text normalization."""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Sequence

from voicelog.core.constants import CONFIRMATION_STYLES, SPOKEN_ABBREVIATIONS
from voicelog.core.models import MatchCandidate, SetDraft
from voicelog.utils.text import pluralize

_ORDINAL_LABELS = ["first", "second", "third", "fourth", "fifth"]


def format_number(value: Optional[float]) -> str:
    """Drop a trailing ``.0`` so prompts read naturally."""
    if value is None:
        return ""
    if float(value) == int(value):
        return str(int(value))
    return f"{value:g}"


def format_duration(seconds: int) -> str:
    """90 -> '1 minute and 30 seconds'."""
    minutes, remainder = divmod(int(seconds), 60)
    if minutes and remainder:
        return f"{minutes} {pluralize('minute', minutes)} and {remainder} {pluralize('second', remainder)}"
    if minutes:
        return f"{minutes} {pluralize('minute', minutes)}"
    return f"{remainder} {pluralize('second', remainder)}"


def speakable(text: str) -> str:
    """Expand abbreviations a speech engine would read letter by letter."""
    for abbreviation, expansion in SPOKEN_ABBREVIATIONS.items():
        text = re.sub(rf"(?<=\d)\s*{abbreviation}\b|\b{abbreviation}\b", f" {expansion}", text)
    return re.sub(r"\s{2,}", " ", text).strip()


def describe_set(draft: SetDraft) -> str:
    parts = [draft.exercise_name]
    if draft.set_index:
        parts.append(f"set {draft.set_index}")
    reps = f"{draft.reps} {pluralize('rep', draft.reps)}"
    if draft.weight_kg is not None:
        reps += f" at {format_number(draft.weight_kg)} kg"
    parts.append(reps)
    if draft.rpe is not None:
        parts.append(f"RPE {format_number(draft.rpe)}")
    return ", ".join(parts)


class PromptBuilder:
    """Builds the sentences the pipeline speaks, in one of three styles."""

    def __init__(self, style: str = "concise") -> None:
        if style not in CONFIRMATION_STYLES:
            raise ValueError(f"Unknown confirmation style: {style}")
        self.style = style

    def confirm_set(self, draft: SetDraft) -> str:
        if self.style == "minimal":
            return f"{describe_set(draft)}?"
        if self.style == "detailed":
            return f"I heard {describe_set(draft)}. Should I log it? Say yes or no."
        return f"{describe_set(draft)}. Log it?"

    def set_logged(self, draft: SetDraft) -> str:
        if self.style == "minimal":
            return "Logged."
        if self.style == "detailed":
            return f"Logged {describe_set(draft)}."
        return f"Logged {draft.reps} {pluralize('rep', draft.reps)} of {draft.exercise_name}."

    def disambiguate(self, candidates: Sequence[MatchCandidate]) -> str:
        names = [candidate.name for candidate in candidates]
        if len(names) == 1:
            return f"Did you mean {names[0]}?"
        options = ", ".join(f"{index}: {name}" for index, name in enumerate(names, start=1))
        if self.style == "minimal":
            return f"Which one? {options}."
        return f"Which exercise did you mean? {options}."

    def disambiguation_retry(self, candidates: Sequence[MatchCandidate]) -> str:
        labels = [_ORDINAL_LABELS[index] for index in range(min(len(candidates), len(_ORDINAL_LABELS)))]
        return f"Sorry, say the name or {', '.join(labels)}."

    def exercise_not_found(self, spoken_name: Optional[str]) -> str:
        if spoken_name and self.style != "minimal":
            return f"Sorry, I didn't catch that exercise: {spoken_name}."
        return "Sorry, I didn't catch that exercise."

    def not_understood(self) -> str:
        if self.style == "detailed":
            return "Sorry, I didn't understand that command. Try something like 'bench press, 8 reps at 60 kilos'."
        return "Sorry, command not understood."

    def clarify(self, missing: Sequence[str]) -> str:
        labels = {
            "exerciseName": "the exercise",
            "reps": "how many reps",
            "seconds": "how long to rest",
            "change": "what to change",
            "workout": "which workout; start a workout first",
        }
        wanted = [labels.get(name, name) for name in missing]
        return f"I didn't catch {' and '.join(wanted)}."

    def confirm_undo(self, draft: Optional[SetDraft]) -> str:
        if draft is None or self.style == "minimal":
            return "Remove your last set?"
        return f"Remove your last set, {describe_set(draft)}?"

    def undone(self) -> str:
        if self.style == "minimal":
            return "Undone."
        if self.style == "detailed":
            return "Your last set has been removed."
        return "Last set removed."

    def nothing_to_undo(self) -> str:
        return "There's nothing to undo yet."

    def nothing_to_edit(self) -> str:
        return "There's no set to change yet."

    def confirm_edit(self, changes: Dict[str, Any]) -> str:
        return f"Change your last set to {self._describe_changes(changes)}?"

    def edited(self, changes: Dict[str, Any]) -> str:
        if self.style == "minimal":
            return "Updated."
        return f"Updated {self._describe_changes(changes)}."

    @staticmethod
    def _describe_changes(changes: Dict[str, Any]) -> str:
        parts: List[str] = []
        if "exerciseName" in changes:
            parts.append(str(changes["exerciseName"]))
        if "reps" in changes:
            parts.append(f"{changes['reps']} {pluralize('rep', changes['reps'])}")
        if "weight_kg" in changes:
            parts.append(f"{format_number(changes['weight_kg'])} kg")
        if "rpe" in changes:
            parts.append(f"RPE {format_number(changes['rpe'])}")
        return ", ".join(parts)

    def cancelled(self) -> str:
        return "Okay, cancelled. Nothing was logged."

    def timed_out(self) -> str:
        return "No answer, so I didn't log that."

    def answer_yes_or_no(self) -> str:
        return "Please say yes or no."

    def rejected(self, reason: str) -> str:
        return f"I couldn't save that: {reason}."

    def saved_offline(self) -> str:
        return "Saved offline; it will sync when you're back online."

    def workout_started(self, title: Optional[str]) -> str:
        if self.style == "minimal":
            return "Started."
        if self.style == "detailed":
            name = f"your {title} workout" if title else "your workout"
            return f"Started {name}. Ready to log your first set."
        return f"Started {title} workout." if title else "Workout started."

    def workout_failed(self) -> str:
        return "I couldn't start a workout right now."

    def rest_timer(self, seconds: int) -> str:
        return f"Rest timer started for {format_duration(seconds)}."

    def rest_over(self) -> str:
        return "Rest is over. Time for your next set."

    def session_cancelled(self) -> str:
        return "Session ended. Nothing pending was logged."
