"""Closed-grammar intent parsing for workout voice commands."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from voicelog.core.constants import (
    DELETE_VERBS,
    EDIT_FIELDS,
    EDIT_VERBS,
    FILLER_WORDS,
    KG_PER_LB,
    LAST_WORDS,
    LB_UNITS,
    LOG_VERBS,
    MINUTE_UNITS,
    REP_WORDS,
    RPE_WORDS,
    SET_COUNT_WORDS,
    SET_WORDS,
    START_VERBS,
    TIME_UNITS,
    TIMER_WORDS,
    UNDO_VERBS,
    WEIGHT_UNITS,
    WORKOUT_NOUNS,
)
from voicelog.core.models import IntentKind, ParsedIntent
from voicelog.core.similarity import find_best_match
from voicelog.utils.numbers import Token, as_int, tokenize
from voicelog.utils.text import normalize_exercise_name

logger = logging.getLogger(__name__)

LEADING_FILLER = FILLER_WORDS | {"lets", "let", "us", "ok", "okay", "hey", "now", "can", "could", "you", "go"}
SLOT_KEYWORDS = REP_WORDS | WEIGHT_UNITS | TIME_UNITS | RPE_WORDS | SET_WORDS | SET_COUNT_WORDS | FILLER_WORDS | LAST_WORDS
MAX_WEIGHT_KG = 1000.0

REQUIRED_SLOTS = {
    IntentKind.LOG_SET: ("exerciseName", "reps"),
    IntentKind.REST_TIMER: ("seconds",),
}
EDITABLE_SLOTS = ("exerciseName", "reps", "weight", "rpe")


def _leading_words(tokens: Sequence[Token]) -> List[str]:
    words = [token.norm for token in tokens if not token.is_number and not token.malformed]
    while words and words[0] in LEADING_FILLER:
        words.pop(0)
    return words


def detect_intent(tokens: Sequence[Token]) -> IntentKind:
    """Pick the intent from keyword patterns; first matching rule wins."""
    words = _leading_words(tokens)
    if not words:
        return IntentKind.UNKNOWN

    first = words[0]
    present = set(words)
    phrase = " ".join(words)

    if first in UNDO_VERBS or phrase.startswith(("take that back", "take it back", "scratch that")):
        return IntentKind.UNDO_LAST
    if first in DELETE_VERBS and present & LAST_WORDS:
        return IntentKind.UNDO_LAST
    if first in EDIT_VERBS and (present & LAST_WORDS or present & set(EDIT_FIELDS) or "to" in present):
        return IntentKind.EDIT_LAST
    if first in START_VERBS and present & WORKOUT_NOUNS:
        return IntentKind.START_WORKOUT
    if first in TIMER_WORDS or (first in START_VERBS | SET_WORDS and present & TIMER_WORDS):
        return IntentKind.REST_TIMER
    if first in LOG_VERBS:
        return IntentKind.LOG_SET
    if present & REP_WORDS or present & WEIGHT_UNITS:
        return IntentKind.LOG_SET
    return IntentKind.UNKNOWN


def _weight_kg(value: float, unit: str) -> Optional[float]:
    weight = value * KG_PER_LB if unit in LB_UNITS else value
    if weight <= 0 or weight > MAX_WEIGHT_KG:
        return None
    return round(weight, 2)


def _rpe(value: float) -> Optional[float]:
    if 1 <= value <= 10:
        return value
    return None


def _extract_numeric_slots(tokens: Sequence[Token], kind: IntentKind, consumed: Set[int]) -> Dict[str, Any]:
    """Assign numbers to slots by neighbouring keywords, then by position."""
    slots: Dict[str, Any] = {}
    leftovers: List[int] = []
    seconds = 0.0

    for index, token in enumerate(tokens):
        if token.malformed:
            consumed.add(index)
            continue
        if not token.is_number:
            continue

        value = float(token.value or 0)
        following = tokens[index + 1].norm if index + 1 < len(tokens) else ""
        preceding = tokens[index - 1].norm if index > 0 else ""
        consumed.add(index)

        if following in REP_WORDS and not token.ordinal:
            reps = as_int(value)
            if reps is not None:
                slots["reps"] = reps
            consumed.add(index + 1)
        elif following in WEIGHT_UNITS:
            weight = _weight_kg(value, following)
            if weight is not None:
                slots["weight"] = weight
                slots["weightUnit"] = "lb" if following in LB_UNITS else "kg"
            consumed.add(index + 1)
        elif following in TIME_UNITS:
            seconds += value * 60 if following in MINUTE_UNITS else value
            consumed.add(index + 1)
        elif preceding in RPE_WORDS or following in RPE_WORDS:
            rpe = _rpe(value)
            if rpe is not None:
                slots["rpe"] = rpe
        elif following in SET_COUNT_WORDS and not token.ordinal:
            # "three sets of ten": a count of sets, never reps.
            count = as_int(value)
            if count is not None:
                slots["setCount"] = count
            consumed.add(index + 1)
        elif preceding in SET_WORDS or (token.ordinal and following in SET_WORDS):
            set_index = as_int(value)
            if set_index is not None:
                slots["setIndex"] = set_index
        elif token.ordinal:
            continue
        else:
            leftovers.append(index)

    if seconds > 0:
        slots["seconds"] = int(round(seconds))

    edit_field: Optional[str] = None
    if kind == IntentKind.EDIT_LAST:
        edit_field = next((EDIT_FIELDS[token.norm] for token in tokens if token.norm in EDIT_FIELDS), None)

    for index in leftovers:
        value = float(tokens[index].value or 0)
        if kind == IntentKind.REST_TIMER:
            if "seconds" not in slots and value > 0:
                slots["seconds"] = int(round(value))
            continue
        if kind == IntentKind.EDIT_LAST and edit_field in ("reps", "weight", "rpe") and edit_field not in slots:
            target = edit_field
        elif "reps" not in slots:
            target = "reps"
        elif "weight" not in slots:
            target = "weight"
        else:
            continue

        if target == "reps":
            reps = as_int(value)
            if reps is not None:
                slots["reps"] = reps
        elif target == "weight":
            weight = _weight_kg(value, "kg")
            if weight is not None:
                slots["weight"] = weight
                slots["weightUnit"] = "kg"
        else:
            rpe = _rpe(value)
            if rpe is not None:
                slots["rpe"] = rpe
    return slots


def _candidate_spans(tokens: Sequence[Token], excluded: Set[str], consumed: Set[int]) -> List[List[Token]]:
    spans: List[List[Token]] = []
    current: List[Token] = []
    for index, token in enumerate(tokens):
        usable = (
            index not in consumed
            and not token.is_number
            and not token.malformed
            and token.norm not in excluded
        )
        if usable and token.boundary and current:
            spans.append(current)
            current = []
        if usable:
            current.append(token)
        elif current:
            spans.append(current)
            current = []
    if current:
        spans.append(current)
    return spans


def _pick_span(spans: List[List[Token]], vocabulary: Optional[Sequence[str]], threshold: float) -> Optional[str]:
    if not spans:
        return None

    texts = [" ".join(token.text for token in span) for span in spans]
    if vocabulary:
        names = [normalize_exercise_name(name) for name in vocabulary]
        best_text: Optional[str] = None
        best_score = 0.0
        for text in texts:
            hit = find_best_match(normalize_exercise_name(text), names, threshold=threshold)
            if hit and hit.score > best_score:
                best_text, best_score = text, hit.score
        if best_text is not None:
            return best_text

    longest = max(spans, key=lambda span: (len(span), sum(len(token.text) for token in span)))
    return " ".join(token.text for token in longest)


def _command_words(kind: IntentKind) -> Set[str]:
    if kind == IntentKind.LOG_SET:
        return set(LOG_VERBS)
    if kind == IntentKind.EDIT_LAST:
        return set(EDIT_VERBS) | set(EDIT_FIELDS)
    if kind == IntentKind.START_WORKOUT:
        return set(START_VERBS) | set(WORKOUT_NOUNS) | {"lets", "let", "us"}
    return set()


def parse_intent(
    utterance: str,
    stt_confidence: float = 1.0,
    vocabulary: Optional[Iterable[str]] = None,
    vocabulary_threshold: float = 0.6,
) -> ParsedIntent:
    """Map a raw utterance to a typed intent with extracted slots.

    ``stt_confidence`` is carried through untouched; gating on it happens
    in the confirmation flow. ``vocabulary`` (known exercise names) breaks
    ties between candidate exercise-name spans.
    """
    tokens = tokenize(utterance)
    kind = detect_intent(tokens)
    slots: Dict[str, Any] = {}

    if kind != IntentKind.UNKNOWN:
        consumed: Set[int] = set()
        slots = _extract_numeric_slots(tokens, kind, consumed)

        if kind in (IntentKind.LOG_SET, IntentKind.EDIT_LAST, IntentKind.START_WORKOUT):
            excluded = SLOT_KEYWORDS | _command_words(kind)
            spans = _candidate_spans(tokens, excluded, consumed)
            vocab = list(vocabulary) if vocabulary is not None else None
            name = _pick_span(spans, vocab if kind != IntentKind.START_WORKOUT else None, vocabulary_threshold)
            if name:
                slots["title" if kind == IntentKind.START_WORKOUT else "exerciseName"] = name

    logger.debug("Parsed %r as %s %s", utterance, kind.value, slots)
    return ParsedIntent(
        kind=kind,
        slots=slots,
        raw_utterance=utterance,
        stt_confidence=float(stt_confidence),
    )


def missing_slots(intent: ParsedIntent) -> List[str]:
    """Required slots the intent lacks; non-empty means ask for clarification."""
    if intent.kind == IntentKind.EDIT_LAST:
        if any(intent.slots.get(name) is not None for name in EDITABLE_SLOTS):
            return []
        return ["change"]
    required = REQUIRED_SLOTS.get(intent.kind, ())
    return [name for name in required if intent.slots.get(name) is None]
