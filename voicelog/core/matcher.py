"""Resolve spoken exercise names against the user's active library."""

from __future__ import annotations

import logging
from typing import Iterable, List

from voicelog.core.models import Exercise, MatchCandidate, MatchResult
from voicelog.core.similarity import edit_distance, score_candidate
from voicelog.utils.text import normalize_exercise_name

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.6
DEFAULT_ACCEPT_SCORE = 0.8
DEFAULT_TIE_BAND = 0.2
DEFAULT_MAX_CANDIDATES = 5


def rank_candidates(
    spoken_name: str,
    exercises: Iterable[Exercise],
    threshold: float = DEFAULT_THRESHOLD,
) -> List[MatchCandidate]:
    """Score active exercises and return those clearing ``threshold``.

    Ordered by descending score, then shorter edit distance, then name.
    """
    query = normalize_exercise_name(spoken_name)
    if not query:
        return []

    ranked: List[MatchCandidate] = []
    for exercise in exercises:
        if exercise.status != "active":
            continue
        name = normalize_exercise_name(exercise.name)
        score = score_candidate(query, name)
        if score < threshold:
            continue
        ranked.append(
            MatchCandidate(
                exercise_id=exercise.id,
                name=exercise.name,
                score=score,
                distance=edit_distance(query, name),
            )
        )

    ranked.sort(key=lambda item: (-item.score, item.distance, item.name.lower()))
    return ranked


def match_exercise(
    spoken_name: str,
    active_exercises: Iterable[Exercise],
    threshold: float = DEFAULT_THRESHOLD,
    accept_score: float = DEFAULT_ACCEPT_SCORE,
    tie_band: float = DEFAULT_TIE_BAND,
    max_candidates: int = DEFAULT_MAX_CANDIDATES,
) -> MatchResult:
    """Classify a spoken name as matched, ambiguous or unmatched."""
    ranked = rank_candidates(spoken_name, active_exercises, threshold=threshold)
    if not ranked:
        logger.debug("No exercise cleared %.2f for %r", threshold, spoken_name)
        return MatchResult.unmatched()

    best = ranked[0]
    if best.score == 1.0 and (len(ranked) == 1 or ranked[1].score < 1.0):
        return MatchResult.matched(best)

    contenders = [item for item in ranked if best.score - item.score <= tie_band]
    if len(contenders) >= 2:
        logger.debug("Ambiguous match for %r: %s", spoken_name, [item.name for item in contenders])
        return MatchResult.ambiguous(tuple(contenders[:max_candidates]))

    if best.score >= accept_score:
        return MatchResult.matched(best)

    # A lone candidate between threshold and accept_score still needs the user's pick.
    return MatchResult.ambiguous((best,))
