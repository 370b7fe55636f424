"""String similarity scoring used for fuzzy exercise-name matching.

Every function here is pure: no state, no I/O, deterministic output.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional

SUBSTRING_SCORE_FLOOR = 0.75
SUBSTRING_SCORE_CAP = 0.95


@dataclass(frozen=True)
class BestMatch:
    """Winning candidate from ``find_best_match``."""

    match: str
    score: float


def edit_distance(a: str, b: str) -> int:
    """Levenshtein distance between ``a`` and ``b`` (case-sensitive)."""
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    previous: List[int] = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + cost,
                )
            )
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """Normalized edit similarity in [0, 1]; two empty strings score 1."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - edit_distance(a, b) / longest


def jaro(a: str, b: str) -> float:
    """Jaro similarity with the standard matching window and transpositions."""
    if a == b:
        return 1.0
    len_a, len_b = len(a), len(b)
    if len_a == 0 or len_b == 0:
        return 0.0

    window = max(0, max(len_a, len_b) // 2 - 1)
    a_matched = [False] * len_a
    b_matched = [False] * len_b
    matches = 0

    for i, char in enumerate(a):
        start = max(0, i - window)
        end = min(i + window + 1, len_b)
        for j in range(start, end):
            if b_matched[j] or b[j] != char:
                continue
            a_matched[i] = b_matched[j] = True
            matches += 1
            break

    if matches == 0:
        return 0.0

    transpositions = 0
    k = 0
    for i, char in enumerate(a):
        if not a_matched[i]:
            continue
        while not b_matched[k]:
            k += 1
        if char != b[k]:
            transpositions += 1
        k += 1

    half_transpositions = transpositions / 2
    return (matches / len_a + matches / len_b + (matches - half_transpositions) / matches) / 3


def jaro_winkler(a: str, b: str, prefix_weight: float = 0.1, boost_threshold: float = 0.7) -> float:
    """Jaro score with a common-prefix bonus (at most 4 characters).

    The bonus is only applied once the base score reaches ``boost_threshold``.
    """
    base = jaro(a, b)
    if base < boost_threshold:
        return base

    prefix = 0
    for char_a, char_b in zip(a[:4], b[:4]):
        if char_a != char_b:
            break
        prefix += 1
    return base + prefix_weight * prefix * (1.0 - base)


def substring_score(shorter_len: int, longer_len: int) -> float:
    """Score for a substring hit, growing with the length ratio up to the cap."""
    if longer_len == 0:
        return SUBSTRING_SCORE_CAP
    ratio = shorter_len / longer_len
    span = SUBSTRING_SCORE_CAP - SUBSTRING_SCORE_FLOOR
    return min(SUBSTRING_SCORE_CAP, SUBSTRING_SCORE_FLOOR + span * ratio)


def score_candidate(query: str, candidate: str) -> float:
    """Case-insensitive score of one candidate against the query.

    Exact match scores 1.0, a substring relationship in either direction
    scores by length ratio (never above 0.95), anything else falls back to
    edit similarity.
    """
    query_lower = query.lower()
    candidate_lower = candidate.lower()
    if query_lower == candidate_lower:
        return 1.0
    if query_lower and candidate_lower and (
        query_lower in candidate_lower or candidate_lower in query_lower
    ):
        shorter, longer = sorted((len(query_lower), len(candidate_lower)))
        return substring_score(shorter, longer)
    return similarity(query_lower, candidate_lower)


def find_best_match(query: str, candidates: Iterable[str], threshold: float = 0.6) -> Optional[BestMatch]:
    """Return the best-scoring candidate at or above ``threshold``, else None."""
    best: Optional[BestMatch] = None
    for candidate in candidates:
        score = score_candidate(query, candidate)
        if score == 1.0:
            return BestMatch(match=candidate, score=1.0)
        if score < threshold:
            continue
        if best is None or score > best.score:
            best = BestMatch(match=candidate, score=score)
    return best
