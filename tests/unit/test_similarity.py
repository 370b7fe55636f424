from __future__ import annotations

import pytest

from voicelog.core.similarity import (
    edit_distance,
    find_best_match,
    jaro,
    jaro_winkler,
    score_candidate,
    similarity,
    substring_score,
)

WORDS = ["", "a", "squat", "Squat", "bench press", "bnch press", "deadlift", "kettlebell swing"]


@pytest.mark.parametrize("word", WORDS)
def test_edit_distance_to_self_is_zero(word: str) -> None:
    assert edit_distance(word, word) == 0


@pytest.mark.parametrize(
    "a,b",
    [("kitten", "sitting"), ("", "press"), ("bench", "bnch"), ("Squat", "squat"), ("row", "rows")],
)
def test_edit_distance_is_symmetric(a: str, b: str) -> None:
    assert edit_distance(a, b) == edit_distance(b, a)


def test_edit_distance_known_values() -> None:
    assert edit_distance("kitten", "sitting") == 3
    assert edit_distance("", "abc") == 3
    assert edit_distance("Squat", "squat") == 1


def test_similarity_bounds_and_identity() -> None:
    for a in WORDS:
        assert similarity(a, a) == 1.0
        for b in WORDS:
            assert 0.0 <= similarity(a, b) <= 1.0
    assert similarity("", "") == 1.0
    assert similarity("abc", "xyz") == 0.0


def test_jaro_winkler_boosts_common_prefix() -> None:
    assert jaro("martha", "marhta") == pytest.approx(0.9444, abs=1e-4)
    assert jaro_winkler("martha", "marhta") == pytest.approx(0.9611, abs=1e-4)
    assert jaro_winkler("press", "press") == 1.0
    assert jaro_winkler("", "") == 1.0
    assert jaro_winkler("abc", "xyz") == 0.0


def test_jaro_winkler_skips_boost_below_threshold() -> None:
    base = jaro("abcdxyz", "abcwqrs")
    assert base < 0.7
    assert jaro_winkler("abcdxyz", "abcwqrs") == base


def test_substring_score_is_capped_below_exact() -> None:
    assert substring_score(5, 14) < 0.95
    assert substring_score(10, 10) == pytest.approx(0.95)
    assert score_candidate("press", "standing press") == substring_score(5, 14)


def test_find_best_match_exact_is_case_insensitive() -> None:
    best = find_best_match("bench press", ["Bench Press", "Squats"])
    assert best is not None
    assert best.match == "Bench Press"
    assert best.score == 1.0


def test_find_best_match_fuzzy_and_miss() -> None:
    best = find_best_match("bnch press", ["Bench Press", "Deadlift"], 0.6)
    assert best is not None
    assert best.match == "Bench Press"
    assert best.score >= 0.6
    assert find_best_match("xyz123", ["Bench Press"], 0.6) is None


def test_find_best_match_substring_beats_fuzzy() -> None:
    best = find_best_match("squat", ["Squad", "Back Squat"])
    assert best is not None
    assert best.match == "Back Squat"


def test_find_best_match_empty_candidates() -> None:
    assert find_best_match("squat", []) is None
