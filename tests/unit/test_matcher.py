from __future__ import annotations

from typing import List

from voicelog.core.matcher import match_exercise, rank_candidates
from voicelog.core.models import Exercise, MatchStatus


def _exercises(*names: str) -> List[Exercise]:
    return [Exercise(id=f"ex-{index}", name=name) for index, name in enumerate(names)]


def test_press_is_ambiguous_between_two_presses() -> None:
    result = match_exercise("press", _exercises("Seated Dumbbell Press", "Standing Press"))
    assert result.status == MatchStatus.AMBIGUOUS
    assert {candidate.name for candidate in result.candidates} == {"Seated Dumbbell Press", "Standing Press"}
    assert result.candidates[0].name == "Standing Press"


def test_exact_name_is_matched_even_with_close_neighbours(exercises: List[Exercise]) -> None:
    result = match_exercise("Bench Press!", exercises)
    assert result.status == MatchStatus.MATCHED
    assert result.exercise_id == "ex-bench"
    assert result.score == 1.0


def test_fuzzy_name_above_accept_score_is_matched() -> None:
    result = match_exercise("bnch press", _exercises("Bench Press", "Deadlift"))
    assert result.status == MatchStatus.MATCHED
    assert result.exercise_name == "Bench Press"
    assert result.score is not None and result.score >= 0.8


def test_archived_exercises_are_invisible(exercises: List[Exercise]) -> None:
    assert match_exercise("cable crossover", exercises).status == MatchStatus.UNMATCHED


def test_nothing_above_threshold_is_unmatched(exercises: List[Exercise]) -> None:
    result = match_exercise("xyz123", exercises)
    assert result.status == MatchStatus.UNMATCHED
    assert result.candidates == ()
    assert match_exercise("   ", exercises).status == MatchStatus.UNMATCHED


def test_lone_weak_candidate_needs_confirmation() -> None:
    result = match_exercise("squat", _exercises("Bulgarian Split Squat"))
    assert result.status == MatchStatus.AMBIGUOUS
    assert [candidate.name for candidate in result.candidates] == ["Bulgarian Split Squat"]


def test_abbreviations_are_expanded_before_matching(exercises: List[Exercise]) -> None:
    result = match_exercise("DB press", exercises)
    assert result.status == MatchStatus.MATCHED
    assert result.exercise_id == "ex-seated"


def test_ties_break_by_distance_then_name() -> None:
    ranked = rank_candidates("curl", _exercises("Zeta Curl", "Alfa Curl"))
    assert [candidate.name for candidate in ranked] == ["Alfa Curl", "Zeta Curl"]
    assert ranked[0].score == ranked[1].score


def test_ambiguous_set_is_capped() -> None:
    names = [f"Press {index}" for index in range(1, 8)]
    result = match_exercise("press", _exercises(*names))
    assert result.status == MatchStatus.AMBIGUOUS
    assert len(result.candidates) == 5

    capped = match_exercise("press", _exercises(*names), max_candidates=2)
    assert len(capped.candidates) == 2


def test_match_result_to_dict_shapes() -> None:
    matched = match_exercise("deadlift", _exercises("Deadlift")).to_dict()
    assert matched == {"status": "matched", "exerciseId": "ex-0", "exerciseName": "Deadlift", "score": 1.0}

    ambiguous = match_exercise("press", _exercises("Seated Dumbbell Press", "Standing Press")).to_dict()
    assert ambiguous["status"] == "ambiguous"
    assert [item["exerciseId"] for item in ambiguous["candidates"]] == ["ex-1", "ex-0"]


def test_exact_name_beats_a_substring_neighbour_inside_the_tie_band() -> None:
    exercises = _exercises("Close Grip Bench Press", "Bench Press")
    ranked = rank_candidates("bench press", exercises)
    assert [candidate.name for candidate in ranked] == ["Bench Press", "Close Grip Bench Press"]
    assert ranked[0].score - ranked[1].score <= 0.2

    result = match_exercise("bench press", exercises)
    assert result.status == MatchStatus.MATCHED
    assert result.exercise_name == "Bench Press"
