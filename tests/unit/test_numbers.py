from __future__ import annotations

import pytest

from voicelog.utils.numbers import as_int, parse_spoken_number, tokenize


@pytest.mark.parametrize(
    "text,expected",
    [
        ("five", 5),
        ("fifteen", 15),
        ("twenty-five", 25),
        ("one hundred", 100),
        ("a hundred", 100),
        ("one hundred and twenty", 120),
        ("two hundred five", 205),
        ("sixty two point five", 62.5),
        ("one thousand two hundred", 1200),
        ("42", 42),
        ("62.5", 62.5),
    ],
)
def test_parse_spoken_number(text: str, expected: float) -> None:
    assert parse_spoken_number(text) == expected


def test_parse_spoken_number_returns_none_without_numbers() -> None:
    assert parse_spoken_number("bench press") is None


def test_tokenize_folds_spoken_numbers_into_single_tokens() -> None:
    tokens = tokenize("Back squat, set three, one-hundred kilos")
    assert [token.norm for token in tokens] == ["back", "squat", "set", "three", "one hundred", "kilos"]
    assert [token.value for token in tokens if token.is_number] == [3, 100]


def test_tokenize_marks_boundaries_after_punctuation() -> None:
    tokens = tokenize("Back squat, five reps")
    assert [token.boundary for token in tokens] == [False, False, True, False]


def test_tokenize_splits_attached_units() -> None:
    tokens = tokenize("100kg 8x")
    assert [(token.norm, token.value) for token in tokens] == [("100", 100), ("kg", None), ("8", 8), ("x", None)]


def test_tokenize_reads_ordinals() -> None:
    tokens = tokenize("third set 2nd")
    assert tokens[0].ordinal and tokens[0].value == 3
    assert tokens[2].ordinal and tokens[2].value == 2


def test_second_after_number_is_a_time_unit() -> None:
    tokens = tokenize("ninety second rest")
    assert tokens[0].value == 90
    assert tokens[1].norm == "second"
    assert not tokens[1].is_number


def test_malformed_numeric_text_is_flagged() -> None:
    tokens = tokenize("5abc reps")
    assert tokens[0].malformed
    assert not tokens[0].is_number


def test_separate_spoken_numbers_are_not_merged() -> None:
    tokens = tokenize("five eight")
    assert [token.value for token in tokens] == [5, 8]


def test_as_int() -> None:
    assert as_int(5.0) == 5
    assert as_int(5.5) is None
    assert as_int(0) is None
    assert as_int(None) is None
