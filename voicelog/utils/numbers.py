"""Tokenizer and spoken-number scanner for voice utterances."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from voicelog.core.constants import (
    ORDINAL_WORDS,
    REP_WORDS,
    SCALE_WORDS,
    TEEN_WORDS,
    TENS_WORDS,
    TIME_UNITS,
    UNIT_WORDS,
    WEIGHT_UNITS,
)

_WORD_RE = re.compile(r"[A-Za-z0-9@][A-Za-z0-9.'@]*|[,;:!?]")
_NUMBER_RE = re.compile(r"^\d+(?:\.\d+)?$")
_NUMBER_SUFFIX_RE = re.compile(r"^(\d+(?:\.\d+)?)([a-z]+)$")
_ORDINAL_SUFFIXES = {"st", "nd", "rd", "th"}
_SUFFIX_UNITS = WEIGHT_UNITS | TIME_UNITS | REP_WORDS | {"x"}
_NUMBER_WORDS = set(UNIT_WORDS) | set(TEEN_WORDS) | set(TENS_WORDS) | set(SCALE_WORDS)


@dataclass(frozen=True)
class Token:
    """One scanned unit of an utterance.

    ``value`` is set for numbers (digits or spoken), ``malformed`` marks
    numeric-looking text that could not be read.
    """

    text: str
    norm: str
    value: Optional[float] = None
    ordinal: bool = False
    boundary: bool = False
    malformed: bool = False

    @property
    def is_number(self) -> bool:
        return self.value is not None


def _split_raw(utterance: str) -> List[Tuple[str, bool]]:
    """Split into (surface, boundary_before) pairs; punctuation only sets boundaries."""
    pieces: List[Tuple[str, bool]] = []
    boundary = False
    for match in _WORD_RE.finditer(utterance.replace("-", " ")):
        piece = match.group(0)
        if piece in ",;:!?":
            boundary = True
            continue
        piece = piece.rstrip(".")
        if not piece:
            boundary = True
            continue
        pieces.append((piece, boundary))
        boundary = False
    return pieces


def _classify_piece(surface: str, boundary: bool) -> List[Token]:
    norm = surface.lower().replace("'", "")
    if _NUMBER_RE.match(norm):
        return [Token(text=surface, norm=norm, value=float(norm), boundary=boundary)]

    suffixed = _NUMBER_SUFFIX_RE.match(norm)
    if suffixed:
        number, suffix = suffixed.groups()
        if suffix in _ORDINAL_SUFFIXES:
            return [Token(text=surface, norm=norm, value=float(number), ordinal=True, boundary=boundary)]
        if suffix in _SUFFIX_UNITS:
            return [
                Token(text=number, norm=number, value=float(number), boundary=boundary),
                Token(text=suffix, norm=suffix),
            ]
        return [Token(text=surface, norm=norm, boundary=boundary, malformed=True)]

    if norm[:1].isdigit():
        return [Token(text=surface, norm=norm, boundary=boundary, malformed=True)]
    return [Token(text=surface, norm=norm, boundary=boundary)]


def _read_number(words: List[Token], start: int) -> Tuple[int, Optional[float]]:
    """Read one spoken number starting at ``start``; return (next index, value)."""
    total = 0.0
    current = 0.0
    last: Optional[str] = None
    index = start
    count = len(words)

    while index < count:
        token = words[index]
        word = token.norm
        if index > start and token.boundary:
            break
        following = words[index + 1].norm if index + 1 < count else ""

        if word in ("a", "an") and last is None and (following in SCALE_WORDS or following in TIME_UNITS):
            current = 1
            last = "unit"
        elif word in UNIT_WORDS:
            if last is None:
                current = UNIT_WORDS[word]
            elif last in ("tens", "hundred", "thousand", "and"):
                current += UNIT_WORDS[word]
            else:
                break
            last = "unit"
        elif word in TEEN_WORDS:
            if last is None:
                current = TEEN_WORDS[word]
            elif last in ("hundred", "thousand", "and"):
                current += TEEN_WORDS[word]
            else:
                break
            last = "teen"
        elif word in TENS_WORDS:
            if last is None:
                current = TENS_WORDS[word]
            elif last in ("hundred", "thousand", "and"):
                current += TENS_WORDS[word]
            else:
                break
            last = "tens"
        elif word == "hundred":
            if last is None:
                current = 100
            elif last in ("unit", "teen", "tens") and current < 100:
                current *= 100
            else:
                break
            last = "hundred"
        elif word == "thousand":
            if last is None:
                total += 1000
            elif last in ("unit", "teen", "tens", "hundred") and total == 0:
                total += current * 1000
            else:
                break
            current = 0
            last = "thousand"
        elif word == "and" and last in ("hundred", "thousand") and following in _NUMBER_WORDS:
            last = "and"
        elif word == "point" and last in ("unit", "teen", "tens", "hundred") and following in UNIT_WORDS:
            digits = ""
            index += 1
            while index < count and words[index].norm in UNIT_WORDS and not words[index].boundary:
                digits += str(UNIT_WORDS[words[index].norm])
                index += 1
            current += float(f"0.{digits}")
            return index, total + current
        else:
            break
        index += 1

    if last == "and":
        index -= 1
    if last is None:
        return start, None
    return index, total + current


def _starts_number(words: List[Token], index: int) -> bool:
    word = words[index].norm
    if word in _NUMBER_WORDS:
        return True
    if word in ("a", "an") and index + 1 < len(words):
        following = words[index + 1].norm
        return following in SCALE_WORDS or following in TIME_UNITS
    return False


def tokenize(utterance: str) -> List[Token]:
    """Split an utterance into tokens with spoken numbers folded into values.

    "Back squat, set three, one-hundred kilos" yields tokens for
    ``back``, ``squat``, ``set``, ``3``, ``100`` and ``kilos``.
    """
    words: List[Token] = []
    for surface, boundary in _split_raw(utterance):
        words.extend(_classify_piece(surface, boundary))

    tokens: List[Token] = []
    index = 0
    while index < len(words):
        token = words[index]
        if token.value is None and not token.malformed and _starts_number(words, index):
            end, value = _read_number(words, index)
            if value is not None:
                surface = " ".join(word.text for word in words[index:end])
                tokens.append(
                    Token(
                        text=surface,
                        norm=" ".join(word.norm for word in words[index:end]),
                        value=value,
                        boundary=token.boundary,
                    )
                )
                index = end
                continue

        previous_is_number = bool(tokens) and tokens[-1].is_number
        if token.norm in ORDINAL_WORDS and not (token.norm == "second" and previous_is_number):
            token = Token(
                text=token.text,
                norm=token.norm,
                value=float(ORDINAL_WORDS[token.norm]),
                ordinal=True,
                boundary=token.boundary,
            )
        tokens.append(token)
        index += 1
    return tokens


def parse_spoken_number(text: str) -> Optional[float]:
    """Read the first number in ``text`` ("sixty two point five" -> 62.5)."""
    for token in tokenize(text):
        if token.is_number:
            return token.value
    return None


def as_int(value: Optional[float]) -> Optional[int]:
    """Return an int for whole positive numbers, None otherwise."""
    if value is None or value <= 0 or value != int(value):
        return None
    return int(value)
