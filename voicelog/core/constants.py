"""Static constants and vocabularies for the voice pipeline."""

from __future__ import annotations

API_BASE = "http://localhost:3001/api"

KG_PER_LB = 0.45359237

UNIT_WORDS = {
    "zero": 0,
    "one": 1,
    "two": 2,
    "three": 3,
    "four": 4,
    "five": 5,
    "six": 6,
    "seven": 7,
    "eight": 8,
    "nine": 9,
}

TEEN_WORDS = {
    "ten": 10,
    "eleven": 11,
    "twelve": 12,
    "thirteen": 13,
    "fourteen": 14,
    "fifteen": 15,
    "sixteen": 16,
    "seventeen": 17,
    "eighteen": 18,
    "nineteen": 19,
}

TENS_WORDS = {
    "twenty": 20,
    "thirty": 30,
    "forty": 40,
    "fifty": 50,
    "sixty": 60,
    "seventy": 70,
    "eighty": 80,
    "ninety": 90,
}

SCALE_WORDS = {"hundred": 100, "thousand": 1000}

ORDINAL_WORDS = {
    "first": 1,
    "second": 2,
    "third": 3,
    "fourth": 4,
    "fifth": 5,
    "sixth": 6,
    "seventh": 7,
    "eighth": 8,
    "ninth": 9,
    "tenth": 10,
    "eleventh": 11,
    "twelfth": 12,
}

KG_UNITS = {"kg", "kgs", "kilo", "kilos", "kilogram", "kilograms"}
LB_UNITS = {"lb", "lbs", "pound", "pounds"}
WEIGHT_UNITS = KG_UNITS | LB_UNITS

SECOND_UNITS = {"s", "sec", "secs", "second", "seconds"}
MINUTE_UNITS = {"min", "mins", "minute", "minutes"}
TIME_UNITS = SECOND_UNITS | MINUTE_UNITS

REP_WORDS = {"rep", "reps", "repetition", "repetitions", "times"}
RPE_WORDS = {"rpe"}
SET_WORDS = {"set"}
SET_COUNT_WORDS = {"sets"}

LOG_VERBS = {"log", "record", "add", "track"}
UNDO_VERBS = {"undo", "oops"}
DELETE_VERBS = {"delete", "remove", "scratch", "cancel"}
EDIT_VERBS = {"change", "edit", "update", "modify", "correct", "fix", "make"}
START_VERBS = {"start", "begin", "commence"}
WORKOUT_NOUNS = {"workout", "session", "training"}
TIMER_WORDS = {"rest", "timer", "break"}
LAST_WORDS = {"last", "previous", "that"}

EDIT_FIELDS = {
    "rep": "reps",
    "reps": "reps",
    "repetitions": "reps",
    "weight": "weight",
    "load": "weight",
    "rpe": "rpe",
    "exercise": "exerciseName",
}

FILLER_WORDS = {
    "a",
    "an",
    "and",
    "at",
    "by",
    "did",
    "for",
    "i",
    "it",
    "just",
    "me",
    "my",
    "of",
    "on",
    "please",
    "the",
    "then",
    "to",
    "was",
    "with",
    "x",
    "@",
}

AFFIRMATIVE_WORDS = {
    "yes",
    "yeah",
    "yep",
    "yup",
    "sure",
    "ok",
    "okay",
    "correct",
    "confirm",
    "confirmed",
    "right",
    "affirmative",
    "save",
    "good",
}

NEGATIVE_WORDS = {
    "no",
    "nope",
    "nah",
    "cancel",
    "stop",
    "wrong",
    "abort",
    "none",
    "neither",
}

NEGATIVE_PHRASES = ("never mind", "nevermind", "don t", "do not")

SELECTION_ORDINALS = {
    "one": 1,
    "first": 1,
    "1": 1,
    "1st": 1,
    "two": 2,
    "second": 2,
    "2": 2,
    "2nd": 2,
    "three": 3,
    "third": 3,
    "3": 3,
    "3rd": 3,
    "four": 4,
    "fourth": 4,
    "4": 4,
    "4th": 4,
    "five": 5,
    "fifth": 5,
    "5": 5,
    "5th": 5,
}

EXERCISE_ABBREVIATIONS = {
    "db": "dumbbell",
    "dbs": "dumbbells",
    "bb": "barbell",
    "kb": "kettlebell",
    "ohp": "overhead press",
    "rdl": "romanian deadlift",
    "rdls": "romanian deadlifts",
}

SPOKEN_ABBREVIATIONS = {
    "kg": "kilograms",
    "kgs": "kilograms",
    "lb": "pounds",
    "lbs": "pounds",
    "RPE": "R P E",
    "DB": "dumbbell",
    "BB": "barbell",
    "OHP": "overhead press",
    "RDL": "Romanian deadlift",
}

CONFIRMATION_STYLES = ("concise", "detailed", "minimal")
