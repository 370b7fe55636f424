"""Core voice pipeline: matching, parsing, confirmation and session sync."""
