"""Tests for near-duplicate detection."""
from __future__ import annotations

from habitbingo.services.similarity import dedupe_titles, is_similar, normalize, reject_if_similar_to_any


def test_normalize_strips_case_whitespace_and_punctuation() -> None:
    assert normalize("  Walk, for 5 Minutes! ") == "walkfor5minutes"


def test_equal_after_normalization_is_similar() -> None:
    assert is_similar("Drink water.", "drink   WATER")


def test_containment_needs_four_characters() -> None:
    assert is_similar("Read", "Read a chapter of the novel")
    assert not is_similar("Go", "Go to the library and return the loan")


def test_bigram_overlap_above_threshold() -> None:
    assert is_similar("walk for 5 minutes", "5-minute walk")
    assert not is_similar("walk for 5 minutes", "Write a gratitude note")


def test_reject_ignores_blank_corpus_entries() -> None:
    assert not reject_if_similar_to_any("Stretch your legs", ["", "   "])
    assert reject_if_similar_to_any("Stretch your legs", ["", "stretch your legs!"])


def test_dedupe_titles_keeps_first_of_each_group() -> None:
    titles = ["Drink water", "drink water!", "Read a page", "", "Call a friend"]

    assert dedupe_titles(titles) == ["Drink water", "Read a page", "Call a friend"]
