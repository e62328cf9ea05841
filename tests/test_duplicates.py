"""Tests for edit-distance similarity and bucketed duplicate detection."""

from __future__ import annotations

import pytest

from resource_finder.duplicates import DuplicateDetector, EntryKey, levenshtein, similarity


def _key(name: str, tier: int = 3, type_id: str = "ore", biome_id: str = "swamp") -> EntryKey:
    return EntryKey(tier=tier, type_id=type_id, biome_id=biome_id, canonical_name=name)


def test_levenshtein_basic_distances() -> None:
    assert levenshtein("", "") == 0
    assert levenshtein("abc", "") == 3
    assert levenshtein("kitten", "sitting") == 3
    assert levenshtein("iron ore", "iron orre") == 1


def test_similarity_bounds_and_symmetry() -> None:
    assert similarity("", "") == 1.0
    assert similarity("abc", "xyz") == 0.0
    assert similarity("iron ore", "copper ore") == similarity("copper ore", "iron ore")


@pytest.mark.parametrize(
    ("a", "b", "c"),
    [("iron ore", "iron orre", "iron ores"), ("copper", "cooper", "hopper"), ("", "abc", "abd")],
)
def test_levenshtein_triangle_inequality(a: str, b: str, c: str) -> None:
    assert levenshtein(a, c) <= levenshtein(a, b) + levenshtein(b, c)


def test_single_typo_in_longer_name_is_strong_duplicate() -> None:
    check = DuplicateDetector().is_strong_duplicate(_key("rough iron ore"), _key("rough iron ores"))

    assert check.is_duplicate
    assert check.score == pytest.approx(1 - 1 / 15)


def test_single_typo_in_short_name_stays_below_threshold() -> None:
    check = DuplicateDetector().is_strong_duplicate(_key("iron ore"), _key("iron orre"))

    assert not check.is_duplicate
    assert check.score == pytest.approx(1 - 1 / 9)


def test_different_names_are_not_duplicates() -> None:
    check = DuplicateDetector().is_strong_duplicate(_key("iron ore"), _key("copper ore"))

    assert not check.is_duplicate


def test_bucket_mismatch_short_circuits() -> None:
    detector = DuplicateDetector()

    assert detector.is_strong_duplicate(_key("iron ore", tier=3), _key("iron ore", tier=4)).score == 0.0
    assert not detector.is_strong_duplicate(_key("iron ore"), _key("iron ore", biome_id="desert")).is_duplicate
    assert not detector.is_strong_duplicate(_key("iron ore"), _key("iron ore", type_id="tree")).is_duplicate


def test_find_strong_duplicate_returns_best_candidate() -> None:
    candidates = [_key("rough iron orez"), _key("rough iron ore"), _key("rough iron ore", tier=9)]

    match = DuplicateDetector().find_strong_duplicate(candidates, _key("rough iron ore"))

    assert match is not None
    assert match[0] is candidates[1]
    assert match[1] == 1.0


def test_key_string_is_stable() -> None:
    assert _key("iron ore").as_string() == "3|ore|swamp|iron ore"
