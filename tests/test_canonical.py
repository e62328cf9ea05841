"""Unit tests for text canonicalization."""

from __future__ import annotations

from resource_finder.canonical import canonicalize, slugify


def test_canonicalize_folds_case_diacritics_and_punctuation() -> None:
    assert canonicalize("  Café  Noir!") == "cafe noir"
    assert canonicalize("CAFE") == canonicalize("café") == "cafe"
    assert canonicalize("Iron-Ore (Rich)") == "ironore rich"


def test_canonicalize_is_idempotent() -> None:
    for text in ("Rough  Iron Ore", "Ünïcödé Tëxt", "tier-3 / copper", ""):
        once = canonicalize(text)
        assert canonicalize(once) == once


def test_canonicalize_handles_empty_and_symbol_only_input() -> None:
    assert canonicalize(None) == ""
    assert canonicalize("") == ""
    assert canonicalize("!!! ???") == ""


def test_slugify_keeps_hyphens_and_joins_words() -> None:
    assert slugify("Ore Vein") == "ore-vein"
    assert slugify("Alt-Right  Pine") == "alt-right-pine"
    assert slugify("Snowy Peaks!") == "snowy-peaks"
    assert slugify(None) == ""
