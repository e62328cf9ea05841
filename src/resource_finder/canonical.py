"""Text canonicalization for matching keys and slugs."""

from __future__ import annotations

import unicodedata


def _strip_marks(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")


def canonicalize(text: str | None) -> str:
    """Return the matching key for ``text``.

    Diacritics are stripped, the text is lowercased, everything except letters,
    digits and whitespace is dropped, and the surviving tokens are joined with
    single spaces. ``"  Café  Noir!"`` becomes ``"cafe noir"``.
    """

    if not text:
        return ""
    kept = "".join(ch for ch in _strip_marks(text).lower() if ch.isalnum() or ch.isspace())
    return " ".join(kept.split())


def slugify(text: str | None) -> str:
    """Return a hyphen-joined identifier for ``text`` (``"Ore Vein"`` -> ``"ore-vein"``)."""

    if not text:
        return ""
    kept = "".join(ch for ch in _strip_marks(text).lower() if ch.isalnum() or ch.isspace() or ch == "-")
    return "-".join(kept.split())


__all__ = ["canonicalize", "slugify"]
