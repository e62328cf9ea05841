"""Prohibited-term screening for submitted text."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from resource_finder.canonical import canonicalize
from resource_finder.config import DEFAULT_PROHIBITED_TERMS
from resource_finder.errors import ModerationError


@dataclass(frozen=True)
class ModerationMatch:
    """Outcome of a moderation scan; ``term`` is empty when nothing matched."""

    matched: bool
    term: str = ""


class ModerationFilter:
    """Substring matcher over canonicalized text.

    Matching is substring-based rather than word-based, so a
    prohibited term embedded in a longer word is flagged as well. Terms are
    checked in configuration order and the first hit is reported using its
    configured spelling.
    """

    def __init__(self, terms: Iterable[str] = DEFAULT_PROHIBITED_TERMS) -> None:
        pairs = [(term, canonicalize(term)) for term in terms]
        self._terms: tuple[tuple[str, str], ...] = tuple((term, key) for term, key in pairs if key)

    @property
    def terms(self) -> tuple[str, ...]:
        return tuple(term for term, _ in self._terms)

    def contains_prohibited(self, text: str | None) -> ModerationMatch:
        canonical = canonicalize(text)
        if not canonical:
            return ModerationMatch(matched=False)

        for term, key in self._terms:
            if key in canonical:
                return ModerationMatch(matched=True, term=term)
        return ModerationMatch(matched=False)

    def check(self, text: str | None) -> None:
        """Raise :class:`ModerationError` when ``text`` contains a prohibited term."""

        match = self.contains_prohibited(text)
        if match.matched:
            raise ModerationError(match.term)


__all__ = ["ModerationFilter", "ModerationMatch"]
