"""Exact and fuzzy duplicate detection for catalog entries."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Hashable, Protocol, TypeVar


class BucketedName(Protocol):
    """Anything carrying a duplicate bucket and a canonical name."""

    tier: int
    type_id: Hashable
    biome_id: Hashable
    canonical_name: str


@dataclass(frozen=True)
class EntryKey:
    """Exact-duplicate key: one bucket plus a canonical name."""

    tier: int
    type_id: str
    biome_id: str
    canonical_name: str

    def as_string(self) -> str:
        return f"{self.tier}|{self.type_id}|{self.biome_id}|{self.canonical_name}"


@dataclass(frozen=True)
class DuplicateCheck:
    is_duplicate: bool
    score: float


T = TypeVar("T", bound=BucketedName)


def levenshtein(a: str, b: str) -> int:
    """Edit distance with unit insert, delete and substitute costs."""

    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i] + [0] * len(b)
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current[j] = min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost)
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """Normalized similarity in ``[0, 1]``; two empty names score 1.0."""

    distance = levenshtein(a, b)
    longest = max(1, len(a), len(b))
    return 1.0 - min(1.0, distance / longest)


def same_bucket(left: BucketedName, right: BucketedName) -> bool:
    return left.tier == right.tier and left.type_id == right.type_id and left.biome_id == right.biome_id


class DuplicateDetector:
    """Decide whether two entries in one (tier, type, biome) bucket are the same thing.

    Identical names in different buckets are distinct entries. Within a bucket
    a similarity at or above ``threshold`` counts as a strong duplicate; this is
    advisory, the storage unique constraint is the hard check.
    """

    def __init__(self, threshold: float = 0.90) -> None:
        self.threshold = threshold

    def is_strong_duplicate(self, existing: BucketedName, incoming: BucketedName) -> DuplicateCheck:
        if not same_bucket(existing, incoming):
            return DuplicateCheck(is_duplicate=False, score=0.0)
        score = similarity(existing.canonical_name, incoming.canonical_name)
        return DuplicateCheck(is_duplicate=score >= self.threshold, score=score)

    def find_strong_duplicate(self, candidates: Iterable[T], incoming: BucketedName) -> tuple[T, float] | None:
        """Return the best-scoring strong duplicate of ``incoming`` among ``candidates``."""

        best: tuple[T, float] | None = None
        for candidate in candidates:
            check = self.is_strong_duplicate(candidate, incoming)
            if check.is_duplicate and (best is None or check.score > best[1]):
                best = (candidate, check.score)
        return best


__all__ = [
    "BucketedName",
    "DuplicateCheck",
    "DuplicateDetector",
    "EntryKey",
    "levenshtein",
    "same_bucket",
    "similarity",
]
