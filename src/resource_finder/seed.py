"""Seed the fixed Type and Biome reference lists."""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from resource_finder.canonical import slugify
from resource_finder.db import Biome, CatalogType
from utils.logging import get_logger

LOGGER = get_logger(__name__)

TYPES: tuple[str, ...] = (
    "Tree",
    "Flower",
    "Ore Vein",
    "Sand",
    "Mushroom",
    "Fiber Plant",
    "Rock Boulder",
    "Research",
    "Rock Outcrop",
    "Clay",
    "Huntable Animal",
)

BIOMES: tuple[str, ...] = (
    "Safe Meadows",
    "Grasslands",
    "Calm Forest",
    "Maple Forest",
    "Pine Forest",
    "Misty Tundra",
    "Rocky Garden",
    "Swamp",
    "Desert",
    "Snowy Peaks",
    "Jungle",
    "Sawoods",
    "Ocean",
)


def _seed(session: Session, model: type[CatalogType] | type[Biome], names: Iterable[str]) -> int:
    existing = set(session.execute(select(model.name)).scalars())
    added = 0
    for name in names:
        if name in existing:
            continue
        session.add(model(name=name, slug=slugify(name), is_active=True))
        added += 1
    return added


def seed_reference_data(
    session: Session,
    types: Iterable[str] = TYPES,
    biomes: Iterable[str] = BIOMES,
) -> tuple[int, int]:
    """Insert missing types and biomes; idempotent. Returns ``(types_added, biomes_added)``."""

    added_types = _seed(session, CatalogType, types)
    added_biomes = _seed(session, Biome, biomes)
    session.commit()
    LOGGER.info("reference_data_seeded", extra={"types_added": added_types, "biomes_added": added_biomes})
    return added_types, added_biomes


__all__ = ["BIOMES", "TYPES", "seed_reference_data"]
