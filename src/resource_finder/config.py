"""Configuration loader and typed settings for the Resource Finder core."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from utils.logging import get_logger

LOGGER = get_logger(__name__)

DEFAULT_PROHIBITED_TERMS: tuple[str, ...] = (
    "nazi",
    "kkk",
    "alt-right",
    "alt right",
    "neo-nazi",
    "white power",
    "swastika",
    "1488",
    "14/88",
    "fuck",
    "shit",
    "bitch",
    "asshole",
    "cunt",
    "bastard",
    "dick",
    "piss",
)


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection target for the catalog store."""

    url: str = "sqlite:///data/catalog.db"


@dataclass(frozen=True)
class ImageConfig:
    """Upload limits and on-disk layout for entry images."""

    root_path: str = "images"
    public_url_prefix: str = "/images"
    pending_dirname: str = "pending"
    quarantine_dirname: str = "ToDelete"
    max_upload_bytes: int = 300 * 1024
    allowed_content_types: tuple[str, ...] = ("image/jpeg", "image/png", "image/webp")
    thumbnail_sizes: tuple[int, ...] = (256, 512)
    output_format: str = "WEBP"
    output_extension: str = "webp"
    quality: int = 80

    @property
    def hash_source_size(self) -> int:
        """Thumbnail size whose file the perceptual hash is computed from."""

        return max(self.thumbnail_sizes)


@dataclass(frozen=True)
class ModerationConfig:
    """Prohibited terms, compared in canonical form."""

    prohibited_terms: tuple[str, ...] = DEFAULT_PROHIBITED_TERMS


@dataclass(frozen=True)
class DuplicateConfig:
    """Fuzzy duplicate detection threshold."""

    similarity_threshold: float = 0.90


@dataclass(frozen=True)
class BulkImportConfig:
    """Batch-level guards for bulk imports."""

    max_payload_bytes: int = 256 * 1024
    max_rows: int = 200


@dataclass(frozen=True)
class EntryLimits:
    """Field limits shared by interactive submission and bulk import."""

    max_name_length: int = 80
    min_tier: int = 1
    max_tier: int = 10


@dataclass(frozen=True)
class Settings:
    """Top-level application settings."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    images: ImageConfig = field(default_factory=ImageConfig)
    moderation: ModerationConfig = field(default_factory=ModerationConfig)
    duplicates: DuplicateConfig = field(default_factory=DuplicateConfig)
    bulk_import: BulkImportConfig = field(default_factory=BulkImportConfig)
    limits: EntryLimits = field(default_factory=EntryLimits)


def _project_root() -> Path:
    """Best-effort detection of the repository root for config discovery."""

    module_path = Path(__file__).resolve()
    try:
        return module_path.parents[2]
    except IndexError:  # pragma: no cover
        return module_path.parent


def _default_settings_paths() -> list[Path]:
    candidates: list[Path] = []
    for candidate in (
        (Path.cwd() / "config" / "settings.yaml").resolve(),
        (_project_root() / "config" / "settings.yaml").resolve(),
    ):
        if candidate not in candidates:
            candidates.append(candidate)
    return candidates


def _resolve_settings_path(settings_path: Path | str | None) -> Path:
    """Determine which settings file to load, honoring overrides."""

    if settings_path:
        return Path(settings_path).expanduser().resolve()

    env_override = os.getenv("RESOURCE_FINDER_SETTINGS")
    if env_override:
        return Path(env_override).expanduser().resolve()

    candidates = _default_settings_paths()
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return candidates[0]


def _as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    return {}


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _str_tuple(value: Any) -> tuple[str, ...] | None:
    if not isinstance(value, list):
        return None
    items = tuple(str(item) for item in value if str(item).strip())
    return items or None


def _load_images(raw: dict[str, Any], base: ImageConfig) -> ImageConfig:
    overrides: dict[str, Any] = {}
    for key in ("root_path", "public_url_prefix", "pending_dirname", "quarantine_dirname", "output_format", "output_extension"):
        if isinstance(raw.get(key), str) and raw[key].strip():
            overrides[key] = raw[key].strip()
    for key in ("max_upload_bytes", "quality"):
        if _is_int(raw.get(key)) and raw[key] > 0:
            overrides[key] = raw[key]

    content_types = _str_tuple(raw.get("allowed_content_types"))
    if content_types:
        overrides["allowed_content_types"] = tuple(item.lower() for item in content_types)

    sizes = raw.get("thumbnail_sizes")
    if isinstance(sizes, list) and sizes and all(_is_int(size) and size > 0 for size in sizes):
        overrides["thumbnail_sizes"] = tuple(sizes)

    return replace(base, **overrides)


def load_settings(settings_path: Path | str | None = None) -> Settings:
    """Load application settings from a YAML file, falling back to defaults.

    Missing files, malformed documents and mistyped fields never raise: the
    affected values keep their defaults. The returned object is immutable and
    is meant to be passed explicitly to each component.
    """

    path = _resolve_settings_path(settings_path)
    settings = Settings()

    if not path.exists() or not path.is_file():
        return settings

    try:
        with path.open("r", encoding="utf-8") as fp:
            raw = yaml.safe_load(fp) or {}
    except yaml.YAMLError as exc:
        LOGGER.error("settings_parse_error", extra={"path": str(path), "error": str(exc)})
        return settings

    if not isinstance(raw, dict):
        return settings

    database_raw = _as_dict(raw.get("database"))
    database = settings.database
    if isinstance(database_raw.get("url"), str) and database_raw["url"].strip():
        database = replace(database, url=database_raw["url"].strip())

    images = _load_images(_as_dict(raw.get("images")), settings.images)

    moderation_raw = _as_dict(raw.get("moderation"))
    moderation = settings.moderation
    terms = _str_tuple(moderation_raw.get("prohibited_terms"))
    if terms:
        moderation = replace(moderation, prohibited_terms=terms)

    duplicates_raw = _as_dict(raw.get("duplicates"))
    duplicates = settings.duplicates
    threshold = duplicates_raw.get("similarity_threshold")
    if isinstance(threshold, (int, float)) and not isinstance(threshold, bool) and 0.0 < threshold <= 1.0:
        duplicates = replace(duplicates, similarity_threshold=float(threshold))

    bulk_raw = _as_dict(raw.get("bulk_import"))
    bulk_import = settings.bulk_import
    if _is_int(bulk_raw.get("max_payload_bytes")) and bulk_raw["max_payload_bytes"] > 0:
        bulk_import = replace(bulk_import, max_payload_bytes=bulk_raw["max_payload_bytes"])
    if _is_int(bulk_raw.get("max_rows")) and bulk_raw["max_rows"] > 0:
        bulk_import = replace(bulk_import, max_rows=bulk_raw["max_rows"])

    limits_raw = _as_dict(raw.get("limits"))
    limits = settings.limits
    limit_overrides = {
        key: limits_raw[key]
        for key in ("max_name_length", "min_tier", "max_tier")
        if _is_int(limits_raw.get(key)) and limits_raw[key] > 0
    }
    if limit_overrides:
        candidate = replace(limits, **limit_overrides)
        if candidate.min_tier <= candidate.max_tier:
            limits = candidate

    LOGGER.info("settings_loaded", extra={"path": str(path)})
    return replace(
        settings,
        database=database,
        images=images,
        moderation=moderation,
        duplicates=duplicates,
        bulk_import=bulk_import,
        limits=limits,
    )


__all__ = [
    "DEFAULT_PROHIBITED_TERMS",
    "BulkImportConfig",
    "DatabaseConfig",
    "DuplicateConfig",
    "EntryLimits",
    "ImageConfig",
    "ModerationConfig",
    "Settings",
    "load_settings",
]
