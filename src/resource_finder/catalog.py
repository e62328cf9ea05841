"""Interactive submission and admin operations on catalog entries."""

from __future__ import annotations

import enum
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from resource_finder.canonical import canonicalize
from resource_finder.config import EntryLimits, Settings
from resource_finder.db import (
    Biome,
    CatalogEntry,
    CatalogType,
    EntryStatus,
    PendingImage,
    Report,
    ReportReason,
    ReportTarget,
)
from resource_finder.duplicates import DuplicateDetector, EntryKey
from resource_finder.errors import CatalogError, DuplicateError, StorageFault, ValidationError
from resource_finder.image_review import ImageReviewService
from resource_finder.images import ImagePipeline
from resource_finder.moderation import ModerationFilter
from resource_finder.repository import CatalogRepository
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "submission"})

E = TypeVar("E", bound=enum.Enum)


def parse_choice(enum_cls: type[E], raw: Any, field_name: str) -> E:
    """Match ``raw`` against an enum's values or names, ignoring case.

    Unrecognized values raise :class:`ValidationError` instead of falling back
    to a default.
    """

    if isinstance(raw, enum_cls):
        return raw
    text = str(raw).strip().lower() if raw is not None else ""
    for member in enum_cls:
        if text in {str(member.value).lower(), member.name.lower()}:
            return member
    allowed = ", ".join(str(member.value) for member in enum_cls)
    raise ValidationError(f"Unrecognized {field_name} {raw!r}; expected one of: {allowed}.")


@dataclass(frozen=True)
class StatusUpdate:
    """Admin request to change an entry's lifecycle status."""

    status: EntryStatus

    @classmethod
    def parse(cls, raw: Any) -> StatusUpdate:
        """Build from a bare value or a ``{"status": ...}`` mapping."""

        value = raw.get("status") if isinstance(raw, Mapping) else raw
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValidationError("Status is required.")
        return cls(status=parse_choice(EntryStatus, value, "status"))


@dataclass(frozen=True)
class ImageUpload:
    data: bytes
    content_type: str | None


@dataclass(frozen=True)
class EntryFields:
    """Submitted entry fields after validation and reference resolution."""

    name: str
    canonical_name: str
    tier: int
    entry_type: CatalogType
    biome: Biome

    @property
    def key(self) -> EntryKey:
        return EntryKey(
            tier=self.tier,
            type_id=self.entry_type.id,
            biome_id=self.biome.id,
            canonical_name=self.canonical_name,
        )


@dataclass
class SubmissionResult:
    entry: CatalogEntry
    warnings: list[str] = field(default_factory=list)
    pending_image: PendingImage | None = None
    image_error: str | None = None


def parse_tier(raw: Any, limits: EntryLimits) -> tuple[int | None, str | None]:
    """Return ``(tier, None)`` or ``(None, reason)``."""

    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return None, "Tier is required."

    range_reason = f"Tier must be an integer between {limits.min_tier} and {limits.max_tier}."
    if isinstance(raw, bool):
        return None, range_reason
    if isinstance(raw, int):
        tier = raw
    elif isinstance(raw, float) and raw.is_integer():
        tier = int(raw)
    elif isinstance(raw, str) and raw.strip().lstrip("+-").isdigit():
        tier = int(raw.strip())
    else:
        return None, range_reason

    if not limits.min_tier <= tier <= limits.max_tier:
        return None, range_reason
    return tier, None


def validate_entry_fields(
    repo: CatalogRepository,
    limits: EntryLimits,
    name: Any,
    tier: Any,
    type_ref: Any,
    biome_ref: Any,
) -> tuple[EntryFields | None, list[str]]:
    """Check every field and collect all reasons rather than stopping at the first."""

    reasons: list[str] = []

    clean_name = str(name).strip() if name is not None else ""
    canonical = canonicalize(clean_name)
    if not clean_name:
        reasons.append("Name is required.")
    elif len(clean_name) > limits.max_name_length:
        reasons.append(f"Name must be at most {limits.max_name_length} characters.")
    elif not canonical:
        reasons.append("Name must contain letters or digits.")
    elif len(canonical) > limits.max_name_length:
        reasons.append(f"Name must be at most {limits.max_name_length} characters once normalized.")

    parsed_tier, tier_reason = parse_tier(tier, limits)
    if tier_reason:
        reasons.append(tier_reason)

    type_text = str(type_ref).strip() if type_ref is not None else ""
    entry_type = repo.find_type(type_text) if type_text else None
    if not type_text:
        reasons.append("Type is required.")
    elif entry_type is None:
        reasons.append(f"Unknown type: {type_text}.")

    biome_text = str(biome_ref).strip() if biome_ref is not None else ""
    biome = repo.find_biome(biome_text) if biome_text else None
    if not biome_text:
        reasons.append("Biome is required.")
    elif biome is None:
        reasons.append(f"Unknown biome: {biome_text}.")

    if reasons or parsed_tier is None or entry_type is None or biome is None:
        return None, reasons

    return (
        EntryFields(name=clean_name, canonical_name=canonical, tier=parsed_tier, entry_type=entry_type, biome=biome),
        reasons,
    )


class SubmissionService:
    """Accept, edit and retire catalog entries.

    The exact-key lookup and the fuzzy similarity check are advisory; the
    unique constraint behind :meth:`CatalogRepository.add_entry` is the hard
    check, and a late violation surfaces as the same :class:`DuplicateError`.
    """

    def __init__(self, session: Session, settings: Settings | None = None, pipeline: ImagePipeline | None = None) -> None:
        self._settings = settings or Settings()
        self._session = session
        self._repo = CatalogRepository(session)
        self._moderation = ModerationFilter(self._settings.moderation.prohibited_terms)
        self._detector = DuplicateDetector(self._settings.duplicates.similarity_threshold)
        self._pipeline = pipeline or ImagePipeline(self._settings.images)
        self._images = ImageReviewService(session, self._pipeline)

    @property
    def repository(self) -> CatalogRepository:
        return self._repo

    def _validated(self, name: Any, tier: Any, type_ref: Any, biome_ref: Any) -> EntryFields:
        fields, reasons = validate_entry_fields(self._repo, self._settings.limits, name, tier, type_ref, biome_ref)
        if fields is None:
            raise ValidationError(reasons)
        self._moderation.check(fields.name)
        return fields

    def _similar_entry_warnings(self, fields: EntryFields, exclude_id: str | None = None) -> list[str]:
        bucket = self._repo.bucket_entries(fields.tier, fields.entry_type.id, fields.biome.id, exclude_id=exclude_id)
        match = self._detector.find_strong_duplicate(bucket, fields.key)
        if match is None:
            return []
        similar, score = match
        LOGGER.info("similar_entry_warning", extra={"entry_id": similar.id, "score": round(score, 4)})
        return [f"A similar entry already exists: {similar.name} (similarity {score:.2f})."]

    def _commit(self) -> None:
        try:
            self._session.commit()
        except SQLAlchemyError as exc:
            self._session.rollback()
            raise StorageFault("Could not save changes.", exc) from exc

    def submit(
        self,
        name: Any,
        tier: Any,
        type_ref: Any,
        biome_ref: Any,
        image: ImageUpload | None = None,
        submitted_by: str | None = None,
    ) -> SubmissionResult:
        """Create an Unconfirmed entry, staging an attached image as a pending candidate.

        Raises:
            ValidationError: a field is missing or out of range.
            ModerationError: the name contains a prohibited term.
            DuplicateError: the exact key already exists.
        """

        fields = self._validated(name, tier, type_ref, biome_ref)
        if self._repo.find_by_key(fields.key) is not None:
            raise DuplicateError()

        warnings = self._similar_entry_warnings(fields)
        entry = CatalogEntry(
            tier=fields.tier,
            name=fields.name,
            canonical_name=fields.canonical_name,
            type_id=fields.entry_type.id,
            biome_id=fields.biome.id,
            status=EntryStatus.UNCONFIRMED.value,
            submitted_by=submitted_by,
        )
        try:
            self._repo.add_entry(entry)
        except DuplicateError:
            self._session.rollback()
            raise
        self._commit()

        result = SubmissionResult(entry=entry, warnings=warnings)
        if image is not None:
            # The entry stands even when its image is rejected.
            try:
                result.pending_image = self._images.upload_pending(entry.id, image.data, image.content_type, submitted_by)
            except CatalogError as exc:
                LOGGER.warning("submission_image_rejected", extra={"entry_id": entry.id, "error": exc.message})
                result.image_error = exc.message
        return result

    def edit_entry(self, entry_id: str, name: Any, tier: Any, type_ref: Any, biome_ref: Any) -> CatalogEntry:
        entry = self._repo.require_entry(entry_id)
        fields = self._validated(name, tier, type_ref, biome_ref)
        if self._repo.find_by_key(fields.key, exclude_id=entry.id) is not None:
            raise DuplicateError()

        entry.name = fields.name
        entry.canonical_name = fields.canonical_name
        entry.tier = fields.tier
        entry.type_id = fields.entry_type.id
        entry.biome_id = fields.biome.id
        try:
            self._repo.save_entry(entry)
        except DuplicateError:
            self._session.rollback()
            raise
        self._commit()
        LOGGER.info("entry_edited", extra={"entry_id": entry.id})
        return entry

    def set_status(self, entry_id: str, request: StatusUpdate | Mapping[str, Any] | str) -> CatalogEntry:
        update = request if isinstance(request, StatusUpdate) else StatusUpdate.parse(request)
        entry = self._repo.require_entry(entry_id)
        entry.status = update.status.value
        entry.updated_at = time.time()
        self._commit()
        LOGGER.info("entry_status_changed", extra={"entry_id": entry.id, "status": entry.status})
        return entry

    def delete_entry(self, entry_id: str) -> None:
        """Delete an entry, its pending images and reports, and quarantine its files."""

        entry = self._repo.require_entry(entry_id)
        pending_ids = self._repo.delete_entry(entry)
        self._commit()
        self._pipeline.quarantine_entry(entry_id, pending_ids)

    def report(
        self,
        entry_id: str,
        target: ReportTarget | str,
        reason: ReportReason | str,
        note: str | None = None,
        reported_by: str | None = None,
    ) -> Report:
        entry = self._repo.require_entry(entry_id)
        parsed_target = parse_choice(ReportTarget, target, "report target")
        if parsed_target is ReportTarget.OFFICIAL_IMAGE and not entry.has_official_image:
            raise ValidationError("This entry has no official image to report.")
        parsed_reason = parse_choice(ReportReason, reason, "report reason")
        clean_note = note.strip() if note and note.strip() else None

        report = self._repo.create_report(entry.id, parsed_target, parsed_reason, clean_note, reported_by)
        self._commit()
        return report

    def close_report(self, report_id: str, resolved_by: str | None = None) -> Report:
        report = self._repo.close_report(report_id, resolved_by)
        self._commit()
        LOGGER.info("report_closed", extra={"report_id": report_id})
        return report


__all__ = [
    "EntryFields",
    "ImageUpload",
    "StatusUpdate",
    "SubmissionResult",
    "SubmissionService",
    "parse_choice",
    "parse_tier",
    "validate_entry_fields",
]
