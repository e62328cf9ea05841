"""Storage collaborator: catalog entries, reference data, pending images and reports."""

from __future__ import annotations

import time
from collections.abc import Sequence
from typing import TypeVar

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from resource_finder.canonical import canonicalize, slugify
from resource_finder.db import (
    Biome,
    CatalogEntry,
    CatalogType,
    EntryStatus,
    PendingImage,
    Report,
    ReportReason,
    ReportStatus,
    ReportTarget,
)
from resource_finder.duplicates import EntryKey
from resource_finder.errors import DuplicateError, NotFoundError, StorageFault
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "catalog_repository"})

ReferenceModel = TypeVar("ReferenceModel", CatalogType, Biome)


class CatalogRepository:
    """Persist catalog rows via SQLAlchemy.

    Writes are flushed inside a savepoint so that a unique-constraint violation
    rolls back only the offending row and surfaces as :class:`DuplicateError`.
    Committing is left to the calling service.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    @property
    def session(self) -> Session:
        return self._session

    # -- reference data -------------------------------------------------

    def find_type(self, ref: str | None) -> CatalogType | None:
        return self._find_reference(CatalogType, ref)

    def find_biome(self, ref: str | None) -> Biome | None:
        return self._find_reference(Biome, ref)

    def _find_reference(self, model: type[ReferenceModel], ref: str | None) -> ReferenceModel | None:
        """Look up by id, display name or slug, ignoring case."""

        text = str(ref).strip() if ref is not None else ""
        if not text:
            return None

        lowered = text.lower()
        stmt = select(model).where(
            or_(
                model.id == text,
                func.lower(model.name) == lowered,
                func.lower(model.slug) == lowered,
                model.slug == slugify(text),
            )
        )
        return self._session.execute(stmt).scalars().first()

    def list_types(self) -> list[CatalogType]:
        return list(self._session.execute(select(CatalogType).order_by(CatalogType.name)).scalars())

    def list_biomes(self) -> list[Biome]:
        return list(self._session.execute(select(Biome).order_by(Biome.name)).scalars())

    # -- entries --------------------------------------------------------

    def get_entry(self, entry_id: str) -> CatalogEntry | None:
        return self._session.get(CatalogEntry, entry_id)

    def require_entry(self, entry_id: str) -> CatalogEntry:
        entry = self.get_entry(entry_id)
        if entry is None:
            raise NotFoundError(f"Entry {entry_id} was not found.")
        return entry

    def find_by_key(self, key: EntryKey, exclude_id: str | None = None) -> CatalogEntry | None:
        stmt = select(CatalogEntry).where(
            CatalogEntry.tier == key.tier,
            CatalogEntry.type_id == key.type_id,
            CatalogEntry.biome_id == key.biome_id,
            CatalogEntry.canonical_name == key.canonical_name,
        )
        if exclude_id is not None:
            stmt = stmt.where(CatalogEntry.id != exclude_id)
        return self._session.execute(stmt).scalars().first()

    def bucket_entries(self, tier: int, type_id: str, biome_id: str, exclude_id: str | None = None) -> list[CatalogEntry]:
        """Entries sharing one (tier, type, biome) bucket."""

        stmt = select(CatalogEntry).where(
            CatalogEntry.tier == tier,
            CatalogEntry.type_id == type_id,
            CatalogEntry.biome_id == biome_id,
        )
        if exclude_id is not None:
            stmt = stmt.where(CatalogEntry.id != exclude_id)
        return list(self._session.execute(stmt).scalars())

    def add_entry(self, entry: CatalogEntry) -> CatalogEntry:
        now = time.time()
        if entry.created_at is None:
            entry.created_at = now
        if entry.updated_at is None:
            entry.updated_at = now
        if entry.status is None:
            entry.status = EntryStatus.UNCONFIRMED.value

        self._flush_in_savepoint(entry)
        LOGGER.info(
            "entry_created",
            extra={"entry_id": entry.id, "tier": entry.tier, "canonical_name": entry.canonical_name},
        )
        return entry

    def save_entry(self, entry: CatalogEntry) -> CatalogEntry:
        """Flush pending changes to an existing entry."""

        entry.updated_at = time.time()
        self._flush_in_savepoint(entry)
        return entry

    def _flush_in_savepoint(self, entry: CatalogEntry) -> None:
        try:
            with self._session.begin_nested():
                self._session.add(entry)
                self._session.flush()
        except IntegrityError as exc:
            LOGGER.info(
                "entry_unique_violation",
                extra={"tier": entry.tier, "canonical_name": entry.canonical_name, "error": str(exc.orig)},
            )
            raise DuplicateError() from exc
        except SQLAlchemyError as exc:
            LOGGER.error("entry_write_error", extra={"canonical_name": entry.canonical_name, "error": str(exc)})
            raise StorageFault("Could not save the entry.", exc) from exc

    def delete_entry(self, entry: CatalogEntry) -> list[str]:
        """Delete ``entry`` with its pending images and reports; return the pending ids removed."""

        pending_ids = [pending.id for pending in self.list_pending(entry.id)]
        self._session.execute(delete(PendingImage).where(PendingImage.entry_id == entry.id))
        self._session.execute(delete(Report).where(Report.entry_id == entry.id))
        self._session.delete(entry)
        self._session.flush()
        LOGGER.info("entry_deleted", extra={"entry_id": entry.id, "pending_removed": len(pending_ids)})
        return pending_ids

    def search_entries(
        self,
        query: str | None = None,
        *,
        tier: int | None = None,
        type_id: str | None = None,
        biome_id: str | None = None,
        status: EntryStatus | None = None,
        limit: int | None = None,
    ) -> list[CatalogEntry]:
        """Filter entries; ``query`` matches the canonical name or the raw display name."""

        stmt = select(CatalogEntry)
        if query and query.strip():
            canonical = canonicalize(query)
            clauses = [CatalogEntry.name.contains(query.strip(), autoescape=True)]
            if canonical:
                clauses.append(CatalogEntry.canonical_name.contains(canonical, autoescape=True))
            stmt = stmt.where(or_(*clauses))
        if tier is not None:
            stmt = stmt.where(CatalogEntry.tier == tier)
        if type_id is not None:
            stmt = stmt.where(CatalogEntry.type_id == type_id)
        if biome_id is not None:
            stmt = stmt.where(CatalogEntry.biome_id == biome_id)
        if status is not None:
            stmt = stmt.where(CatalogEntry.status == status.value)
        stmt = stmt.order_by(CatalogEntry.name, CatalogEntry.id)
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self._session.execute(stmt).scalars())

    # -- pending images -------------------------------------------------

    def add_pending(self, pending: PendingImage) -> PendingImage:
        if pending.created_at is None:
            pending.created_at = time.time()
        self._session.add(pending)
        self._session.flush()
        return pending

    def get_pending(self, entry_id: str, pending_id: str) -> PendingImage | None:
        stmt = select(PendingImage).where(PendingImage.id == pending_id, PendingImage.entry_id == entry_id)
        return self._session.execute(stmt).scalars().first()

    def list_pending(self, entry_id: str) -> list[PendingImage]:
        stmt = (
            select(PendingImage)
            .where(PendingImage.entry_id == entry_id)
            .order_by(PendingImage.created_at, PendingImage.id)
        )
        return list(self._session.execute(stmt).scalars())

    def delete_pending(self, pending: PendingImage) -> None:
        self._session.delete(pending)
        self._session.flush()

    def delete_all_pending(self, entry_id: str) -> list[str]:
        pending_ids = [pending.id for pending in self.list_pending(entry_id)]
        if pending_ids:
            self._session.execute(delete(PendingImage).where(PendingImage.entry_id == entry_id))
            self._session.flush()
        return pending_ids

    # -- reports --------------------------------------------------------

    def create_report(
        self,
        entry_id: str,
        target: ReportTarget,
        reason: ReportReason,
        note: str | None = None,
        created_by: str | None = None,
    ) -> Report:
        report = Report(
            entry_id=entry_id,
            target=target.value,
            reason=reason.value,
            status=ReportStatus.OPEN.value,
            note=note,
            created_by=created_by,
            created_at=time.time(),
        )
        self._session.add(report)
        self._session.flush()
        LOGGER.info("report_created", extra={"report_id": report.id, "entry_id": entry_id, "reason": reason.value})
        return report

    def get_report(self, report_id: str) -> Report | None:
        return self._session.get(Report, report_id)

    def close_report(self, report_id: str, resolved_by: str | None = None) -> Report:
        report = self.get_report(report_id)
        if report is None:
            raise NotFoundError(f"Report {report_id} was not found.")
        if report.status != ReportStatus.CLOSED.value:
            report.status = ReportStatus.CLOSED.value
            report.resolved_by = resolved_by
            report.resolved_at = time.time()
            self._session.flush()
        return report

    def list_reports(self, entry_id: str | None = None, status: ReportStatus | None = None) -> Sequence[Report]:
        stmt = select(Report)
        if entry_id is not None:
            stmt = stmt.where(Report.entry_id == entry_id)
        if status is not None:
            stmt = stmt.where(Report.status == status.value)
        stmt = stmt.order_by(Report.created_at, Report.id)
        return list(self._session.execute(stmt).scalars())


__all__ = ["CatalogRepository"]
