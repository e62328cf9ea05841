"""Pending/official image state machine for catalog entries.

States per entry: no image, ``N`` pending candidates, and an official slot that
is independent of the pending queue.

- contributor upload adds one pending candidate;
- admin promote consumes exactly one candidate and overwrites the official slot;
- admin purge drops every candidate and leaves the official slot alone;
- admin remove clears the official slot;
- entry delete removes everything (see :class:`~resource_finder.catalog.SubmissionService`).

Pending candidates never expire on their own.
"""

from __future__ import annotations

import time
import weakref
from collections.abc import Iterator
from contextlib import contextmanager
from threading import Lock

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from resource_finder.db import CatalogEntry, PendingImage, new_id
from resource_finder.errors import NotFoundError, StorageFault
from resource_finder.images import ImagePipeline, ImageTriple, OfficialWrite
from resource_finder.repository import CatalogRepository
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "image_review"})

# Entries drop out once no caller holds or waits on their lock.
_ENTRY_LOCKS: weakref.WeakValueDictionary[str, Lock] = weakref.WeakValueDictionary()
_ENTRY_LOCKS_GUARD = Lock()


@contextmanager
def entry_lock(entry_id: str) -> Iterator[None]:
    """Serialize image writes for one entry within this process.

    Separate processes sharing an image root still need their own coordination.
    """

    with _ENTRY_LOCKS_GUARD:
        lock = _ENTRY_LOCKS.get(entry_id)
        if lock is None:
            lock = Lock()
            _ENTRY_LOCKS[entry_id] = lock
    with lock:
        yield


class ImageReviewService:
    """Drive uploads, promotions and purges against storage and the image pipeline."""

    def __init__(self, session: Session, pipeline: ImagePipeline) -> None:
        self._session = session
        self._repo = CatalogRepository(session)
        self._pipeline = pipeline

    def _commit(self, event_name: str, **extra: object) -> None:
        try:
            self._session.commit()
        except SQLAlchemyError as exc:
            self._session.rollback()
            LOGGER.error(event_name, extra={**extra, "error": str(exc)})
            raise StorageFault("Could not save image changes.", exc) from exc

    def _set_official(self, entry: CatalogEntry, triple: ImageTriple | None) -> None:
        entry.img256_url = triple.thumb256 if triple else None
        entry.img512_url = triple.thumb512 if triple else None
        entry.image_phash = triple.phash if triple else None
        entry.updated_at = time.time()

    def list_pending(self, entry_id: str) -> list[PendingImage]:
        self._repo.require_entry(entry_id)
        return self._repo.list_pending(entry_id)

    def upload_pending(
        self,
        entry_id: str,
        data: bytes,
        content_type: str | None,
        uploaded_by: str | None = None,
    ) -> PendingImage:
        """Stage a contributor image as a new pending candidate."""

        entry = self._repo.require_entry(entry_id)
        pending_id = new_id()
        triple = self._pipeline.save_pending(data, content_type, entry.id, pending_id)

        pending = PendingImage(
            id=pending_id,
            entry_id=entry.id,
            img256_url=triple.thumb256,
            img512_url=triple.thumb512,
            image_phash=triple.phash,
            uploaded_by=uploaded_by,
            created_at=time.time(),
        )
        try:
            self._repo.add_pending(pending)
            self._session.commit()
        except SQLAlchemyError as exc:
            self._session.rollback()
            self._pipeline.quarantine_pending(entry.id, pending_id)
            LOGGER.error("pending_image_save_error", extra={"entry_id": entry.id, "error": str(exc)})
            raise StorageFault("Could not save the pending image.", exc) from exc

        LOGGER.info("pending_image_uploaded", extra={"entry_id": entry.id, "pending_id": pending_id})
        return pending

    def _commit_or_restore(self, entry: CatalogEntry, write: OfficialWrite, event_name: str, **extra: object) -> None:
        try:
            self._session.commit()
        except SQLAlchemyError as exc:
            self._session.rollback()
            self._pipeline.restore_official(entry.id, write)
            LOGGER.error(event_name, extra={"entry_id": entry.id, **extra, "error": str(exc)})
            raise StorageFault("Could not save image changes.", exc) from exc

    def promote_pending(self, entry_id: str, pending_id: str) -> ImageTriple:
        """Make one pending candidate the official image; sibling candidates stay queued.

        The pending files are quarantined only after the promotion is committed;
        a failed commit puts the previous official files back.
        """

        with entry_lock(entry_id):
            entry = self._repo.require_entry(entry_id)
            pending = self._repo.get_pending(entry.id, pending_id)
            if pending is None:
                raise NotFoundError(f"Pending image {pending_id} was not found for entry {entry_id}.")

            write = self._pipeline.install_pending(entry.id, pending)
            self._set_official(entry, write.triple)
            self._repo.delete_pending(pending)
            self._commit_or_restore(entry, write, "pending_promote_save_error", pending_id=pending_id)
            self._pipeline.quarantine_pending(entry.id, pending_id)

        LOGGER.info("official_image_promoted", extra={"entry_id": entry_id, "pending_id": pending_id})
        return write.triple

    def purge_pending(self, entry_id: str) -> int:
        """Discard every pending candidate of ``entry_id``; returns how many were removed."""

        with entry_lock(entry_id):
            entry = self._repo.require_entry(entry_id)
            pending_ids = self._repo.delete_all_pending(entry.id)
            self._commit("pending_purge_save_error", entry_id=entry.id)
            for pending_id in pending_ids:
                self._pipeline.quarantine_pending(entry.id, pending_id)

        LOGGER.info("pending_images_purged", extra={"entry_id": entry_id, "count": len(pending_ids)})
        return len(pending_ids)

    def remove_official(self, entry_id: str) -> None:
        with entry_lock(entry_id):
            entry = self._repo.require_entry(entry_id)
            self._set_official(entry, None)
            self._commit("official_remove_save_error", entry_id=entry.id)
            self._pipeline.move_pending_or_official_to_quarantine(entry.id)

        LOGGER.info("official_image_removed", extra={"entry_id": entry_id})

    def replace_official(self, entry_id: str, data: bytes, content_type: str | None) -> ImageTriple:
        """Admin upload straight into the official slot, bypassing the pending queue."""

        with entry_lock(entry_id):
            entry = self._repo.require_entry(entry_id)
            write = self._pipeline.write_official(data, content_type, entry.id)
            self._set_official(entry, write.triple)
            self._commit_or_restore(entry, write, "official_replace_save_error")

        return write.triple


__all__ = ["ImageReviewService", "entry_lock"]
