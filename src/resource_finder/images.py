"""Image ingestion for catalog entries: validation, thumbnails, hashing and quarantine.

Official images live at ``<root>/<entryId>-<size>.<ext>``; pending candidates
live under ``<root>/pending/<entryId>-<pendingId>-<size>.<ext>``. Files that
are replaced or removed are moved into ``<root>/ToDelete/`` rather than
deleted, and permanent cleanup of that folder is left to housekeeping.

Operations on different entries are independent. Two concurrent writers for
the same entry are not serialized here; callers must hold a per-entry lock
(see :mod:`resource_finder.image_review`).
"""

from __future__ import annotations

import io
import secrets
import shutil
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from PIL import Image, UnidentifiedImageError

from resource_finder.config import ImageConfig
from resource_finder.errors import StorageFault, ValidationError
from resource_finder.hasher import compute_perceptual_hash
from resource_finder.thumbnailing import save_thumbnail
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "image_pipeline"})

_DECODED_FORMATS: frozenset[str] = frozenset({"JPEG", "PNG", "WEBP"})


@dataclass(frozen=True)
class ImageTriple:
    """Locators of the two thumbnails plus the perceptual hash."""

    thumb256: str
    thumb512: str
    phash: str


@dataclass(frozen=True)
class OfficialWrite:
    """New official files of an entry plus where the previous ones were quarantined.

    ``displaced`` pairs each official path with its quarantined predecessor so
    that :meth:`ImagePipeline.restore_official` can put them back.
    """

    triple: ImageTriple
    displaced: tuple[tuple[Path, Path], ...] = ()


class PendingFiles(Protocol):
    """The parts of a pending-image record the pipeline needs."""

    id: str
    image_phash: str | None


class ImagePipeline:
    """Validate uploads and manage the files behind pending and official images."""

    def __init__(self, config: ImageConfig | None = None, root: Path | str | None = None) -> None:
        self.config = config or ImageConfig()
        self.root = Path(root if root is not None else self.config.root_path).expanduser().resolve()

    # -- layout ---------------------------------------------------------

    @property
    def pending_dir(self) -> Path:
        return self.root / self.config.pending_dirname

    @property
    def quarantine_dir(self) -> Path:
        return self.root / self.config.quarantine_dirname

    def official_path(self, entry_id: str, size: int) -> Path:
        return self.root / f"{entry_id}-{size}.{self.config.output_extension}"

    def pending_path(self, entry_id: str, pending_id: str, size: int) -> Path:
        return self.pending_dir / f"{entry_id}-{pending_id}-{size}.{self.config.output_extension}"

    def locator_for(self, path: Path) -> str:
        """Public locator for a file under the image root."""

        relative = path.relative_to(self.root).as_posix()
        return f"{self.config.public_url_prefix.rstrip('/')}/{relative}"

    def _triple(self, paths: dict[int, Path], phash: str) -> ImageTriple:
        small, large = self._sizes()
        return ImageTriple(thumb256=self.locator_for(paths[small]), thumb512=self.locator_for(paths[large]), phash=phash)

    def _sizes(self) -> tuple[int, int]:
        sizes = sorted(self.config.thumbnail_sizes)
        return sizes[0], sizes[-1]

    # -- validation -----------------------------------------------------

    def validate_upload(self, data: bytes, content_type: str | None) -> None:
        """Raise :class:`ValidationError` with a specific reason for a bad upload."""

        if not data:
            raise ValidationError("Image file is empty.")

        limit = self.config.max_upload_bytes
        if len(data) > limit:
            raise ValidationError(f"Image too large (max {limit // 1024} KB).")

        declared = (content_type or "").split(";", 1)[0].strip().lower()
        if declared not in self.config.allowed_content_types:
            raise ValidationError(f"Unsupported image type: {declared or 'unknown'}.")

    def decode_first_frame(self, data: bytes) -> Image.Image:
        """Decode ``data`` and return only its first frame, fully loaded."""

        try:
            with Image.open(io.BytesIO(data)) as source:
                if source.format not in _DECODED_FORMATS:
                    raise ValidationError("Image content is not JPEG, PNG or WebP.")
                frames = getattr(source, "n_frames", 1)
                source.seek(0)
                frame = source.copy()
        except ValidationError:
            raise
        except Image.DecompressionBombError as exc:
            raise ValidationError("Image dimensions are too large.") from exc
        except (UnidentifiedImageError, OSError, ValueError) as exc:
            raise ValidationError("Image could not be decoded.") from exc

        if frames > 1:
            LOGGER.info("image_extra_frames_dropped", extra={"frames": frames})
        return frame

    # -- writes ---------------------------------------------------------

    def _write_derivatives(self, image: Image.Image, paths: dict[int, Path]) -> str:
        for size, path in paths.items():
            save_thumbnail(image, path, size, self.config.output_format, self.config.quality)

        with Image.open(paths[self.config.hash_source_size]) as derivative:
            return compute_perceptual_hash(derivative)

    def process_and_save(self, data: bytes, content_type: str | None, entry_id: str) -> ImageTriple:
        """Validate ``data`` and write it as the official image of ``entry_id``.

        Existing official files are quarantined first; a quarantine failure is
        logged and the new write still happens.
        """

        return self.write_official(data, content_type, entry_id).triple

    def write_official(self, data: bytes, content_type: str | None, entry_id: str) -> OfficialWrite:
        """Like :meth:`process_and_save`, also reporting the displaced files."""

        self.validate_upload(data, content_type)
        image = self.decode_first_frame(data)

        paths = {size: self.official_path(entry_id, size) for size in self.config.thumbnail_sizes}
        displaced = self._quarantine_moves(list(paths.values()), entry_id=entry_id)
        try:
            phash = self._write_derivatives(image, paths)
        except OSError as exc:
            raise StorageFault("Could not write image files.", exc) from exc

        LOGGER.info("official_image_written", extra={"entry_id": entry_id, "phash": phash})
        return OfficialWrite(triple=self._triple(paths, phash), displaced=tuple(displaced))

    def save_pending(self, data: bytes, content_type: str | None, entry_id: str, pending_id: str) -> ImageTriple:
        """Validate ``data`` and write it as a pending candidate for ``entry_id``."""

        self.validate_upload(data, content_type)
        image = self.decode_first_frame(data)

        paths = {size: self.pending_path(entry_id, pending_id, size) for size in self.config.thumbnail_sizes}
        try:
            phash = self._write_derivatives(image, paths)
        except OSError as exc:
            self._discard(paths.values())
            raise StorageFault("Could not write image files.", exc) from exc

        LOGGER.info("pending_image_written", extra={"entry_id": entry_id, "pending_id": pending_id, "phash": phash})
        return self._triple(paths, phash)

    def promote_pending(self, entry_id: str, pending: PendingFiles) -> ImageTriple:
        """Copy a pending candidate onto the official paths of ``entry_id``.

        The current official files are quarantined, the pending files are copied
        into place atomically and then quarantined too. Sibling candidates are
        untouched.
        """

        write = self.install_pending(entry_id, pending)
        self.quarantine_pending(entry_id, pending.id)
        return write.triple

    def install_pending(self, entry_id: str, pending: PendingFiles) -> OfficialWrite:
        """Copy a pending candidate onto the official paths, leaving the pending files in place.

        Callers quarantine the pending files once the promotion is recorded, or
        call :meth:`restore_official` if it is not.
        """

        sources = {size: self.pending_path(entry_id, pending.id, size) for size in self.config.thumbnail_sizes}
        missing = [str(path) for path in sources.values() if not path.is_file()]
        if missing:
            raise StorageFault(f"Pending image files are missing: {', '.join(missing)}")

        targets = {size: self.official_path(entry_id, size) for size in self.config.thumbnail_sizes}
        displaced = self._quarantine_moves(list(targets.values()), entry_id=entry_id)
        try:
            for size, source in sources.items():
                target = targets[size]
                staging = target.with_name(f".{target.name}.{secrets.token_hex(4)}.tmp")
                shutil.copyfile(source, staging)
                staging.replace(target)
        except OSError as exc:
            raise StorageFault("Could not promote pending image files.", exc) from exc

        phash = pending.image_phash
        if not phash:
            with Image.open(targets[self.config.hash_source_size]) as derivative:
                phash = compute_perceptual_hash(derivative)

        LOGGER.info("pending_image_installed", extra={"entry_id": entry_id, "pending_id": pending.id})
        return OfficialWrite(triple=self._triple(targets, phash), displaced=tuple(displaced))

    def restore_official(self, entry_id: str, write: OfficialWrite) -> None:
        """Undo :meth:`write_official` or :meth:`install_pending` after a failed save.

        The new official files are quarantined and the displaced ones are moved
        back. Best effort: failures are logged.
        """

        self.move_pending_or_official_to_quarantine(entry_id)
        for target, source in write.displaced:
            try:
                shutil.move(str(source), str(target))
            except OSError as exc:
                LOGGER.warning(
                    "image_restore_failed",
                    extra={"entry_id": entry_id, "source": str(source), "error": str(exc)},
                )
                continue
            LOGGER.info("image_restored", extra={"entry_id": entry_id, "source": str(source), "destination": str(target)})

    # -- quarantine -----------------------------------------------------

    def move_pending_or_official_to_quarantine(self, entry_id: str) -> list[Path]:
        """Move the official files of ``entry_id`` into quarantine.

        Best effort: failures are logged and skipped so that a following write
        is never blocked. Returns the quarantined destinations.
        """

        paths = [self.official_path(entry_id, size) for size in self.config.thumbnail_sizes]
        return self._quarantine_paths(paths, entry_id=entry_id)

    def quarantine_pending(self, entry_id: str, pending_id: str) -> list[Path]:
        paths = [self.pending_path(entry_id, pending_id, size) for size in self.config.thumbnail_sizes]
        return self._quarantine_paths(paths, entry_id=entry_id)

    def quarantine_entry(self, entry_id: str, pending_ids: list[str]) -> list[Path]:
        """Quarantine every file belonging to ``entry_id`` (official and pending)."""

        moved = self.move_pending_or_official_to_quarantine(entry_id)
        for pending_id in pending_ids:
            moved.extend(self.quarantine_pending(entry_id, pending_id))
        return moved

    def _quarantine_paths(self, paths: list[Path], *, entry_id: str) -> list[Path]:
        return [destination for _, destination in self._quarantine_moves(paths, entry_id=entry_id)]

    def _quarantine_moves(self, paths: list[Path], *, entry_id: str) -> list[tuple[Path, Path]]:
        """Quarantine existing ``paths``; returns ``(source, destination)`` for each moved file."""

        moved: list[tuple[Path, Path]] = []
        for path in paths:
            if not path.exists():
                continue
            try:
                destination = self._move_to_quarantine(path)
            except OSError as exc:
                LOGGER.warning(
                    "image_quarantine_failed",
                    extra={"entry_id": entry_id, "path": str(path), "error": str(exc)},
                )
                continue
            moved.append((path, destination))
            LOGGER.info("image_quarantined", extra={"entry_id": entry_id, "source": str(path), "destination": str(destination)})
        return moved

    def _move_to_quarantine(self, path: Path) -> Path:
        self.quarantine_dir.mkdir(parents=True, exist_ok=True)
        destination = self.quarantine_dir / path.name
        if destination.exists():
            stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S%f")[:-3]
            destination = destination.with_name(f"{path.stem}-{stamp}-{secrets.token_hex(4)}{path.suffix}")
        shutil.move(str(path), str(destination))
        return destination

    @staticmethod
    def _discard(paths: Iterable[Path]) -> None:
        for path in paths:
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                LOGGER.warning("image_file_remove_failed", extra={"path": str(path), "error": str(exc)})


__all__ = ["ImagePipeline", "ImageTriple", "OfficialWrite", "PendingFiles"]
