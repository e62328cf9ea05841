"""Batch import of catalog entries with per-row accept/reject reporting."""

from __future__ import annotations

import csv
import io
import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from resource_finder.catalog import validate_entry_fields
from resource_finder.config import Settings
from resource_finder.db import CatalogEntry, EntryStatus
from resource_finder.errors import DUPLICATE_ENTRY_MESSAGE, DuplicateError, StorageFault
from resource_finder.moderation import ModerationFilter
from resource_finder.repository import CatalogRepository
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "bulk_import"})

DUPLICATE_IN_PAYLOAD_MESSAGE = "Duplicate within payload."
_ROW_FIELDS = ("name", "tier", "type", "biome")


@dataclass(frozen=True)
class RowRejection:
    """A rejected row: zero-based index into the batch plus every reason that applied."""

    index: int
    reasons: tuple[str, ...]


@dataclass
class BatchImportResult:
    ok: bool
    accepted: int = 0
    rejected: list[RowRejection] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    accepted_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "accepted": self.accepted,
            "rejected": [{"index": item.index, "reasons": list(item.reasons)} for item in self.rejected],
            "errors": list(self.errors),
        }


def _normalize_row(row: Mapping[str, Any]) -> dict[str, Any]:
    """Lowercase the keys so ``Name``/``TIER`` headers work as well."""

    return {str(key).strip().lower(): value for key, value in row.items() if key is not None}


def parse_rows(payload: str, fmt: str) -> tuple[list[Any] | None, str | None]:
    """Parse a JSON array (or ``{"rows": [...]}``) or a CSV document with a header row."""

    if fmt == "csv":
        reader = csv.DictReader(io.StringIO(payload))
        if reader.fieldnames is None:
            return None, "Payload has no header row."
        return [dict(row) for row in reader], None

    if fmt != "json":
        return None, f"Unsupported payload format: {fmt}."

    try:
        document = json.loads(payload)
    except json.JSONDecodeError:
        return None, "Payload is not valid JSON."

    if isinstance(document, Mapping):
        document = document.get("rows")
    if not isinstance(document, list):
        return None, "Payload must be a list of rows."
    return document, None


class BulkImportValidator:
    """Validate and insert a batch of entries, row by row.

    Batch guards (payload size, row count, parseability) run first and abort the
    whole batch with nothing written. After that each row is judged on its own:
    a rejected row never blocks the others, and rows are processed in order so
    each one sees the rows accepted before it.
    """

    def __init__(self, session: Session, settings: Settings | None = None) -> None:
        self._settings = settings or Settings()
        self._session = session
        self._repo = CatalogRepository(session)
        self._moderation = ModerationFilter(self._settings.moderation.prohibited_terms)

    def _abort(self, errors: list[str]) -> BatchImportResult:
        LOGGER.warning("bulk_import_rejected", extra={"errors": errors})
        return BatchImportResult(ok=False, errors=errors)

    def import_payload(self, payload: bytes | str, fmt: str = "json", submitted_by: str | None = None) -> BatchImportResult:
        raw = payload.encode("utf-8") if isinstance(payload, str) else payload
        limit = self._settings.bulk_import.max_payload_bytes
        if len(raw) > limit:
            return self._abort([f"Payload too large (max {limit // 1024} KB)."])

        try:
            text = raw.decode("utf-8-sig")
        except UnicodeDecodeError:
            return self._abort(["Payload must be UTF-8 encoded."])

        rows, error = parse_rows(text, fmt.lower())
        if error or rows is None:
            return self._abort([error or "Payload could not be parsed."])
        return self.import_batch(rows, payload_size=len(raw), submitted_by=submitted_by)

    def import_batch(
        self,
        rows: Sequence[Any],
        payload_size: int | None = None,
        submitted_by: str | None = None,
    ) -> BatchImportResult:
        limits = self._settings.bulk_import
        if payload_size is None:
            payload_size = len(json.dumps(list(rows), default=str).encode("utf-8"))

        errors: list[str] = []
        if payload_size > limits.max_payload_bytes:
            errors.append(f"Payload too large (max {limits.max_payload_bytes // 1024} KB).")
        if not 1 <= len(rows) <= limits.max_rows:
            errors.append(f"Payload must contain between 1 and {limits.max_rows} rows (got {len(rows)}).")
        if errors:
            return self._abort(errors)

        result = BatchImportResult(ok=True)
        seen_keys: set[str] = set()
        for index, row in enumerate(rows):
            reasons, entry_id = self._import_row(row, seen_keys, submitted_by)
            if reasons:
                result.rejected.append(RowRejection(index=index, reasons=tuple(reasons)))
            elif entry_id is not None:
                result.accepted += 1
                result.accepted_ids.append(entry_id)

        try:
            self._session.commit()
        except SQLAlchemyError as exc:
            self._session.rollback()
            LOGGER.error("bulk_import_commit_error", extra={"error": str(exc)})
            raise StorageFault("Could not save the imported entries.", exc) from exc

        LOGGER.info(
            "bulk_import_completed",
            extra={"rows": len(rows), "accepted": result.accepted, "rejected": len(result.rejected)},
        )
        return result

    def _import_row(self, row: Any, seen_keys: set[str], submitted_by: str | None) -> tuple[list[str], str | None]:
        if not isinstance(row, Mapping):
            return [f"Row must be an object with {', '.join(_ROW_FIELDS)}."], None

        values = _normalize_row(row)
        fields, reasons = validate_entry_fields(
            self._repo,
            self._settings.limits,
            values.get("name"),
            values.get("tier"),
            values.get("type"),
            values.get("biome"),
        )

        name = values.get("name")
        if name is not None:
            match = self._moderation.contains_prohibited(str(name))
            if match.matched:
                reasons.append(f"Prohibited term detected: {match.term}")

        if fields is not None:
            key = fields.key.as_string()
            if key in seen_keys:
                reasons.append(DUPLICATE_IN_PAYLOAD_MESSAGE)
            elif self._repo.find_by_key(fields.key) is not None:
                reasons.append(DUPLICATE_ENTRY_MESSAGE)

        if reasons or fields is None:
            return reasons, None

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
        except DuplicateError as exc:
            return [exc.message], None
        except StorageFault as exc:
            return [f"Storage failure: {exc.message}"], None

        seen_keys.add(fields.key.as_string())
        return [], entry.id


__all__ = [
    "DUPLICATE_IN_PAYLOAD_MESSAGE",
    "BatchImportResult",
    "BulkImportValidator",
    "RowRejection",
    "parse_rows",
]
