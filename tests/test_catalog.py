"""Tests for interactive submission, admin edits and reports."""

from __future__ import annotations

import io
from pathlib import Path

import pytest
from PIL import Image
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from resource_finder.catalog import ImageUpload, StatusUpdate, SubmissionService
from resource_finder.config import ImageConfig, Settings
from resource_finder.db import CatalogEntry, EntryStatus, PendingImage, Report, ReportStatus, open_session
from resource_finder.errors import (
    DUPLICATE_ENTRY_MESSAGE,
    DuplicateError,
    ModerationError,
    NotFoundError,
    ValidationError,
)
from resource_finder.images import ImagePipeline
from resource_finder.seed import seed_reference_data


def _service(tmp_path: Path) -> tuple[Session, SubmissionService, ImagePipeline]:
    session = open_session(tmp_path / "catalog.db")
    seed_reference_data(session)
    pipeline = ImagePipeline(ImageConfig(), root=tmp_path / "images")
    return session, SubmissionService(session, Settings(), pipeline), pipeline


def _entry_count(session: Session) -> int:
    return session.execute(select(func.count()).select_from(CatalogEntry)).scalar_one()


def _png_upload() -> ImageUpload:
    buffer = io.BytesIO()
    Image.new("RGB", (64, 64), color="orange").save(buffer, format="PNG")
    return ImageUpload(data=buffer.getvalue(), content_type="image/png")


def test_submit_creates_unconfirmed_entry(tmp_path: Path) -> None:
    session, service, _ = _service(tmp_path)

    result = service.submit("  Rough Iron Ore ", "3", "ore-vein", "swamp", submitted_by="alice")

    entry = result.entry
    assert entry.name == "Rough Iron Ore"
    assert entry.canonical_name == "rough iron ore"
    assert entry.tier == 3
    assert entry.status == EntryStatus.UNCONFIRMED.value
    assert entry.submitted_by == "alice"
    assert result.warnings == []
    assert result.pending_image is None
    session.close()


def test_submit_collects_every_validation_reason(tmp_path: Path) -> None:
    session, service, _ = _service(tmp_path)

    with pytest.raises(ValidationError) as excinfo:
        service.submit("", 11, "Spaceship", None)

    assert excinfo.value.reasons == [
        "Name is required.",
        "Tier must be an integer between 1 and 10.",
        "Unknown type: Spaceship.",
        "Biome is required.",
    ]
    assert _entry_count(session) == 0
    session.close()


def test_submit_rejects_long_and_symbol_only_names(tmp_path: Path) -> None:
    session, service, _ = _service(tmp_path)

    with pytest.raises(ValidationError, match="at most 80 characters"):
        service.submit("x" * 81, 1, "Tree", "Swamp")
    with pytest.raises(ValidationError, match="letters or digits"):
        service.submit("!!!", 1, "Tree", "Swamp")
    session.close()


def test_submit_rejects_prohibited_names(tmp_path: Path) -> None:
    session, service, _ = _service(tmp_path)

    with pytest.raises(ModerationError, match="Prohibited term detected: nazi"):
        service.submit("Neo Nazi Oak", 1, "Tree", "Swamp")
    assert _entry_count(session) == 0
    session.close()


def test_exact_duplicate_is_rejected_with_fixed_message(tmp_path: Path) -> None:
    session, service, _ = _service(tmp_path)
    service.submit("Iron Ore", 3, "Ore Vein", "Swamp")

    with pytest.raises(DuplicateError) as excinfo:
        service.submit("IRON  ore!", 3, "Ore Vein", "Swamp")

    assert excinfo.value.message == DUPLICATE_ENTRY_MESSAGE
    assert _entry_count(session) == 1
    session.close()


def test_same_name_in_other_bucket_is_allowed(tmp_path: Path) -> None:
    session, service, _ = _service(tmp_path)
    service.submit("Iron Ore", 3, "Ore Vein", "Swamp")

    service.submit("Iron Ore", 4, "Ore Vein", "Swamp")
    service.submit("Iron Ore", 3, "Ore Vein", "Desert")

    assert _entry_count(session) == 3
    session.close()


def test_late_unique_violation_maps_to_duplicate_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    session, service, _ = _service(tmp_path)
    service.submit("Iron Ore", 3, "Ore Vein", "Swamp")
    # Simulate a concurrent insert that slipped past the lookup.
    monkeypatch.setattr(service.repository, "find_by_key", lambda *_args, **_kwargs: None)

    with pytest.raises(DuplicateError):
        service.submit("Iron Ore", 3, "Ore Vein", "Swamp")

    assert _entry_count(session) == 1
    service.submit("Copper Ore", 3, "Ore Vein", "Swamp")
    assert _entry_count(session) == 2
    session.close()


def test_similar_name_produces_warning(tmp_path: Path) -> None:
    session, service, _ = _service(tmp_path)
    service.submit("Rough Iron Ore", 3, "Ore Vein", "Swamp")

    result = service.submit("Rough Iron Ores", 3, "Ore Vein", "Swamp")

    assert result.warnings == ["A similar entry already exists: Rough Iron Ore (similarity 0.93)."]
    assert _entry_count(session) == 2
    session.close()


def test_submit_with_image_creates_pending_candidate(tmp_path: Path) -> None:
    session, service, pipeline = _service(tmp_path)

    result = service.submit("Maple Log", 2, "Tree", "Maple Forest", image=_png_upload())

    assert result.pending_image is not None
    assert result.image_error is None
    assert not result.entry.has_official_image
    assert pipeline.pending_path(result.entry.id, result.pending_image.id, 256).is_file()
    session.close()


def test_rejected_image_does_not_block_entry(tmp_path: Path) -> None:
    session, service, _ = _service(tmp_path)
    upload = ImageUpload(data=_png_upload().data, content_type="application/octet-stream")

    result = service.submit("Maple Log", 2, "Tree", "Maple Forest", image=upload)

    assert result.pending_image is None
    assert result.image_error == "Unsupported image type: application/octet-stream."
    assert _entry_count(session) == 1
    session.close()


def test_status_update_is_strict() -> None:
    assert StatusUpdate.parse("confirmed").status is EntryStatus.CONFIRMED
    assert StatusUpdate.parse({"status": "Unconfirmed"}).status is EntryStatus.UNCONFIRMED

    with pytest.raises(ValidationError, match="Unrecognized status 'Approved'"):
        StatusUpdate.parse("Approved")
    with pytest.raises(ValidationError, match="Status is required."):
        StatusUpdate.parse({})


def test_set_status_changes_lifecycle(tmp_path: Path) -> None:
    session, service, _ = _service(tmp_path)
    entry = service.submit("Iron Ore", 3, "Ore Vein", "Swamp").entry

    updated = service.set_status(entry.id, {"status": "Confirmed"})

    assert updated.status == EntryStatus.CONFIRMED.value
    with pytest.raises(ValidationError):
        service.set_status(entry.id, "bogus")
    with pytest.raises(NotFoundError):
        service.set_status("missing", "Confirmed")
    session.close()


def test_edit_entry_checks_duplicates_and_updates_key(tmp_path: Path) -> None:
    session, service, _ = _service(tmp_path)
    service.submit("Iron Ore", 3, "Ore Vein", "Swamp")
    copper = service.submit("Copper Ore", 3, "Ore Vein", "Swamp").entry

    with pytest.raises(DuplicateError):
        service.edit_entry(copper.id, "Iron Ore", 3, "Ore Vein", "Swamp")

    edited = service.edit_entry(copper.id, "Copper Ore", 5, "Ore Vein", "Desert")
    assert edited.tier == 5
    assert edited.canonical_name == "copper ore"
    session.close()


def test_delete_entry_removes_pending_reports_and_files(tmp_path: Path) -> None:
    session, service, pipeline = _service(tmp_path)
    result = service.submit("Maple Log", 2, "Tree", "Maple Forest", image=_png_upload())
    entry_id = result.entry.id
    service.report(entry_id, "Entry", "Incorrect", note="wrong biome")

    service.delete_entry(entry_id)

    assert _entry_count(session) == 0
    assert session.execute(select(func.count()).select_from(PendingImage)).scalar_one() == 0
    assert session.execute(select(func.count()).select_from(Report)).scalar_one() == 0
    assert list(pipeline.pending_dir.iterdir()) == []
    assert len(list(pipeline.quarantine_dir.iterdir())) == 2
    session.close()


def test_reports_open_and_close(tmp_path: Path) -> None:
    session, service, _ = _service(tmp_path)
    entry = service.submit("Iron Ore", 3, "Ore Vein", "Swamp").entry

    with pytest.raises(ValidationError, match="no official image"):
        service.report(entry.id, "OfficialImage", "PolicyViolation")
    with pytest.raises(ValidationError, match="report reason"):
        service.report(entry.id, "Entry", "Boring")

    report = service.report(entry.id, "entry", "policyviolation", note="  ", reported_by="bob")
    assert report.status == ReportStatus.OPEN.value
    assert report.note is None

    closed = service.close_report(report.id, resolved_by="admin")
    assert closed.status == ReportStatus.CLOSED.value
    assert closed.resolved_by == "admin"
    with pytest.raises(NotFoundError):
        service.close_report("missing")
    session.close()


def test_search_and_report_listing(tmp_path: Path) -> None:
    session, service, _ = _service(tmp_path)
    iron = service.submit("Rough Iron Ore", 3, "Ore Vein", "Swamp").entry
    service.submit("Café Copper", 4, "Ore Vein", "Desert")
    service.set_status(iron.id, "Confirmed")
    service.report(iron.id, "Entry", "Incorrect")
    repo = service.repository

    assert [entry.name for entry in repo.search_entries("IRON")] == ["Rough Iron Ore"]
    assert [entry.name for entry in repo.search_entries("cafe")] == ["Café Copper"]
    assert [entry.name for entry in repo.search_entries(tier=4)] == ["Café Copper"]
    assert [entry.id for entry in repo.search_entries(status=EntryStatus.CONFIRMED)] == [iron.id]
    assert len(repo.search_entries()) == 2
    assert len(repo.list_reports(iron.id, ReportStatus.OPEN)) == 1
    assert repo.list_reports(status=ReportStatus.CLOSED) == []
    session.close()
