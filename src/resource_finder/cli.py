"""Operator CLI for the catalog submission core."""

from __future__ import annotations

import json
import mimetypes
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Optional

import typer
from sqlalchemy.orm import Session

from resource_finder.bulk_import import BulkImportValidator
from resource_finder.catalog import ImageUpload, StatusUpdate, SubmissionService
from resource_finder.config import Settings, load_settings
from resource_finder.db import open_session
from resource_finder.errors import CatalogError
from resource_finder.image_review import ImageReviewService
from resource_finder.images import ImagePipeline
from resource_finder.moderation import ModerationFilter
from resource_finder.seed import seed_reference_data
from utils.logging import get_logger

LOGGER = get_logger(__name__)

app = typer.Typer(help="Moderate, deduplicate and import catalog entries.")

_state: dict[str, Optional[str]] = {"settings": None, "db": None, "image_root": None}


def _settings() -> Settings:
    settings = load_settings(_state["settings"])
    if _state["db"]:
        settings = replace(settings, database=replace(settings.database, url=_state["db"]))
    if _state["image_root"]:
        settings = replace(settings, images=replace(settings.images, root_path=_state["image_root"]))
    return settings


@contextmanager
def _session(settings: Settings) -> Iterator[Session]:
    with open_session(settings.database.url) as session:
        try:
            yield session
        except CatalogError as exc:
            session.rollback()
            LOGGER.warning("cli_command_failed", extra={"error_type": type(exc).__name__, "error": exc.message})
            typer.echo(f"error: {exc.message}", err=True)
            raise typer.Exit(code=1) from exc


def _read_image(path: Path, content_type: Optional[str]) -> ImageUpload:
    guessed = content_type or mimetypes.guess_type(path.name)[0]
    return ImageUpload(data=path.read_bytes(), content_type=guessed)


@app.callback()
def main_options(
    settings_path: Optional[Path] = typer.Option(
        None,
        "--settings",
        help="Settings YAML file. Defaults to RESOURCE_FINDER_SETTINGS or config/settings.yaml.",
    ),
    db: Optional[str] = typer.Option(None, "--db", help="Database URL or SQLite path; overrides database.url."),
    image_root: Optional[str] = typer.Option(None, "--image-root", help="Image root directory; overrides images.root_path."),
) -> None:
    _state["settings"] = str(settings_path) if settings_path else None
    _state["db"] = db
    _state["image_root"] = image_root


@app.command("init-db")
def init_db() -> None:
    """Create the schema and seed the type and biome lists."""

    settings = _settings()
    with _session(settings) as session:
        types_added, biomes_added = seed_reference_data(session)
    typer.echo(f"types added: {types_added}, biomes added: {biomes_added}")


@app.command("check-text")
def check_text(text: str = typer.Argument(..., help="Text to screen for prohibited terms.")) -> None:
    """Exit non-zero when ``text`` contains a prohibited term."""

    match = ModerationFilter(_settings().moderation.prohibited_terms).contains_prohibited(text)
    if match.matched:
        typer.echo(f"prohibited term: {match.term}")
        raise typer.Exit(code=1)
    typer.echo("ok")


@app.command("submit")
def submit(
    name: str = typer.Option(..., "--name"),
    tier: int = typer.Option(..., "--tier"),
    type_ref: str = typer.Option(..., "--type", help="Type name or slug."),
    biome_ref: str = typer.Option(..., "--biome", help="Biome name or slug."),
    image: Optional[Path] = typer.Option(None, "--image", exists=True, dir_okay=False, readable=True),
    content_type: Optional[str] = typer.Option(None, "--content-type", help="Overrides the guessed image type."),
) -> None:
    """Submit one entry, optionally with an image queued for review."""

    settings = _settings()
    upload = _read_image(image, content_type) if image else None
    with _session(settings) as session:
        result = SubmissionService(session, settings).submit(name, tier, type_ref, biome_ref, image=upload, submitted_by="cli")
    typer.echo(f"created entry {result.entry.id}")
    for warning in result.warnings:
        typer.echo(f"warning: {warning}")
    if result.pending_image is not None:
        typer.echo(f"pending image {result.pending_image.id}")
    if result.image_error:
        typer.echo(f"image rejected: {result.image_error}", err=True)


@app.command("import-batch")
def import_batch(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    fmt: Optional[str] = typer.Option(None, "--format", help="json or csv; defaults to the file extension."),
) -> None:
    """Import a JSON or CSV batch and print the per-row report as JSON."""

    settings = _settings()
    chosen = (fmt or path.suffix.lstrip(".") or "json").lower()
    with _session(settings) as session:
        result = BulkImportValidator(session, settings).import_payload(path.read_bytes(), fmt=chosen, submitted_by="cli")
    typer.echo(json.dumps(result.to_dict(), indent=2))
    if not result.ok:
        raise typer.Exit(code=1)


@app.command("upload-image")
def upload_image(
    entry_id: str = typer.Argument(...),
    path: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    content_type: Optional[str] = typer.Option(None, "--content-type"),
    official: bool = typer.Option(False, "--official/--pending", help="Write straight to the official slot."),
) -> None:
    """Upload an image for an entry, as a pending candidate by default."""

    settings = _settings()
    upload = _read_image(path, content_type)
    with _session(settings) as session:
        review = ImageReviewService(session, ImagePipeline(settings.images))
        if official:
            triple = review.replace_official(entry_id, upload.data, upload.content_type)
            typer.echo(f"official image {triple.thumb512} phash={triple.phash}")
        else:
            pending = review.upload_pending(entry_id, upload.data, upload.content_type, uploaded_by="cli")
            typer.echo(f"pending image {pending.id} phash={pending.image_phash}")


@app.command("promote")
def promote(entry_id: str = typer.Argument(...), pending_id: str = typer.Argument(...)) -> None:
    """Promote one pending image to the entry's official image."""

    settings = _settings()
    with _session(settings) as session:
        triple = ImageReviewService(session, ImagePipeline(settings.images)).promote_pending(entry_id, pending_id)
    typer.echo(f"official image {triple.thumb512} phash={triple.phash}")


@app.command("purge-pending")
def purge_pending(entry_id: str = typer.Argument(...)) -> None:
    """Discard all pending images of an entry."""

    settings = _settings()
    with _session(settings) as session:
        count = ImageReviewService(session, ImagePipeline(settings.images)).purge_pending(entry_id)
    typer.echo(f"purged {count} pending image(s)")


@app.command("remove-official")
def remove_official(entry_id: str = typer.Argument(...)) -> None:
    settings = _settings()
    with _session(settings) as session:
        ImageReviewService(session, ImagePipeline(settings.images)).remove_official(entry_id)
    typer.echo("official image removed")


@app.command("set-status")
def set_status(entry_id: str = typer.Argument(...), status: str = typer.Argument(..., help="Confirmed or Unconfirmed.")) -> None:
    settings = _settings()
    with _session(settings) as session:
        entry = SubmissionService(session, settings).set_status(entry_id, StatusUpdate.parse(status))
    typer.echo(f"{entry.id} is now {entry.status}")


def main() -> None:
    """Entrypoint used when invoking the module as a script."""

    app()


if __name__ == "__main__":
    main()


__all__ = ["app", "main"]
