"""SQLAlchemy schema definitions and session management for the catalog store."""

from __future__ import annotations

import enum
import uuid
from pathlib import Path
from threading import Lock
from typing import Any

from sqlalchemy import (
    Boolean,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column

from resource_finder.db_helpers import normalize_database_url
from utils.logging import get_logger

LOGGER = get_logger(__name__)

NAME_MAX_LENGTH = 80
REFERENCE_NAME_MAX_LENGTH = 64


def new_id() -> str:
    """Return a fresh 32-character hex identifier."""

    return uuid.uuid4().hex


class EntryStatus(str, enum.Enum):
    UNCONFIRMED = "Unconfirmed"
    CONFIRMED = "Confirmed"


class ReportTarget(str, enum.Enum):
    ENTRY = "Entry"
    OFFICIAL_IMAGE = "OfficialImage"


class ReportReason(str, enum.Enum):
    INCORRECT = "Incorrect"
    POLICY_VIOLATION = "PolicyViolation"


class ReportStatus(str, enum.Enum):
    OPEN = "Open"
    CLOSED = "Closed"


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class CatalogType(Base):
    """Entry type reference data (Tree, Ore Vein, ...)."""

    __tablename__ = "types"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(REFERENCE_NAME_MAX_LENGTH), nullable=False, unique=True)
    slug: Mapped[str] = mapped_column(String(REFERENCE_NAME_MAX_LENGTH), nullable=False, unique=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class Biome(Base):
    """Biome reference data (Swamp, Desert, ...)."""

    __tablename__ = "biomes"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(REFERENCE_NAME_MAX_LENGTH), nullable=False, unique=True)
    slug: Mapped[str] = mapped_column(String(REFERENCE_NAME_MAX_LENGTH), nullable=False, unique=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class CatalogEntry(Base):
    """A submitted catalog entry and its official image triple."""

    __tablename__ = "entries"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    tier: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(NAME_MAX_LENGTH), nullable=False)
    canonical_name: Mapped[str] = mapped_column(String(NAME_MAX_LENGTH), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=EntryStatus.UNCONFIRMED.value)
    type_id: Mapped[str] = mapped_column(String(32), ForeignKey("types.id"), nullable=False)
    biome_id: Mapped[str] = mapped_column(String(32), ForeignKey("biomes.id"), nullable=False)
    img256_url: Mapped[str | None] = mapped_column(String, nullable=True)
    img512_url: Mapped[str | None] = mapped_column(String, nullable=True)
    image_phash: Mapped[str | None] = mapped_column(String(16), nullable=True)
    submitted_by: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[float] = mapped_column(Float, nullable=False)
    updated_at: Mapped[float] = mapped_column(Float, nullable=False)

    __table_args__ = (
        UniqueConstraint("tier", "type_id", "biome_id", "canonical_name", name="uq_entries_bucket_name"),
        Index("idx_entries_status", "status"),
        Index("idx_entries_canonical_name", "canonical_name"),
    )

    @property
    def has_official_image(self) -> bool:
        return self.img256_url is not None and self.img512_url is not None


class PendingImage(Base):
    """Contributor-uploaded image waiting for an admin decision."""

    __tablename__ = "pending_images"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    entry_id: Mapped[str] = mapped_column(String(32), ForeignKey("entries.id", ondelete="CASCADE"), nullable=False)
    img256_url: Mapped[str] = mapped_column(String, nullable=False)
    img512_url: Mapped[str] = mapped_column(String, nullable=False)
    image_phash: Mapped[str | None] = mapped_column(String(16), nullable=True)
    uploaded_by: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[float] = mapped_column(Float, nullable=False)

    __table_args__ = (Index("idx_pending_images_entry", "entry_id"),)


class Report(Base):
    """A user flag against an entry or its official image."""

    __tablename__ = "reports"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    entry_id: Mapped[str] = mapped_column(String(32), ForeignKey("entries.id", ondelete="CASCADE"), nullable=False)
    target: Mapped[str] = mapped_column(String(16), nullable=False)
    reason: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(8), nullable=False, default=ReportStatus.OPEN.value)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[float] = mapped_column(Float, nullable=False)
    resolved_by: Mapped[str | None] = mapped_column(String, nullable=True)
    resolved_at: Mapped[float | None] = mapped_column(Float, nullable=True)

    __table_args__ = (Index("idx_reports_entry_status", "entry_id", "status"),)


_ENGINE_CACHE: dict[str, Engine] = {}
_ENGINE_LOCK = Lock()


def _ensure_parent_directory(path: Path) -> None:
    """Ensure the parent directory for a database file exists."""

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        LOGGER.error("db_parent_directory_error", extra={"path": str(path), "error": str(exc)})
        raise


def _install_sqlite_hooks(engine: Engine) -> None:
    """Enable foreign keys and hand transaction control to SQLAlchemy.

    pysqlite defers BEGIN until the first DML statement, which breaks
    SAVEPOINT handling; emitting BEGIN ourselves keeps nested transactions
    scoped the way the bulk importer expects.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:  # type: ignore[override]
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA foreign_keys = ON")
            cursor.execute("PRAGMA busy_timeout = 30000")
        finally:
            cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn: Any) -> None:  # type: ignore[override]
        conn.exec_driver_sql("BEGIN")


def get_engine(target: str | Path) -> Engine:
    """Return a cached SQLAlchemy engine for ``target``, creating the schema if needed."""

    normalized = normalize_database_url(target)
    engine = _ENGINE_CACHE.get(normalized)
    if engine is not None:
        return engine

    with _ENGINE_LOCK:
        engine = _ENGINE_CACHE.get(normalized)
        if engine is not None:
            return engine

        sa_url = make_url(normalized)
        is_sqlite = sa_url.drivername.startswith("sqlite")

        engine_kwargs: dict[str, object] = {}
        if is_sqlite:
            if sa_url.database and sa_url.database != ":memory:":
                _ensure_parent_directory(Path(sa_url.database))
            engine_kwargs["connect_args"] = {"timeout": 30.0}
        else:
            engine_kwargs["pool_pre_ping"] = True

        engine = create_engine(normalized, **engine_kwargs)
        if is_sqlite:
            _install_sqlite_hooks(engine)

        try:
            Base.metadata.create_all(engine)
        except OperationalError as exc:
            # Concurrent workers may race on CREATE TABLE.
            if "already exists" in str(exc).lower():
                LOGGER.info("db_create_all_table_exists_race", extra={"target": normalized, "error": str(exc)})
            else:
                raise

        _ENGINE_CACHE[normalized] = engine
        return engine


def open_session(target: str | Path) -> Session:
    """Open a SQLAlchemy session for the catalog database."""

    return Session(get_engine(target), expire_on_commit=False)


__all__ = [
    "Base",
    "Biome",
    "CatalogEntry",
    "CatalogType",
    "EntryStatus",
    "PendingImage",
    "Report",
    "ReportReason",
    "ReportStatus",
    "ReportTarget",
    "get_engine",
    "new_id",
    "open_session",
]
