"""Helpers for turning configured database targets into SQLAlchemy URLs."""

from __future__ import annotations

from pathlib import Path

from sqlalchemy.engine.url import make_url


def normalize_database_url(target: str | Path) -> str:
    """Normalize a database URL or bare SQLite path to an absolute URL.

    ``data/catalog.db`` and ``sqlite:///data/catalog.db`` both resolve against
    the current working directory; non-SQLite URLs pass through unchanged.
    """

    if isinstance(target, Path):
        return f"sqlite:///{target.resolve()}"

    raw = str(target).strip()
    if not raw:
        raise ValueError("database target cannot be empty")

    if "://" not in raw:
        return f"sqlite:///{Path(raw).resolve()}"

    url = make_url(raw)
    if not url.drivername.startswith("sqlite"):
        return raw

    database = url.database or ""
    if database in {":memory:", ""}:
        return str(url)

    db_path = Path(database)
    if not db_path.is_absolute():
        db_path = (Path.cwd() / db_path).resolve()
    return str(url.set(database=str(db_path)))


__all__ = ["normalize_database_url"]
