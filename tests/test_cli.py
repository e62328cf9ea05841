"""Smoke tests for the operator CLI."""

from __future__ import annotations

import json
from pathlib import Path

from typer.testing import CliRunner

from resource_finder.cli import app

runner = CliRunner()


def _base_args(tmp_path: Path) -> list[str]:
    return [
        "--settings",
        str(tmp_path / "absent.yaml"),
        "--db",
        str(tmp_path / "catalog.db"),
        "--image-root",
        str(tmp_path / "images"),
    ]


def test_check_text_flags_prohibited_terms(tmp_path: Path) -> None:
    flagged = runner.invoke(app, [*_base_args(tmp_path), "check-text", "white power ranger"])
    clean = runner.invoke(app, [*_base_args(tmp_path), "check-text", "Rough Iron Ore"])

    assert flagged.exit_code == 1
    assert "white power" in flagged.output
    assert clean.exit_code == 0


def test_init_submit_and_set_status(tmp_path: Path) -> None:
    base = _base_args(tmp_path)

    assert runner.invoke(app, [*base, "init-db"]).exit_code == 0

    submitted = runner.invoke(
        app, [*base, "submit", "--name", "Iron Ore", "--tier", "3", "--type", "Ore Vein", "--biome", "Swamp"]
    )
    assert submitted.exit_code == 0
    entry_id = submitted.output.split("created entry ", 1)[1].split()[0]

    duplicate = runner.invoke(
        app, [*base, "submit", "--name", "iron ore", "--tier", "3", "--type", "ore-vein", "--biome", "swamp"]
    )
    assert duplicate.exit_code == 1

    status = runner.invoke(app, [*base, "set-status", entry_id, "confirmed"])
    assert status.exit_code == 0
    assert "Confirmed" in status.output


def test_import_batch_prints_report(tmp_path: Path) -> None:
    base = _base_args(tmp_path)
    runner.invoke(app, [*base, "init-db"])
    payload = tmp_path / "rows.json"
    payload.write_text(
        json.dumps([{"name": "Iron Ore", "tier": 2, "type": "Ore Vein", "biome": "Swamp"}]),
        encoding="utf-8",
    )

    result = runner.invoke(app, [*base, "import-batch", str(payload)])

    assert result.exit_code == 0
    assert json.loads(result.output)["accepted"] == 1
