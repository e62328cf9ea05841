"""Tests for batch import with per-row accept/reject reporting."""

from __future__ import annotations

import json
from pathlib import Path

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from resource_finder.bulk_import import DUPLICATE_IN_PAYLOAD_MESSAGE, BulkImportValidator, parse_rows
from resource_finder.config import Settings
from resource_finder.db import CatalogEntry, open_session
from resource_finder.errors import DUPLICATE_ENTRY_MESSAGE
from resource_finder.seed import seed_reference_data


def _validator(tmp_path: Path) -> tuple[Session, BulkImportValidator]:
    session = open_session(tmp_path / "catalog.db")
    seed_reference_data(session)
    return session, BulkImportValidator(session, Settings())


def _entry_count(session: Session) -> int:
    return session.execute(select(func.count()).select_from(CatalogEntry)).scalar_one()


def _row(name: str, tier: object = 2, type_ref: str = "Ore Vein", biome: str = "Swamp") -> dict[str, object]:
    return {"name": name, "tier": tier, "type": type_ref, "biome": biome}


def test_duplicate_within_payload_is_rejected_and_others_accepted(tmp_path: Path) -> None:
    session, validator = _validator(tmp_path)
    rows = [_row("Iron Ore"), _row("Copper Ore"), _row("iron  ORE!")]

    result = validator.import_batch(rows)

    assert result.ok
    assert result.accepted == 2
    assert [(item.index, item.reasons) for item in result.rejected] == [(2, (DUPLICATE_IN_PAYLOAD_MESSAGE,))]
    assert _entry_count(session) == 2
    session.close()


def test_too_many_rows_aborts_the_whole_batch(tmp_path: Path) -> None:
    session, validator = _validator(tmp_path)
    rows = [_row(f"Ore {index}") for index in range(201)]

    result = validator.import_batch(rows)

    assert not result.ok
    assert result.accepted == 0
    assert result.errors == ["Payload must contain between 1 and 200 rows (got 201)."]
    assert _entry_count(session) == 0
    session.close()


def test_empty_batch_is_rejected(tmp_path: Path) -> None:
    session, validator = _validator(tmp_path)

    result = validator.import_batch([])

    assert not result.ok
    assert result.errors == ["Payload must contain between 1 and 200 rows (got 0)."]
    session.close()


def test_oversized_payload_is_rejected_before_parsing(tmp_path: Path) -> None:
    session, validator = _validator(tmp_path)

    result = validator.import_payload(b" " * (256 * 1024 + 1))

    assert not result.ok
    assert result.errors == ["Payload too large (max 256 KB)."]
    session.close()


def test_row_reasons_are_all_collected(tmp_path: Path) -> None:
    session, validator = _validator(tmp_path)
    rows = [
        {"name": "", "tier": 11, "type": "Spaceship", "biome": ""},
        _row("Nazi Ore", tier="abc"),
        "not a row",
        _row("Good Ore"),
    ]

    result = validator.import_batch(rows)

    assert result.accepted == 1
    reasons = {item.index: item.reasons for item in result.rejected}
    assert reasons[0] == (
        "Name is required.",
        "Tier must be an integer between 1 and 10.",
        "Unknown type: Spaceship.",
        "Biome is required.",
    )
    assert reasons[1] == (
        "Tier must be an integer between 1 and 10.",
        "Prohibited term detected: nazi",
    )
    assert reasons[2] == ("Row must be an object with name, tier, type, biome.",)
    session.close()


def test_existing_entry_is_reported_as_duplicate(tmp_path: Path) -> None:
    session, validator = _validator(tmp_path)
    validator.import_batch([_row("Iron Ore")])

    result = validator.import_batch([_row("Iron Ore"), _row("Iron Ore", tier=3)])

    assert result.accepted == 1
    assert result.rejected[0].index == 0
    assert result.rejected[0].reasons == (DUPLICATE_ENTRY_MESSAGE,)
    assert _entry_count(session) == 2
    session.close()


def test_json_payload_with_rows_wrapper_and_mixed_case_keys(tmp_path: Path) -> None:
    session, validator = _validator(tmp_path)
    payload = json.dumps({"rows": [{"Name": "Iron Ore", "TIER": "4", "Type": "ore-vein", "Biome": "desert"}]})

    result = validator.import_payload(payload)

    assert result.ok
    assert result.accepted == 1
    assert result.to_dict() == {"ok": True, "accepted": 1, "rejected": [], "errors": []}
    session.close()


def test_csv_payload(tmp_path: Path) -> None:
    session, validator = _validator(tmp_path)
    payload = "name,tier,type,biome\nIron Ore,2,Ore Vein,Swamp\nIron Ore,2,Ore Vein,Swamp\n"

    result = validator.import_payload(payload.encode("utf-8"), fmt="csv")

    assert result.accepted == 1
    assert result.rejected[0].index == 1
    session.close()


def test_parse_rows_errors() -> None:
    assert parse_rows("{not json", "json") == (None, "Payload is not valid JSON.")
    assert parse_rows('{"rows": 3}', "json") == (None, "Payload must be a list of rows.")
    assert parse_rows("", "csv") == (None, "Payload has no header row.")
    assert parse_rows("[]", "xml") == (None, "Unsupported payload format: xml.")
