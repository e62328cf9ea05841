"""Initialize the catalog schema, seed reference data and create the image folders."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Ensure src/ is on sys.path so we can import shared logging and DB helpers.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = PROJECT_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.append(str(SRC_ROOT))

from resource_finder.config import load_settings  # noqa: E402
from resource_finder.db import open_session  # noqa: E402
from resource_finder.images import ImagePipeline  # noqa: E402
from resource_finder.seed import seed_reference_data  # noqa: E402
from utils.logging import get_logger  # noqa: E402

LOGGER = get_logger(__name__)


def _init_catalog_db(target: str) -> None:
    with open_session(target) as session:
        types_added, biomes_added = seed_reference_data(session)
    LOGGER.info(
        "init_catalog_db_ok",
        extra={"target": target, "types_added": types_added, "biomes_added": biomes_added},
    )


def _init_image_root(pipeline: ImagePipeline) -> None:
    """Create the image root with its pending and quarantine folders."""

    for folder in (pipeline.root, pipeline.pending_dir, pipeline.quarantine_dir):
        folder.mkdir(parents=True, exist_ok=True)
    LOGGER.info("init_image_root_ok", extra={"root": str(pipeline.root)})


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Initialize the catalog database and image folders.")
    parser.add_argument(
        "--db",
        type=str,
        default=None,
        help="Catalog database URL or path. Defaults to database.url in settings.yaml.",
    )
    parser.add_argument(
        "--image-root",
        dest="image_root",
        type=str,
        default=None,
        help="Image root directory. Defaults to images.root_path in settings.yaml.",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    settings = load_settings()
    target = args.db or settings.database.url
    pipeline = ImagePipeline(settings.images, root=args.image_root)
    _init_catalog_db(target)
    _init_image_root(pipeline)
    LOGGER.info("init_catalog_complete", extra={"database": target, "image_root": str(pipeline.root)})


if __name__ == "__main__":
    main()
