"""Bounded-box thumbnail derivation and atomic file writes."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

from PIL import Image
from PIL.Image import Resampling

from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "thumbnailing"})


def _encodable_mode(image: Image.Image) -> Image.Image:
    """Return ``image`` in a mode the lossy encoders accept."""

    if image.mode in ("RGB", "RGBA"):
        return image
    has_alpha = "A" in image.getbands() or "transparency" in image.info
    return image.convert("RGBA" if has_alpha else "RGB")


def build_thumbnail_image(image: Image.Image, max_side: int) -> Image.Image:
    """Produce a copy fitting within ``max_side``×``max_side``, never upscaled."""

    safe_side = max(1, int(max_side))
    resized = _encodable_mode(image).copy()
    resized.thumbnail((safe_side, safe_side), resample=Resampling.LANCZOS)
    return resized


def write_atomically(image: Image.Image, output_path: Path, image_format: str, quality: int) -> None:
    """Encode ``image`` to a temporary sibling of ``output_path`` and rename it into place.

    Readers of ``output_path`` see either the previous file or the complete new
    one, never a partial write.
    """

    output_path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{output_path.name}.", suffix=".tmp", dir=output_path.parent)
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as handle:
            image.save(handle, format=image_format, quality=quality)
        os.replace(tmp_path, output_path)
    except Exception as exc:
        LOGGER.error(
            "thumbnail_save_error",
            extra={"path": str(output_path), "format": image_format, "quality": quality, "error": str(exc)},
        )
        tmp_path.unlink(missing_ok=True)
        raise


def save_thumbnail(image: Image.Image, output_path: Path, max_side: int, image_format: str, quality: int) -> tuple[int, int]:
    """Resize ``image`` into ``output_path`` and return the written dimensions."""

    resized = build_thumbnail_image(image, max_side)
    write_atomically(resized, output_path, image_format, quality)
    return resized.size


__all__ = ["build_thumbnail_image", "save_thumbnail", "write_atomically"]
