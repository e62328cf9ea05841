"""Average-hash fingerprints for entry images."""

from __future__ import annotations

from typing import Final

import numpy as np
from PIL import Image

from utils.logging import get_logger

LOGGER = get_logger(__name__)

PHASH_ALGO: Final[str] = "ahash64-v1"

_GRID_SIZE: Final[int] = 8
_HASH_BITS: Final[int] = _GRID_SIZE * _GRID_SIZE


def _grid_samples(image: Image.Image) -> np.ndarray:
    """Return the 64 luminance samples of an 8×8 downscale, row-major."""

    resample = Image.Resampling.BICUBIC
    gray = image.convert("L").resize((_GRID_SIZE, _GRID_SIZE), resample=resample)
    return np.asarray(gray, dtype=np.uint8).reshape(-1)


def compute_perceptual_hash(image: Image.Image) -> str:
    """Compute the 64-bit average hash for an image.

    - Convert to luminance ("L", ITU-R 601 weights) and downscale to an 8×8
      grid.
    - Take the arithmetic mean of the 64 samples.
    - Bit ``i`` (least significant bit first, row-major sample order) is 1
      when sample ``i`` is greater than or equal to the mean.

    Args:
        image: PIL Image instance to hash.

    Returns:
        Hash as a 16-character uppercase hexadecimal string.
    """

    samples = _grid_samples(image)
    mean = float(samples.mean())

    value = 0
    for index, sample in enumerate(samples):
        if float(sample) >= mean:
            value |= 1 << index

    return f"{value:016X}"


def hamming_distance(a_hex: str, b_hex: str) -> int:
    """Compute the Hamming distance between two 64-bit hashes."""

    try:
        a_int = int(a_hex, 16)
        b_int = int(b_hex, 16)
    except ValueError:
        LOGGER.error("phash_hex_parse_error", extra={"a": a_hex, "b": b_hex})
        return _HASH_BITS

    return int((a_int ^ b_int).bit_count())


__all__ = ["PHASH_ALGO", "compute_perceptual_hash", "hamming_distance"]
