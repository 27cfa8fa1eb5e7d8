"""Image preprocessing pipeline.

Decoding (format detection, EXIF orientation, size validation) and the fixed
model-input transform: bilinear resize to a square, then a linear rescale of
pixel values from [0, 255] to [0, 1].
"""

from __future__ import annotations

import io
from typing import IO, TYPE_CHECKING

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

if TYPE_CHECKING:
    from pathlib import Path

    from numpy.typing import NDArray

NORMALIZE_MEAN: float = 0.0
NORMALIZE_STD: float = 255.0


class ImageDecodeError(ValueError):
    """Raised when an input image cannot be decoded or exceeds size limits."""


def decode_image(source: bytes | IO[bytes] | Path, max_pixels: int | None = None) -> Image.Image:
    """Decode an image from raw bytes, a file object, or a path.

    Args:
        source: Encoded image data or a reference to it.
        max_pixels: Reject images with more pixels than this.

    Returns:
        The decoded image with EXIF orientation applied.

    Raises:
        ImageDecodeError: If the image cannot be decoded or is too large.
    """
    if isinstance(source, bytes):
        source = io.BytesIO(source)

    try:
        with Image.open(source) as opened:
            if max_pixels is not None and opened.width * opened.height > max_pixels:
                raise ImageDecodeError(f"Image has {opened.width}x{opened.height} pixels, limit is {max_pixels}")
            opened.load()
            image = ImageOps.exif_transpose(opened)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as exc:
        raise ImageDecodeError(f"Cannot decode image: {exc}") from exc
    return image


class ImagePreprocessor:
    """Resizes and normalizes an image into a batched float32 input tensor."""

    def __init__(self, size: int, max_pixels: int | None = None) -> None:
        if size <= 0:
            raise ValueError(f"Image size must be positive, got {size}")
        self.size = size
        self.max_pixels = max_pixels

    def decode(self, source: bytes | IO[bytes] | Path) -> Image.Image:
        return decode_image(source, max_pixels=self.max_pixels)

    def resize(self, image: Image.Image) -> Image.Image:
        """Convert to RGB and resize to size x size with bilinear interpolation."""
        rgb = image if image.mode == "RGB" else image.convert("RGB")
        return rgb.resize((self.size, self.size), Image.Resampling.BILINEAR)

    def process(self, image: Image.Image) -> NDArray[np.float32]:
        """Return a 1xHxWx3 tensor with values in [0, 1].

        The input image is not modified.
        """
        pixels = np.asarray(self.resize(image), dtype=np.float32)
        tensor = (pixels - NORMALIZE_MEAN) / NORMALIZE_STD
        return np.ascontiguousarray(tensor[np.newaxis, ...], dtype=np.float32)
