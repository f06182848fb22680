"""
Image loading and tensor packing.

Images are stretched to the model's fixed input size (aspect ratio is not
preserved, matching how the segmentation models are trained) and packed into
a channel-first float32 tensor.
"""

from __future__ import annotations

from io import BytesIO
import os
from typing import Tuple, Union

import numpy as np
from PIL import Image, UnidentifiedImageError

from .errors import InvalidImageError

# Shared by the pre-inference shrink and the mask regrowth so both follow the
# same coordinate stretch.
RESAMPLE = Image.Resampling.BILINEAR

ImageSource = Union[str, "os.PathLike[str]", Image.Image]


def load_rgba(source: ImageSource) -> Image.Image:
    """
    Return a fresh RGBA copy of `source`.

    Paths are decoded from disk; in-memory images are converted, never
    modified. Missing files raise FileNotFoundError unchanged.
    """
    if isinstance(source, Image.Image):
        return source.convert("RGBA")
    try:
        image = Image.open(source)
    except UnidentifiedImageError as exc:
        raise InvalidImageError(f"Cannot decode image {source}") from exc
    with image:
        try:
            return image.convert("RGBA")
        except OSError as exc:
            # truncated or corrupt pixel data behind a valid header
            raise InvalidImageError(f"Cannot decode image {source}") from exc


def load_rgba_from_bytes(image_bytes: bytes) -> Image.Image:
    try:
        with Image.open(BytesIO(image_bytes)) as image:
            return image.convert("RGBA")
    except (UnidentifiedImageError, OSError) as exc:
        raise InvalidImageError("Invalid image data") from exc


def stretch_resize(image: Image.Image, size: Tuple[int, int]) -> Image.Image:
    """Resize to exactly `size` (width, height), scaling each axis independently."""
    return image.resize(size, RESAMPLE)


def pack_tensor(image: Image.Image) -> np.ndarray:
    """
    Pack an image into a `[1, 3, H, W]` float32 tensor.

    Each RGB byte maps to `(v - 127) / 128`, giving values in
    `[-127/128, 1]`. Alpha is ignored.
    """
    rgb = np.asarray(image.convert("RGB"), dtype=np.float32)
    rgb = (rgb - np.float32(127)) / np.float32(128)
    chw = np.transpose(rgb, (2, 0, 1))  # HWC -> CHW
    return np.ascontiguousarray(chw[np.newaxis, ...], dtype=np.float32)
