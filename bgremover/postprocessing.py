"""Mask building, alpha compositing and PNG encoding."""

from __future__ import annotations

from io import BytesIO
import logging
import os
from typing import Any, Tuple, Union

import numpy as np
from PIL import Image

from .errors import DimensionMismatchError, UnusableOutputError
from .preprocessing import stretch_resize

logger = logging.getLogger(__name__)


def _as_mask_plane(output: Any, output_size: Tuple[int, int]) -> np.ndarray:
    """Reduce a model output to its `[0, 0]` plane of `output_size`."""
    if output is None:
        raise UnusableOutputError("Model produced no output")
    plane = np.asarray(output)
    if not np.issubdtype(plane.dtype, np.floating):
        raise UnusableOutputError(f"Model output is not a float tensor (dtype={plane.dtype})")
    if plane.ndim < 2:
        raise UnusableOutputError(f"Model output has rank {plane.ndim}, expected at least 2")
    while plane.ndim > 2:
        if plane.shape[0] == 0:
            raise UnusableOutputError(f"Model output has an empty leading dimension: {np.shape(output)}")
        plane = plane[0]

    width, height = output_size
    if plane.shape[0] < height or plane.shape[1] < width:
        raise UnusableOutputError(
            f"Model output shape {np.shape(output)} is smaller than {height}x{width}"
        )
    return plane[:height, :width]


def unpack_mask(output: Any, output_size: Tuple[int, int]) -> Image.Image:
    """
    Convert a raw model output into an 8-bit mask at `output_size`.

    Each value maps to `clamp(round(v * 255), 0, 255)`; NaN becomes 0.
    """
    plane = _as_mask_plane(output, output_size).astype(np.float32)
    scaled = np.nan_to_num(np.rint(plane * np.float32(255)), nan=0.0)
    return Image.fromarray(np.clip(scaled, 0, 255).astype(np.uint8))


def build_mask(output: Any, output_size: Tuple[int, int], display_size: Tuple[int, int]) -> Image.Image:
    """Unpack the model output and stretch the mask to `display_size`."""
    mask = unpack_mask(output, output_size)
    try:
        # Equal sizes still go through resize so every call takes one path.
        return stretch_resize(mask, display_size)
    finally:
        mask.close()


def compose_rgba(original: Image.Image, mask: Image.Image) -> Image.Image:
    """
    Use `mask` as the alpha channel of `original`.

    RGB values are copied unchanged, including under fully transparent
    pixels; clearing them is left to `encode_png`.
    """
    if mask.size != original.size:
        raise DimensionMismatchError(f"Mask size {mask.size} does not match image size {original.size}")
    rgb_np = np.asarray(original.convert("RGB"), dtype=np.uint8)
    alpha_u8 = np.asarray(mask.convert("L"), dtype=np.uint8)
    rgba = np.dstack((rgb_np, alpha_u8))
    return Image.fromarray(rgba)


def clear_transparent_pixels(image: Image.Image) -> Image.Image:
    """Return an RGBA copy with RGB zeroed wherever alpha is 0."""
    rgba = np.array(image.convert("RGBA"), dtype=np.uint8)
    rgba[rgba[..., 3] == 0, :3] = 0
    return Image.fromarray(rgba)


def _prepare_for_encode(image: Image.Image, clear_transparent: bool) -> Image.Image:
    if clear_transparent:
        return clear_transparent_pixels(image)
    return image.convert("RGBA")


def encode_png(image: Image.Image, clear_transparent: bool = True) -> bytes:
    """
    Encode an RGBA image as PNG bytes.

    With `clear_transparent`, color under fully transparent pixels is dropped
    from the encoded copy so the source image does not leak through.
    """
    out = _prepare_for_encode(image, clear_transparent)
    buf = BytesIO()
    out.save(buf, format="PNG")
    return buf.getvalue()


def save_png(
    image: Image.Image,
    path: Union[str, "os.PathLike[str]"],
    clear_transparent: bool = True,
) -> None:
    out = _prepare_for_encode(image, clear_transparent)
    out.save(path, format="PNG")
    logger.debug("Saved RGBA PNG to %s", path)
