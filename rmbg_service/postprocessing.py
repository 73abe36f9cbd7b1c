"""Turn a raw segmentation matte into an alpha channel on the original image."""

from __future__ import annotations

from typing import Tuple

import cv2
import numpy as np
from PIL import Image

# Below this spread the matte is treated as constant and only clipped.
_FLAT_MATTE_EPS = 1e-6


def matte_to_alpha(matte: np.ndarray, size: Tuple[int, int]) -> np.ndarray:
    """
    Resize a model matte to `size` (width, height) and min-max normalize it
    into an 8-bit alpha mask.

    Raises:
        ValueError: when the matte is not 2-D after squeezing or holds
            non-finite values.
    """
    matte = np.squeeze(np.asarray(matte, dtype=np.float32))
    if matte.ndim != 2:
        raise ValueError(f"Expected a single-channel matte, got shape {matte.shape}")
    if not np.isfinite(matte).all():
        raise ValueError("Model produced non-finite matte values")

    if (matte.shape[1], matte.shape[0]) != tuple(size):
        matte = cv2.resize(matte, tuple(size), interpolation=cv2.INTER_LINEAR)

    lo, hi = float(matte.min()), float(matte.max())
    if hi - lo > _FLAT_MATTE_EPS:
        matte = (matte - lo) / (hi - lo)
    else:
        matte = np.clip(matte, 0.0, 1.0)
    return np.round(matte * 255.0).astype(np.uint8)


def compose_rgba(image: Image.Image, alpha: np.ndarray) -> Image.Image:
    """Return a copy of `image` with `alpha` as its alpha channel."""
    rgba = image.convert("RGBA")
    rgba.putalpha(Image.fromarray(alpha))
    return rgba
