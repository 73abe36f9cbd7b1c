"""
Image preprocessing for RMBG-style segmentation models.

The network takes a fixed square RGB input scaled to [0, 1] and centred with
mean 0.5 / std 1.0, laid out as NCHW float32.
"""

from __future__ import annotations

from typing import Tuple

import numpy as np
from PIL import Image

MEAN = 0.5
STD = 1.0


def to_model_input(image: Image.Image, input_size: Tuple[int, int]) -> np.ndarray:
    """Resize to the model input size (width, height) and normalize to a (1, 3, H, W) batch."""
    rgb = image.convert("RGB")
    if rgb.size != input_size:
        rgb = rgb.resize(input_size, Image.BILINEAR)

    im_np = np.asarray(rgb).astype("float32") / 255.0
    im_np = (im_np - MEAN) / STD
    im_np = np.transpose(im_np, (2, 0, 1))  # HWC -> CHW
    return np.ascontiguousarray(im_np[np.newaxis, ...])
