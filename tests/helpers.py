from __future__ import annotations

import base64
import io
import threading
import time
from typing import Tuple

import numpy as np
from PIL import Image


TAGS = {"JPEG": "data:image/jpeg", "PNG": "data:image/png", "WEBP": "data:image/webp"}


def make_image(size: Tuple[int, int] = (32, 32), color: Tuple[int, int, int] = (200, 30, 30)) -> Image.Image:
    return Image.new("RGB", size, color)


def make_envelope(
    fmt: str = "JPEG",
    size: Tuple[int, int] = (32, 32),
    color: Tuple[int, int, int] = (200, 30, 30),
) -> str:
    buffer = io.BytesIO()
    make_image(size, color).save(buffer, format=fmt)
    payload = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"{TAGS[fmt]};base64,{payload}"


class StubBackend:
    """
    In-memory backend: the matte is the normalized red channel of the input.

    Tracks how many `run` calls overlap so tests can check serialization.
    """

    def __init__(self, reentrant: bool = True, delay: float = 0.0) -> None:
        self.reentrant = reentrant
        self.delay = delay
        self.calls = 0
        self.active = 0
        self.max_active = 0
        self._counter_lock = threading.Lock()

    def run(self, batch: np.ndarray) -> np.ndarray:
        with self._counter_lock:
            self.calls += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            return batch[:, :1] + 0.5
        finally:
            with self._counter_lock:
                self.active -= 1




class FailingBackend:
    reentrant = True

    def run(self, batch: np.ndarray) -> np.ndarray:
        raise RuntimeError("unsupported input dimensions")
