from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
import threading
import time

import numpy as np
import pytest
from PIL import Image
import torch

from rmbg_service.errors import InferenceError, ModelLoadError
from rmbg_service.model_loader import BackgroundRemovalModel, ModelProvider, ModelState

from .helpers import FailingBackend, StubBackend, make_image


class _RedChannelMatte(torch.nn.Module):
    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return x[:, :1]


def test_provider_loads_once_and_returns_same_instance(stub_model: BackgroundRemovalModel) -> None:
    calls = []

    def loader() -> BackgroundRemovalModel:
        calls.append(1)
        return stub_model

    provider = ModelProvider(loader)
    assert provider.state is ModelState.UNINITIALIZED

    assert provider.get() is stub_model
    assert provider.get() is stub_model
    assert len(calls) == 1
    assert provider.ready


def test_provider_concurrent_first_access_loads_once(stub_model: BackgroundRemovalModel) -> None:
    calls = []
    lock = threading.Lock()

    def slow_loader() -> BackgroundRemovalModel:
        with lock:
            calls.append(1)
        time.sleep(0.05)
        return stub_model

    provider = ModelProvider(slow_loader)
    with ThreadPoolExecutor(max_workers=8) as pool:
        models = list(pool.map(lambda _: provider.get(), range(16)))

    assert len(calls) == 1
    assert all(model is stub_model for model in models)


def test_provider_load_failure_is_terminal() -> None:
    calls = []

    def failing_loader() -> BackgroundRemovalModel:
        calls.append(1)
        raise ModelLoadError("model file not found")

    provider = ModelProvider(failing_loader)
    with pytest.raises(ModelLoadError):
        provider.get()
    with pytest.raises(ModelLoadError, match="model file not found"):
        provider.get()

    assert len(calls) == 1
    assert provider.state is ModelState.LOAD_FAILED


def test_provider_wraps_unexpected_loader_errors() -> None:
    def broken_loader() -> BackgroundRemovalModel:
        raise RuntimeError("out of memory")

    provider = ModelProvider(broken_loader)
    with pytest.raises(ModelLoadError, match="out of memory"):
        provider.get()


def test_load_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ModelLoadError, match="not found"):
        BackgroundRemovalModel.load(tmp_path / "model.onnx")


@pytest.mark.parametrize("name", ["model.onnx", "model.pt"])
def test_load_rejects_invalid_artifact(tmp_path: Path, name: str) -> None:
    path = tmp_path / name
    path.write_bytes(b"this is not a model")

    with pytest.raises(ModelLoadError):
        BackgroundRemovalModel.load(path)


def test_torchscript_model_end_to_end(tmp_path: Path) -> None:
    path = tmp_path / "model.pt"
    torch.jit.script(_RedChannelMatte()).save(str(path))

    model = BackgroundRemovalModel.load(path, input_size=32)
    image = Image.new("RGB", (64, 32), (0, 0, 0))
    image.paste((255, 255, 255), (32, 0, 64, 32))

    result = model.infer(image)

    assert model.serialized
    assert result.mode == "RGBA"
    assert result.size == (64, 32)
    assert result.getpixel((0, 0)) == (0, 0, 0, 0)
    assert result.getpixel((63, 31)) == (255, 255, 255, 255)


def test_infer_preserves_input_pixels_and_size(stub_model: BackgroundRemovalModel) -> None:
    image = make_image((20, 10), (12, 34, 56))

    result = stub_model.infer(image)

    assert result.size == (20, 10)
    assert result.getpixel((5, 5))[:3] == (12, 34, 56)
    assert image.mode == "RGB"


def test_concurrent_infer_has_no_cross_talk() -> None:
    model = BackgroundRemovalModel(StubBackend(delay=0.01), input_size=8)
    inputs = [make_image((10 + i, 5 + i), (i * 10, 255 - i * 10, i)) for i in range(16)]

    with ThreadPoolExecutor(max_workers=8) as pool:
        outputs = list(pool.map(model.infer, inputs))

    for source, output in zip(inputs, outputs):
        assert output.size == source.size
        assert output.getpixel((0, 0))[:3] == source.getpixel((0, 0))


def test_non_reentrant_backend_is_serialized() -> None:
    backend = StubBackend(reentrant=False, delay=0.01)
    model = BackgroundRemovalModel(backend, input_size=8)

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(model.infer, [make_image() for _ in range(12)]))

    assert model.serialized
    assert backend.calls == 12
    assert backend.max_active == 1


def test_serialize_flag_overrides_backend() -> None:
    assert not BackgroundRemovalModel(StubBackend(reentrant=True)).serialized
    assert BackgroundRemovalModel(StubBackend(reentrant=True), serialize=True).serialized
    assert not BackgroundRemovalModel(StubBackend(reentrant=False), serialize=False).serialized


class _FixedOutputBackend:
    reentrant = True

    def __init__(self, output: np.ndarray) -> None:
        self.output = output

    def run(self, batch: np.ndarray) -> np.ndarray:
        return self.output


@pytest.mark.parametrize(
    "backend",
    [
        _FixedOutputBackend(np.zeros((1, 3, 8, 8), dtype=np.float32)),
        _FixedOutputBackend(np.full((1, 1, 8, 8), np.nan, dtype=np.float32)),
        FailingBackend(),
    ],
)
def test_infer_failures_raise_inference_error(backend) -> None:
    model = BackgroundRemovalModel(backend, input_size=8)

    with pytest.raises(InferenceError):
        model.infer(make_image())
