"""
Model loading utilities for the background-removal model.

The loader:
 - opens the artifact at `RMBG_MODEL_PATH` (ONNX via onnxruntime, anything
   else as TorchScript),
 - wraps it in a `BackgroundRemovalModel` whose `infer` is safe to call from
   many request threads,
 - exposes `ModelProvider`, which loads that model at most once per process.
"""

from __future__ import annotations

from contextlib import nullcontext
from enum import Enum
import logging
from pathlib import Path
from threading import Lock
from typing import Callable, List, Optional, Protocol, Tuple, Union

import numpy as np
import onnxruntime as ort
from PIL import Image
import torch

from . import config
from .errors import InferenceError, ModelLoadError
from .postprocessing import compose_rgba, matte_to_alpha
from .preprocessing import to_model_input

logger = logging.getLogger(__name__)

# Prefer CUDA -> Apple MPS -> CPU to support both GPU servers and local macOS dev.
if torch.cuda.is_available():
    _DEVICE = torch.device("cuda")
elif torch.backends.mps.is_available():  # type: ignore[attr-defined]
    _DEVICE = torch.device("mps")
else:
    _DEVICE = torch.device("cpu")


def get_device() -> torch.device:
    """Return the TorchScript inference device."""
    return _DEVICE


def get_onnx_providers() -> List[str]:
    available = ort.get_available_providers()
    if "CUDAExecutionProvider" in available:
        return ["CUDAExecutionProvider", "CPUExecutionProvider"]
    if "CoreMLExecutionProvider" in available:
        return ["CoreMLExecutionProvider", "CPUExecutionProvider"]
    return ["CPUExecutionProvider"]


class Backend(Protocol):
    # Whether `run` may be entered by several threads at once.
    reentrant: bool

    def run(self, batch: np.ndarray) -> np.ndarray:
        ...


class OnnxBackend:
    reentrant = True

    def __init__(self, session: ort.InferenceSession) -> None:
        self._session = session
        self._input_name = session.get_inputs()[0].name

    @classmethod
    def open(cls, model_path: Path) -> "OnnxBackend":
        providers = get_onnx_providers()
        logger.info("Loading ONNX model from %s with providers %s", model_path, providers)
        return cls(ort.InferenceSession(str(model_path), providers=providers))

    def run(self, batch: np.ndarray) -> np.ndarray:
        outputs = self._session.run(None, {self._input_name: batch})
        return np.asarray(outputs[0])


def _first_tensor(output) -> torch.Tensor:
    """RMBG TorchScript exports may nest the matte inside lists/tuples."""
    while isinstance(output, (list, tuple)):
        if not output:
            raise RuntimeError("Model returned an empty output")
        output = output[0]
    if not isinstance(output, torch.Tensor):
        raise RuntimeError(f"Unexpected model output type: {type(output).__name__}")
    return output


class TorchScriptBackend:
    reentrant = False

    def __init__(self, module: torch.jit.ScriptModule, device: torch.device) -> None:
        self._module = module
        self._device = device

    @classmethod
    def open(cls, model_path: Path) -> "TorchScriptBackend":
        device = get_device()
        logger.info("Loading TorchScript model from %s on %s", model_path, device)
        module = torch.jit.load(str(model_path), map_location=device)
        module.eval()
        return cls(module, device)

    def run(self, batch: np.ndarray) -> np.ndarray:
        with torch.no_grad():
            output = self._module(torch.from_numpy(batch).to(self._device))
        return _first_tensor(output).detach().cpu().numpy()


def open_backend(model_path: Path) -> Backend:
    if model_path.suffix.lower() == ".onnx":
        return OnnxBackend.open(model_path)
    return TorchScriptBackend.open(model_path)


class BackgroundRemovalModel:
    """
    Loaded model plus the pre/post-processing around it.

    Pre- and post-processing run outside any lock. The backend call is
    wrapped in a lock only when the backend is not reentrant, or when
    `serialize=True` forces it.
    """

    def __init__(
        self,
        backend: Backend,
        input_size: Union[int, Tuple[int, int]] = 1024,
        serialize: Optional[bool] = None,
    ) -> None:
        if isinstance(input_size, int):
            input_size = (input_size, input_size)
        self._backend = backend
        self._input_size = input_size
        if serialize is None:
            serialize = not backend.reentrant
        self._lock = Lock() if serialize else None

    @property
    def serialized(self) -> bool:
        return self._lock is not None

    @classmethod
    def load(
        cls,
        model_path: Union[str, Path],
        input_size: Union[int, Tuple[int, int]] = 1024,
        serialize: Optional[bool] = None,
    ) -> "BackgroundRemovalModel":
        model_path = Path(model_path)
        if not model_path.is_file():
            raise ModelLoadError(f"Model file not found at {model_path}")
        try:
            backend = open_backend(model_path)
        except Exception as exc:  # noqa: BLE001
            raise ModelLoadError(f"Failed to load model from {model_path}: {exc}") from exc
        return cls(backend, input_size=input_size, serialize=serialize)

    def infer(self, image: Image.Image) -> Image.Image:
        """Return a copy of `image` whose alpha channel masks out the background."""
        try:
            batch = to_model_input(image, self._input_size)
            with self._lock or nullcontext():
                matte = self._backend.run(batch)
            alpha = matte_to_alpha(matte, image.size)
            return compose_rgba(image, alpha)
        except Exception as exc:  # noqa: BLE001
            raise InferenceError(f"Background removal failed: {exc}") from exc


class ModelState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    LOAD_FAILED = "load_failed"


class ModelProvider:
    """
    One-time initialisation cell for the shared model.

    The first `get()` loads the model; concurrent callers block on the lock
    and then observe the same instance. A failed load is terminal: later calls
    raise `ModelLoadError` again without touching the artifact.
    """

    def __init__(self, loader: Callable[[], BackgroundRemovalModel]) -> None:
        self._loader = loader
        self._lock = Lock()
        self._model: Optional[BackgroundRemovalModel] = None
        self._error: Optional[ModelLoadError] = None
        self.state = ModelState.UNINITIALIZED

    @classmethod
    def from_settings(cls, settings: Optional[config.Settings] = None) -> "ModelProvider":
        settings = settings or config.get_settings()

        def _load() -> BackgroundRemovalModel:
            return BackgroundRemovalModel.load(
                settings.rmbg_model_path,
                input_size=settings.rmbg_input_size,
                serialize=settings.rmbg_serialize_inference,
            )

        return cls(_load)

    @property
    def ready(self) -> bool:
        return self.state is ModelState.READY

    def get(self) -> BackgroundRemovalModel:
        model = self._model
        if model is not None:
            return model

        with self._lock:
            if self._model is None:
                if self._error is not None:
                    raise ModelLoadError(str(self._error)) from self._error
                self.state = ModelState.LOADING
                try:
                    self._model = self._loader()
                except Exception as exc:  # noqa: BLE001
                    error = exc if isinstance(exc, ModelLoadError) else ModelLoadError(str(exc))
                    self._error = error
                    self.state = ModelState.LOAD_FAILED
                    logger.error("Model load failed: %s", error)
                    if error is exc:
                        raise
                    raise error from exc
                self.state = ModelState.READY
                logger.info("Background removal model ready")
        return self._model
