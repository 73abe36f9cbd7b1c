from __future__ import annotations

import pytest

from rmbg_service.model_loader import BackgroundRemovalModel, ModelProvider

from .helpers import StubBackend


@pytest.fixture
def stub_backend() -> StubBackend:
    return StubBackend()


@pytest.fixture
def stub_model(stub_backend: StubBackend) -> BackgroundRemovalModel:
    return BackgroundRemovalModel(stub_backend, input_size=16)


@pytest.fixture
def stub_provider(stub_model: BackgroundRemovalModel) -> ModelProvider:
    return ModelProvider(lambda: stub_model)
