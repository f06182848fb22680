from __future__ import annotations

import threading
from typing import Any, Callable, List, Optional

import numpy as np
import pytest
from PIL import Image

from bgremover.config import ModelConfig
from bgremover.pipeline import BackgroundRemover


class StubSession:
    """Inference session returning whatever `make_outputs` builds."""

    def __init__(self, make_outputs: Callable[[str, np.ndarray], List[Any]]):
        self.make_outputs = make_outputs
        self.calls: List[tuple] = []
        self.closed = False
        self._lock = threading.Lock()

    def run(self, input_name: str, tensor: np.ndarray) -> List[Any]:
        with self._lock:
            self.calls.append((input_name, tensor.shape, tensor.dtype))
        return self.make_outputs(input_name, tensor)

    def close(self) -> None:
        self.closed = True


def constant_output(value: float, options: ModelConfig) -> Callable[[str, np.ndarray], List[Any]]:
    def _make(_name: str, _tensor: np.ndarray) -> List[Any]:
        shape = (1, 1, options.output_height, options.output_width)
        return [np.full(shape, value, dtype=np.float32)]

    return _make


@pytest.fixture
def small_options() -> ModelConfig:
    return ModelConfig.square(2)


@pytest.fixture
def make_remover():
    def _make(value: float = 1.0, options: Optional[ModelConfig] = None, outputs=None):
        options = options or ModelConfig()
        session = StubSession(outputs or constant_output(value, options))
        return BackgroundRemover.from_session(session, options), session

    return _make


@pytest.fixture
def red_image() -> Image.Image:
    return Image.new("RGBA", (4, 4), (255, 0, 0, 255))


@pytest.fixture
def noisy_image() -> Image.Image:
    rng = np.random.default_rng(7)
    pixels = rng.integers(0, 256, size=(37, 53, 4), dtype=np.uint8)
    return Image.fromarray(pixels)
