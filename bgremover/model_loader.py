"""
Inference session loading.

The pipeline treats inference as a function from one named input tensor to a
list of output tensors. Two runtimes implement that contract:
 - ONNX Runtime, for `.onnx` files or in-memory model bytes,
 - TorchScript, for models exported with `torch.jit.save`.

The execution target is fixed when the session is created.
"""

from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import Any, List, Optional, Protocol, Union

import numpy as np
import onnxruntime as ort
import torch

from .config import AcceleratedDevice, DefaultDevice, Device
from .errors import ModelConfigurationError, ModelNotFoundError

logger = logging.getLogger(__name__)

ModelSource = Union[str, Path, bytes]

TORCHSCRIPT_SUFFIXES = {".pt", ".pth", ".ts", ".torchscript"}


class InferenceSession(Protocol):
    def run(self, input_name: str, tensor: np.ndarray) -> List[Any]:
        ...

    def close(self) -> None:
        ...


class OnnxInferenceSession:
    """ONNX Runtime session bound to one execution provider."""

    def __init__(self, model: ModelSource, device: Optional[Device] = None):
        self.device = device or DefaultDevice()
        providers = _onnx_providers(self.device)
        source = model if isinstance(model, bytes) else str(model)
        try:
            self._session: Optional[ort.InferenceSession] = ort.InferenceSession(source, providers=providers)
        except Exception as exc:  # noqa: BLE001
            raise ModelConfigurationError(f"Failed to initialize ONNX session: {exc}") from exc
        logger.info("ONNX model loaded with providers: %s", self._session.get_providers())

    def run(self, input_name: str, tensor: np.ndarray) -> List[Any]:
        if self._session is None:
            raise RuntimeError("ONNX session is closed")
        return self._session.run(None, {input_name: tensor})

    def close(self) -> None:
        self._session = None


def _onnx_providers(device: Device) -> List[Any]:
    if isinstance(device, AcceleratedDevice):
        if "CUDAExecutionProvider" in ort.get_available_providers():
            return [("CUDAExecutionProvider", {"device_id": device.index}), "CPUExecutionProvider"]
        logger.warning("CUDAExecutionProvider unavailable, running %s on CPU instead", device)
    return ["CPUExecutionProvider"]


class TorchScriptInferenceSession:
    """TorchScript module kept on one torch device."""

    def __init__(self, model: ModelSource, device: Optional[Device] = None):
        self.device = device or DefaultDevice()
        self.torch_device = _torch_device(self.device)
        source = io.BytesIO(model) if isinstance(model, bytes) else str(model)
        try:
            module = torch.jit.load(source, map_location=self.torch_device)
        except Exception as exc:  # noqa: BLE001
            raise ModelConfigurationError(f"Failed to load TorchScript model: {exc}") from exc
        if hasattr(module, "eval"):
            module.eval()
        self._module: Optional[torch.jit.ScriptModule] = module
        logger.info("TorchScript model loaded on device: %s", self.torch_device)

    def run(self, input_name: str, tensor: np.ndarray) -> List[Any]:
        # TorchScript forward() takes positional inputs; the name is only
        # meaningful to ONNX graphs.
        if self._module is None:
            raise RuntimeError("TorchScript session is closed")
        with torch.no_grad():
            out = self._module(torch.from_numpy(tensor).to(self.torch_device))
        if isinstance(out, dict):
            out = list(out.values())
        if not isinstance(out, (list, tuple)):
            out = [out]
        return [o.detach().cpu().numpy() if isinstance(o, torch.Tensor) else o for o in out]

    def close(self) -> None:
        self._module = None
        if self.torch_device.type == "cuda":
            torch.cuda.empty_cache()


def _torch_device(device: Device) -> torch.device:
    if isinstance(device, AcceleratedDevice):
        if torch.cuda.is_available():
            return torch.device("cuda", device.index)
        logger.warning("CUDA unavailable, running %s on CPU instead", device)
    return torch.device("cpu")


def resolve_backend(model: ModelSource, backend: str = "auto") -> str:
    """Pick the runtime for a model source; raw bytes default to ONNX."""
    backend = backend.lower()
    if backend != "auto":
        if backend not in {"onnx", "torchscript"}:
            raise ModelConfigurationError(f"Unknown model backend: {backend}")
        return backend
    if isinstance(model, bytes):
        return "onnx"
    if Path(model).suffix.lower() in TORCHSCRIPT_SUFFIXES:
        return "torchscript"
    return "onnx"


def load_session(model: ModelSource, device: Optional[Device] = None, backend: str = "auto") -> InferenceSession:
    """
    Load a model into an inference session.

    Raises:
        ModelNotFoundError: when `model` is a path that does not exist.
        ModelConfigurationError: when the runtime cannot load the model.
    """
    if isinstance(model, bytes):
        if not model:
            raise ModelConfigurationError("Model data is empty")
    else:
        model_path = Path(model)
        if not model_path.is_file():
            raise ModelNotFoundError(f"Model not found at {model_path}")

    kind = resolve_backend(model, backend)
    logger.info("Loading %s model from %s", kind, "memory" if isinstance(model, bytes) else model)
    if kind == "torchscript":
        return TorchScriptInferenceSession(model, device)
    return OnnxInferenceSession(model, device)
