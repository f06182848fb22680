"""
High-level background removal pipeline.

`BackgroundRemover` owns one loaded inference session and is the entry point
used by the CLI, batch mode and the HTTP API. Each call is a strict sequence:
image -> stretch -> tensor -> model -> mask -> rescaled mask -> RGBA image.
"""

from __future__ import annotations

from contextlib import ExitStack
import enum
import logging
from typing import Optional

import numpy as np
from PIL import Image

from .config import DefaultDevice, Device, ModelConfig
from .errors import DimensionMismatchError, PipelineClosedError, UnusableOutputError
from .model_loader import InferenceSession, ModelSource, load_session
from .postprocessing import build_mask, compose_rgba
from .preprocessing import ImageSource, load_rgba, pack_tensor, stretch_resize

logger = logging.getLogger(__name__)


class Stage(enum.Enum):
    IDLE = "idle"
    LOADED = "loaded"
    RESIZED = "resized"
    PACKED = "packed"
    INFERRED = "inferred"
    MASK_BUILT = "mask_built"
    COMPOSITED = "composited"
    DONE = "done"
    FAILED = "failed"


class BackgroundRemover:
    """
    Remove image backgrounds with a segmentation model.

    The model is loaded once in the constructor and shared, read-only, by all
    calls to `remove_background`, which may run from several threads. Callers
    that want bounded parallelism must cap the number of concurrent calls.

    Raises (constructor):
        ModelNotFoundError: when the model path does not exist.
        ModelConfigurationError: when the model cannot be loaded.
    """

    def __init__(
        self,
        model: ModelSource,
        options: Optional[ModelConfig] = None,
        device: Optional[Device] = None,
        backend: str = "auto",
    ):
        self.options = options or ModelConfig()
        self.device = device or DefaultDevice()
        self._session: Optional[InferenceSession] = load_session(model, self.device, backend)

    @classmethod
    def from_session(cls, session: InferenceSession, options: Optional[ModelConfig] = None) -> "BackgroundRemover":
        """Wrap an already-built inference session (custom runtimes, tests)."""
        remover = cls.__new__(cls)
        remover.options = options or ModelConfig()
        remover.device = DefaultDevice()
        remover._session = session
        return remover

    @property
    def closed(self) -> bool:
        return self._session is None

    def close(self) -> None:
        session, self._session = self._session, None
        if session is not None:
            session.close()

    def __enter__(self) -> "BackgroundRemover":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _infer(self, tensor: np.ndarray):
        session = self._session
        if session is None:
            raise PipelineClosedError("BackgroundRemover is closed")
        outputs = session.run(self.options.input_parameter_name, tensor)
        if outputs is None or len(outputs) == 0:
            raise UnusableOutputError("Model produced no output")
        return outputs[0]

    def remove_background(self, source: ImageSource) -> Image.Image:
        """
        Return an RGBA copy of `source` whose alpha is the predicted mask.

        `source` is a path to an encoded image or a decoded Pillow image; the
        latter is not modified. The result has the source's size and RGB data.
        """
        if self._session is None:
            raise PipelineClosedError("BackgroundRemover is closed")

        options = self.options
        stage = Stage.IDLE
        try:
            with ExitStack() as stack:
                snapshot = load_rgba(source)
                stack.callback(snapshot.close)
                stage = Stage.LOADED

                working = stretch_resize(snapshot, options.input_size)
                stack.callback(working.close)
                if working.size != options.input_size:
                    raise DimensionMismatchError(
                        f"Resized image is {working.size}, model expects {options.input_size}"
                    )
                stage = Stage.RESIZED

                tensor = pack_tensor(working)
                stage = Stage.PACKED

                output = self._infer(tensor)
                stage = Stage.INFERRED

                mask = build_mask(output, options.output_size, snapshot.size)
                stack.callback(mask.close)
                stage = Stage.MASK_BUILT

                result = compose_rgba(snapshot, mask)
                stage = Stage.COMPOSITED
            logger.debug("Background removed: size=%s stage=%s", result.size, Stage.DONE.value)
            return result
        except Exception:
            logger.debug("Background removal failed after stage=%s (%s)", stage.value, Stage.FAILED.value)
            raise
