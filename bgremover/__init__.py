"""
Background removal package.

Exposes reusable primitives for loading a segmentation model, packing images
into model tensors, turning model output into an alpha mask, and serving the
pipeline over a CLI or a FastAPI application.
"""

from .config import AcceleratedDevice, DefaultDevice, ModelConfig
from .errors import (
    BackgroundRemovalError,
    DimensionMismatchError,
    InvalidImageError,
    ModelConfigurationError,
    ModelNotFoundError,
    OutputCollisionError,
    PipelineClosedError,
    UnusableOutputError,
)
from .pipeline import BackgroundRemover
from .postprocessing import encode_png, save_png

__all__ = [
    "AcceleratedDevice",
    "BackgroundRemovalError",
    "BackgroundRemover",
    "DefaultDevice",
    "DimensionMismatchError",
    "InvalidImageError",
    "ModelConfig",
    "ModelConfigurationError",
    "ModelNotFoundError",
    "OutputCollisionError",
    "PipelineClosedError",
    "UnusableOutputError",
    "encode_png",
    "save_png",
]
