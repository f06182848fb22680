"""Exception hierarchy shared by the pipeline, the CLI and the HTTP layer."""

from __future__ import annotations


class BackgroundRemovalError(Exception):
    """Base class for every error raised by bgremover."""


class ModelConfigurationError(BackgroundRemovalError):
    """The model artifact is missing, unreadable or cannot be loaded."""


class ModelNotFoundError(ModelConfigurationError, FileNotFoundError):
    pass


class UnusableOutputError(BackgroundRemovalError):
    """The inference session returned nothing usable as a mask."""


class DimensionMismatchError(BackgroundRemovalError, AssertionError):
    """Two pipeline stages disagree on image or tensor dimensions."""


class InvalidImageError(BackgroundRemovalError, ValueError):
    pass


class PipelineClosedError(BackgroundRemovalError, RuntimeError):
    pass


class OutputCollisionError(BackgroundRemovalError, ValueError):
    """An output file would overwrite an input or another output."""
