"""
Configuration for the background-removal pipeline.

`ModelConfig` describes the fixed tensor geometry of a model and is frozen
once a pipeline is built. `Settings` centralizes the environment variables
read by the CLI defaults and the HTTP service so operational tuning lives in
one place.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

BACKENDS = {"auto", "onnx", "torchscript"}


class ModelConfig(BaseModel):
    """Input/output tensor geometry of a segmentation model."""

    model_config = ConfigDict(frozen=True)

    input_width: PositiveInt = 320
    input_height: PositiveInt = 320
    output_width: PositiveInt = 320
    output_height: PositiveInt = 320
    input_parameter_name: str = Field("input_image", min_length=1)

    @classmethod
    def square(cls, size: int, input_parameter_name: str = "input_image") -> "ModelConfig":
        """Config for the common case of an NxN model in and out."""
        return cls(
            input_width=size,
            input_height=size,
            output_width=size,
            output_height=size,
            input_parameter_name=input_parameter_name,
        )

    @property
    def input_size(self) -> Tuple[int, int]:
        return self.input_width, self.input_height

    @property
    def output_size(self) -> Tuple[int, int]:
        return self.output_width, self.output_height

    @property
    def input_shape(self) -> Tuple[int, int, int, int]:
        return 1, 3, self.input_height, self.input_width


@dataclass(frozen=True)
class DefaultDevice:
    """Run inference on the default compute target (CPU)."""

    def __str__(self) -> str:
        return "cpu"


@dataclass(frozen=True)
class AcceleratedDevice:
    """Run inference on the accelerator with the given device index."""

    index: int = 0

    def __post_init__(self) -> None:
        if self.index < 0:
            raise ValueError(f"device index must be non-negative, got {self.index}")

    def __str__(self) -> str:
        return f"cuda:{self.index}"


Device = Union[DefaultDevice, AcceleratedDevice]


def device_from_index(gpu_device_id: Optional[int]) -> Device:
    """Map an optional GPU index (as given on a CLI or in env) to a device."""
    if gpu_device_id is None:
        return DefaultDevice()
    return AcceleratedDevice(gpu_device_id)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="BGREMOVER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        protected_namespaces=(),
    )

    # Model
    model_path: Optional[Path] = None
    model_backend: str = "auto"
    input_width: PositiveInt = 320
    input_height: PositiveInt = 320
    output_width: PositiveInt = 320
    output_height: PositiveInt = 320
    input_parameter: str = Field("input_image", min_length=1)
    gpu_device_id: Optional[int] = None

    # API
    max_concurrency: PositiveInt = 1
    request_timeout_seconds: int = 30
    log_level: str = "INFO"

    # Encoding
    clear_transparent: bool = True

    @field_validator("model_backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        v = v.lower()
        if v not in BACKENDS:
            raise ValueError("BGREMOVER_MODEL_BACKEND must be one of auto|onnx|torchscript")
        return v

    @field_validator("gpu_device_id")
    @classmethod
    def validate_gpu_device_id(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 0:
            raise ValueError("BGREMOVER_GPU_DEVICE_ID must be non-negative")
        return v

    def model_options(self) -> ModelConfig:
        return ModelConfig(
            input_width=self.input_width,
            input_height=self.input_height,
            output_width=self.output_width,
            output_height=self.output_height,
            input_parameter_name=self.input_parameter,
        )

    def device(self) -> Device:
        return device_from_index(self.gpu_device_id)


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings to avoid reparsing env on every call."""
    return Settings()
