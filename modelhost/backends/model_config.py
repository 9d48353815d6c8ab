"""Model and runtime configuration types.

``ModelConfig`` declares what a model needs (platform, default model file,
instance groups) and is passed through unchanged to ``InferenceBackend.init``.
``OnnxRuntimeConfig`` is the ONNX Runtime specific ``BackendConfig``.

Model configs are stored as JSON next to the model's version directories:

    models/
      densenet/
        config.json
        1/
          model.onnx
"""

from enum import Enum
from pathlib import Path
from typing import List, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from .base import BackendConfig, ConfigValidationError, ReadError

ONNX_RUNTIME_ONNX_PLATFORM = "onnxruntime_onnx"
DEFAULT_ONNX_FILENAME = "model.onnx"


class InstanceGroupKind(str, Enum):
    """Where an instance group's execution contexts are placed."""
    AUTO = "KIND_AUTO"
    CPU = "KIND_CPU"
    GPU = "KIND_GPU"


class GraphOptimizationLevel(str, Enum):
    """Graph optimization levels understood by ONNX Runtime."""
    DISABLE = "disable"
    BASIC = "basic"
    EXTENDED = "extended"
    ALL = "all"

    @property
    def runtime_name(self) -> str:
        """Member name on ``onnxruntime.GraphOptimizationLevel``."""
        return {
            GraphOptimizationLevel.DISABLE: "ORT_DISABLE_ALL",
            GraphOptimizationLevel.BASIC: "ORT_ENABLE_BASIC",
            GraphOptimizationLevel.EXTENDED: "ORT_ENABLE_EXTENDED",
            GraphOptimizationLevel.ALL: "ORT_ENABLE_ALL",
        }[self]


class InstanceGroup(BaseModel):
    """A set of identical execution contexts.

    ``count`` contexts are created per device: once per listed GPU for
    ``KIND_GPU``, or once in total for ``KIND_CPU``.
    """

    name: Optional[str] = None
    kind: InstanceGroupKind = InstanceGroupKind.AUTO
    count: int = Field(default=1, ge=1)
    gpus: List[int] = Field(default_factory=list)


class ModelConfig(BaseModel):
    """Model metadata handed to backend initialization."""

    name: str
    platform: str = ONNX_RUNTIME_ONNX_PLATFORM
    max_batch_size: int = Field(default=0, ge=0)
    default_model_filename: str = DEFAULT_ONNX_FILENAME
    instance_group: List[InstanceGroup] = Field(default_factory=list)


class OnnxRuntimeConfig(BackendConfig):
    """ONNX Runtime settings shared by every backend a factory creates.

    Parameters
    - runtime_module: Importable name of the native runtime module
    - min_runtime_version: Lowest accepted ``__version__`` of that module
    - intra_op_threads / inter_op_threads: ``0`` keeps the runtime default
    - graph_optimization_level: Session graph optimization level
    - temp_dir: Root for scoped localization stores (system temp if unset)
    """

    runtime_module: str = "onnxruntime"
    min_runtime_version: str = "1.10"
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=0, ge=0)
    graph_optimization_level: GraphOptimizationLevel = GraphOptimizationLevel.ALL
    temp_dir: Optional[str] = None


def load_model_config(path: Union[str, Path]) -> ModelConfig:
    """Load and validate a JSON model configuration file."""
    config_path = Path(path)
    try:
        raw = config_path.read_bytes()
    except OSError as e:
        raise ReadError(f"unable to read model config: {e}", artifact=config_path.name) from e

    try:
        return ModelConfig.model_validate_json(raw)
    except ValidationError as e:
        raise ConfigValidationError(
            f"invalid model config {config_path}: {e}", artifact=config_path.name
        ) from e
