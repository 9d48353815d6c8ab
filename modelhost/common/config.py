"""Configuration management for model hosting.

This module centralizes environment-driven configuration for the services and
tools that load models into inference backends. It builds on
``pydantic_settings.BaseSettings`` so configuration can be provided via
environment variables, ``.env`` files, or defaults.

Highlights
- Strongly typed settings with sensible defaults
- One place to discover commonly used environment variables
- Small service-specific subclasses to keep concerns clear

Usage
- Inject the appropriate config in your entrypoint:
  ``config = ModelHostConfig()``
- Or select dynamically: ``config = get_config("model-host")``
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from modelhost.backends.model_config import GraphOptimizationLevel, OnnxRuntimeConfig


class BaseConfig(BaseSettings):
    """Base configuration class for all services.

    Field names double as environment variable names (case-insensitive), so
    ``ml_log_level`` is read from ``ML_LOG_LEVEL``.

    Notes
    - Add new shared settings here so downstream services inherit them.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    ml_env: str = Field(default="local")

    # Logging
    ml_log_level: str = Field(default="INFO")
    ml_log_format: str = Field(default="json")

    # Model repository
    ml_model_repository: str = Field(default="/app/models")
    ml_artifact_temp_dir: Optional[str] = Field(default=None)
    ml_min_compute_capability: float = Field(default=6.0, ge=0.0)

    # MLflow (remote model locations)
    ml_mlflow_tracking_uri: str = Field(default="file:///tmp/modelhost/mlruns")


class ModelHostConfig(BaseConfig):
    """Configuration for the ONNX Runtime model host.

    Extends ``BaseConfig`` with the knobs forwarded to ``OnnxRuntimeConfig``.
    """

    ml_onnx_runtime_module: str = Field(default="onnxruntime")
    ml_onnx_min_runtime_version: str = Field(default="1.10")
    ml_onnx_intra_op_threads: int = Field(default=0, ge=0)
    ml_onnx_inter_op_threads: int = Field(default=0, ge=0)
    ml_onnx_graph_optimization_level: GraphOptimizationLevel = Field(
        default=GraphOptimizationLevel.ALL
    )

    def backend_config(self) -> OnnxRuntimeConfig:
        """Build the runtime-specific backend configuration from settings."""
        return OnnxRuntimeConfig(
            runtime_module=self.ml_onnx_runtime_module,
            min_runtime_version=self.ml_onnx_min_runtime_version,
            intra_op_threads=self.ml_onnx_intra_op_threads,
            inter_op_threads=self.ml_onnx_inter_op_threads,
            graph_optimization_level=self.ml_onnx_graph_optimization_level,
            temp_dir=self.ml_artifact_temp_dir,
        )


def get_config(service_name: str) -> BaseConfig:
    """Get configuration for a specific service.

    Parameters
    - service_name: Literal name, currently only ``model-host``.

    Returns
    - A concrete ``BaseConfig`` subclass pre-wired to read the right env vars.
    """
    config_map = {
        "model-host": ModelHostConfig,
    }

    # Default to ``BaseConfig`` to avoid surprising crashes for unknown names.
    config_class = config_map.get(service_name, BaseConfig)
    return config_class()

