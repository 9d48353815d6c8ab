#!/usr/bin/env python3
"""Script to load a model version into an ONNX Runtime backend.

Reads ``<model-dir>/config.json``, resolves ``<model-dir>/<version>`` and
prints one line per execution context that was created.
"""

import argparse
import sys
from pathlib import Path
from typing import Optional

import mlflow
import structlog

from modelhost.backends.base import BackendError
from modelhost.backends.factory import create_backend_factory
from modelhost.backends.model_config import load_model_config
from modelhost.common.config import ModelHostConfig
from modelhost.common.logging import configure_logging

logger = structlog.get_logger("load_model")


def setup_mlflow(config: ModelHostConfig) -> None:
    """Point remote model locations at the configured tracking server."""
    mlflow.set_tracking_uri(config.ml_mlflow_tracking_uri)
    logger.debug("MLflow tracking configured", tracking_uri=config.ml_mlflow_tracking_uri)


def load_model(
    model_dir: str,
    version: str,
    config_name: str = "config.json",
    min_compute_capability: Optional[float] = None,
    config: Optional[ModelHostConfig] = None
) -> int:
    """Load one model version and report its execution contexts.

    Returns the process exit code.
    """
    if not config:
        config = ModelHostConfig()
    if min_compute_capability is None:
        min_compute_capability = config.ml_min_compute_capability

    setup_mlflow(config)

    model_root = Path(model_dir)
    version_path = str(model_root / version)

    try:
        model_config = load_model_config(model_root / config_name)
        with create_backend_factory(model_config.platform, config.backend_config()) as factory:
            backend = factory.create_backend(version_path, model_config, min_compute_capability)
            try:
                for context in backend.contexts:
                    device = "cpu" if context.device_id is None else f"gpu{context.device_id}"
                    print(f"{context.name}\t{context.kind.value}\t{device}")
            finally:
                backend.close()
    except (BackendError, ValueError) as e:
        logger.error("Model load failed", model_dir=model_dir, version=version, error=str(e))
        print(f"Failed to load model from {version_path}: {e}")
        return 1

    logger.info("Model loaded", model_name=model_config.name, version=version)
    return 0


def main(argv=None):
    """Main function for CLI."""
    parser = argparse.ArgumentParser(description="Load a model into an ONNX Runtime backend")
    parser.add_argument("--model-dir", required=True, help="Model directory holding config.json")
    parser.add_argument("--version", default="1", help="Version subdirectory to load")
    parser.add_argument("--config", default="config.json", help="Model config file name")
    parser.add_argument(
        "--min-compute-capability",
        type=float,
        help="Lowest GPU compute capability to place contexts on"
    )

    args = parser.parse_args(argv)

    config = ModelHostConfig()
    configure_logging(
        "load_model",
        config.ml_log_level,
        config.ml_log_format,
        model_repository=config.ml_model_repository,
        runtime=config.ml_onnx_runtime_module,
    )

    sys.exit(load_model(
        model_dir=args.model_dir,
        version=args.version,
        config_name=args.config,
        min_compute_capability=args.min_compute_capability,
        config=config
    ))


if __name__ == "__main__":
    main()
