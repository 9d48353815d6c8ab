"""Backend factories.

Centralizes creation of runtime-specific backend factories so model hosts
don't depend on implementation details. ``OnnxBackendFactory`` resolves a
model version directory into artifacts and turns it into a constructed
``OnnxBackend``.

Guidance:
- Create one factory per runtime and close it (or use it as a context
  manager) when the host shuts down; closing releases the runtime.
"""

import time
from enum import Enum
from typing import Any, Optional

import structlog

from modelhost.common.logging import log_performance
from modelhost.common.metrics import MetricsCollector, get_metrics_collector

from .artifacts import ArtifactResolver, LocalizedArtifact
from .base import BackendConfig, BackendError, BackendFactory, ConfigTypeError, InitializationError
from .hardware import GPUDetector, get_gpu_detector
from .loader import RuntimeLoader, get_runtime_loader
from .model_config import ONNX_RUNTIME_ONNX_PLATFORM, ModelConfig, OnnxRuntimeConfig
from .onnx_backend import OnnxBackend

logger = structlog.get_logger("backends.factory")


class BackendPlatform(Enum):
    """Supported backend platforms."""
    ONNXRUNTIME_ONNX = ONNX_RUNTIME_ONNX_PLATFORM


class OnnxBackendFactory(BackendFactory):
    """Factory for ONNX Runtime backends.

    Use ``OnnxBackendFactory.create`` rather than the constructor so the
    configuration is checked and the runtime activated.
    """

    def __init__(
        self,
        backend_config: OnnxRuntimeConfig,
        loader: RuntimeLoader,
        gpu_detector: GPUDetector,
        metrics: MetricsCollector
    ):
        self.backend_config = backend_config
        self.loader = loader
        self.gpu_detector = gpu_detector
        self.metrics = metrics
        self.resolver = ArtifactResolver(temp_root=backend_config.temp_dir)
        self._closed = False

    @classmethod
    def create(
        cls,
        backend_config: BackendConfig,
        loader: Optional[RuntimeLoader] = None,
        gpu_detector: Optional[GPUDetector] = None,
        metrics: Optional[MetricsCollector] = None
    ) -> "OnnxBackendFactory":
        """Check ``backend_config`` and activate the runtime.

        Raises ``ConfigTypeError`` (before touching the runtime) if the
        configuration is not an ``OnnxRuntimeConfig``, and propagates
        ``InitializationError`` from the loader.
        """
        logger.debug("Create OnnxBackendFactory")

        if not isinstance(backend_config, OnnxRuntimeConfig):
            raise ConfigTypeError(
                f"expected OnnxRuntimeConfig, got {type(backend_config).__name__}"
            )

        if loader is None:
            loader = get_runtime_loader(
                backend_config.runtime_module, backend_config.min_runtime_version
            )
        factory = cls(
            backend_config=backend_config,
            loader=loader,
            gpu_detector=gpu_detector or get_gpu_detector(),
            metrics=metrics or get_metrics_collector()
        )
        loader.init()
        return factory

    def create_backend(
        self,
        path: str,
        model_config: ModelConfig,
        min_compute_capability: float
    ) -> OnnxBackend:
        """Resolve ``path`` and construct a backend with all its contexts.

        ONNX models are either a single file or a file plus subdirectories of
        external tensor data referenced by relative path. Bundles stay
        localized until context creation returns.

        Raises the first ``BackendError`` encountered; no partial backend is
        returned.
        """
        if self._closed:
            raise InitializationError("backend factory has been closed")

        platform = BackendPlatform.ONNXRUNTIME_ONNX.value
        start_time = time.time()
        backend: Optional[OnnxBackend] = None

        try:
            with self.resolver.resolve(path) as artifacts:
                self.metrics.record_localized_artifacts(
                    sum(isinstance(entry, LocalizedArtifact) for entry in artifacts.values())
                )
                backend = OnnxBackend(
                    min_compute_capability,
                    runtime=self.loader.runtime,
                    backend_config=self.backend_config,
                    gpu_detector=self.gpu_detector
                )
                backend.init(path, model_config, platform)
                backend.create_execution_contexts(artifacts)
        except BackendError as e:
            if backend is not None:
                backend.close()
            self.metrics.record_model_load(platform, "failure", time.time() - start_time)
            logger.error(
                "Failed to create backend",
                model_name=model_config.name,
                path=path,
                step=e.step,
                artifact=e.artifact,
                error=str(e)
            )
            raise

        duration = time.time() - start_time
        self.metrics.record_model_load(platform, "success", duration)
        for context in backend.contexts:
            self.metrics.record_execution_context(platform, context.kind.value)
        log_performance(
            "create_backend",
            duration * 1000,
            model_name=model_config.name,
            contexts=len(backend.contexts)
        )
        return backend

    def close(self) -> None:
        """Release this factory's runtime reference. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self.loader.stop()

    def __enter__(self) -> "OnnxBackendFactory":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False


def create_backend_factory(
    platform: str,
    backend_config: BackendConfig,
    **kwargs: Any
) -> BackendFactory:
    """Create the backend factory for a model platform.

    Parameters
    - platform: Model platform string, e.g. ``onnxruntime_onnx``
    - backend_config: Runtime-specific ``BackendConfig``
    - kwargs: Forwarded to the factory's ``create`` (loader, gpu_detector, metrics)
    """
    try:
        platform_enum = BackendPlatform(platform)
    except ValueError:
        raise ValueError(f"Unsupported backend platform: {platform}")

    if platform_enum == BackendPlatform.ONNXRUNTIME_ONNX:
        return OnnxBackendFactory.create(backend_config, **kwargs)

    raise ValueError(f"Unsupported backend platform: {platform}")
