"""ONNX Runtime backend.

Owns one model's configuration and the ``InferenceSession`` objects built for
it. Each execution context is a session placed on a CPU or a specific GPU;
the model config's instance groups decide how many contexts exist and where.

The main model file is looked up by ``ModelConfig.default_model_filename``.
It is either an inline artifact (the file bytes are handed to the runtime) or
a localized bundle directory that contains a file of the same name next to
its external tensor files.
"""

import os
from dataclasses import dataclass
from typing import Any, List, Optional, Union

import structlog

from .artifacts import ArtifactMap, InlineArtifact, LocalizedArtifact
from .base import ConfigValidationError, ExecutionContextError, InferenceBackend
from .hardware import GPUDetector, get_gpu_detector
from .model_config import InstanceGroup, InstanceGroupKind, ModelConfig, OnnxRuntimeConfig

logger = structlog.get_logger("backends.onnx")

CPU_PROVIDER = "CPUExecutionProvider"
CUDA_PROVIDER = "CUDAExecutionProvider"


@dataclass
class OnnxExecutionContext:
    """One runtime session bound to a device."""
    name: str
    kind: InstanceGroupKind
    device_id: Optional[int]
    providers: List[Any]
    session: Any


class OnnxBackend(InferenceBackend):
    """Backend serving one ONNX model.

    Parameters
    - min_compute_capability: Lowest GPU compute capability a GPU context may
      be placed on
    - runtime: Active runtime module (from ``RuntimeLoader.runtime``)
    - backend_config: Session settings shared across contexts
    - gpu_detector: Source of device ids and compute capabilities
    """

    def __init__(
        self,
        min_compute_capability: float,
        runtime: Any,
        backend_config: Optional[OnnxRuntimeConfig] = None,
        gpu_detector: Optional[GPUDetector] = None
    ):
        self.min_compute_capability = min_compute_capability
        self.runtime = runtime
        self.backend_config = backend_config or OnnxRuntimeConfig()
        self.gpu_detector = gpu_detector or get_gpu_detector()

        self.path: Optional[str] = None
        self.platform: Optional[str] = None
        self.model_config: Optional[ModelConfig] = None
        self.instance_groups: List[InstanceGroup] = []
        self.contexts: List[OnnxExecutionContext] = []

    @property
    def name(self) -> Optional[str]:
        return self.model_config.name if self.model_config else None

    def init(self, path: str, model_config: ModelConfig, platform: str) -> None:
        """Validate ``model_config`` and fix the instance group placement."""
        if model_config.platform != platform:
            raise ConfigValidationError(
                f"model '{model_config.name}' declares platform '{model_config.platform}', "
                f"expected '{platform}'"
            )
        if not model_config.name:
            raise ConfigValidationError("model config must have a name")
        if not model_config.default_model_filename:
            raise ConfigValidationError(
                f"model '{model_config.name}' has an empty default model filename"
            )

        self.instance_groups = self._normalize_instance_groups(model_config)
        self.path = path
        self.platform = platform
        self.model_config = model_config

        logger.debug(
            "Backend initialized",
            model_name=model_config.name,
            path=path,
            min_compute_capability=self.min_compute_capability,
            instance_groups=[g.name for g in self.instance_groups]
        )

    def _normalize_instance_groups(self, model_config: ModelConfig) -> List[InstanceGroup]:
        groups = model_config.instance_group or [InstanceGroup()]
        detected = self.gpu_detector.gpu_ids()

        normalized = []
        for index, group in enumerate(groups):
            name = group.name or f"{model_config.name}_{index}"
            if any(gpu < 0 for gpu in group.gpus):
                raise ConfigValidationError(
                    f"instance group '{name}' of model '{model_config.name}' lists an invalid GPU id"
                )

            kind = group.kind
            if kind == InstanceGroupKind.AUTO:
                kind = InstanceGroupKind.GPU if (group.gpus or detected) else InstanceGroupKind.CPU

            gpus = list(group.gpus) if kind == InstanceGroupKind.GPU else []
            if kind == InstanceGroupKind.GPU and not gpus:
                gpus = detected
                if not gpus:
                    raise ConfigValidationError(
                        f"instance group '{name}' of model '{model_config.name}' "
                        "requires a GPU but none are available"
                    )

            normalized.append(group.model_copy(update={"name": name, "kind": kind, "gpus": gpus}))
        return normalized

    def create_execution_contexts(self, artifacts: ArtifactMap) -> None:
        """Create ``count`` contexts per device for every instance group.

        All-or-nothing: if one context fails, the ones already created are
        released before the error propagates.
        """
        if self.model_config is None:
            raise ExecutionContextError("backend must be initialized before creating contexts")

        filename = self.model_config.default_model_filename
        try:
            for group in self.instance_groups:
                for index in range(group.count):
                    if group.kind == InstanceGroupKind.GPU:
                        for gpu in group.gpus:
                            self._create_execution_context(
                                f"{group.name}_{index}_gpu{gpu}", group.kind, gpu, filename, artifacts
                            )
                    else:
                        self._create_execution_context(
                            f"{group.name}_{index}_cpu", group.kind, None, filename, artifacts
                        )
        except ExecutionContextError:
            self.close()
            raise

        logger.info(
            "Execution contexts created",
            model_name=self.model_config.name,
            contexts=[context.name for context in self.contexts]
        )

    def _create_execution_context(
        self,
        name: str,
        kind: InstanceGroupKind,
        device_id: Optional[int],
        filename: str,
        artifacts: ArtifactMap
    ) -> OnnxExecutionContext:
        entry = artifacts.get(filename)
        if entry is None:
            raise ExecutionContextError(
                f"unable to find model file among {sorted(artifacts)} for context '{name}'",
                artifact=filename
            )

        if device_id is not None:
            self._check_compute_capability(name, device_id)

        model_source: Union[bytes, str]
        if isinstance(entry, InlineArtifact):
            model_source = entry.content
        elif isinstance(entry, LocalizedArtifact):
            model_source = os.path.join(entry.path, filename)
            if not os.path.isfile(model_source):
                raise ExecutionContextError(
                    f"bundle does not contain its main model file for context '{name}'",
                    artifact=filename
                )
        else:
            raise ExecutionContextError(
                f"unsupported artifact entry {type(entry).__name__}", artifact=filename
            )

        providers = self._providers(device_id)
        try:
            session = self.runtime.InferenceSession(
                model_source,
                sess_options=self._session_options(),
                providers=providers
            )
        except Exception as e:
            raise ExecutionContextError(
                f"runtime rejected model for context '{name}': {e}", artifact=filename
            ) from e

        context = OnnxExecutionContext(
            name=name,
            kind=kind,
            device_id=device_id,
            providers=providers,
            session=session
        )
        self.contexts.append(context)
        logger.debug("Execution context created", context=name, device_id=device_id)
        return context

    def _check_compute_capability(self, name: str, device_id: int) -> None:
        capability = self.gpu_detector.compute_capability(device_id)
        if capability is None:
            raise ExecutionContextError(f"GPU {device_id} for context '{name}' is not available")
        if capability < self.min_compute_capability:
            raise ExecutionContextError(
                f"GPU {device_id} for context '{name}' has compute capability {capability}, "
                f"minimum required is {self.min_compute_capability}"
            )

    def _providers(self, device_id: Optional[int]) -> List[Any]:
        if device_id is None:
            return [CPU_PROVIDER]
        return [(CUDA_PROVIDER, {"device_id": device_id}), CPU_PROVIDER]

    def _session_options(self) -> Any:
        options = self.runtime.SessionOptions()
        if self.backend_config.intra_op_threads:
            options.intra_op_num_threads = self.backend_config.intra_op_threads
        if self.backend_config.inter_op_threads:
            options.inter_op_num_threads = self.backend_config.inter_op_threads
        options.graph_optimization_level = getattr(
            self.runtime.GraphOptimizationLevel,
            self.backend_config.graph_optimization_level.runtime_name
        )
        return options

    def close(self) -> None:
        """Drop every session."""
        for context in self.contexts:
            context.session = None
        self.contexts = []
