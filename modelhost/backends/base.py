"""Base backend interfaces.

Defines the abstract contract model hosts depend on, independent of the
runtime that executes the model (ONNX Runtime today), plus the exception
hierarchy every step of backend construction reports through.

Construction is synchronous: a factory resolves a model directory into an
artifact map and hands it to a backend, which builds its execution contexts.
"""

from abc import ABC, abstractmethod
from typing import Optional

from pydantic import BaseModel, ConfigDict


class BackendConfig(BaseModel):
    """Opaque configuration handed uniformly to every backend factory.

    Factories down-cast it to their runtime-specific subclass and reject any
    other shape with ``ConfigTypeError``.
    """

    model_config = ConfigDict(frozen=True)


class InferenceBackend(ABC):
    """Abstract base class for constructed model backends.

    A backend owns its model configuration and execution contexts. It is
    created once per model load and closed when the model is unloaded.
    """

    @abstractmethod
    def init(self, path: str, model_config, platform: str) -> None:
        """Validate the model configuration against ``platform``.

        Raises ``ConfigValidationError`` on mismatch.
        """
        pass

    @abstractmethod
    def create_execution_contexts(self, artifacts) -> None:
        """Create every execution context the configuration requires.

        Raises ``ExecutionContextError`` if a required artifact is missing or
        the runtime rejects it.
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Release execution contexts. Safe to call more than once."""
        pass


class BackendFactory(ABC):
    """Abstract base class for per-runtime backend factories."""

    @abstractmethod
    def create_backend(
        self,
        path: str,
        model_config,
        min_compute_capability: float
    ) -> InferenceBackend:
        """Resolve ``path`` and return a fully constructed backend."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the runtime held by this factory."""
        pass


class BackendError(Exception):
    """Base exception for backend construction.

    ``step`` names the pipeline step that failed; ``artifact`` names the
    artifact involved, when there is one.
    """

    step = "backend"

    def __init__(self, message: str, artifact: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.artifact = artifact

    def __str__(self) -> str:
        if self.artifact is not None:
            return f"[{self.step}] {self.message} (artifact '{self.artifact}')"
        return f"[{self.step}] {self.message}"


class EnumerationError(BackendError):
    """Scanning the model directory failed."""
    step = "enumerate"


class LocalizationError(BackendError):
    """Copying or downloading a subdirectory bundle failed."""
    step = "localize"


class ReadError(BackendError):
    """Reading a model file failed."""
    step = "read"


class InitializationError(BackendError):
    """The native runtime could not be activated or is not active."""
    step = "runtime"


class ConfigTypeError(BackendError):
    """Backend configuration has the wrong shape for this runtime."""
    step = "config"


class ConfigValidationError(BackendError):
    """Model configuration content is invalid for this backend."""
    step = "validate"


class ExecutionContextError(BackendError):
    """Creating an execution context failed."""
    step = "execution_context"
