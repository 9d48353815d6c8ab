"""Lifecycle of the native inference runtime.

The runtime module is process-wide state, so activation is reference counted:
each factory calls ``init()`` once when it is created and ``stop()`` once when
it is closed. The module is imported on the first ``init()`` and dropped when
the last reference goes away. ``init``/``stop`` are serialized with a lock.
"""

import importlib
import re
import threading
from typing import Any, Callable, Dict, Optional, Tuple

import structlog

from modelhost.common.metrics import MetricsCollector

from .base import InitializationError

logger = structlog.get_logger("backends.loader")


def _version_tuple(version: str) -> Tuple[int, ...]:
    """``"1.17.0rc1"`` -> ``(1, 17, 0)``."""
    parts = []
    for piece in str(version).split("."):
        match = re.match(r"\d+", piece)
        if match is None:
            break
        parts.append(int(match.group()))
    return tuple(parts)


class RuntimeLoader:
    """Reference-counted owner of one native runtime module.

    Parameters
    - module_name: Importable name of the runtime (``onnxruntime``)
    - min_version: Lowest accepted ``__version__``
    - importer: Callable used to import the module (``importlib.import_module``)
    - metrics: Optional collector updated with the reference count
    """

    def __init__(
        self,
        module_name: str = "onnxruntime",
        min_version: str = "1.10",
        importer: Optional[Callable[[str], Any]] = None,
        metrics: Optional[MetricsCollector] = None
    ):
        self.module_name = module_name
        self.min_version = min_version
        self.importer = importer or importlib.import_module
        self.metrics = metrics

        self._lock = threading.Lock()
        self._runtime: Any = None
        self._references = 0

    @property
    def active(self) -> bool:
        return self._references > 0

    @property
    def references(self) -> int:
        return self._references

    @property
    def runtime(self) -> Any:
        """The active runtime module."""
        if self._runtime is None:
            raise InitializationError(f"runtime '{self.module_name}' is not initialized")
        return self._runtime

    def init(self) -> Any:
        """Activate the runtime (first call) and take a reference.

        Raises ``InitializationError`` if the module cannot be imported or its
        version is older than ``min_version``.
        """
        with self._lock:
            if self._runtime is None:
                self._runtime = self._activate()
            self._references += 1
            self._report()
            return self._runtime

    def stop(self) -> None:
        """Release one reference; deactivate on the last one.

        A no-op when the loader holds no references.
        """
        with self._lock:
            if self._references == 0:
                return
            self._references -= 1
            if self._references == 0:
                self._runtime = None
                logger.info("Runtime stopped", runtime=self.module_name)
            self._report()

    def _activate(self) -> Any:
        try:
            module = self.importer(self.module_name)
        except Exception as e:
            raise InitializationError(
                f"unable to load runtime '{self.module_name}': {e}"
            ) from e

        version = getattr(module, "__version__", None)
        if version is None:
            raise InitializationError(f"runtime '{self.module_name}' does not report a version")
        if _version_tuple(version) < _version_tuple(self.min_version):
            raise InitializationError(
                f"runtime '{self.module_name}' version {version} is older than "
                f"required {self.min_version}"
            )

        logger.info("Runtime initialized", runtime=self.module_name, version=version)
        return module

    def _report(self) -> None:
        if self.metrics is not None:
            self.metrics.set_runtime_active(self.module_name, self._references)


# Process-wide loaders, one per runtime module
_loaders: Dict[str, RuntimeLoader] = {}
_loaders_lock = threading.Lock()


def get_runtime_loader(module_name: str = "onnxruntime", min_version: str = "1.10") -> RuntimeLoader:
    """Get or create the shared loader for ``module_name``.

    ``min_version`` only applies when the loader is first created.
    """
    with _loaders_lock:
        loader = _loaders.get(module_name)
        if loader is None:
            loader = RuntimeLoader(module_name, min_version)
            _loaders[module_name] = loader
        return loader
