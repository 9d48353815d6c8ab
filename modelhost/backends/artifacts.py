"""Model artifact resolution.

A model version directory holds zero or more files and zero or more
subdirectories, each one a named artifact. Files are read whole into memory;
subdirectories are bundles (for example tensors stored outside the main ONNX
file) and are copied into a scoped temporary store so relative references
inside the main model file keep resolving.

The resolver yields an ``ArtifactMap`` from a context manager. Every scoped
store it allocated stays on disk until that context exits, on success or
error, so backends can read localized paths while building execution
contexts.

Remote model locations (``s3://``, ``gs://``, ``runs:/``, ``models:/`` and
other MLflow artifact URIs) are listed and fetched through
``mlflow.artifacts``. ``file://`` URIs and plain paths are local.
"""

import os
import posixpath
import shutil
import tempfile
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple, Union
from urllib.parse import urlparse
from urllib.request import url2pathname

import mlflow.artifacts
import structlog

from .base import EnumerationError, LocalizationError, ReadError

logger = structlog.get_logger("backends.artifacts")

HIDDEN_FILE_PREFIX = "."


@dataclass(frozen=True)
class InlineArtifact:
    """Raw serialized contents of a model file."""
    content: bytes


@dataclass(frozen=True)
class LocalizedArtifact:
    """Local path of a localized subdirectory bundle."""
    path: str


ArtifactEntry = Union[InlineArtifact, LocalizedArtifact]
ArtifactMap = Dict[str, ArtifactEntry]


def is_hidden(name: str) -> bool:
    return name.startswith(HIDDEN_FILE_PREFIX)


def is_remote_path(path: str) -> bool:
    """Return ``True`` for URIs that must be fetched through MLflow."""
    scheme = urlparse(path).scheme
    # Windows drive letters parse as one-character schemes.
    return len(scheme) > 1 and scheme != "file"


def _local_path(path: str) -> str:
    parsed = urlparse(path)
    if parsed.scheme == "file":
        return url2pathname(parsed.path)
    return path


def join_path(base: str, name: str) -> str:
    """Join an entry name onto a local path or remote URI."""
    if is_remote_path(base):
        return base.rstrip("/") + "/" + name
    return os.path.join(_local_path(base), name)


def _list_entries(path: str) -> List[Tuple[str, bool]]:
    """Return ``(name, is_dir)`` for every file and directory under ``path``."""
    if is_remote_path(path):
        try:
            infos = mlflow.artifacts.list_artifacts(artifact_uri=path)
        except Exception as e:
            raise EnumerationError(f"unable to list {path}: {e}") from e
        return [(posixpath.basename(info.path.rstrip("/")), info.is_dir) for info in infos]

    try:
        with os.scandir(_local_path(path)) as entries:
            return [
                (entry.name, entry.is_dir())
                for entry in entries
                if entry.is_dir() or entry.is_file()
            ]
    except OSError as e:
        raise EnumerationError(f"unable to list {path}: {e}") from e


def list_directory_files(path: str, skip_hidden: bool = True) -> List[str]:
    """Sorted names of the regular files directly under ``path``."""
    return sorted(
        name for name, is_dir in _list_entries(path)
        if not is_dir and not (skip_hidden and is_hidden(name))
    )


def list_directory_subdirs(path: str, skip_hidden: bool = True) -> List[str]:
    """Sorted names of the immediate subdirectories of ``path``."""
    return sorted(
        name for name, is_dir in _list_entries(path)
        if is_dir and not (skip_hidden and is_hidden(name))
    )


def read_file_bytes(path: str) -> bytes:
    """Read a whole file as raw bytes (no newline translation)."""
    name = posixpath.basename(path.rstrip("/")) if is_remote_path(path) else os.path.basename(path)

    if is_remote_path(path):
        try:
            with tempfile.TemporaryDirectory(prefix="modelhost-read-") as tmp:
                local = mlflow.artifacts.download_artifacts(artifact_uri=path, dst_path=tmp)
                return Path(local).read_bytes()
        except Exception as e:
            raise ReadError(f"unable to read {path}: {e}", artifact=name) from e

    try:
        with open(_local_path(path), "rb") as f:
            return f.read()
    except OSError as e:
        raise ReadError(f"unable to read {path}: {e}", artifact=name) from e


class ScopedLocalStore:
    """Temporary directory holding one localized subdirectory bundle.

    Use as a context manager: entering allocates the directory, exiting
    removes it along with everything localized into it.
    """

    def __init__(self, root: Optional[str] = None, name: Optional[str] = None):
        self.root = root
        self.name = name
        self.path: Optional[str] = None
        self.model_path: Optional[str] = None

    def __enter__(self) -> "ScopedLocalStore":
        try:
            self.path = tempfile.mkdtemp(prefix="modelhost-", dir=self.root)
        except OSError as e:
            raise LocalizationError(
                f"unable to allocate temporary store: {e}", artifact=self.name
            ) from e
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.release()
        return False

    def localize(self, source: str, name: Optional[str] = None) -> str:
        """Copy the directory ``source`` into this store.

        The relative layout under ``source`` is preserved. Returns the local
        path of the copy.
        """
        name = name or self.name
        if self.path is None:
            raise LocalizationError("temporary store is not open", artifact=name)

        if is_remote_path(source):
            try:
                self.model_path = mlflow.artifacts.download_artifacts(
                    artifact_uri=source, dst_path=self.path
                )
            except Exception as e:
                raise LocalizationError(f"unable to download {source}: {e}", artifact=name) from e
        else:
            local = _local_path(source)
            if not os.path.isdir(local):
                raise LocalizationError(f"{source} is not a directory", artifact=name)
            try:
                shutil.copytree(local, self.path, dirs_exist_ok=True)
            except OSError as e:
                raise LocalizationError(f"unable to copy {source}: {e}", artifact=name) from e
            self.model_path = self.path

        logger.debug("Localized bundle", artifact=name, source=source, path=self.model_path)
        return self.model_path

    def release(self) -> None:
        """Remove the store directory. Safe to call more than once."""
        if self.path is None:
            return
        try:
            shutil.rmtree(self.path)
        except OSError as e:
            logger.warning("Failed to remove temporary store", path=self.path, error=str(e))
        self.path = None
        self.model_path = None


class ArtifactResolver:
    """Turns a model directory into an ``ArtifactMap``.

    Parameters
    - temp_root: Directory under which scoped stores are allocated
      (system temp directory when ``None``)
    """

    def __init__(self, temp_root: Optional[str] = None):
        self.temp_root = temp_root

    @contextmanager
    def resolve(self, model_path: str) -> Iterator[ArtifactMap]:
        """Resolve ``model_path`` and yield its artifact map.

        Localized stores are released when the ``with`` block exits.
        """
        files = list_directory_files(model_path, skip_hidden=True)
        subdirs = list_directory_subdirs(model_path, skip_hidden=True)

        artifacts: ArtifactMap = {}
        with ExitStack() as stack:
            # Bundles are localized first so relative references in the main
            # model file find them.
            for dirname in subdirs:
                store = stack.enter_context(ScopedLocalStore(self.temp_root, name=dirname))
                local_path = store.localize(join_path(model_path, dirname), name=dirname)
                artifacts[dirname] = LocalizedArtifact(local_path)

            for filename in files:
                artifacts[filename] = InlineArtifact(read_file_bytes(join_path(model_path, filename)))

            logger.info(
                "Resolved model artifacts",
                model_path=model_path,
                files=len(files),
                bundles=len(subdirs)
            )
            yield artifacts
