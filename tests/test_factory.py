"""Tests for backend factory creation and model loading."""

import os

import pytest

from modelhost.backends import artifacts as artifacts_module
from modelhost.backends.base import (
    BackendConfig,
    ConfigTypeError,
    EnumerationError,
    ExecutionContextError,
    InitializationError,
    LocalizationError,
    ReadError,
)
from modelhost.backends.factory import BackendPlatform, OnnxBackendFactory, create_backend_factory
from modelhost.backends.hardware import GPUDetector
from modelhost.backends.loader import RuntimeLoader
from modelhost.backends.model_config import ModelConfig, OnnxRuntimeConfig
from modelhost.backends.onnx_backend import OnnxBackend

MODEL_BYTES = b"\x08\x07\x12\x00onnx\r\ngraph"


class OtherRuntimeConfig(BackendConfig):
    engine: str = "tensorrt"


def test_create_rejects_foreign_config_without_init(loader, cpu_only, metrics, imported_modules):
    """Test a wrong config shape fails before the runtime is touched."""
    with pytest.raises(ConfigTypeError):
        OnnxBackendFactory.create(
            OtherRuntimeConfig(), loader=loader, gpu_detector=cpu_only, metrics=metrics
        )

    assert imported_modules == []
    assert not loader.active


def test_create_propagates_runtime_failure(cpu_only, metrics):
    def importer(name):
        raise OSError("libonnxruntime.so: cannot open shared object file")

    with pytest.raises(InitializationError):
        OnnxBackendFactory.create(
            OnnxRuntimeConfig(),
            loader=RuntimeLoader(importer=importer),
            gpu_detector=cpu_only,
            metrics=metrics
        )


def test_create_activates_runtime(factory, loader):
    assert loader.references == 1
    assert factory.backend_config.runtime_module == "onnxruntime"


def test_create_backend_from_single_file(factory, tmp_path):
    model_dir = tmp_path / "densenet" / "1"
    model_dir.mkdir(parents=True)
    (model_dir / "model.onnx").write_bytes(MODEL_BYTES)
    (model_dir / ".DS_Store").write_bytes(b"junk")

    backend = factory.create_backend(str(model_dir), ModelConfig(name="densenet"), 6.0)

    assert isinstance(backend, OnnxBackend)
    assert backend.path == str(model_dir)
    assert backend.min_compute_capability == 6.0
    assert [c.name for c in backend.contexts] == ["densenet_0_0_cpu"]
    assert backend.contexts[0].session.model_bytes == MODEL_BYTES


def test_bundles_live_until_contexts_are_built(factory, tmp_path):
    """Test localized bundles exist during context creation and are removed after."""
    model_dir = tmp_path / "densenet" / "1"
    bundle = model_dir / "model.onnx"
    bundle.mkdir(parents=True)
    (bundle / "model.onnx").write_bytes(MODEL_BYTES)
    (bundle / "tensor.bin").write_bytes(b"\x00\x01")

    backend = factory.create_backend(str(model_dir), ModelConfig(name="densenet"), 6.0)

    session = backend.contexts[0].session
    assert session.model_bytes == MODEL_BYTES
    assert not os.path.exists(session.model)
    assert os.listdir(factory.backend_config.temp_dir) == []


def test_missing_model_file_returns_no_backend(factory, tmp_path, metrics):
    """Test a map missing the configured model file fails the load."""
    model_dir = tmp_path / "densenet" / "1"
    model_dir.mkdir(parents=True)
    (model_dir / "other.onnx").write_bytes(MODEL_BYTES)
    (model_dir / "weights").mkdir()

    with pytest.raises(ExecutionContextError) as excinfo:
        factory.create_backend(str(model_dir), ModelConfig(name="densenet"), 6.0)

    assert excinfo.value.artifact == "model.onnx"
    assert os.listdir(factory.backend_config.temp_dir) == []
    assert metrics.registry.get_sample_value(
        "modelhost_model_loads_total", {"platform": "onnxruntime_onnx", "status": "failure"}
    ) == 1.0


def test_read_failure_aborts_load(factory, tmp_path, monkeypatch):
    model_dir = tmp_path / "densenet" / "1"
    model_dir.mkdir(parents=True)
    (model_dir / "model.onnx").write_bytes(MODEL_BYTES)

    def failing_read(path):
        raise ReadError("disk error", artifact=os.path.basename(path))

    monkeypatch.setattr(artifacts_module, "read_file_bytes", failing_read)

    with pytest.raises(ReadError) as excinfo:
        factory.create_backend(str(model_dir), ModelConfig(name="densenet"), 6.0)

    assert excinfo.value.artifact == "model.onnx"


def test_bundle_copy_failure_returns_no_backend(factory, tmp_path, monkeypatch, metrics):
    """Test a bundle that cannot be localized fails the load and frees its store."""
    model_dir = tmp_path / "densenet" / "1"
    (model_dir / "weights").mkdir(parents=True)
    (model_dir / "weights" / "tensor.bin").write_bytes(b"\x00\x01")
    (model_dir / "model.onnx").write_bytes(MODEL_BYTES)

    def failing_copytree(src, dst, **kwargs):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(artifacts_module.shutil, "copytree", failing_copytree)

    with pytest.raises(LocalizationError) as excinfo:
        factory.create_backend(str(model_dir), ModelConfig(name="densenet"), 6.0)

    assert excinfo.value.artifact == "weights"
    assert os.listdir(factory.backend_config.temp_dir) == []
    assert metrics.registry.get_sample_value(
        "modelhost_model_loads_total", {"platform": "onnxruntime_onnx", "status": "failure"}
    ) == 1.0


def test_missing_model_directory(factory, tmp_path):
    with pytest.raises(EnumerationError):
        factory.create_backend(str(tmp_path / "missing"), ModelConfig(name="densenet"), 6.0)


def test_gpu_floor_applies_to_loaded_backends(loader, metrics, tmp_path):
    model_dir = tmp_path / "densenet" / "1"
    model_dir.mkdir(parents=True)
    (model_dir / "model.onnx").write_bytes(MODEL_BYTES)

    with OnnxBackendFactory.create(
        OnnxRuntimeConfig(),
        loader=loader,
        gpu_detector=GPUDetector(capabilities={0: 5.0}),
        metrics=metrics
    ) as factory:
        with pytest.raises(ExecutionContextError):
            factory.create_backend(str(model_dir), ModelConfig(name="densenet"), 6.0)

        backend = factory.create_backend(str(model_dir), ModelConfig(name="densenet"), 5.0)
        assert backend.contexts[0].device_id == 0


def test_success_metrics(factory, tmp_path, metrics):
    model_dir = tmp_path / "densenet" / "1"
    (model_dir / "extra").mkdir(parents=True)
    (model_dir / "model.onnx").write_bytes(MODEL_BYTES)

    factory.create_backend(str(model_dir), ModelConfig(name="densenet"), 6.0)

    sample = metrics.registry.get_sample_value
    assert sample(
        "modelhost_model_loads_total", {"platform": "onnxruntime_onnx", "status": "success"}
    ) == 1.0
    assert sample(
        "modelhost_execution_contexts_created_total", {"platform": "onnxruntime_onnx", "kind": "KIND_CPU"}
    ) == 1.0
    assert sample("modelhost_localized_artifacts_total") == 1.0
    assert sample("modelhost_model_load_duration_seconds_count", {"platform": "onnxruntime_onnx"}) == 1.0


def test_close_stops_runtime_once(loader, cpu_only, metrics):
    """Test factories share the runtime and each releases it once."""
    first = OnnxBackendFactory.create(OnnxRuntimeConfig(), loader=loader, gpu_detector=cpu_only, metrics=metrics)
    second = OnnxBackendFactory.create(OnnxRuntimeConfig(), loader=loader, gpu_detector=cpu_only, metrics=metrics)
    assert loader.references == 2

    first.close()
    first.close()
    assert loader.references == 1

    second.close()
    assert not loader.active


def test_closed_factory_refuses_to_build(loader, cpu_only, metrics, tmp_path):
    factory = OnnxBackendFactory.create(OnnxRuntimeConfig(), loader=loader, gpu_detector=cpu_only, metrics=metrics)
    factory.close()

    with pytest.raises(InitializationError):
        factory.create_backend(str(tmp_path), ModelConfig(name="densenet"), 6.0)


def test_create_backend_factory_by_platform(loader, cpu_only, metrics):
    factory = create_backend_factory(
        BackendPlatform.ONNXRUNTIME_ONNX.value,
        OnnxRuntimeConfig(),
        loader=loader,
        gpu_detector=cpu_only,
        metrics=metrics
    )

    assert isinstance(factory, OnnxBackendFactory)
    factory.close()


def test_create_backend_factory_unknown_platform():
    with pytest.raises(ValueError):
        create_backend_factory("tensorrt_plan", OnnxRuntimeConfig())
