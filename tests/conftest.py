"""Shared fixtures: an in-process stand-in for the ONNX Runtime module."""

from types import SimpleNamespace

import pytest
from prometheus_client import CollectorRegistry

from modelhost.backends.factory import OnnxBackendFactory
from modelhost.backends.hardware import GPUDetector
from modelhost.backends.loader import RuntimeLoader
from modelhost.backends.model_config import OnnxRuntimeConfig
from modelhost.common.metrics import MetricsCollector


class FakeSessionOptions:
    """Mirrors the attributes of ``onnxruntime.SessionOptions`` we set."""

    def __init__(self):
        self.intra_op_num_threads = 0
        self.inter_op_num_threads = 0
        self.graph_optimization_level = None


class FakeGraphOptimizationLevel:
    ORT_DISABLE_ALL = 0
    ORT_ENABLE_BASIC = 1
    ORT_ENABLE_EXTENDED = 2
    ORT_ENABLE_ALL = 99


class FakeInferenceSession:
    """Reads the model eagerly, like the real runtime, and rejects ``BAD`` models."""

    def __init__(self, model, sess_options=None, providers=None):
        if isinstance(model, bytes):
            data = model
        else:
            with open(model, "rb") as f:
                data = f.read()
        if data.startswith(b"BAD"):
            raise RuntimeError("[ONNXRuntimeError] INVALID_PROTOBUF")
        self.model = model
        self.model_bytes = data
        self.sess_options = sess_options
        self.providers = providers


def make_runtime(version="1.17.0"):
    return SimpleNamespace(
        __version__=version,
        SessionOptions=FakeSessionOptions,
        GraphOptimizationLevel=FakeGraphOptimizationLevel,
        InferenceSession=FakeInferenceSession,
    )


@pytest.fixture
def fake_runtime():
    return make_runtime()


@pytest.fixture
def metrics():
    return MetricsCollector("test-service", registry=CollectorRegistry())


@pytest.fixture
def imported_modules():
    """Names passed to the loader's importer, in call order."""
    return []


@pytest.fixture
def loader(fake_runtime, metrics, imported_modules):
    def importer(name):
        imported_modules.append(name)
        return fake_runtime

    return RuntimeLoader("onnxruntime", "1.10", importer=importer, metrics=metrics)


@pytest.fixture
def cpu_only():
    return GPUDetector(capabilities={})


@pytest.fixture
def factory(loader, cpu_only, metrics, tmp_path):
    stores = tmp_path / "stores"
    stores.mkdir()
    factory = OnnxBackendFactory.create(
        OnnxRuntimeConfig(temp_dir=str(stores)),
        loader=loader,
        gpu_detector=cpu_only,
        metrics=metrics
    )
    yield factory
    factory.close()
