"""Tests for the load_model operator script."""

import json

import mlflow
import pytest

from modelhost.backends import factory as factory_module
from modelhost.common.config import ModelHostConfig
from scripts.load_model import load_model, main

MODEL_BYTES = b"\x08\x07\x12\x00onnx-graph"


@pytest.fixture
def shared_runtime(monkeypatch, loader, cpu_only, metrics):
    """Route the script's default factory wiring to the test runtime."""
    monkeypatch.setattr(factory_module, "get_runtime_loader", lambda *args, **kwargs: loader)
    monkeypatch.setattr(factory_module, "get_gpu_detector", lambda: cpu_only)
    monkeypatch.setattr(factory_module, "get_metrics_collector", lambda: metrics)
    return loader


@pytest.fixture(autouse=True)
def restore_tracking_uri(monkeypatch):
    """Keep tracking URIs set by the script from leaking between tests."""
    monkeypatch.delenv("MLFLOW_TRACKING_URI", raising=False)
    previous = mlflow.get_tracking_uri()
    yield
    mlflow.set_tracking_uri(previous)


def write_model(root, config, files):
    model_dir = root / config["name"]
    version_dir = model_dir / "1"
    version_dir.mkdir(parents=True)
    (model_dir / "config.json").write_text(json.dumps(config))
    for name, content in files.items():
        (version_dir / name).write_bytes(content)
    return model_dir


def test_load_model_prints_contexts(shared_runtime, tmp_path, capsys):
    model_dir = write_model(
        tmp_path,
        {"name": "densenet", "instance_group": [{"kind": "KIND_CPU", "count": 2}]},
        {"model.onnx": MODEL_BYTES}
    )

    exit_code = load_model(str(model_dir), "1", config=ModelHostConfig())

    assert exit_code == 0
    lines = [line for line in capsys.readouterr().out.splitlines() if "\t" in line]
    assert lines == ["densenet_0_0_cpu\tKIND_CPU\tcpu", "densenet_0_1_cpu\tKIND_CPU\tcpu"]
    assert not shared_runtime.active


def test_load_model_reports_failure(shared_runtime, tmp_path, capsys):
    model_dir = write_model(tmp_path, {"name": "densenet"}, {"other.onnx": MODEL_BYTES})

    exit_code = load_model(str(model_dir), "1", config=ModelHostConfig())

    assert exit_code == 1
    assert "model.onnx" in capsys.readouterr().out
    assert not shared_runtime.active


def test_load_model_rejects_invalid_config(shared_runtime, tmp_path):
    model_dir = write_model(tmp_path, {"name": "densenet", "max_batch_size": -1}, {})

    assert load_model(str(model_dir), "1", config=ModelHostConfig()) == 1


def test_load_model_rejects_unknown_platform(shared_runtime, tmp_path):
    model_dir = write_model(tmp_path, {"name": "resnet", "platform": "tensorrt_plan"}, {})

    assert load_model(str(model_dir), "1", config=ModelHostConfig()) == 1


def test_load_model_applies_tracking_uri(shared_runtime, tmp_path):
    """Test remote locations resolve against the configured tracking server."""
    model_dir = write_model(tmp_path, {"name": "densenet"}, {"model.onnx": MODEL_BYTES})
    config = ModelHostConfig(ml_mlflow_tracking_uri="http://tracking.internal:5000")

    assert load_model(str(model_dir), "1", config=config) == 0
    assert mlflow.get_tracking_uri() == "http://tracking.internal:5000"


def test_main_exits_with_status(shared_runtime, tmp_path):
    model_dir = write_model(tmp_path, {"name": "densenet"}, {"model.onnx": MODEL_BYTES})

    with pytest.raises(SystemExit) as excinfo:
        main(["--model-dir", str(model_dir), "--version", "1", "--min-compute-capability", "7.0"])

    assert excinfo.value.code == 0
