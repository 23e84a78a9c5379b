from __future__ import annotations

import json
from pathlib import Path

import numpy as np
import pytest

from tensornets.training import pipelines
from tensornets.training.persistence import load_model


@pytest.fixture(autouse=True)
def _cache(tmp_path, monkeypatch):
    monkeypatch.setenv("TENSORNETS_CACHE_DIR", str(tmp_path / "cache"))


def _preset(name, tmp_path, epochs):
    config = json.loads(json.dumps(pipelines.load_preset(name)))
    config["train"]["epochs"] = epochs
    config["train"]["run_dir"] = str(tmp_path / name)
    return config


def test_presets_are_independent_copies():
    first = pipelines.presets()
    first["xor-dense"]["train"]["epochs"] = 0
    assert pipelines.load_preset("xor-dense")["train"]["epochs"] == 500
    with pytest.raises(KeyError):
        pipelines.load_preset("resnet")


def test_xor_pipeline_learns(tmp_path):
    result = pipelines.run_pipeline(_preset("xor-dense", tmp_path, 400))
    assert result.epochs == 400
    assert len(result.history) == 400
    assert result.history[-1] < result.history[0]
    assert result.total_loss == pytest.approx(sum(result.history))
    manifest = json.loads(Path(result.manifest_path).read_text())
    assert manifest["config"]["data"]["name"] == "xor"
    assert manifest["model_path"] == result.model_path
    assert (tmp_path / "xor-dense" / "config.json").exists()


def test_pipeline_metrics_are_deterministic(tmp_path):
    config = _preset("sine-regression", tmp_path, 3)
    first = pipelines.run_pipeline(config)
    metrics_a = Path(first.metrics_path).read_text().splitlines()
    config["train"]["run_dir"] = str(tmp_path / "again")
    second = pipelines.run_pipeline(config)
    metrics_b = Path(second.metrics_path).read_text().splitlines()
    losses_a = [json.loads(line)["loss"] for line in metrics_a]
    losses_b = [json.loads(line)["loss"] for line in metrics_b]
    assert len(losses_a) == 3
    assert np.allclose(losses_a, losses_b)
    header = (tmp_path / "again" / "metrics.csv").read_text().splitlines()[0]
    assert header == "epoch,loss,split"


def test_mnist_cnn_uses_offline_fixture(tmp_path):
    config = _preset("mnist-cnn", tmp_path, 1)
    config["data"]["options"]["max_items"] = 4
    result = pipelines.run_pipeline(config)
    manifest = json.loads(Path(result.manifest_path).read_text())
    assert manifest["dataset"]["offline"] is True
    assert manifest["dataset"]["max_items"] == 4
    restored = load_model(result.model_path)
    assert [layer.name() for layer in restored.layers] == ["Conv2D", "MaxPooling", "Flatten", "FullyConnected"]


def test_sequence_gru_trains(tmp_path):
    config = _preset("sequence-gru", tmp_path, 2)
    config["data"]["options"]["n_sequences"] = 4
    config["train"]["save_model"] = False
    result = pipelines.run_pipeline(config)
    assert result.model_path == ""
    assert len(result.history) == 2
    assert all(np.isfinite(result.history))


def test_run_pipeline_rejects_incomplete_config():
    with pytest.raises(KeyError):
        pipelines.run_pipeline({"data": {"name": "xor"}})
    with pytest.raises(ValueError):
        pipelines.build_network({"layers": []}, {}, np.random.default_rng(0))
