import json
from pathlib import Path

import pytest

from cli import main as cli_main


def _payload(capsys):
    lines = capsys.readouterr().out.strip().splitlines()
    assert lines, "CLI should emit at least one line"
    return json.loads(lines[-1])


def test_cli_xor_preset_writes_artifacts(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    cli_main.main(["--preset", "xor-dense", "--epochs", "5", "--run-dir", "runs/xor"])
    payload = _payload(capsys)
    run_dir = Path("runs/xor")
    assert payload["epochs"] == 5
    assert Path(payload["metrics"]) == run_dir / "metrics.jsonl"
    for name in ("metrics.jsonl", "metrics.csv", "manifest.json", "model.json", "config.json"):
        assert (run_dir / name).exists()
    lines = (run_dir / "metrics.jsonl").read_text().splitlines()
    assert [json.loads(line)["epoch"] for line in lines] == [0, 1, 2, 3, 4]


def test_cli_runs_are_deterministic(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    cli_main.main(["--epochs", "3", "--seed", "7", "--run-dir", "a", "--no-save-model"])
    first = _payload(capsys)
    cli_main.main(["--epochs", "3", "--seed", "7", "--run-dir", "b", "--no-save-model"])
    second = _payload(capsys)
    assert "model" not in first
    assert first["total_loss"] == second["total_loss"]
    assert not Path("a/model.json").exists()


def test_cli_config_override_and_dump(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    override = tmp_path / "override.json"
    override.write_text(json.dumps({"train": {"epochs": 2, "optimiser": {"type": "Adam", "learning_rate": 0.05}}}))
    cli_main.main(["--config", str(override), "--run-dir", "run", "--dump-config", "resolved.json"])
    payload = _payload(capsys)
    resolved = json.loads(Path("resolved.json").read_text())
    assert payload["epochs"] == 2
    assert resolved["train"]["optimiser"]["type"] == "Adam"
    assert resolved["data"]["name"] == "xor"
    model = json.loads(Path(payload["model"]).read_text())
    assert model["optimiser"]["type"] == "Adam"


def test_cli_yaml_override(tmp_path, monkeypatch, capsys):
    pytest.importorskip("yaml")
    monkeypatch.chdir(tmp_path)
    override = tmp_path / "override.yaml"
    override.write_text("train:\n  epochs: 1\n  seed: 4\n")
    cli_main.main(["--preset", "sine-regression", "--config", str(override), "--run-dir", "sine"])
    payload = _payload(capsys)
    manifest = json.loads(Path(payload["manifest"]).read_text())
    assert manifest["config"]["train"]["seed"] == 4
    assert manifest["dataset"]["type"] == "synthetic"


def test_cli_list_presets_and_describe_model(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    with pytest.raises(SystemExit):
        cli_main.main(["--list-presets"])
    listed = capsys.readouterr().out.split()
    assert {"xor-dense", "sine-regression", "mnist-cnn", "sequence-gru"} <= set(listed)

    cli_main.main(["--epochs", "1", "--run-dir", "described"])
    model_path = _payload(capsys)["model"]
    with pytest.raises(SystemExit):
        cli_main.main(["--describe-model", model_path])
    metadata = json.loads(capsys.readouterr().out)
    assert metadata["dataset_name"] == "xor"
    assert metadata["name"] == "described"


def test_cli_mnist_path_requires_mnist_config(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    with pytest.raises(SystemExit):
        cli_main.main(["--mnist-path", str(tmp_path / "mnist.npz")])
