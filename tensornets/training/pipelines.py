"""Pipeline assembly: build a network from a config mapping and train it."""

from __future__ import annotations

import json
import logging
import time
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, List, Mapping, Sequence

import numpy as np

from ..core.types import RunResult
from ..data import get_dataset, reshape_samples
from ..layers import build_layer
from ..reporting.artifacts import write_manifest
from ..reporting.metrics import CsvSink, JsonlSink, MetricsCapture
from .losses import REGISTRY as LOSS_REGISTRY
from .network import Network
from .optimisers import build_optimiser
from .persistence import save_model
from .regularisers import build_regulariser

logger = logging.getLogger(__name__)

_PRESETS: Dict[str, Mapping[str, object]] = {
    "xor-dense": {
        "data": {"name": "xor", "options": {}},
        "model": {
            "layers": [
                {"type": "FullyConnected", "input_dim": 2, "output_dim": 4, "activation": "Tanh"},
                {"type": "FullyConnected", "input_dim": 4, "output_dim": 1, "activation": "Sigmoid"},
            ],
            "loss": "MeanSquaredError",
            "regulariser": None,
        },
        "train": {
            "epochs": 500,
            "seed": 0,
            "optimiser": {"type": "SGD", "learning_rate": 0.5},
            "run_dir": "runs/xor-dense",
            "save_model": True,
        },
    },
    "sine-regression": {
        "data": {"name": "sine", "options": {"freq": 1.0, "n_points": 64, "seed": 0}},
        "model": {
            "layers": [
                {"type": "FullyConnected", "input_dim": 1, "output_dim": 16, "activation": "Tanh"},
                {"type": "FullyConnected", "input_dim": 16, "output_dim": 1, "activation": "Tanh"},
            ],
            "loss": "MeanSquaredError",
            "regulariser": {"type": "L2", "lambda": 1e-5},
        },
        "train": {
            "epochs": 50,
            "seed": 1,
            "optimiser": {"type": "Adam", "learning_rate": 0.01},
            "run_dir": "runs/sine-regression",
            "save_model": True,
        },
    },
    "mnist-cnn": {
        "data": {
            "name": "mnist",
            "options": {"subset": "train", "max_items": 32},
            "reshape": [1, 1, 28, 28],
        },
        "model": {
            "layers": [
                {"type": "Conv2D", "input_dim": 1, "output_dim": 4, "kernel_size": 3, "activation": "ReLU"},
                {"type": "MaxPooling", "pool_size": 2, "stride": 2},
                {"type": "Flatten", "input_shape": [1, 4, 13, 13]},
                {"type": "FullyConnected", "input_dim": 676, "output_dim": 10, "activation": "Softmax"},
            ],
            "loss": "CategoricalCrossEntropy",
            "regulariser": {"type": "L2", "lambda": 1e-4},
        },
        "train": {
            "epochs": 1,
            "seed": 2,
            "optimiser": {"type": "Adam", "learning_rate": 0.001},
            "run_dir": "runs/mnist-cnn",
            "save_model": True,
        },
    },
    "sequence-gru": {
        "data": {"name": "sine-sequence", "options": {"n_sequences": 16, "length": 12, "seed": 0}},
        "model": {
            "layers": [
                {"type": "GRU", "input_size": 1, "hidden_size": 8},
                {"type": "FullyConnected", "input_dim": 8, "output_dim": 1, "activation": "Tanh"},
            ],
            "loss": "MeanSquaredError",
            "regulariser": None,
        },
        "train": {
            "epochs": 5,
            "seed": 3,
            "optimiser": {"type": "Adam", "learning_rate": 0.01},
            "run_dir": "runs/sequence-gru",
            "save_model": True,
        },
    },
}


def read_config_file(path: Path) -> Mapping[str, object]:
    """Read a JSON or YAML config file into a mapping."""

    text = path.read_text()
    suffix = path.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        try:
            import yaml  # type: ignore
        except Exception as exc:  # pragma: no cover - optional dependency
            raise RuntimeError("PyYAML is required to load YAML configs") from exc
        data = yaml.safe_load(text) or {}
    elif suffix == ".json":
        data = json.loads(text or "{}")
    else:
        raise ValueError(f"Unsupported config file type: {path.suffix}")

    if not isinstance(data, Mapping):
        raise TypeError(f"Config {path.name} must decode to a mapping")
    return data


def presets() -> Mapping[str, Mapping[str, object]]:
    return {name: deepcopy(cfg) for name, cfg in _PRESETS.items()}


def load_preset(name: str) -> Mapping[str, object]:
    try:
        return deepcopy(_PRESETS[name])
    except KeyError as exc:
        available = ", ".join(sorted(_PRESETS))
        raise KeyError(f"Unknown preset {name!r}. Available presets: {available}") from exc


def build_network(
    model_cfg: Mapping[str, Any],
    train_cfg: Mapping[str, Any],
    rng: np.random.Generator,
    callbacks: Sequence[object] = (),
) -> Network:
    """Assemble layers, loss, regulariser and optimiser from config sections."""

    layer_specs = model_cfg.get("layers") or []
    if not layer_specs:
        raise ValueError("Model config must list at least one layer")
    optimiser_cfg = dict(train_cfg.get("optimiser") or {"type": "SGD", "learning_rate": 0.01})
    optimiser_name = str(optimiser_cfg.pop("type"))
    return Network(
        [build_layer(spec, rng) for spec in layer_specs],
        optimiser=build_optimiser(optimiser_name, **optimiser_cfg),
        loss=LOSS_REGISTRY.get(str(model_cfg.get("loss", "MeanSquaredError"))),
        regulariser=build_regulariser(model_cfg.get("regulariser")),
        callbacks=callbacks,
    )


def run_pipeline(config: Mapping[str, object]) -> RunResult:
    missing = {"data", "model", "train"} - set(config)
    if missing:
        raise KeyError(f"Config is missing required sections: {', '.join(sorted(missing))}")
    data_cfg = dict(config["data"])
    model_cfg = dict(config["model"])
    train_cfg = dict(config["train"])

    dataset = get_dataset(
        str(data_cfg["name"]),
        cache_dir=train_cfg.get("cache_dir"),
        **dict(data_cfg.get("options") or {}),
    )
    samples = dataset.samples
    if data_cfg.get("reshape"):
        samples = reshape_samples(samples, data_cfg["reshape"])

    seed = int(train_cfg.get("seed", 0))
    epochs = int(train_cfg.get("epochs", 1))
    run_dir = _resolve_run_dir(train_cfg, dataset.name)
    run_dir.mkdir(parents=True, exist_ok=True)

    train_jsonl = JsonlSink(run_dir / "metrics.jsonl", split="train", seed=seed)
    train_csv = CsvSink(run_dir / "metrics.csv", split="train")
    capture = MetricsCapture()
    network = build_network(
        model_cfg, train_cfg, np.random.default_rng(seed), callbacks=[train_jsonl, train_csv, capture]
    )

    _print_startup_summary(
        dataset_name=dataset.name,
        samples=len(samples),
        layers=[layer.name() for layer in network.layers],
        loss=network.loss.name,
        optimiser=network.optimiser.name,
        regulariser=network.regulariser.name if network.regulariser is not None else "none",
        epochs=epochs,
        param_count=network.parameter_count(),
    )

    started = time.perf_counter()
    total_loss = network.train(samples, dataset.targets, epochs)
    logger.info(
        "Trained %s on %s for %d epochs in %.2fs (total loss %f)",
        run_dir,
        dataset.name,
        epochs,
        time.perf_counter() - started,
        total_loss,
    )

    model_path = ""
    if train_cfg.get("save_model", True):
        model_path = str(
            save_model(
                network,
                run_dir / "model.json",
                name=str(train_cfg.get("model_name", run_dir.name)),
                dataset_name=dataset.name,
                total_loss=total_loss,
            )
        )

    safe_config = json.loads(json.dumps(config))
    manifest = write_manifest(
        run_dir / "manifest.json",
        config=safe_config,
        dataset_provenance=dataset.provenance,
        model_path=model_path or None,
    )
    (run_dir / "config.json").write_text(json.dumps(safe_config, indent=2))

    return RunResult(
        epochs=epochs,
        total_loss=total_loss,
        metrics_path=str(train_jsonl.path),
        manifest_path=manifest,
        model_path=model_path,
        history=capture.losses(),
    )


def _resolve_run_dir(train_cfg: Mapping[str, object], dataset: str) -> Path:
    if "run_dir" in train_cfg:
        return Path(train_cfg["run_dir"])
    timestamp = time.strftime("%Y%m%d-%H%M%S")
    return Path("runs") / timestamp / dataset


def _print_startup_summary(
    *,
    dataset_name: str,
    samples: int,
    layers: List[str],
    loss: str,
    optimiser: str,
    regulariser: str,
    epochs: int,
    param_count: int,
) -> None:
    print("=== tensornets run ===")
    print(f"Dataset       : {dataset_name} ({samples} samples)")
    print(f"Layers        : {' -> '.join(layers)}")
    print(f"Loss          : {loss}")
    print(f"Optimiser     : {optimiser}")
    print(f"Regulariser   : {regulariser}")
    print(f"Epochs        : {epochs}")
    print(f"Parameters    : {param_count}")
    print("======================")


__all__ = ["build_network", "load_preset", "presets", "read_config_file", "run_pipeline"]
