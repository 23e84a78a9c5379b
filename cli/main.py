"""Command line entry point for tensornets training runs."""

from __future__ import annotations

import argparse
import json
import logging
import os
from pathlib import Path
from typing import Iterable

from tensornets.training import pipelines
from tensornets.training.persistence import read_metadata


def _format_result(result) -> str:
    payload = {
        "epochs": result.epochs,
        "total_loss": result.total_loss,
        "metrics": result.metrics_path,
        "manifest": result.manifest_path,
    }
    if result.model_path:
        payload["model"] = result.model_path
    return json.dumps(payload, sort_keys=True)


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    preset_names = sorted(pipelines.presets().keys())
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--preset",
        choices=preset_names,
        default="xor-dense",
        help="Preset configuration to execute",
    )
    parser.add_argument("--config", type=Path, help="Optional JSON/YAML config override")
    parser.add_argument("--epochs", type=int, help="Override the number of training epochs")
    parser.add_argument("--seed", type=int, help="Seed used for initialisation and synthetic data")
    parser.add_argument("--run-dir", type=Path, help="Directory receiving metrics, manifest and model")
    parser.add_argument("--mnist-path", type=Path, help="Path to an MNIST .npz archive")
    parser.add_argument(
        "--save-model",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Write the trained model to <run-dir>/model.json",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("TENSORNETS_LOG_LEVEL", "INFO"),
        help="Logging level (defaults to $TENSORNETS_LOG_LEVEL or INFO)",
    )
    parser.add_argument("--list-presets", action="store_true", help="List available presets and exit")
    parser.add_argument("--describe-model", type=Path, help="Print the metadata of a saved model and exit")
    parser.add_argument("--dump-config", type=Path, help="Dump the resolved config to a JSON file")
    return parser.parse_args(argv)


def _load_override(path: Path) -> dict:
    return dict(pipelines.read_config_file(path))


def _merge(base: dict, override: dict) -> dict:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = _merge(dict(base[key]), value)
        else:
            base[key] = value
    return base


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def resolve_config(args: argparse.Namespace) -> dict:
    """Start from the preset, apply the override file, then the command-line flags."""

    config = json.loads(json.dumps(pipelines.load_preset(args.preset)))

    if args.config:
        override = _load_override(args.config)
        if {"data", "model", "train"} <= set(override.keys()):
            config = json.loads(json.dumps(override))
        else:
            config = _merge(config, override)

    train_cfg = config.setdefault("train", {})
    if args.epochs is not None:
        train_cfg["epochs"] = int(args.epochs)
    if args.seed is not None:
        train_cfg["seed"] = int(args.seed)
    if args.run_dir is not None:
        train_cfg["run_dir"] = str(args.run_dir)
    if args.save_model is not None:
        train_cfg["save_model"] = bool(args.save_model)
    if args.mnist_path is not None:
        data_cfg = config.setdefault("data", {})
        if data_cfg.get("name") != "mnist":
            raise SystemExit("--mnist-path requires a config that trains on the mnist dataset")
        data_cfg.setdefault("options", {})["path"] = str(args.mnist_path)
    return config


def main(argv: Iterable[str] | None = None) -> None:
    args = parse_args(argv)
    _configure_logging(args.log_level)

    if args.list_presets:
        for name in sorted(pipelines.presets().keys()):
            print(name)
        raise SystemExit(0)

    if args.describe_model:
        print(json.dumps(read_metadata(args.describe_model), indent=2, sort_keys=True))
        raise SystemExit(0)

    config = resolve_config(args)

    if args.dump_config:
        args.dump_config.parent.mkdir(parents=True, exist_ok=True)
        args.dump_config.write_text(json.dumps(config, indent=2))

    result = pipelines.run_pipeline(config)
    print(_format_result(result))


if __name__ == "__main__":
    main()
