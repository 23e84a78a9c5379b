"""MNIST loader for ``.npz`` archives with a deterministic offline fixture."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Sequence, Tuple

import numpy as np

from ..core.tensor import Tensor
from .registry import DatasetSpec, register_dataset

logger = logging.getLogger(__name__)

IMAGE_SIZE = 784
NUM_CLASSES = 10


def default_cache_dir() -> Path:
    return Path(os.environ.get("TENSORNETS_CACHE_DIR", ".cache/tensornets"))


def _build_offline_fixture(path: Path) -> None:
    """Write a small MNIST-shaped archive derived from integer sequences only."""

    train_x = np.arange(256 * IMAGE_SIZE, dtype=np.uint32).reshape(256, IMAGE_SIZE) % 256
    train_y = np.arange(256, dtype=np.uint8) % NUM_CLASSES
    test_x = np.arange(64 * IMAGE_SIZE, dtype=np.uint32).reshape(64, IMAGE_SIZE)[::-1] % 256
    test_y = np.arange(64, dtype=np.uint8)[::-1] % NUM_CLASSES

    path.parent.mkdir(parents=True, exist_ok=True)
    np.savez(
        path,
        x_train=train_x.astype(np.uint8),
        y_train=train_y,
        x_test=test_x.astype(np.uint8),
        y_test=test_y,
    )


def _read_split(path: Path, subset: str) -> Tuple[np.ndarray, np.ndarray]:
    with np.load(path) as archive:
        keys = set(archive.files)
        for image_key in (f"x_{subset}", f"X_{subset}"):
            if image_key in keys and f"y_{subset}" in keys:
                return archive[image_key], archive[f"y_{subset}"]
    raise KeyError(f"{path} has no {subset!r} split (found: {', '.join(sorted(keys))})")


def to_tensors(images: np.ndarray, labels: np.ndarray) -> Tuple[List[Tensor], List[Tensor]]:
    """Convert raw images and integer labels to ``[1, 784]`` / one-hot ``[1, 10]`` tensors."""

    images = images.reshape(images.shape[0], -1).astype(np.float64) / 255.0
    if images.shape[1] != IMAGE_SIZE:
        raise ValueError(f"Expected {IMAGE_SIZE} pixels per image, got {images.shape[1]}")
    eye = np.eye(NUM_CLASSES)
    samples = [Tensor(image, (1, IMAGE_SIZE)) for image in images]
    targets = [Tensor(eye[int(label)], (1, NUM_CLASSES)) for label in labels]
    return samples, targets


def reshape_samples(samples: Sequence[Tensor], shape: Sequence[int]) -> List[Tensor]:
    """Reshape every sample, e.g. to ``[1, 1, 28, 28]`` for convolutional models."""

    return [sample.reshape(shape) for sample in samples]


def _factory(
    subset: str = "train",
    max_items: int | None = None,
    path: str | Path | None = None,
    *,
    cache_dir: str | Path | None = None,
    **_: object,
) -> DatasetSpec:
    if subset not in {"train", "test"}:
        raise ValueError(f"Unsupported subset: {subset}")
    if path is not None:
        source = Path(path)
        if not source.exists():
            raise FileNotFoundError(f"MNIST archive not found: {source}")
        offline = False
    else:
        base_cache = Path(cache_dir) if cache_dir is not None else default_cache_dir()
        source = base_cache / "offline" / "mnist_fixture.npz"
        if not source.exists():
            logger.info("Building offline MNIST fixture at %s", source)
            _build_offline_fixture(source)
        offline = True

    images, labels = _read_split(source, subset)
    if max_items is not None:
        images, labels = images[:max_items], labels[:max_items]
    samples, targets = to_tensors(images, labels)

    provenance = {
        "source": str(source),
        "offline": offline,
        "subset": subset,
        "max_items": max_items,
    }
    return DatasetSpec(name="mnist", samples=samples, targets=targets, provenance=provenance)


register_dataset("mnist", _factory)
