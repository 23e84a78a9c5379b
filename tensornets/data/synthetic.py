"""Pure in-memory synthetic datasets."""

from __future__ import annotations

from pathlib import Path

import numpy as np

from ..core.tensor import Tensor
from .registry import DatasetSpec, register_dataset


def _xor_factory(*, cache_dir: str | Path | None = None, **_: object) -> DatasetSpec:
    inputs = [(0.0, 0.0), (0.0, 1.0), (1.0, 0.0), (1.0, 1.0)]
    samples = [Tensor(pair, (1, 2)) for pair in inputs]
    targets = [Tensor([float(int(a) ^ int(b))], (1, 1)) for a, b in inputs]
    return DatasetSpec(name="xor", samples=samples, targets=targets, provenance={"type": "synthetic"})


def _sine_factory(
    freq: float = 1.0,
    n_points: int = 64,
    noise: float = 0.05,
    seed: int = 0,
    *,
    cache_dir: str | Path | None = None,
    **_: object,
) -> DatasetSpec:
    rng = np.random.default_rng(seed)
    x = np.linspace(-1.0, 1.0, n_points)
    y = np.sin(freq * np.pi * x) + noise * rng.standard_normal(n_points)
    samples = [Tensor([value], (1, 1)) for value in x]
    targets = [Tensor([value], (1, 1)) for value in y]
    provenance = {"type": "synthetic", "freq": freq, "n_points": n_points, "noise": noise, "seed": seed}
    return DatasetSpec(name="sine", samples=samples, targets=targets, provenance=provenance)


def _sine_sequence_factory(
    n_sequences: int = 16,
    length: int = 12,
    step: float = 0.3,
    seed: int = 0,
    *,
    cache_dir: str | Path | None = None,
    **_: object,
) -> DatasetSpec:
    """Sequences ``[length, 1]`` of a sine wave; each target is the next value."""

    rng = np.random.default_rng(seed)
    phases = rng.uniform(0.0, 2.0 * np.pi, n_sequences)
    positions = np.arange(length + 1) * step
    samples = []
    targets = []
    for phase in phases:
        wave = np.sin(positions + phase)
        samples.append(Tensor(wave[:-1], (length, 1)))
        targets.append(Tensor(wave[1:], (length, 1)))
    provenance = {"type": "synthetic", "n_sequences": n_sequences, "length": length, "step": step, "seed": seed}
    return DatasetSpec(name="sine-sequence", samples=samples, targets=targets, provenance=provenance)


register_dataset("xor", _xor_factory)
register_dataset("sine", _sine_factory)
register_dataset("sine-sequence", _sine_sequence_factory)
