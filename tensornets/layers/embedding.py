"""Embedding lookup layer."""

from __future__ import annotations

from typing import Any, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from ..core.errors import ShapeMismatchError
from ..core.tensor import Tensor
from ..core.types import TensorData
from .base import (
    Config,
    Gradients,
    Layer,
    config_int,
    replace_parameter,
    require_cache,
    restore_tensors,
    tensor_data,
)


class Embedding(Layer):
    """Map integer token indices to rows of a ``[vocab_size, embed_size]`` table."""

    layer_name = "Embedding"

    def __init__(self, vocab_size: int, embed_size: int, rng: Optional[np.random.Generator] = None) -> None:
        self.weights = Tensor.random((vocab_size, embed_size), rng)
        self._allocate_gradients()

    def _allocate_gradients(self) -> None:
        self.weight_gradients = Tensor.zeros(self.weights.shape)
        self._indices: Optional[np.ndarray] = None
        self._input_shape: Optional[Tuple[int, ...]] = None

    @property
    def vocab_size(self) -> int:
        return self.weights.shape[0]

    @property
    def embed_size(self) -> int:
        return self.weights.shape[1]

    def forward(self, inputs: Tensor) -> Tensor:
        values = inputs.data
        indices = values.astype(np.int64)
        bad = (indices != values) | (indices < 0) | (indices >= self.vocab_size)
        if bad.any():
            position = int(np.flatnonzero(bad)[0])
            raise IndexError(
                f"Embedding index {values[position]!r} at position {position} is not in [0, {self.vocab_size})"
            )
        self._indices = indices
        self._input_shape = inputs.shape
        rows = self.weights.view()[indices]
        return Tensor(rows, (indices.size, self.embed_size))

    def backward(self, grad: Tensor) -> Tensor:
        indices = require_cache(self._indices, self)
        expected = (indices.size, self.embed_size)
        if grad.shape != expected:
            raise ShapeMismatchError(
                f"Embedding gradient shape {list(grad.shape)} does not match {list(expected)}"
            )
        table = self.weight_gradients.data.reshape(self.weights.shape)
        np.add.at(table, indices, grad.view())
        return Tensor.zeros(self._input_shape)

    def get_weights(self) -> Tensor:
        return self.weights

    def set_weights(self, weights: Tensor) -> None:
        self.weights = replace_parameter(self.weights, weights, "weights")

    def get_gradients(self) -> Gradients:
        return self.weight_gradients, None

    def requires_optimisation(self) -> bool:
        return True

    def requires_regularisation(self) -> bool:
        return True

    def save(self) -> Tuple[Config, List[TensorData]]:
        config: Config = {"vocab_size": self.vocab_size, "embed_size": self.embed_size}
        return config, [tensor_data("Weights", self.weights)]

    def load(self, config: Mapping[str, Any], tensors: Sequence[TensorData]) -> None:
        vocab_size = config_int(config, "vocab_size", minimum=1)
        embed_size = config_int(config, "embed_size", minimum=1)
        restored = restore_tensors(tensors, {"Weights": (vocab_size, embed_size)})
        self.weights = restored["Weights"]
        self._allocate_gradients()

    def __repr__(self) -> str:
        return f"Embedding({self.vocab_size}, {self.embed_size})"


__all__ = ["Embedding"]
