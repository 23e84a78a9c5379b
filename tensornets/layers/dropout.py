"""Dropout layer."""

from __future__ import annotations

from typing import Any, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from ..core.errors import DeserialisationError, ShapeMismatchError
from ..core.tensor import Tensor
from ..core.types import TensorData
from .base import Config, Layer, config_float, require_cache, restore_tensors


class Dropout(Layer):
    """Zero each unit with probability ``rate``.

    A fresh mask is drawn on every forward call, including inference, and kept
    activations are not rescaled.
    """

    layer_name = "Dropout"

    def __init__(self, rate: float, rng: Optional[np.random.Generator] = None) -> None:
        if not 0.0 <= rate < 1.0:
            raise ValueError(f"Dropout rate must be in [0, 1), got {rate}")
        self.rate = float(rate)
        self.rng = rng if rng is not None else np.random.default_rng()
        self.mask: Optional[Tensor] = None

    def forward(self, inputs: Tensor) -> Tensor:
        keep = (self.rng.random(inputs.size()) > self.rate).astype(np.float64)
        self.mask = Tensor(keep, inputs.shape)
        return inputs.multiply(self.mask)

    def backward(self, grad: Tensor) -> Tensor:
        mask = require_cache(self.mask, self)
        if grad.shape != mask.shape:
            raise ShapeMismatchError(
                f"Dropout gradient shape {list(grad.shape)} does not match mask {list(mask.shape)}"
            )
        return grad.multiply(mask)

    def save(self) -> Tuple[Config, List[TensorData]]:
        return {"rate": self.rate}, []

    @classmethod
    def from_saved(
        cls,
        config: Mapping[str, Any],
        tensors: Sequence[TensorData],
        rng: Optional[np.random.Generator] = None,
    ) -> "Dropout":
        layer = cls.__new__(cls)
        layer.rng = rng
        layer.load(config, tensors)
        return layer

    def load(self, config: Mapping[str, Any], tensors: Sequence[TensorData]) -> None:
        """Restore the rate; a generator already attached to the layer is kept."""

        restore_tensors(tensors, {})
        rate = config_float(config, "rate")
        if not 0.0 <= rate < 1.0:
            raise DeserialisationError(f"Invalid rate: {rate!r} must be in [0, 1)")
        Dropout.__init__(self, rate, getattr(self, "rng", None))

    def __repr__(self) -> str:
        return f"Dropout(rate={self.rate})"


__all__ = ["Dropout"]
