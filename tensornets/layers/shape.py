"""Layers that only change the shape of their input."""

from __future__ import annotations

from typing import Any, List, Mapping, Optional, Sequence, Tuple

from ..core.errors import DeserialisationError, ShapeMismatchError
from ..core.tensor import Tensor, shape_size
from ..core.types import TensorData
from .base import Config, Layer, config_shape, require_cache, restore_tensors


class Flatten(Layer):
    """``[batch, ...] -> [batch, prod(...)]`` for a shape fixed at construction."""

    layer_name = "Flatten"

    def __init__(self, input_shape: Sequence[int]) -> None:
        self.input_shape = tuple(int(dim) for dim in input_shape)
        if len(self.input_shape) < 2:
            raise ValueError(f"Flatten needs a batch dimension, got {list(self.input_shape)}")
        self.output_shape = (self.input_shape[0], shape_size(self.input_shape[1:]))
        self._seen: Optional[bool] = None

    def forward(self, inputs: Tensor) -> Tensor:
        if inputs.shape != self.input_shape:
            raise ShapeMismatchError(
                f"Flatten expects input shape {list(self.input_shape)}, got {list(inputs.shape)}"
            )
        self._seen = True
        return inputs.reshape(self.output_shape)

    def backward(self, grad: Tensor) -> Tensor:
        require_cache(self._seen, self)
        return grad.reshape(self.input_shape)

    def save(self) -> Tuple[Config, List[TensorData]]:
        return {"input_shape": list(self.input_shape), "output_shape": list(self.output_shape)}, []

    def load(self, config: Mapping[str, Any], tensors: Sequence[TensorData]) -> None:
        restore_tensors(tensors, {})
        input_shape = config_shape(config, "input_shape")
        if len(input_shape) < 2:
            raise DeserialisationError(f"Invalid input_shape: {list(input_shape)} has no batch dimension")
        Flatten.__init__(self, input_shape)

    def __repr__(self) -> str:
        return f"Flatten(input_shape={list(self.input_shape)})"


class Reshape(Layer):
    """Reshape to ``output_shape``; the incoming shape is recorded on forward."""

    layer_name = "Reshape"

    def __init__(self, output_shape: Sequence[int]) -> None:
        self.output_shape = tuple(int(dim) for dim in output_shape)
        self.input_shape: Optional[Tuple[int, ...]] = None

    def forward(self, inputs: Tensor) -> Tensor:
        self.input_shape = inputs.shape
        return inputs.reshape(self.output_shape)

    def backward(self, grad: Tensor) -> Tensor:
        input_shape = require_cache(self.input_shape, self)
        return grad.reshape(input_shape)

    def save(self) -> Tuple[Config, List[TensorData]]:
        config: Config = {"output_shape": list(self.output_shape)}
        if self.input_shape is not None:
            config["input_shape"] = list(self.input_shape)
        return config, []

    def load(self, config: Mapping[str, Any], tensors: Sequence[TensorData]) -> None:
        restore_tensors(tensors, {})
        Reshape.__init__(self, config_shape(config, "output_shape"))

    def __repr__(self) -> str:
        return f"Reshape(output_shape={list(self.output_shape)})"


__all__ = ["Flatten", "Reshape"]
