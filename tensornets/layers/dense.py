"""Fully connected layer."""

from __future__ import annotations

from typing import Any, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from ..core.activations import Activation, activation_from_config
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


class FullyConnected(Layer):
    """``act(x · W + b)`` over a ``[batch, input_dim]`` input."""

    layer_name = "FullyConnected"

    def __init__(
        self,
        input_dim: int,
        output_dim: int,
        activation: Activation,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        self.activation = activation
        self.weights = Tensor.xavier(input_dim, output_dim, rng)
        self.biases = Tensor.zeros((1, output_dim))
        self._allocate_gradients()

    def _allocate_gradients(self) -> None:
        self.weight_gradients = Tensor.zeros(self.weights.shape)
        self.bias_gradients = Tensor.zeros(self.biases.shape)
        self._inputs: Optional[Tensor] = None
        self._outputs: Optional[Tensor] = None

    @property
    def input_dim(self) -> int:
        return self.weights.shape[0]

    @property
    def output_dim(self) -> int:
        return self.weights.shape[1]

    def forward(self, inputs: Tensor) -> Tensor:
        self._inputs = inputs
        pre_activation = inputs.dot(self.weights).add_row_vector(self.biases)
        self._outputs = self.activation.forward(pre_activation)
        return self._outputs

    def backward(self, grad: Tensor) -> Tensor:
        inputs = require_cache(self._inputs, self)
        delta = grad.multiply(self.activation.backward(self._outputs))
        self.weight_gradients.data += inputs.transpose().dot(delta).data
        self.bias_gradients.data += delta.sum_along_batch().data
        return delta.dot(self.weights.transpose())

    def get_weights(self) -> Tensor:
        return self.weights

    def get_biases(self) -> Tensor:
        return self.biases

    def set_weights(self, weights: Tensor) -> None:
        self.weights = replace_parameter(self.weights, weights, "weights")

    def set_biases(self, biases: Tensor) -> None:
        self.biases = replace_parameter(self.biases, biases, "biases")

    def get_gradients(self) -> Gradients:
        return self.weight_gradients, self.bias_gradients

    def requires_optimisation(self) -> bool:
        return True

    def requires_regularisation(self) -> bool:
        return True

    def save(self) -> Tuple[Config, List[TensorData]]:
        config: Config = {"input_dim": self.input_dim, "output_dim": self.output_dim}
        config.update(self.activation.config())
        return config, [tensor_data("Weights", self.weights), tensor_data("Biases", self.biases)]

    def load(self, config: Mapping[str, Any], tensors: Sequence[TensorData]) -> None:
        input_dim = config_int(config, "input_dim", minimum=1)
        output_dim = config_int(config, "output_dim", minimum=1)
        self.activation = activation_from_config(config)
        restored = restore_tensors(
            tensors, {"Weights": (input_dim, output_dim), "Biases": (1, output_dim)}
        )
        self.weights = restored["Weights"]
        self.biases = restored["Biases"]
        self._allocate_gradients()

    def __repr__(self) -> str:
        return f"FullyConnected({self.input_dim}, {self.output_dim}, {self.activation!r})"


__all__ = ["FullyConnected"]
