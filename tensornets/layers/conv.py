"""2-D convolution layer."""

from __future__ import annotations

import math
from typing import Any, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from ..core.activations import Activation, ReLU, activation_from_config
from ..core.errors import ShapeMismatchError
from ..core.tensor import Tensor, conv_window
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


class Conv2D(Layer):
    """Cross-correlation of ``[batch, C, H, W]`` inputs with square kernels.

    Weights have shape ``[output_dim, input_dim, k, k]`` and are drawn
    uniformly from ``[-1, 1)`` scaled by ``1 / sqrt(input_dim * k * k)``;
    biases are one per output channel.
    """

    layer_name = "Conv2D"

    def __init__(
        self,
        input_dim: int,
        output_dim: int,
        kernel_size: int,
        stride: int = 1,
        padding: int = 0,
        activation: Optional[Activation] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        if stride <= 0 or padding < 0 or kernel_size <= 0:
            raise ValueError(
                f"Invalid convolution geometry: kernel={kernel_size}, stride={stride}, padding={padding}"
            )
        self.input_dim = input_dim
        self.stride = stride
        self.padding = padding
        self.activation = activation if activation is not None else ReLU()
        scale = 1.0 / math.sqrt(float(input_dim * kernel_size * kernel_size))
        weights = Tensor.random((output_dim, input_dim, kernel_size, kernel_size), rng)
        self.weights = weights.multiply_scalar(scale)
        self.biases = Tensor.zeros((output_dim,))
        self._allocate_gradients()

    def _allocate_gradients(self) -> None:
        self.weight_gradients = Tensor.zeros(self.weights.shape)
        self.bias_gradients = Tensor.zeros(self.biases.shape)
        self._inputs: Optional[Tensor] = None
        self._outputs: Optional[Tensor] = None

    @property
    def output_dim(self) -> int:
        return self.weights.shape[0]

    @property
    def kernel_size(self) -> int:
        return self.weights.shape[2]

    def forward(self, inputs: Tensor) -> Tensor:
        if inputs.rank != 4 or inputs.shape[1] != self.input_dim:
            raise ShapeMismatchError(
                f"Conv2D expects [batch, {self.input_dim}, H, W] input, got {list(inputs.shape)}"
            )
        self._inputs = inputs
        convolved = inputs.conv2d(self.weights, self.stride, self.padding)
        shaped = convolved.view() + self.biases.view().reshape(1, -1, 1, 1)
        self._outputs = self.activation.forward(Tensor(shaped, convolved.shape))
        return self._outputs

    def backward(self, grad: Tensor) -> Tensor:
        inputs = require_cache(self._inputs, self)
        if grad.shape != self._outputs.shape:
            raise ShapeMismatchError(
                f"Conv2D gradient shape {list(grad.shape)} does not match output {list(self._outputs.shape)}"
            )
        delta = grad.multiply(self.activation.backward(self._outputs)).view()
        source = inputs.view()
        kernels = self.weights.view()
        _, _, height, width = inputs.shape
        _, _, out_h, out_w = delta.shape

        weight_grad = np.zeros(self.weights.shape)
        input_grad = np.zeros(inputs.shape)
        for kh in range(self.kernel_size):
            rows = conv_window(out_h, height, kh, self.stride, self.padding)
            if rows is None:
                continue
            for kw in range(self.kernel_size):
                cols = conv_window(out_w, width, kw, self.stride, self.padding)
                if cols is None:
                    continue
                window = delta[:, :, rows[0], cols[0]]
                weight_grad[:, :, kh, kw] += np.einsum(
                    "bohw,bchw->oc", window, source[:, :, rows[1], cols[1]]
                )
                input_grad[:, :, rows[1], cols[1]] += np.einsum(
                    "bohw,oc->bchw", window, kernels[:, :, kh, kw]
                )

        self.weight_gradients.data += weight_grad.reshape(-1)
        self.bias_gradients.data += delta.sum(axis=(0, 2, 3))
        return Tensor(input_grad, inputs.shape)

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
        config: Config = {
            "input_dim": self.input_dim,
            "output_dim": self.output_dim,
            "kernel_size": self.kernel_size,
            "stride": self.stride,
            "padding": self.padding,
        }
        config.update(self.activation.config())
        return config, [tensor_data("Weights", self.weights), tensor_data("Biases", self.biases)]

    def load(self, config: Mapping[str, Any], tensors: Sequence[TensorData]) -> None:
        self.input_dim = config_int(config, "input_dim", minimum=1)
        output_dim = config_int(config, "output_dim", minimum=1)
        kernel_size = config_int(config, "kernel_size", minimum=1)
        self.stride = config_int(config, "stride", minimum=1)
        self.padding = config_int(config, "padding")
        self.activation = activation_from_config(config)
        restored = restore_tensors(
            tensors,
            {
                "Weights": (output_dim, self.input_dim, kernel_size, kernel_size),
                "Biases": (output_dim,),
            },
        )
        self.weights = restored["Weights"]
        self.biases = restored["Biases"]
        self._allocate_gradients()

    def __repr__(self) -> str:
        return (
            f"Conv2D({self.input_dim}, {self.output_dim}, kernel_size={self.kernel_size}, "
            f"stride={self.stride}, padding={self.padding}, activation={self.activation!r})"
        )


__all__ = ["Conv2D"]
