"""Max and average pooling over ``[batch, C, H, W]`` inputs."""

from __future__ import annotations

from typing import Any, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from ..core.errors import ShapeMismatchError
from ..core.tensor import Tensor
from ..core.types import TensorData
from .base import Config, Layer, config_int, require_cache, restore_tensors


class _Pooling(Layer):
    def __init__(self, pool_size: int, stride: int) -> None:
        if pool_size <= 0 or stride <= 0:
            raise ValueError(f"Invalid pooling geometry: pool_size={pool_size}, stride={stride}")
        self.pool_size = pool_size
        self.stride = stride
        self._input_shape: Optional[Tuple[int, ...]] = None

    def _output_dims(self, shape: Tuple[int, ...]) -> Tuple[int, int]:
        if len(shape) != 4:
            raise ShapeMismatchError(f"{self.name()} expects a 4D input, got {list(shape)}")
        out_h = (shape[2] - self.pool_size) // self.stride + 1
        out_w = (shape[3] - self.pool_size) // self.stride + 1
        if out_h <= 0 or out_w <= 0:
            raise ShapeMismatchError(
                f"Pool size {self.pool_size} does not fit input {shape[2]}x{shape[3]}"
            )
        return out_h, out_w

    def _windows(self, source: np.ndarray, out_h: int, out_w: int) -> np.ndarray:
        """Gather windows into ``[B, C, out_h, out_w, pool * pool]``."""

        batch, channels = source.shape[:2]
        windows = np.empty((batch, channels, out_h, out_w, self.pool_size * self.pool_size))
        for ph in range(self.pool_size):
            for pw in range(self.pool_size):
                windows[..., ph * self.pool_size + pw] = source[
                    :,
                    :,
                    ph : ph + (out_h - 1) * self.stride + 1 : self.stride,
                    pw : pw + (out_w - 1) * self.stride + 1 : self.stride,
                ]
        return windows

    def _check_grad(self, grad: Tensor, input_shape: Tuple[int, ...]) -> None:
        out_h, out_w = self._output_dims(input_shape)
        expected = (input_shape[0], input_shape[1], out_h, out_w)
        if grad.shape != expected:
            raise ShapeMismatchError(
                f"{self.name()} gradient shape {list(grad.shape)} does not match {list(expected)}"
            )

    def save(self) -> Tuple[Config, List[TensorData]]:
        return {"pool_size": self.pool_size, "stride": self.stride}, []

    def load(self, config: Mapping[str, Any], tensors: Sequence[TensorData]) -> None:
        pool_size = config_int(config, "pool_size", minimum=1)
        stride = config_int(config, "stride", minimum=1)
        restore_tensors(tensors, {})
        _Pooling.__init__(self, pool_size, stride)
        self._reset_cache()

    def _reset_cache(self) -> None:
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(pool_size={self.pool_size}, stride={self.stride})"


class MaxPooling(_Pooling):
    """Per-window maximum; the first maximum in row-major order wins ties.

    The winning positions are kept both as flat indices and as a 0/1 mask of the
    input's shape.
    """

    layer_name = "MaxPooling"

    def __init__(self, pool_size: int, stride: int) -> None:
        super().__init__(pool_size, stride)
        self._reset_cache()

    def _reset_cache(self) -> None:
        self._winners: Optional[np.ndarray] = None
        self.mask: Optional[Tensor] = None

    def forward(self, inputs: Tensor) -> Tensor:
        out_h, out_w = self._output_dims(inputs.shape)
        source = inputs.view()
        windows = self._windows(source, out_h, out_w)
        offsets = np.argmax(windows, axis=-1)
        output = np.take_along_axis(windows, offsets[..., None], axis=-1)[..., 0]

        batch, channels, height, width = inputs.shape
        rows = np.arange(out_h)[:, None] * self.stride + offsets // self.pool_size
        cols = np.arange(out_w)[None, :] * self.stride + offsets % self.pool_size
        plane = (np.arange(batch)[:, None] * channels + np.arange(channels)[None, :])[..., None, None]
        self._winners = (plane * height + rows) * width + cols

        mask = np.zeros(inputs.size())
        mask[self._winners.reshape(-1)] = 1.0
        self.mask = Tensor(mask, inputs.shape)
        self._input_shape = inputs.shape
        return Tensor(output, output.shape)

    def backward(self, grad: Tensor) -> Tensor:
        winners = require_cache(self._winners, self)
        self._check_grad(grad, self._input_shape)
        input_grad = np.zeros(int(np.prod(self._input_shape)))
        np.add.at(input_grad, winners.reshape(-1), grad.data)
        return Tensor(input_grad, self._input_shape)


class AveragePooling(_Pooling):
    """Per-window mean; backward spreads ``grad / pool_size**2`` over each window."""

    layer_name = "AveragePooling"

    def forward(self, inputs: Tensor) -> Tensor:
        out_h, out_w = self._output_dims(inputs.shape)
        windows = self._windows(inputs.view(), out_h, out_w)
        output = windows.mean(axis=-1)
        self._input_shape = inputs.shape
        return Tensor(output, output.shape)

    def backward(self, grad: Tensor) -> Tensor:
        input_shape = require_cache(self._input_shape, self)
        self._check_grad(grad, input_shape)
        out_h, out_w = grad.shape[2:]
        share = grad.view() / float(self.pool_size * self.pool_size)
        input_grad = np.zeros(input_shape)
        for ph in range(self.pool_size):
            for pw in range(self.pool_size):
                input_grad[
                    :,
                    :,
                    ph : ph + (out_h - 1) * self.stride + 1 : self.stride,
                    pw : pw + (out_w - 1) * self.stride + 1 : self.stride,
                ] += share
        return Tensor(input_grad, input_shape)


__all__ = ["AveragePooling", "MaxPooling"]
