"""Activation functions used by the layer catalogue."""

from __future__ import annotations

from typing import Any, Dict, Optional

import numpy as np

from .errors import DeserialisationError
from .tensor import Tensor
from .types import Array


class Activation:
    """Elementwise activation with a derivative expressed in terms of the output.

    ``backward`` receives the *forward output* ``y`` and returns ``dy/dx``
    evaluated there; layers multiply it with the incoming gradient.
    """

    name = "Activation"

    def forward(self, x: Tensor) -> Tensor:
        return Tensor(self._forward(x.view()), x.shape)

    def backward(self, y: Tensor) -> Tensor:
        return Tensor(self._backward(y.view()), y.shape)

    def config(self) -> Dict[str, Any]:
        return {"activation": self.name}

    def _forward(self, x: Array) -> Array:  # pragma: no cover - abstract
        raise NotImplementedError

    def _backward(self, y: Array) -> Array:  # pragma: no cover - abstract
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class ReLU(Activation):
    name = "ReLU"

    def _forward(self, x: Array) -> Array:
        return np.maximum(x, 0.0)

    def _backward(self, y: Array) -> Array:
        return (y > 0).astype(np.float64)


class LeakyReLU(Activation):
    name = "LeakyReLU"

    def __init__(self, alpha: float = 0.01) -> None:
        self.alpha = float(alpha)

    def _forward(self, x: Array) -> Array:
        return np.where(x > 0, x, self.alpha * x)

    def _backward(self, y: Array) -> Array:
        return np.where(y > 0, 1.0, self.alpha)

    def config(self) -> Dict[str, Any]:
        return {"activation": self.name, "alpha": self.alpha}

    def __repr__(self) -> str:
        return f"LeakyReLU(alpha={self.alpha})"


class Sigmoid(Activation):
    name = "Sigmoid"

    def _forward(self, x: Array) -> Array:
        return 1.0 / (1.0 + np.exp(-x))

    def _backward(self, y: Array) -> Array:
        return y * (1.0 - y)


class Tanh(Activation):
    name = "Tanh"

    def _forward(self, x: Array) -> Array:
        return np.tanh(x)

    def _backward(self, y: Array) -> Array:
        return 1.0 - np.square(y)


class Softmax(Activation):
    """Softmax along the last axis.

    The derivative keeps only the diagonal of the Jacobian, ``y * (1 - y)``.
    """

    name = "Softmax"

    def _forward(self, x: Array) -> Array:
        shifted = x - np.max(x, axis=-1, keepdims=True)
        exp = np.exp(shifted)
        return exp / np.sum(exp, axis=-1, keepdims=True)

    def _backward(self, y: Array) -> Array:
        return y * (1.0 - y)


ACTIVATIONS = {
    "ReLU": ReLU,
    "LeakyReLU": LeakyReLU,
    "Sigmoid": Sigmoid,
    "Tanh": Tanh,
    "Softmax": Softmax,
}


def activation_from_name(name: str, alpha: Optional[float] = None) -> Activation:
    """Build an activation from its persisted name."""

    if name not in ACTIVATIONS:
        available = ", ".join(sorted(ACTIVATIONS))
        raise DeserialisationError(f"Unknown activation {name!r}. Available activations: {available}")
    if name == "LeakyReLU":
        return LeakyReLU() if alpha is None else LeakyReLU(alpha)
    return ACTIVATIONS[name]()


def activation_from_config(config: Dict[str, Any]) -> Activation:
    name = config.get("activation")
    if not isinstance(name, str):
        raise DeserialisationError(f"Missing or invalid activation in config: {name!r}")
    alpha = config.get("alpha")
    if alpha is not None and (isinstance(alpha, bool) or not isinstance(alpha, (int, float))):
        raise DeserialisationError(f"Invalid LeakyReLU alpha: {alpha!r}")
    return activation_from_name(name, alpha)


__all__ = [
    "ACTIVATIONS",
    "Activation",
    "LeakyReLU",
    "ReLU",
    "Sigmoid",
    "Softmax",
    "Tanh",
    "activation_from_config",
    "activation_from_name",
]
