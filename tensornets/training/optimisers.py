"""Optimisers with per-parameter state keyed on tensor identity.

State is created lazily on the first update of a parameter and survives
``zero_gradients``.  A parameter that is replaced by a new tensor gets a new
identity, so its old state is simply never looked up again.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

import numpy as np

from ..core.errors import DeserialisationError, ShapeMismatchError
from ..core.tensor import Tensor


class Optimiser:
    name = "Optimiser"

    def __init__(self, learning_rate: float) -> None:
        self.learning_rate = float(learning_rate)

    def zero_gradients(self, gradients: Tensor) -> None:
        gradients.fill(0.0)

    def update(self, weights: Tensor, gradients: Tensor) -> None:
        if weights.size() != gradients.size():
            raise ShapeMismatchError(
                f"{self.name}: weights size {weights.size()} does not match gradients size {gradients.size()}"
            )
        self._update(weights, gradients.data)

    def _update(self, weights: Tensor, grad: np.ndarray) -> None:  # pragma: no cover - abstract
        raise NotImplementedError

    def _state(self, store: Dict[int, np.ndarray], weights: Tensor) -> np.ndarray:
        state = store.get(weights.id)
        if state is None:
            state = np.zeros(weights.size())
            store[weights.id] = state
        elif state.size != weights.size():
            raise ShapeMismatchError(
                f"{self.name}: state for tensor {weights.id} has size {state.size}, "
                f"parameter has size {weights.size()}"
            )
        return state

    def save(self) -> Dict[str, Any]:
        return {"type": self.name, "learning_rate": self.learning_rate}

    def __repr__(self) -> str:
        params = ", ".join(f"{key}={value}" for key, value in self.save().items() if key != "type")
        return f"{type(self).__name__}({params})"


class SGD(Optimiser):
    name = "SGD"

    def _update(self, weights: Tensor, grad: np.ndarray) -> None:
        weights.data -= self.learning_rate * grad


class SGDWithMomentum(Optimiser):
    name = "SGDWithMomentum"

    def __init__(self, learning_rate: float, momentum: float = 0.9) -> None:
        super().__init__(learning_rate)
        self.momentum = float(momentum)
        self.velocities: Dict[int, np.ndarray] = {}

    def _update(self, weights: Tensor, grad: np.ndarray) -> None:
        velocity = self._state(self.velocities, weights)
        velocity *= self.momentum
        velocity -= self.learning_rate * grad
        weights.data += velocity

    def save(self) -> Dict[str, Any]:
        return {"type": self.name, "learning_rate": self.learning_rate, "momentum": self.momentum}


class RMSProp(Optimiser):
    name = "RMSProp"

    def __init__(self, learning_rate: float, beta: float = 0.9, epsilon: float = 1e-8) -> None:
        super().__init__(learning_rate)
        self.beta = float(beta)
        self.epsilon = float(epsilon)
        self.mean_squares: Dict[int, np.ndarray] = {}

    def _update(self, weights: Tensor, grad: np.ndarray) -> None:
        mean_square = self._state(self.mean_squares, weights)
        mean_square *= self.beta
        mean_square += (1.0 - self.beta) * grad * grad
        weights.data -= self.learning_rate * grad / (np.sqrt(mean_square) + self.epsilon)

    def save(self) -> Dict[str, Any]:
        return {
            "type": self.name,
            "learning_rate": self.learning_rate,
            "beta": self.beta,
            "epsilon": self.epsilon,
        }


class Adam(Optimiser):
    name = "Adam"

    def __init__(
        self,
        learning_rate: float,
        beta1: float = 0.9,
        beta2: float = 0.999,
        epsilon: float = 1e-8,
    ) -> None:
        super().__init__(learning_rate)
        self.beta1 = float(beta1)
        self.beta2 = float(beta2)
        self.epsilon = float(epsilon)
        self.first_moments: Dict[int, np.ndarray] = {}
        self.second_moments: Dict[int, np.ndarray] = {}
        self.steps: Dict[int, int] = {}

    def _update(self, weights: Tensor, grad: np.ndarray) -> None:
        m = self._state(self.first_moments, weights)
        v = self._state(self.second_moments, weights)
        t = self.steps.get(weights.id, 0) + 1
        self.steps[weights.id] = t

        m *= self.beta1
        m += (1.0 - self.beta1) * grad
        v *= self.beta2
        v += (1.0 - self.beta2) * grad * grad
        m_hat = m / (1.0 - self.beta1**t)
        v_hat = v / (1.0 - self.beta2**t)
        weights.data -= self.learning_rate * m_hat / (np.sqrt(v_hat) + self.epsilon)

    def save(self) -> Dict[str, Any]:
        return {
            "type": self.name,
            "learning_rate": self.learning_rate,
            "beta1": self.beta1,
            "beta2": self.beta2,
            "epsilon": self.epsilon,
        }


OPTIMISERS = {
    "SGD": (SGD, ("learning_rate",)),
    "SGDWithMomentum": (SGDWithMomentum, ("learning_rate", "momentum")),
    "RMSProp": (RMSProp, ("learning_rate", "beta", "epsilon")),
    "Adam": (Adam, ("learning_rate", "beta1", "beta2", "epsilon")),
}


def optimiser_from_config(config: Optional[Mapping[str, Any]]) -> Optional[Optimiser]:
    """Rebuild a persisted optimiser; ``None`` stays ``None``."""

    if config is None:
        return None
    if not isinstance(config, Mapping) or not isinstance(config.get("type"), str):
        raise DeserialisationError(f"Malformed optimiser record: {config!r}")
    kind = config["type"]
    if kind not in OPTIMISERS:
        raise DeserialisationError(f"unknown optimiser type: {kind}")
    cls, keys = OPTIMISERS[kind]
    values = []
    for key in keys:
        value = config.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise DeserialisationError(f"Invalid optimiser {key}: {value!r}")
        values.append(float(value))
    return cls(*values)


def build_optimiser(name: str, **params: float) -> Optimiser:
    """Build an optimiser from a pipeline ``train.optimiser`` entry."""

    if name not in OPTIMISERS:
        available = ", ".join(sorted(OPTIMISERS))
        raise KeyError(f"Unknown optimiser {name!r}. Available optimisers: {available}")
    return OPTIMISERS[name][0](**params)


__all__ = [
    "Adam",
    "OPTIMISERS",
    "Optimiser",
    "RMSProp",
    "SGD",
    "SGDWithMomentum",
    "build_optimiser",
    "optimiser_from_config",
]
