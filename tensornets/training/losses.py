"""Loss functions and the registry used to build them by name."""

from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple

import numpy as np

from ..core.errors import DeserialisationError, ShapeMismatchError
from ..core.tensor import Tensor

EPSILON = 1e-12


class Loss:
    """Loss returning both the loss tensor and ``dL/dpredicted``."""

    name = "Loss"

    def compute(self, predicted: Tensor, actual: Tensor) -> Tuple[Tensor, Tensor]:
        if predicted.shape != actual.shape:
            raise ShapeMismatchError(
                f"{self.name}: predicted shape {list(predicted.shape)} does not match "
                f"actual shape {list(actual.shape)}"
            )
        return self._compute(predicted, actual)

    def _compute(self, predicted: Tensor, actual: Tensor) -> Tuple[Tensor, Tensor]:  # pragma: no cover
        raise NotImplementedError

    def save(self) -> Dict[str, Any]:
        return {"type": self.name}

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class MeanSquaredError(Loss):
    """``0.5 * sum((p - a)^2)`` as a single-element tensor; gradient ``p - a``."""

    name = "MeanSquaredError"

    def _compute(self, predicted: Tensor, actual: Tensor) -> Tuple[Tensor, Tensor]:
        diff = predicted.data - actual.data
        loss = Tensor([0.5 * float(np.sum(diff * diff))], (1,))
        return loss, Tensor(diff, predicted.shape)


class BinaryCrossEntropy(Loss):
    name = "BinaryCrossEntropy"

    def _compute(self, predicted: Tensor, actual: Tensor) -> Tuple[Tensor, Tensor]:
        p = predicted.data
        a = actual.data
        loss = -a * np.log(p + EPSILON) - (1.0 - a) * np.log(1.0 - p + EPSILON)
        grad = (p - a) / (p * (1.0 - p) + EPSILON)
        return Tensor(loss, predicted.shape), Tensor(grad, predicted.shape)


class CategoricalCrossEntropy(Loss):
    """Per-row cross entropy; a rank-1 input is treated as a single row."""

    name = "CategoricalCrossEntropy"

    def _compute(self, predicted: Tensor, actual: Tensor) -> Tuple[Tensor, Tensor]:
        rows = predicted.shape[0] if predicted.rank > 1 else 1
        p = predicted.data.reshape(rows, -1)
        a = actual.data.reshape(rows, -1)
        loss = np.sum(-a * np.log(p + EPSILON), axis=1)
        grad = (p - a) / (p + EPSILON)
        return Tensor(loss, (rows,)), Tensor(grad, predicted.shape)


class CosineProximityLoss(Loss):
    """Negative cosine similarity between the flattened prediction and target."""

    name = "CosineProximityLoss"

    def _compute(self, predicted: Tensor, actual: Tensor) -> Tuple[Tensor, Tensor]:
        p = predicted.data
        a = actual.data
        dot = float(np.dot(p, a))
        norm_p = float(np.sqrt(np.dot(p, p)))
        norm_a = float(np.sqrt(np.dot(a, a)))
        loss = Tensor([-dot / (norm_p * norm_a)], (1,))
        grad = ((dot / (norm_p * norm_p * norm_a)) * p - a / norm_a) / norm_p
        return loss, Tensor(grad, predicted.shape)


class LossRegistry:
    """Central registry for loss functions."""

    def __init__(self) -> None:
        self._registry: Dict[str, Callable[[], Loss]] = {}

    def register(self, name: str, factory: Callable[[], Loss]) -> None:
        self._registry[name] = factory

    def get(self, name: str) -> Loss:
        if name not in self._registry:
            available = ", ".join(sorted(self._registry))
            raise KeyError(f"Unknown loss {name!r}. Available losses: {available}")
        return self._registry[name]()

    def names(self) -> Iterable[str]:
        return sorted(self._registry)


REGISTRY = LossRegistry()

for _loss in (MeanSquaredError, BinaryCrossEntropy, CategoricalCrossEntropy, CosineProximityLoss):
    REGISTRY.register(_loss.name, _loss)
REGISTRY.register("mse", MeanSquaredError)
REGISTRY.register("bce", BinaryCrossEntropy)
REGISTRY.register("cce", CategoricalCrossEntropy)
REGISTRY.register("cosine", CosineProximityLoss)


def loss_from_config(config: Optional[Mapping[str, Any]]) -> Optional[Loss]:
    """Rebuild a persisted loss; ``None`` stays ``None``."""

    if config is None:
        return None
    if not isinstance(config, Mapping) or not isinstance(config.get("type"), str):
        raise DeserialisationError(f"Malformed loss function record: {config!r}")
    try:
        return REGISTRY.get(config["type"])
    except KeyError as exc:
        raise DeserialisationError(f"unknown loss function type: {config['type']}") from exc


__all__ = [
    "BinaryCrossEntropy",
    "CategoricalCrossEntropy",
    "CosineProximityLoss",
    "Loss",
    "LossRegistry",
    "MeanSquaredError",
    "REGISTRY",
    "loss_from_config",
]
