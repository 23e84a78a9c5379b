"""Weight penalties applied to gradients before the optimiser step."""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

import numpy as np

from ..core.errors import DeserialisationError, ShapeMismatchError
from ..core.tensor import Tensor


class Regulariser:
    """Adds a penalty gradient in place and reports the penalty value."""

    name = "Regulariser"

    def apply(self, weights: Tensor, gradients: Tensor) -> None:
        if weights.size() != gradients.size():
            raise ShapeMismatchError(
                f"{self.name}: weights size {weights.size()} does not match gradients size {gradients.size()}"
            )
        gradients.data += self._gradient(weights.data)

    def apply_to_loss(self, weights: Tensor) -> float:
        return float(np.sum(self._penalty(weights.data)))

    def _gradient(self, w: np.ndarray) -> np.ndarray:  # pragma: no cover - abstract
        raise NotImplementedError

    def _penalty(self, w: np.ndarray) -> np.ndarray:  # pragma: no cover - abstract
        raise NotImplementedError

    def save(self) -> Dict[str, Any]:  # pragma: no cover - abstract
        raise NotImplementedError


class L1(Regulariser):
    name = "L1"

    def __init__(self, lam: float) -> None:
        self.lam = float(lam)

    def _gradient(self, w: np.ndarray) -> np.ndarray:
        return self.lam * np.sign(w)

    def _penalty(self, w: np.ndarray) -> np.ndarray:
        return self.lam * np.abs(w)

    def save(self) -> Dict[str, Any]:
        return {"type": self.name, "lambda": self.lam}

    def __repr__(self) -> str:
        return f"L1(lam={self.lam})"


class L2(Regulariser):
    """Gradient ``lam * w``; the reported penalty is ``sum(lam * w^2)``."""

    name = "L2"

    def __init__(self, lam: float) -> None:
        self.lam = float(lam)

    def _gradient(self, w: np.ndarray) -> np.ndarray:
        return self.lam * w

    def _penalty(self, w: np.ndarray) -> np.ndarray:
        return self.lam * w * w

    def save(self) -> Dict[str, Any]:
        return {"type": self.name, "lambda": self.lam}

    def __repr__(self) -> str:
        return f"L2(lam={self.lam})"


class ElasticNet(Regulariser):
    name = "ElasticNet"

    def __init__(self, lambda1: float, lambda2: float) -> None:
        self.lambda1 = float(lambda1)
        self.lambda2 = float(lambda2)

    def _gradient(self, w: np.ndarray) -> np.ndarray:
        return self.lambda1 * np.sign(w) + self.lambda2 * w

    def _penalty(self, w: np.ndarray) -> np.ndarray:
        return self.lambda1 * np.abs(w) + 0.5 * self.lambda2 * w * w

    def save(self) -> Dict[str, Any]:
        return {"type": self.name, "lambda1": self.lambda1, "lambda2": self.lambda2}

    def __repr__(self) -> str:
        return f"ElasticNet(lambda1={self.lambda1}, lambda2={self.lambda2})"


def _number(config: Mapping[str, Any], key: str) -> float:
    value = config.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DeserialisationError(f"Invalid regularisation {key}: {value!r}")
    return float(value)


def regulariser_from_config(config: Optional[Mapping[str, Any]]) -> Optional[Regulariser]:
    """Rebuild a persisted regulariser; ``None`` stays ``None``."""

    if config is None:
        return None
    if not isinstance(config, Mapping) or not isinstance(config.get("type"), str):
        raise DeserialisationError(f"Malformed regularisation record: {config!r}")
    kind = config["type"]
    if kind == "L1":
        return L1(_number(config, "lambda"))
    if kind == "L2":
        return L2(_number(config, "lambda"))
    if kind == "ElasticNet":
        return ElasticNet(_number(config, "lambda1"), _number(config, "lambda2"))
    raise DeserialisationError(f"unknown regularisation type: {kind}")


def build_regulariser(spec: Optional[Mapping[str, Any]]) -> Optional[Regulariser]:
    """Build a regulariser from a pipeline ``model.regulariser`` entry."""

    if not spec:
        return None
    kind = spec.get("type")
    if kind == "L1":
        return L1(spec.get("lambda", 0.0))
    if kind == "L2":
        return L2(spec.get("lambda", 0.0))
    if kind == "ElasticNet":
        return ElasticNet(spec.get("lambda1", 0.0), spec.get("lambda2", 0.0))
    raise KeyError(f"Unknown regulariser {kind!r}. Available regularisers: ElasticNet, L1, L2")


__all__ = ["ElasticNet", "L1", "L2", "Regulariser", "build_regulariser", "regulariser_from_config"]
