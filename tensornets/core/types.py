"""Core typing contracts for tensornets."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

import numpy as np

from .errors import DeserialisationError

Array = np.ndarray


@dataclass(frozen=True)
class TensorData:
    """A named tensor as stored in the persisted model format."""

    name: str
    shape: List[int]
    data: List[float]

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "shape": list(self.shape), "data": list(self.data)}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "TensorData":
        try:
            name = payload["name"]
            shape = payload["shape"]
            data = payload["data"]
        except (KeyError, TypeError) as exc:
            raise DeserialisationError(f"Malformed tensor record: {payload!r}") from exc
        if not isinstance(name, str):
            raise DeserialisationError(f"Tensor name must be a string, got {name!r}")
        if not isinstance(shape, list) or not all(
            isinstance(dim, int) and not isinstance(dim, bool) for dim in shape
        ):
            raise DeserialisationError(f"Tensor {name!r} has an invalid shape: {shape!r}")
        if not isinstance(data, list) or not all(
            isinstance(v, (int, float)) and not isinstance(v, bool) for v in data
        ):
            raise DeserialisationError(f"Tensor {name!r} data must be a list of numbers")
        return cls(name=name, shape=list(shape), data=[float(v) for v in data])


@dataclass(frozen=True)
class RunResult:
    """Summary returned by :func:`tensornets.training.pipelines.run_pipeline`."""

    epochs: int
    total_loss: float
    metrics_path: str
    manifest_path: str
    model_path: str = ""
    history: List[float] = field(default_factory=list)
