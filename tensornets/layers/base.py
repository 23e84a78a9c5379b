"""Layer protocol shared by every entry in the layer catalogue."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from ..core.errors import DeserialisationError, ShapeMismatchError
from ..core.tensor import Tensor
from ..core.types import TensorData

Config = Dict[str, Any]
Gradients = Tuple[Optional[Tensor], Optional[Tensor]]


class Layer:
    """Base class for layers.

    ``forward`` caches whatever ``backward`` needs and the cache is overwritten
    on each call.  ``backward`` returns the gradient with respect to the input
    and accumulates parameter gradients into tensors allocated alongside the
    parameters; :meth:`zero_gradients` resets them.  Layers without parameters
    keep the defaults below.
    """

    layer_name = "Layer"

    def forward(self, inputs: Tensor) -> Tensor:  # pragma: no cover - abstract
        raise NotImplementedError

    def backward(self, grad: Tensor) -> Tensor:  # pragma: no cover - abstract
        raise NotImplementedError

    def name(self) -> str:
        return self.layer_name

    def get_weights(self) -> Optional[Tensor]:
        return None

    def get_biases(self) -> Optional[Tensor]:
        return None

    def set_weights(self, weights: Tensor) -> None:
        return None

    def set_biases(self, biases: Tensor) -> None:
        return None

    def get_gradients(self) -> Gradients:
        return None, None

    def zero_gradients(self) -> None:
        for grad in self.get_gradients():
            if grad is not None:
                grad.fill(0.0)

    def requires_optimisation(self) -> bool:
        return False

    def requires_regularisation(self) -> bool:
        return False

    def parameter_count(self) -> int:
        total = 0
        for tensor in (self.get_weights(), self.get_biases()):
            if tensor is not None:
                total += tensor.size()
        return total

    def save(self) -> Tuple[Config, List[TensorData]]:  # pragma: no cover - abstract
        raise NotImplementedError

    def load(self, config: Mapping[str, Any], tensors: Sequence[TensorData]) -> None:  # pragma: no cover
        raise NotImplementedError

    @classmethod
    def from_saved(
        cls,
        config: Mapping[str, Any],
        tensors: Sequence[TensorData],
        rng: Optional[np.random.Generator] = None,
    ) -> "Layer":
        """Rebuild a layer from the output of :meth:`save`.

        ``rng`` is only used by layers that draw random numbers after loading.
        """

        layer = cls.__new__(cls)
        layer.load(config, tensors)
        return layer

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


def require_cache(value: Optional[Any], layer: Layer) -> Any:
    if value is None:
        raise RuntimeError(f"{layer.name()}: backward called before forward")
    return value


def replace_parameter(current: Tensor, new: Tensor, label: str) -> Tensor:
    if new.shape != current.shape:
        raise ShapeMismatchError(
            f"{label} shape {list(new.shape)} does not match {list(current.shape)}"
        )
    return new


def tensor_data(name: str, tensor: Tensor) -> TensorData:
    return TensorData(name=name, shape=list(tensor.shape), data=tensor.data.tolist())


# ----------------------------------------------------------------------
# Config parsing helpers


def _missing(config: Mapping[str, Any], key: str) -> Any:
    if not isinstance(config, Mapping):
        raise DeserialisationError(f"Layer config must be a mapping, got {type(config).__name__}")
    if key not in config:
        raise DeserialisationError(f"Missing config key {key!r}")
    return config[key]


def config_int(config: Mapping[str, Any], key: str, *, minimum: int = 0) -> int:
    """Read an integer, accepting integral floats as produced by JSON round trips."""

    value = _missing(config, key)
    if isinstance(value, bool) or not isinstance(value, (int, float, np.integer, np.floating)):
        raise DeserialisationError(f"Invalid {key}: {value!r}")
    if float(value) != int(value):
        raise DeserialisationError(f"Invalid {key}: {value!r} is not integral")
    if int(value) < minimum:
        raise DeserialisationError(f"Invalid {key}: {value!r} must be >= {minimum}")
    return int(value)


def config_float(config: Mapping[str, Any], key: str) -> float:
    value = _missing(config, key)
    if isinstance(value, bool) or not isinstance(value, (int, float, np.integer, np.floating)):
        raise DeserialisationError(f"Invalid {key}: {value!r}")
    return float(value)


def config_shape(config: Mapping[str, Any], key: str) -> Tuple[int, ...]:
    value = _missing(config, key)
    if not isinstance(value, (list, tuple)) or not value:
        raise DeserialisationError(f"Invalid {key}: {value!r}")
    dims = []
    for dim in value:
        if isinstance(dim, bool) or not isinstance(dim, (int, float)) or float(dim) != int(dim) or dim <= 0:
            raise DeserialisationError(f"Invalid {key}: {value!r}")
        dims.append(int(dim))
    return tuple(dims)


def restore_tensors(
    tensors: Iterable[TensorData], expected: Mapping[str, Tuple[int, ...]]
) -> Dict[str, Tensor]:
    """Rebuild the named tensors of a layer, checking names and shapes."""

    restored: Dict[str, Tensor] = {}
    for record in tensors or ():
        if isinstance(record, Mapping):
            record = TensorData.from_dict(record)
        if record.name not in expected:
            raise DeserialisationError(f"Unknown tensor name {record.name!r}")
        shape = tuple(record.shape)
        if shape != tuple(expected[record.name]):
            raise DeserialisationError(
                f"Tensor {record.name!r} has shape {list(shape)}, expected {list(expected[record.name])}"
            )
        try:
            restored[record.name] = Tensor(record.data, shape)
        except ShapeMismatchError as exc:
            raise DeserialisationError(f"Tensor {record.name!r}: {exc}") from exc
    missing = sorted(set(expected) - set(restored))
    if missing:
        raise DeserialisationError(f"Missing tensors: {', '.join(missing)}")
    return restored


__all__ = [
    "Config",
    "Gradients",
    "Layer",
    "config_float",
    "config_int",
    "config_shape",
    "replace_parameter",
    "require_cache",
    "restore_tensors",
    "tensor_data",
]
