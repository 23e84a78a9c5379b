"""Layer catalogue and the registries that build layers by name."""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Sequence, Type

import numpy as np

from ..core.activations import activation_from_name
from ..core.errors import DeserialisationError
from ..core.types import TensorData
from .base import Layer
from .conv import Conv2D
from .dense import FullyConnected
from .dropout import Dropout
from .embedding import Embedding
from .pooling import AveragePooling, MaxPooling
from .recurrent import GRU, LSTM
from .shape import Flatten, Reshape

LAYER_TYPES: Dict[str, Type[Layer]] = {
    "FullyConnected": FullyConnected,
    "Conv2D": Conv2D,
    "MaxPooling": MaxPooling,
    "AveragePooling": AveragePooling,
    "Flatten": Flatten,
    "Reshape": Reshape,
    "Dropout": Dropout,
    "Embedding": Embedding,
    "GRU": GRU,
    "LSTM": LSTM,
}

# Older model files used these names.
LAYER_ALIASES = {"AvgPooling": "AveragePooling", "Embedded": "Embedding"}


def layer_from_record(
    name: str,
    config: Optional[Mapping[str, Any]],
    tensors: Sequence[TensorData],
    rng: Optional[np.random.Generator] = None,
) -> Layer:
    """Rebuild a persisted layer from its ``layerName``, config and tensors."""

    name = LAYER_ALIASES.get(name, name)
    if name not in LAYER_TYPES:
        raise DeserialisationError(f"unknown layer type: {name}")
    return LAYER_TYPES[name].from_saved(config or {}, tensors, rng)


def _activation(spec: Mapping[str, Any], default: str):
    return activation_from_name(spec.get("activation", default), spec.get("alpha"))


def build_layer(spec: Mapping[str, Any], rng: Optional[np.random.Generator] = None) -> Layer:
    """Build a freshly initialised layer from a pipeline ``model.layers`` entry."""

    kind = LAYER_ALIASES.get(spec.get("type", ""), spec.get("type", ""))
    if kind == "FullyConnected":
        return FullyConnected(spec["input_dim"], spec["output_dim"], _activation(spec, "ReLU"), rng)
    if kind == "Conv2D":
        return Conv2D(
            spec["input_dim"],
            spec["output_dim"],
            spec["kernel_size"],
            stride=spec.get("stride", 1),
            padding=spec.get("padding", 0),
            activation=_activation(spec, "ReLU"),
            rng=rng,
        )
    if kind == "MaxPooling":
        return MaxPooling(spec["pool_size"], spec.get("stride", spec["pool_size"]))
    if kind == "AveragePooling":
        return AveragePooling(spec["pool_size"], spec.get("stride", spec["pool_size"]))
    if kind == "Flatten":
        return Flatten(spec["input_shape"])
    if kind == "Reshape":
        return Reshape(spec["output_shape"])
    if kind == "Dropout":
        return Dropout(spec["rate"], rng)
    if kind == "Embedding":
        return Embedding(spec["vocab_size"], spec["embed_size"], rng)
    if kind == "GRU":
        return GRU(spec["input_size"], spec["hidden_size"], rng)
    if kind == "LSTM":
        return LSTM(spec["input_size"], spec["hidden_size"], rng)
    available = ", ".join(sorted(LAYER_TYPES))
    raise KeyError(f"Unknown layer type {spec.get('type')!r}. Available layers: {available}")


__all__ = [
    "AveragePooling",
    "Conv2D",
    "Dropout",
    "Embedding",
    "Flatten",
    "FullyConnected",
    "GRU",
    "LAYER_ALIASES",
    "LAYER_TYPES",
    "LSTM",
    "Layer",
    "MaxPooling",
    "Reshape",
    "build_layer",
    "layer_from_record",
]
