"""Core numerical primitives for tensornets."""

from . import activations, errors, tensor, types
from .errors import DeserialisationError, ShapeMismatchError
from .tensor import Tensor, concatenate

__all__ = [
    "DeserialisationError",
    "ShapeMismatchError",
    "Tensor",
    "activations",
    "concatenate",
    "errors",
    "tensor",
    "types",
]
