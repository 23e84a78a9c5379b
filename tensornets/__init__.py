"""tensornets public API."""

from .architectures import GAN
from .core import activations  # noqa: F401
from .core import types  # noqa: F401
from .core.errors import DeserialisationError, ShapeMismatchError
from .core.tensor import Tensor
from .training.network import Network
from .training.persistence import load_model, save_model
from .training.pipelines import load_preset, presets, run_pipeline

__all__ = [
    "DeserialisationError",
    "GAN",
    "Network",
    "ShapeMismatchError",
    "Tensor",
    "activations",
    "load_model",
    "load_preset",
    "presets",
    "run_pipeline",
    "save_model",
    "types",
]
