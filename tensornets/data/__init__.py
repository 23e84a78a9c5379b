"""Dataset registry and loader helpers."""

# Ensure built-in datasets register themselves when the package is imported.
from . import mnist as _mnist  # noqa: F401
from . import synthetic as _synthetic  # noqa: F401
from .mnist import reshape_samples
from .registry import DatasetSpec, available_datasets, get_dataset, register_dataset

__all__ = [
    "DatasetSpec",
    "available_datasets",
    "get_dataset",
    "register_dataset",
    "reshape_samples",
]
