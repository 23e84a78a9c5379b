"""Named dataset factories returning ready-to-train tensor lists."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, MutableMapping, Optional, Tuple

from ..core.tensor import Tensor


@dataclass(frozen=True)
class DatasetSpec:
    """A fully materialised dataset.

    Attributes
    ----------
    name:
        Registry identifier.
    samples, targets:
        Parallel lists of shaped tensors, one pair per training sample.
    provenance:
        Free-form metadata recorded in the run manifest (seed, source file,
        whether an offline fixture was used, ...).
    """

    name: str
    samples: List[Tensor]
    targets: List[Tensor]
    provenance: Dict[str, Any] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.samples)

    @property
    def input_shape(self) -> Tuple[int, ...]:
        return self.samples[0].shape

    @property
    def target_shape(self) -> Tuple[int, ...]:
        return self.targets[0].shape


DatasetFactory = Callable[..., DatasetSpec]

_FACTORIES: MutableMapping[str, DatasetFactory] = {}


def register_dataset(name: str, factory: Optional[DatasetFactory] = None):
    """Register ``factory`` under ``name``; without a factory, return a decorator.

    Factories receive the caller's options as keyword arguments plus
    ``cache_dir`` and must return a :class:`DatasetSpec`.  Registering an
    existing name replaces the previous factory.
    """

    def _register(func: DatasetFactory) -> DatasetFactory:
        _FACTORIES[name] = func
        return func

    return _register(factory) if factory is not None else _register


def get_dataset(name: str, *, cache_dir: str | Path | None = None, **options: Any) -> DatasetSpec:
    """Build the dataset registered as ``name`` and check its samples line up."""

    try:
        factory = _FACTORIES[name]
    except KeyError:
        available = ", ".join(available_datasets())
        raise KeyError(f"Unknown dataset {name!r}. Available datasets: {available}") from None
    spec = factory(cache_dir=cache_dir, **options)
    _validate_spec(spec)
    return spec


def available_datasets() -> List[str]:
    return sorted(_FACTORIES)


def _validate_spec(spec: DatasetSpec) -> None:
    if len(spec.samples) != len(spec.targets):
        raise ValueError(
            f"Dataset {spec.name!r} has {len(spec.samples)} samples but {len(spec.targets)} targets"
        )
    if not spec.samples:
        raise ValueError(f"Dataset {spec.name!r} is empty")
    for position, (sample, target) in enumerate(zip(spec.samples, spec.targets)):
        if sample.shape != spec.input_shape or target.shape != spec.target_shape:
            raise ValueError(
                f"Dataset {spec.name!r} sample {position} has shapes "
                f"{list(sample.shape)} -> {list(target.shape)}, expected "
                f"{list(spec.input_shape)} -> {list(spec.target_shape)}"
            )


__all__ = ["DatasetSpec", "available_datasets", "get_dataset", "register_dataset"]
