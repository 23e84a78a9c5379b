"""Network container driving the forward/backward/update cycle."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from ..core.tensor import Tensor
from ..layers.base import Layer
from .losses import Loss
from .optimisers import Optimiser
from .regularisers import Regulariser

logger = logging.getLogger(__name__)


class Network:
    """Ordered stack of layers trained one sample at a time.

    Each :meth:`train_step` runs forward, loss, backward, regularise, optimise
    and zero-gradients in that order.  Layers can be added until the first
    training step; a layer belongs to at most one network.
    """

    def __init__(
        self,
        layers: Optional[Iterable[Layer]] = None,
        optimiser: Optional[Optimiser] = None,
        loss: Optional[Loss] = None,
        regulariser: Optional[Regulariser] = None,
        callbacks: Optional[Sequence[object]] = None,
    ) -> None:
        self.layers: List[Layer] = []
        self.optimiser = optimiser
        self.loss = loss
        self.regulariser = regulariser
        self.callbacks = list(callbacks or [])
        self._training_started = False
        for layer in layers or ():
            self.add_layer(layer)

    # ------------------------------------------------------------------
    # Topology

    def add_layer(self, layer: Layer) -> None:
        if self._training_started:
            raise RuntimeError("Cannot add layers once training has started")
        owner = getattr(layer, "_owner", None)
        if owner is not None and owner is not self:
            raise ValueError(f"{layer.name()} layer already belongs to another network")
        if owner is self:
            raise ValueError(f"{layer.name()} layer is already part of this network")
        layer._owner = self
        self.layers.append(layer)

    def get_layers(self) -> List[Layer]:
        return list(self.layers)

    @property
    def training_started(self) -> bool:
        return self._training_started

    def parameter_count(self) -> int:
        return sum(layer.parameter_count() for layer in self.layers)

    # ------------------------------------------------------------------
    # Passes

    def forward(self, inputs: Tensor) -> Tensor:
        output = inputs
        for layer in self.layers:
            output = layer.forward(output)
        return output

    def backward(self, grad: Tensor) -> Tensor:
        output = grad
        for layer in reversed(self.layers):
            output = layer.backward(output)
        return output

    def predict(self, inputs: Tensor) -> Tensor:
        return self.forward(inputs)

    def _trainable(self) -> Iterator[Tuple[Layer, Tensor, Tensor]]:
        """Yield ``(layer, parameter, gradient)`` for every optimisable parameter."""

        for layer in self.layers:
            if not layer.requires_optimisation():
                continue
            grad_weights, grad_biases = layer.get_gradients()
            for param, grad in ((layer.get_weights(), grad_weights), (layer.get_biases(), grad_biases)):
                if param is not None and grad is not None:
                    yield layer, param, grad

    def regularise(self) -> None:
        if self.regulariser is None:
            return
        for layer, param, grad in self._trainable():
            if layer.requires_regularisation():
                self.regulariser.apply(param, grad)

    def optimise(self) -> None:
        optimiser = self._require(self.optimiser, "optimiser")
        for _, param, grad in self._trainable():
            optimiser.update(param, grad)

    def zero_gradients(self) -> None:
        for layer in self.layers:
            if not layer.requires_optimisation():
                continue
            for grad in layer.get_gradients():
                if grad is None:
                    continue
                if self.optimiser is not None:
                    self.optimiser.zero_gradients(grad)
                else:
                    grad.fill(0.0)

    def regularisation_loss(self) -> float:
        if self.regulariser is None:
            return 0.0
        return sum(
            self.regulariser.apply_to_loss(param)
            for layer, param, _ in self._trainable()
            if layer.requires_regularisation()
        )

    # ------------------------------------------------------------------
    # Training

    def train_step(self, inputs: Tensor, target: Tensor) -> float:
        loss_fn = self._require(self.loss, "loss function")
        self._require(self.optimiser, "optimiser")
        self._training_started = True
        output = self.forward(inputs)
        loss, grad = loss_fn.compute(output, target)
        self.backward(grad)
        self.regularise()
        self.optimise()
        self.zero_gradients()
        return loss.mean()

    def train(self, data: Sequence[Tensor], targets: Sequence[Tensor], epochs: int) -> float:
        """Train for ``epochs`` passes and return the sum of per-epoch mean losses."""

        if len(data) != len(targets):
            raise ValueError(f"Got {len(data)} samples but {len(targets)} targets")
        if epochs < 0:
            raise ValueError(f"epochs must be non-negative, got {epochs}")
        if epochs == 0:
            return 0.0
        if not data:
            raise ValueError("Cannot train on an empty dataset")

        total_loss = 0.0
        for epoch in range(epochs):
            epoch_loss = 0.0
            for sample, target in zip(data, targets):
                epoch_loss += self.train_step(sample, target)
            epoch_loss /= float(len(data))
            total_loss += epoch_loss
            logger.info("Epoch %d, Loss: %f", epoch, epoch_loss)
            self._emit_epoch(epoch, {"loss": epoch_loss})
        return total_loss

    def _emit_epoch(self, epoch: int, metrics: dict) -> None:
        for callback in self.callbacks:
            if hasattr(callback, "on_epoch"):
                callback.on_epoch(epoch, metrics)  # type: ignore[attr-defined]
            elif callable(callback):
                callback(epoch, metrics)

    @staticmethod
    def _require(value, label: str):
        if value is None:
            raise RuntimeError(f"Network has no {label} configured")
        return value

    # ------------------------------------------------------------------
    # Persistence

    def save(
        self,
        path: str | Path,
        name: str = "model",
        dataset_name: str = "",
        total_loss: float = 0.0,
    ) -> Path:
        from .persistence import save_model

        return save_model(self, path, name=name, dataset_name=dataset_name, total_loss=total_loss)

    @classmethod
    def load(cls, path: str | Path, rng: Optional[np.random.Generator] = None) -> "Network":
        from .persistence import load_model

        return load_model(path, rng)

    def __repr__(self) -> str:
        layers = ", ".join(layer.name() for layer in self.layers)
        return f"Network([{layers}], optimiser={self.optimiser!r}, loss={self.loss!r})"


__all__ = ["Network"]
