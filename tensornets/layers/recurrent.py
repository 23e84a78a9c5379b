"""Sequence layers: GRU and LSTM with backpropagation through time.

Each layer consumes a whole sequence per ``forward`` call, either ``[T, input]``
(a single sequence) or ``[T, batch, input]``, starts from a zero state, and
returns the hidden state at every step.  All gate matrices live in a single
packed weight tensor and a single packed bias tensor so that optimiser state
keyed on tensor identity follows the parameters across updates.  The persisted
form names every gate matrix individually.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from ..core.errors import ShapeMismatchError
from ..core.tensor import Tensor, concatenate
from ..core.types import Array, TensorData
from .base import (
    Config,
    Gradients,
    Layer,
    config_int,
    replace_parameter,
    require_cache,
    restore_tensors,
)

Layout = List[Tuple[str, Tuple[int, int]]]


def _sigmoid(x: Array) -> Array:
    return 1.0 / (1.0 + np.exp(-x))


def _unpack(flat: Array, layout: Layout) -> Dict[str, Array]:
    """Return named views into ``flat`` following ``layout``."""

    views: Dict[str, Array] = {}
    offset = 0
    for name, shape in layout:
        size = shape[0] * shape[1]
        views[name] = flat[offset : offset + size].reshape(shape)
        offset += size
    return views


class _Recurrent(Layer):
    input_gates: Tuple[str, ...] = ()
    recurrent_gates: Tuple[str, ...] = ()
    bias_gates: Tuple[str, ...] = ()

    def __init__(self, input_size: int, hidden_size: int, rng: Optional[np.random.Generator] = None) -> None:
        if input_size <= 0 or hidden_size <= 0:
            raise ValueError(f"Invalid sizes: input_size={input_size}, hidden_size={hidden_size}")
        self.input_size = input_size
        self.hidden_size = hidden_size
        parts = [Tensor.xavier(input_size, hidden_size, rng) for _ in self.input_gates]
        parts += [Tensor.xavier(hidden_size, hidden_size, rng) for _ in self.recurrent_gates]
        self.weights = concatenate(parts)
        self.biases = Tensor.zeros((len(self.bias_gates) * hidden_size,))
        self._allocate_gradients()

    def _allocate_gradients(self) -> None:
        self.weight_gradients = Tensor.zeros(self.weights.shape)
        self.bias_gradients = Tensor.zeros(self.biases.shape)
        self._steps: Optional[List[Dict[str, Array]]] = None
        self._input_shape: Optional[Tuple[int, ...]] = None

    def _weight_layout(self) -> Layout:
        layout: Layout = [(name, (self.input_size, self.hidden_size)) for name in self.input_gates]
        layout += [(name, (self.hidden_size, self.hidden_size)) for name in self.recurrent_gates]
        return layout

    def _bias_layout(self) -> Layout:
        return [(name, (1, self.hidden_size)) for name in self.bias_gates]

    def _parameters(self) -> Dict[str, Array]:
        views = _unpack(self.weights.data, self._weight_layout())
        views.update(_unpack(self.biases.data, self._bias_layout()))
        return views

    def _gradient_views(self) -> Dict[str, Array]:
        views = _unpack(self.weight_gradients.data, self._weight_layout())
        views.update(_unpack(self.bias_gradients.data, self._bias_layout()))
        return views

    def _sequence(self, inputs: Tensor) -> Array:
        shape = inputs.shape
        if len(shape) == 2 and shape[1] == self.input_size:
            return inputs.view().reshape(shape[0], 1, self.input_size)
        if len(shape) == 3 and shape[2] == self.input_size:
            return inputs.view()
        raise ShapeMismatchError(
            f"{self.name()} expects [T, {self.input_size}] or [T, batch, {self.input_size}], "
            f"got {list(shape)}"
        )

    def _output(self, states: Array) -> Tensor:
        if len(self._input_shape) == 2:
            return Tensor(states, (states.shape[0], self.hidden_size))
        return Tensor(states, states.shape)

    def _gradient_sequence(self, grad: Tensor, steps: int) -> Array:
        batch = 1 if len(self._input_shape) == 2 else self._input_shape[1]
        expected = (steps, self.hidden_size) if len(self._input_shape) == 2 else (steps, batch, self.hidden_size)
        if grad.shape != expected:
            raise ShapeMismatchError(
                f"{self.name()} gradient shape {list(grad.shape)} does not match {list(expected)}"
            )
        return grad.view().reshape(steps, batch, self.hidden_size)

    def get_weights(self) -> Tensor:
        return self.weights

    def get_biases(self) -> Tensor:
        return self.biases

    def set_weights(self, weights: Tensor) -> None:
        self.weights = replace_parameter(self.weights, weights, "weights")

    def set_biases(self, biases: Tensor) -> None:
        self.biases = replace_parameter(self.biases, biases, "biases")

    def get_gradients(self) -> Gradients:
        return self.weight_gradients, self.bias_gradients

    def requires_optimisation(self) -> bool:
        return True

    def requires_regularisation(self) -> bool:
        return True

    def save(self) -> Tuple[Config, List[TensorData]]:
        config: Config = {
            "input_size": self.input_size,
            "hidden_size": self.hidden_size,
            "activation_sigmoid": "Sigmoid",
            "activation_tanh": "Tanh",
        }
        params = self._parameters()
        records = [
            TensorData(name=name, shape=list(shape), data=params[name].reshape(-1).tolist())
            for name, shape in self._weight_layout() + self._bias_layout()
        ]
        return config, records

    def load(self, config: Mapping[str, Any], tensors: Sequence[TensorData]) -> None:
        self.input_size = config_int(config, "input_size", minimum=1)
        self.hidden_size = config_int(config, "hidden_size", minimum=1)
        weight_layout = self._weight_layout()
        bias_layout = self._bias_layout()
        restored = restore_tensors(tensors, dict(weight_layout + bias_layout))
        self.weights = concatenate([restored[name] for name, _ in weight_layout])
        self.biases = concatenate([restored[name] for name, _ in bias_layout])
        self._allocate_gradients()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.input_size}, {self.hidden_size})"


class GRU(_Recurrent):
    """Gated recurrent unit.

    ``z = σ(x·Wu + h·Ru + Bu)``, ``r = σ(x·Wr + h·Rr + Br)``,
    ``n = tanh(x·Wh + (r ⊙ h)·Rh + Bh)`` and ``h' = z ⊙ h + (1 - z) ⊙ n``.
    """

    layer_name = "GRU"
    input_gates = ("Wu", "Wr", "Wh")
    recurrent_gates = ("Ru", "Rr", "Rh")
    bias_gates = ("Bu", "Br", "Bh")

    def forward(self, inputs: Tensor) -> Tensor:
        sequence = self._sequence(inputs)
        self._input_shape = inputs.shape
        p = self._parameters()
        steps, batch, _ = sequence.shape
        hidden = np.zeros((batch, self.hidden_size))
        states = np.empty((steps, batch, self.hidden_size))
        cache: List[Dict[str, Array]] = []
        for t in range(steps):
            x = sequence[t]
            z = _sigmoid(x @ p["Wu"] + hidden @ p["Ru"] + p["Bu"])
            r = _sigmoid(x @ p["Wr"] + hidden @ p["Rr"] + p["Br"])
            n = np.tanh(x @ p["Wh"] + (r * hidden) @ p["Rh"] + p["Bh"])
            cache.append({"x": x.copy(), "h": hidden, "z": z, "r": r, "n": n})
            hidden = z * hidden + (1.0 - z) * n
            states[t] = hidden
        self._steps = cache
        return self._output(states)

    def backward(self, grad: Tensor) -> Tensor:
        cache = require_cache(self._steps, self)
        grads = self._gradient_sequence(grad, len(cache))
        p = self._parameters()
        g = self._gradient_views()
        input_grad = np.zeros((len(cache), grads.shape[1], self.input_size))
        carry = np.zeros((grads.shape[1], self.hidden_size))
        for t in reversed(range(len(cache))):
            step = cache[t]
            x, h, z, r, n = step["x"], step["h"], step["z"], step["r"], step["n"]
            dh = grads[t] + carry

            da_n = dh * (1.0 - z) * (1.0 - n * n)
            da_z = dh * (h - n) * z * (1.0 - z)
            d_reset_hidden = da_n @ p["Rh"].T
            da_r = d_reset_hidden * h * r * (1.0 - r)

            g["Wu"] += x.T @ da_z
            g["Wr"] += x.T @ da_r
            g["Wh"] += x.T @ da_n
            g["Ru"] += h.T @ da_z
            g["Rr"] += h.T @ da_r
            g["Rh"] += (r * h).T @ da_n
            g["Bu"] += da_z.sum(axis=0, keepdims=True)
            g["Br"] += da_r.sum(axis=0, keepdims=True)
            g["Bh"] += da_n.sum(axis=0, keepdims=True)

            input_grad[t] = da_z @ p["Wu"].T + da_r @ p["Wr"].T + da_n @ p["Wh"].T
            carry = dh * z + d_reset_hidden * r + da_z @ p["Ru"].T + da_r @ p["Rr"].T
        return Tensor(input_grad, self._input_shape)


class LSTM(_Recurrent):
    """Long short-term memory.

    Gates ``f``, ``i``, ``o`` use a sigmoid and the candidate ``g`` uses tanh;
    ``c' = f ⊙ c + i ⊙ g`` and ``h' = o ⊙ tanh(c')``.
    """

    layer_name = "LSTM"
    input_gates = ("Wf", "Wi", "Wc", "Wo")
    recurrent_gates = ("Uf", "Ui", "Uc", "Uo")
    bias_gates = ("Bf", "Bi", "Bc", "Bo")

    _GATES = (("f", "Wf", "Uf", "Bf"), ("i", "Wi", "Ui", "Bi"), ("g", "Wc", "Uc", "Bc"), ("o", "Wo", "Uo", "Bo"))

    def forward(self, inputs: Tensor) -> Tensor:
        sequence = self._sequence(inputs)
        self._input_shape = inputs.shape
        p = self._parameters()
        steps, batch, _ = sequence.shape
        hidden = np.zeros((batch, self.hidden_size))
        cell = np.zeros((batch, self.hidden_size))
        states = np.empty((steps, batch, self.hidden_size))
        cache: List[Dict[str, Array]] = []
        for t in range(steps):
            x = sequence[t]
            f = _sigmoid(x @ p["Wf"] + hidden @ p["Uf"] + p["Bf"])
            i = _sigmoid(x @ p["Wi"] + hidden @ p["Ui"] + p["Bi"])
            g = np.tanh(x @ p["Wc"] + hidden @ p["Uc"] + p["Bc"])
            o = _sigmoid(x @ p["Wo"] + hidden @ p["Uo"] + p["Bo"])
            new_cell = f * cell + i * g
            squashed = np.tanh(new_cell)
            cache.append(
                {"x": x.copy(), "h": hidden, "c": cell, "f": f, "i": i, "g": g, "o": o, "tc": squashed}
            )
            cell = new_cell
            hidden = o * squashed
            states[t] = hidden
        self._steps = cache
        return self._output(states)

    def backward(self, grad: Tensor) -> Tensor:
        cache = require_cache(self._steps, self)
        grads = self._gradient_sequence(grad, len(cache))
        p = self._parameters()
        g = self._gradient_views()
        batch = grads.shape[1]
        input_grad = np.zeros((len(cache), batch, self.input_size))
        carry_h = np.zeros((batch, self.hidden_size))
        carry_c = np.zeros((batch, self.hidden_size))
        for t in reversed(range(len(cache))):
            step = cache[t]
            dh = grads[t] + carry_h
            dc = carry_c + dh * step["o"] * (1.0 - step["tc"] ** 2)
            pre = {
                "f": dc * step["c"] * step["f"] * (1.0 - step["f"]),
                "i": dc * step["g"] * step["i"] * (1.0 - step["i"]),
                "g": dc * step["i"] * (1.0 - step["g"] ** 2),
                "o": dh * step["tc"] * step["o"] * (1.0 - step["o"]),
            }
            carry_h = np.zeros_like(dh)
            for gate, w_name, u_name, b_name in self._GATES:
                da = pre[gate]
                g[w_name] += step["x"].T @ da
                g[u_name] += step["h"].T @ da
                g[b_name] += da.sum(axis=0, keepdims=True)
                input_grad[t] += da @ p[w_name].T
                carry_h += da @ p[u_name].T
            carry_c = dc * step["f"]
        return Tensor(input_grad, self._input_shape)


__all__ = ["GRU", "LSTM"]
