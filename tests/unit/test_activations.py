import numpy as np
import pytest

from tensornets.core.activations import (
    LeakyReLU,
    ReLU,
    Sigmoid,
    Softmax,
    Tanh,
    activation_from_config,
    activation_from_name,
)
from tensornets.core.errors import DeserialisationError
from tensornets.core.tensor import Tensor


def test_sigmoid_derivative_table():
    sigmoid = Sigmoid()
    y = sigmoid.forward(Tensor([0.0, 2.0, -2.0], (3,)))
    derivative = sigmoid.backward(y).data
    assert derivative[0] == pytest.approx(0.25, abs=1e-9)
    assert derivative[1] == pytest.approx(0.1049935854, abs=1e-9)
    assert derivative[2] == pytest.approx(0.1049935854, abs=1e-9)


def test_relu_and_leaky_relu():
    x = Tensor([-1.0, 0.0, 2.0], (3,))
    relu = ReLU()
    y = relu.forward(x)
    assert y.data.tolist() == [0.0, 0.0, 2.0]
    assert relu.backward(y).data.tolist() == [0.0, 0.0, 1.0]

    leaky = LeakyReLU()
    y = leaky.forward(x)
    assert y.data.tolist() == pytest.approx([-0.01, 0.0, 2.0])
    assert leaky.backward(y).data.tolist() == pytest.approx([0.01, 0.01, 1.0])


def test_tanh_derivative_uses_output():
    tanh = Tanh()
    assert tanh.backward(Tensor([0.5], (1,))).data[0] == pytest.approx(0.75)
    assert tanh.forward(Tensor([0.0], (1,))).data[0] == 0.0


def test_softmax_normalises_last_axis_without_mutating_input():
    raw = np.array([1.0, 2.0, 3.0, 1000.0, 1000.0, 1000.0])
    x = Tensor(raw, (2, 3))
    y = Softmax().forward(x)
    rows = y.to_array()
    np.testing.assert_allclose(rows.sum(axis=1), [1.0, 1.0])
    np.testing.assert_allclose(rows[1], [1 / 3, 1 / 3, 1 / 3])
    assert x.data.tolist() == raw.tolist()
    np.testing.assert_allclose(Softmax().backward(y).data, y.data * (1 - y.data))


def test_activation_registry():
    assert isinstance(activation_from_name("Tanh"), Tanh)
    leaky = activation_from_config({"activation": "LeakyReLU", "alpha": 0.2})
    assert isinstance(leaky, LeakyReLU)
    assert leaky.alpha == 0.2
    assert leaky.config() == {"activation": "LeakyReLU", "alpha": 0.2}
    with pytest.raises(DeserialisationError):
        activation_from_name("Swish")
    with pytest.raises(DeserialisationError):
        activation_from_config({})
