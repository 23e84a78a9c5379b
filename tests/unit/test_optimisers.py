import numpy as np
import pytest

from tensornets.core.activations import Tanh
from tensornets.core.errors import DeserialisationError, ShapeMismatchError
from tensornets.core.tensor import Tensor
from tensornets.layers import FullyConnected
from tensornets.training.optimisers import (
    SGD,
    Adam,
    RMSProp,
    SGDWithMomentum,
    build_optimiser,
    optimiser_from_config,
)


def test_sgd_single_step():
    weights = Tensor([0.5, -0.3, 0.8], (3,))
    SGD(0.01).update(weights, Tensor([0.1, -0.2, 0.3], (3,)))
    np.testing.assert_allclose(weights.data, [0.499, -0.298, 0.797], atol=1e-12)


def test_momentum_accumulates_velocity_per_tensor():
    optimiser = SGDWithMomentum(0.1, momentum=0.9)
    weights = Tensor([1.0], (1,))
    grad = Tensor([1.0], (1,))
    optimiser.update(weights, grad)
    assert weights.data[0] == pytest.approx(0.9)
    optimiser.update(weights, grad)
    # v = 0.9 * -0.1 - 0.1 = -0.19
    assert weights.data[0] == pytest.approx(0.71)
    other = Tensor([1.0], (1,))
    optimiser.update(other, grad)
    assert other.data[0] == pytest.approx(0.9)


def test_rmsprop_single_step():
    g = np.array([0.1, -0.2, 0.3])
    w = np.array([0.5, -0.3, 0.8])
    weights = Tensor(w, (3,))
    RMSProp(0.01).update(weights, Tensor(g, (3,)))
    mean_square = 0.1 * g * g
    expected = w - 0.01 * g / (np.sqrt(mean_square) + 1e-8)
    np.testing.assert_allclose(weights.data, expected, atol=1e-9)


def test_adam_two_steps_match_closed_form():
    g = np.array([0.1, -0.2, 0.3])
    w = np.array([0.5, -0.3, 0.8])
    weights = Tensor(w, (3,))
    optimiser = Adam(0.001)
    m = np.zeros(3)
    v = np.zeros(3)
    for t in (1, 2):
        optimiser.update(weights, Tensor(g, (3,)))
        m = 0.9 * m + 0.1 * g
        v = 0.999 * v + 0.001 * g * g
        m_hat = m / (1 - 0.9**t)
        v_hat = v / (1 - 0.999**t)
        w = w - 0.001 * m_hat / (np.sqrt(v_hat) + 1e-8)
        np.testing.assert_allclose(weights.data, w, atol=1e-9)
    assert optimiser.steps[weights.id] == 2


def test_zero_gradients_keeps_optimiser_state():
    optimiser = Adam(0.01)
    weights = Tensor([1.0, 2.0], (2,))
    grads = Tensor([0.5, 0.5], (2,))
    optimiser.update(weights, grads)
    optimiser.zero_gradients(grads)
    assert grads.data.tolist() == [0.0, 0.0]
    assert weights.id in optimiser.first_moments
    assert optimiser.steps[weights.id] == 1


def test_update_rejects_size_mismatch():
    for optimiser in (SGD(0.1), SGDWithMomentum(0.1), RMSProp(0.1), Adam(0.1)):
        with pytest.raises(ShapeMismatchError):
            optimiser.update(Tensor.zeros((3,)), Tensor.zeros((2,)))


def test_replaced_parameters_start_with_fresh_state():
    layer = FullyConnected(2, 2, Tanh(), np.random.default_rng(0))
    adam = Adam(0.01)
    momentum = SGDWithMomentum(0.1)
    grad = Tensor.ones((2, 2))
    old = layer.get_weights()
    for _ in range(2):
        adam.update(old, grad)
        momentum.update(old, grad)
    old_first = adam.first_moments[old.id].copy()
    old_second = adam.second_moments[old.id].copy()
    old_velocity = momentum.velocities[old.id].copy()

    replacement = Tensor.zeros((2, 2))
    layer.set_weights(replacement)
    assert layer.get_weights() is replacement
    assert replacement.id != old.id

    adam.update(layer.get_weights(), grad)
    assert adam.steps[replacement.id] == 1
    # first bias-corrected step moves every weight by the learning rate
    np.testing.assert_allclose(replacement.data, -0.01, rtol=1e-6)
    momentum.update(layer.get_weights(), grad)
    np.testing.assert_allclose(momentum.velocities[replacement.id], -0.1)
    np.testing.assert_allclose(replacement.data, -0.11, rtol=1e-6)

    assert adam.steps[old.id] == 2
    np.testing.assert_array_equal(adam.first_moments[old.id], old_first)
    np.testing.assert_array_equal(adam.second_moments[old.id], old_second)
    np.testing.assert_array_equal(momentum.velocities[old.id], old_velocity)


def test_update_rejects_state_of_another_size():
    weights = Tensor.zeros((3,))
    grad = Tensor.ones((3,))
    adam = Adam(0.01)
    adam.first_moments[weights.id] = np.zeros(weights.size() + 1)
    with pytest.raises(ShapeMismatchError):
        adam.update(weights, grad)
    momentum = SGDWithMomentum(0.1)
    momentum.velocities[weights.id] = np.zeros(weights.size() - 1)
    with pytest.raises(ShapeMismatchError):
        momentum.update(weights, grad)
    assert weights.data.tolist() == [0.0, 0.0, 0.0]


def test_optimiser_configs_round_trip():
    for optimiser in (SGD(0.1), SGDWithMomentum(0.05, 0.8), RMSProp(0.01, 0.95, 1e-6), Adam(0.002, 0.8, 0.99, 1e-7)):
        restored = optimiser_from_config(optimiser.save())
        assert type(restored) is type(optimiser)
        assert restored.save() == optimiser.save()
    assert optimiser_from_config(None) is None
    with pytest.raises(DeserialisationError):
        optimiser_from_config({"type": "Adagrad", "learning_rate": 0.1})
    with pytest.raises(DeserialisationError):
        optimiser_from_config({"type": "Adam", "learning_rate": 0.1})
    assert isinstance(build_optimiser("RMSProp", learning_rate=0.1), RMSProp)
    with pytest.raises(KeyError):
        build_optimiser("Adagrad", learning_rate=0.1)
