import json

import numpy as np
import pytest

from tensornets.core.activations import ReLU, Sigmoid, Tanh
from tensornets.core.errors import DeserialisationError, ShapeMismatchError
from tensornets.core.tensor import Tensor
from tensornets.core.types import TensorData
from tensornets.layers import (
    GRU,
    LSTM,
    AveragePooling,
    Conv2D,
    Dropout,
    Embedding,
    Flatten,
    FullyConnected,
    MaxPooling,
    Reshape,
    build_layer,
    layer_from_record,
)


def _numeric_gradient(fn, array, eps=1e-6):
    grad = np.zeros_like(array)
    for i in range(array.size):
        original = array[i]
        array[i] = original + eps
        plus = fn()
        array[i] = original - eps
        minus = fn()
        array[i] = original
        grad[i] = (plus - minus) / (2 * eps)
    return grad


def _check_gradients(layer, inputs, rng):
    output = layer.forward(inputs)
    upstream = Tensor(rng.standard_normal(output.size()), output.shape)
    input_grad = layer.backward(upstream)
    assert input_grad.shape == inputs.shape

    def objective():
        return float(np.sum(layer.forward(inputs).data * upstream.data))

    np.testing.assert_allclose(
        input_grad.data, _numeric_gradient(objective, inputs.data), rtol=1e-4, atol=1e-6
    )
    grad_weights, grad_biases = layer.get_gradients()
    for param, grad in ((layer.get_weights(), grad_weights), (layer.get_biases(), grad_biases)):
        if param is None:
            continue
        analytic = grad.data.copy()
        np.testing.assert_allclose(
            analytic, _numeric_gradient(objective, param.data), rtol=1e-4, atol=1e-6
        )


def _round_trip(layer):
    config, tensors = layer.save()
    payload = json.loads(json.dumps({"config": config, "tensors": [t.to_dict() for t in tensors]}))
    restored = layer_from_record(
        layer.name(), payload["config"], [TensorData.from_dict(t) for t in payload["tensors"]]
    )
    assert type(restored) is type(layer)
    return restored


def test_fully_connected_gradients():
    rng = np.random.default_rng(0)
    layer = FullyConnected(3, 2, Tanh(), rng)
    layer.set_biases(Tensor(rng.standard_normal(2), (1, 2)))
    _check_gradients(layer, Tensor(rng.standard_normal(12), (4, 3)), rng)


def test_fully_connected_accumulates_until_zeroed():
    rng = np.random.default_rng(1)
    layer = FullyConnected(2, 2, Sigmoid(), rng)
    x = Tensor([0.5, -0.5], (1, 2))
    layer.forward(x)
    layer.backward(Tensor.ones((1, 2)))
    once = layer.get_gradients()[0].data.copy()
    layer.forward(x)
    layer.backward(Tensor.ones((1, 2)))
    np.testing.assert_allclose(layer.get_gradients()[0].data, 2 * once)
    layer.zero_gradients()
    assert not layer.get_gradients()[0].data.any()
    assert not layer.get_gradients()[1].data.any()


@pytest.mark.parametrize("stride,padding", [(1, 0), (2, 1)])
def test_conv2d_gradients(stride, padding):
    rng = np.random.default_rng(2)
    layer = Conv2D(2, 3, 3, stride=stride, padding=padding, activation=Tanh(), rng=rng)
    layer.set_biases(Tensor(rng.standard_normal(3) * 0.1, (3,)))
    _check_gradients(layer, Tensor(rng.standard_normal(2 * 2 * 5 * 5), (2, 2, 5, 5)), rng)


def test_conv2d_save_load_round_trip():
    layer = Conv2D(1, 32, 5, 1, 2, ReLU(), np.random.default_rng(3))
    restored = _round_trip(layer)
    assert restored.input_dim == 1
    assert restored.stride == 1
    assert restored.padding == 2
    assert restored.activation.name == "ReLU"
    assert restored.weights.data.tolist() == layer.weights.data.tolist()
    assert restored.biases.data.tolist() == layer.biases.data.tolist()


def test_conv2d_load_accepts_integral_floats():
    layer = Conv2D(1, 2, 3, rng=np.random.default_rng(4))
    config, tensors = layer.save()
    config = dict(config, stride=1.0, padding=0.0)
    restored = Conv2D.from_saved(config, tensors)
    assert restored.stride == 1 and restored.padding == 0
    with pytest.raises(DeserialisationError):
        Conv2D.from_saved(dict(config, stride=1.5), tensors)
    with pytest.raises(DeserialisationError):
        Conv2D.from_saved(dict(config, stride="1"), tensors)


def test_max_pooling_forward_backward():
    layer = MaxPooling(2, 2)
    x = Tensor(np.arange(1, 17), (1, 1, 4, 4))
    out = layer.forward(x)
    assert out.shape == (1, 1, 2, 2)
    assert out.data.tolist() == [6.0, 8.0, 14.0, 16.0]
    grad = layer.backward(Tensor([1.0, 2.0, 3.0, 4.0], (1, 1, 2, 2)))
    expected = np.zeros(16)
    expected[[5, 7, 13, 15]] = [1.0, 2.0, 3.0, 4.0]
    assert grad.data.tolist() == expected.tolist()
    assert layer.mask.data.tolist() == (expected > 0).astype(float).tolist()


def test_max_pooling_overlapping_windows_accumulate():
    layer = MaxPooling(2, 1)
    x = Tensor([0.0, 0.0, 0.0, 0.0, 9.0, 0.0, 0.0, 0.0, 0.0], (1, 1, 3, 3))
    assert layer.forward(x).data.tolist() == [9.0] * 4
    grad = layer.backward(Tensor.ones((1, 1, 2, 2)))
    assert grad.get(0, 0, 1, 1) == 4.0
    assert grad.sum() == 4.0


def test_max_pooling_first_maximum_wins_ties():
    layer = MaxPooling(2, 2)
    layer.forward(Tensor.ones((1, 1, 2, 2)))
    grad = layer.backward(Tensor([1.0], (1, 1, 1, 1)))
    assert grad.data.tolist() == [1.0, 0.0, 0.0, 0.0]


def test_max_pooling_gradients():
    rng = np.random.default_rng(5)
    x = Tensor(rng.permutation(2 * 3 * 5 * 5).astype(float), (2, 3, 5, 5))
    _check_gradients(MaxPooling(2, 1), x, rng)


def test_average_pooling():
    layer = AveragePooling(2, 2)
    assert layer.forward(Tensor([1.0, 2.0, 3.0, 4.0], (1, 1, 2, 2))).data.tolist() == [2.5]
    grad = layer.backward(Tensor([1.0], (1, 1, 1, 1)))
    assert grad.data.tolist() == [0.25] * 4
    rng = np.random.default_rng(6)
    _check_gradients(AveragePooling(3, 2), Tensor(rng.standard_normal(2 * 7 * 7), (1, 2, 7, 7)), rng)


def test_flatten_and_reshape():
    flatten = Flatten((2, 3, 2, 2))
    x = Tensor(np.arange(24), (2, 3, 2, 2))
    out = flatten.forward(x)
    assert out.shape == (2, 12)
    assert flatten.backward(out).shape == (2, 3, 2, 2)
    with pytest.raises(ShapeMismatchError):
        flatten.forward(Tensor.zeros((1, 12)))

    reshape = Reshape((4, 6))
    out = reshape.forward(x)
    assert out.shape == (4, 6)
    assert reshape.input_shape == (2, 3, 2, 2)
    back = reshape.backward(out)
    assert back.shape == x.shape
    assert back.data.tolist() == x.data.tolist()
    assert _round_trip(flatten).input_shape == (2, 3, 2, 2)
    assert _round_trip(reshape).output_shape == (4, 6)


def test_dropout_masks_without_rescaling():
    layer = Dropout(0.5, np.random.default_rng(7))
    x = Tensor(np.full(100, 2.0), (10, 10))
    out = layer.forward(x)
    assert set(out.data.tolist()) <= {0.0, 2.0}
    grad = layer.backward(Tensor.ones((10, 10)))
    assert grad.data.tolist() == layer.mask.data.tolist()
    assert Dropout(0.0).forward(x).data.tolist() == x.data.tolist()
    assert _round_trip(layer).rate == 0.5


def test_dropout_and_flatten_loads_reject_bad_configs():
    for rate in (1.0, 1.5, -0.1):
        with pytest.raises(DeserialisationError):
            Dropout.from_saved({"rate": rate}, [])
    with pytest.raises(DeserialisationError):
        layer_from_record("Dropout", {"rate": 2.0}, [])
    with pytest.raises(DeserialisationError):
        Flatten.from_saved({"input_shape": [4]}, [])
    with pytest.raises(DeserialisationError):
        Flatten.from_saved({"input_shape": []}, [])
    assert Flatten.from_saved({"input_shape": [2, 4]}, []).input_shape == (2, 4)


def test_loaded_dropout_draws_from_the_given_generator():
    config, tensors = Dropout(0.3).save()
    x = Tensor.ones((4, 5))
    expected = Dropout(0.3, np.random.default_rng(3)).forward(x).data.tolist()

    rng = np.random.default_rng(3)
    restored = Dropout.from_saved(config, tensors, rng)
    assert restored.rng is rng
    assert restored.forward(x).data.tolist() == expected
    via_registry = layer_from_record("Dropout", config, tensors, np.random.default_rng(3))
    assert via_registry.forward(x).data.tolist() == expected

    existing = Dropout(0.5, np.random.default_rng(9))
    generator = existing.rng
    existing.load({"rate": 0.2}, [])
    assert existing.rate == 0.2
    assert existing.rng is generator


def test_embedding_lookup_and_scatter():
    layer = Embedding(5, 3, np.random.default_rng(8))
    out = layer.forward(Tensor([1.0, 3.0, 1.0], (3,)))
    assert out.shape == (3, 3)
    table = layer.weights.to_array()
    np.testing.assert_array_equal(out.to_array(), table[[1, 3, 1]])

    grad = layer.backward(Tensor.ones((3, 3)))
    assert grad.shape == (3,)
    assert not grad.data.any()
    weight_grad = layer.get_gradients()[0].to_array()
    assert weight_grad[1].tolist() == [2.0, 2.0, 2.0]
    assert weight_grad[3].tolist() == [1.0, 1.0, 1.0]
    assert weight_grad[0].tolist() == [0.0, 0.0, 0.0]
    assert layer.get_gradients()[1] is None
    assert layer.get_biases() is None


@pytest.mark.parametrize("index", [1.5, 5.0, -1.0])
def test_embedding_rejects_invalid_indices(index):
    layer = Embedding(5, 2, np.random.default_rng(9))
    with pytest.raises(IndexError):
        layer.forward(Tensor([0.0, index], (2,)))


def test_gru_gradients_batched():
    rng = np.random.default_rng(10)
    layer = GRU(3, 4, rng)
    layer.set_biases(Tensor(rng.standard_normal(12) * 0.1, (12,)))
    _check_gradients(layer, Tensor(rng.standard_normal(5 * 2 * 3), (5, 2, 3)), rng)


def test_lstm_gradients_single_sequence():
    rng = np.random.default_rng(11)
    layer = LSTM(3, 4, rng)
    layer.set_biases(Tensor(rng.standard_normal(16) * 0.1, (16,)))
    x = Tensor(rng.standard_normal(4 * 3), (4, 3))
    assert layer.forward(x).shape == (4, 4)
    _check_gradients(layer, x, rng)


@pytest.mark.parametrize("cls", [GRU, LSTM])
def test_recurrent_save_names_every_gate(cls):
    layer = cls(2, 3, np.random.default_rng(12))
    _, tensors = layer.save()
    names = [record.name for record in tensors]
    expected = list(cls.input_gates + cls.recurrent_gates + cls.bias_gates)
    assert names == expected
    restored = _round_trip(layer)
    assert restored.weights.data.tolist() == layer.weights.data.tolist()
    assert restored.biases.data.tolist() == layer.biases.data.tolist()
    x = Tensor(np.linspace(-1, 1, 8), (4, 2))
    assert restored.forward(x).data.tolist() == layer.forward(x).data.tolist()


def test_recurrent_parameters_keep_identity_across_updates():
    layer = GRU(2, 2, np.random.default_rng(13))
    weights = layer.get_weights()
    weights.data -= 0.1
    assert layer.get_weights() is weights
    x = Tensor([0.1, 0.2, 0.3, 0.4], (2, 2))
    assert layer.forward(x).shape == (2, 2)


@pytest.mark.parametrize(
    "layer",
    [
        FullyConnected(2, 2, ReLU()),
        Conv2D(1, 1, 2),
        MaxPooling(2, 2),
        AveragePooling(2, 2),
        Flatten((1, 4)),
        Reshape((4,)),
        Dropout(0.1),
        Embedding(3, 2),
        GRU(2, 2),
        LSTM(2, 2),
    ],
)
def test_backward_before_forward_raises(layer):
    with pytest.raises(RuntimeError):
        layer.backward(Tensor.ones((1, 1)))


@pytest.mark.parametrize("layer", [MaxPooling(2, 2), Flatten((1, 4)), Reshape((4,)), Dropout(0.2)])
def test_parameter_free_layers(layer):
    assert layer.get_weights() is None
    assert layer.get_biases() is None
    assert layer.get_gradients() == (None, None)
    assert not layer.requires_optimisation()
    assert not layer.requires_regularisation()
    assert layer.parameter_count() == 0


def test_layer_registry_aliases_and_unknown_names():
    pooling = AveragePooling(2, 2)
    config, tensors = pooling.save()
    assert isinstance(layer_from_record("AvgPooling", config, tensors), AveragePooling)
    embedding = Embedding(4, 2, np.random.default_rng(14))
    config, tensors = embedding.save()
    assert isinstance(layer_from_record("Embedded", config, tensors), Embedding)
    with pytest.raises(DeserialisationError):
        layer_from_record("Attention", {}, [])


def test_layer_load_rejects_bad_tensors():
    layer = FullyConnected(2, 3, Sigmoid(), np.random.default_rng(15))
    config, tensors = layer.save()
    with pytest.raises(DeserialisationError):
        FullyConnected.from_saved(config, tensors[:1])
    with pytest.raises(DeserialisationError):
        FullyConnected.from_saved(config, tensors + [TensorData("Extra", [1], [0.0])])
    bad = TensorData("Weights", [2, 3], [0.0] * 5)
    with pytest.raises(DeserialisationError):
        FullyConnected.from_saved(config, [bad, tensors[1]])
    with pytest.raises(DeserialisationError):
        FullyConnected.from_saved(dict(config, activation="Nope"), tensors)


def test_build_layer_from_config():
    rng = np.random.default_rng(16)
    layer = build_layer({"type": "FullyConnected", "input_dim": 2, "output_dim": 3, "activation": "Tanh"}, rng)
    assert isinstance(layer, FullyConnected)
    assert layer.get_weights().shape == (2, 3)
    pool = build_layer({"type": "MaxPooling", "pool_size": 2}, rng)
    assert pool.stride == 2
    with pytest.raises(KeyError):
        build_layer({"type": "Attention"}, rng)
