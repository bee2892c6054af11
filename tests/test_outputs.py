"""Tests for the Softmax and Linear output layers."""

import numpy as np
import pytest

from clear_neurons.exceptions import NumericalInstabilityError, UnsupportedOperationError
from clear_neurons.model_info import ModelInfo
from clear_neurons.neurons import Input, Tanh
from clear_neurons.outputs import Linear, Softmax
from clear_neurons.params import Parameters
from clear_neurons.storage import DenseColMatrix


def build(params, out, n_in=2, n_hidden=3):
    minfo = ModelInfo(params, [n_in, n_hidden, out.units])
    layers = [Input(n_in), Tanh(n_hidden), out]
    for i, layer in enumerate(layers):
        layer.init(layers, i, params, minfo, True)
    layers[0].set_input(0, [0.5, -0.5], 0, [])
    layers[1].fprop(0, True)
    return layers, minfo


@pytest.fixture
def sgd_params():
    return Parameters(hidden=[3], adaptive_rate=False, rate=0.1, rate_annealing=0.0)


class TestSoftmax:

    def test_forward_is_a_distribution(self, sgd_params):
        (_, _, out), minfo = build(sgd_params, Softmax(4))
        minfo.randomize_weights(seed=5)
        out.fprop()
        assert out.a.raw().sum() == pytest.approx(1.0, abs=1e-5)
        assert np.all(out.a.raw() > 0)

    def test_ignores_seed_and_training_flag(self, sgd_params):
        (_, _, out), minfo = build(sgd_params, Softmax(3))
        minfo.randomize_weights(seed=5)
        out.fprop()
        first = out.a.raw().copy()
        out.fprop(123, True)
        np.testing.assert_array_equal(out.a.raw(), first)

    def test_cross_entropy_gradient(self, sgd_params):
        (_, _, out), minfo = build(sgd_params, Softmax(2))
        out.fprop()
        out.bprop(1)
        np.testing.assert_allclose(minfo.get_biases(1).raw(), [-0.05, 0.05], rtol=1e-5)

    def test_mean_square_gradient(self):
        params = Parameters(hidden=[3], adaptive_rate=False, rate=0.1, rate_annealing=0.0, loss='MeanSquare')
        (_, _, out), minfo = build(params, Softmax(2))
        out.fprop()
        out.bprop(0)
        # (t - y) * y * (1 - y) with y = 0.5
        np.testing.assert_allclose(minfo.get_biases(1).raw(), [0.1 * 0.125, -0.1 * 0.125], rtol=1e-5)

    def test_target_out_of_range(self, sgd_params):
        (_, _, out), _ = build(sgd_params, Softmax(2))
        out.fprop()
        with pytest.raises(ValueError):
            out.bprop(2)

    def test_bprop_needs_target(self, sgd_params):
        (_, _, out), _ = build(sgd_params, Softmax(2))
        with pytest.raises(UnsupportedOperationError):
            out.bprop()

    def test_nan_output_is_fatal(self, sgd_params):
        (_, _, out), minfo = build(sgd_params, Softmax(2))
        minfo.get_biases(1).raw()[0] = np.nan
        with pytest.raises(NumericalInstabilityError):
            out.fprop()


class TestLinear:

    @pytest.fixture
    def mse_params(self):
        return Parameters(hidden=[3], classification=False, loss='MeanSquare',
                          adaptive_rate=False, rate=1.0, rate_annealing=0.0)

    def test_forward_is_affine(self, mse_params):
        (_, hidden, out), minfo = build(mse_params, Linear(1))
        minfo.randomize_weights(seed=1)
        minfo.get_biases(1).raw()[0] = 0.25
        out.fprop()
        expected = float(np.dot(minfo.get_weights(1).raw(), hidden.a.raw())) + 0.25
        assert out.a.get(0) == pytest.approx(expected, abs=1e-6)

    def test_bias_moves_by_residual(self, mse_params):
        (_, _, out), minfo = build(mse_params, Linear(1))
        out.fprop()
        out.bprop(3.0)
        assert minfo.get_biases(1).get(0) == pytest.approx(3.0)

    def test_bias_moves_from_current_output_to_target(self, mse_params):
        (_, _, out), minfo = build(mse_params, Linear(1))
        minfo.get_biases(1).raw()[0] = 2.0
        out.fprop()
        assert out.a.get(0) == pytest.approx(2.0)
        out.bprop(5.0)
        assert minfo.get_biases(1).get(0) == pytest.approx(2.0 + 3.0)

    def test_requires_mean_square(self):
        params = Parameters(hidden=[3], classification=False, loss='CrossEntropy', adaptive_rate=False)
        (_, _, out), _ = build(params, Linear(1))
        out.fprop()
        with pytest.raises(UnsupportedOperationError):
            out.bprop(1.0)

    def test_requires_row_major_weights(self, mse_params):
        (_, _, out), _ = build(mse_params, Linear(1))
        out.w = DenseColMatrix(1, 3)
        with pytest.raises(UnsupportedOperationError):
            out.fprop()
