"""
Tests for Activations and Losses
================================
"""

import numpy as np
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from nnengine.matrix import Matrix
from nnengine.activations import (Tanh, Sigmoid, ReLU, Linear, Softmax,
                                  HyperbolicTangent, get_activation)
from nnengine.losses import MSELoss, BinaryCrossEntropyLoss, get_loss
from nnengine.exceptions import DimensionMismatchError, NumericDomainError


@pytest.fixture
def x():
    return Matrix(np.random.default_rng(42).normal(0.0, 3.0, (6, 8)))


class TestActivations:
    """Output ranges and derivatives."""

    def test_tanh_range(self, x):
        y = Tanh().forward(x)
        assert -1.0 < y.min() and y.max() < 1.0

    def test_sigmoid_range(self, x):
        y = Sigmoid().forward(x)
        assert 0.0 < y.min() and y.max() < 1.0

    def test_sigmoid_extreme_inputs(self):
        y = Sigmoid().forward(Matrix([[-1000.0, 1000.0]]))
        assert np.all(np.isfinite(y.view()))

    def test_relu(self, x):
        y = ReLU().forward(x)
        assert y.min() >= 0.0
        np.testing.assert_array_equal(y.view(), np.maximum(x.view(), 0.0))

    def test_relu_derivative_at_zero(self):
        d = ReLU().derivative(Matrix([[-1.0, 0.0, 2.0]]))
        assert d.to_row_leading() == [[0.0, 0.0, 1.0]]

    def test_linear(self, x):
        assert Linear().forward(x) == x
        assert Linear().derivative(x) == Matrix.constant(6, 8, 1.0)

    def test_tanh_derivative(self):
        d = Tanh().derivative(Matrix([[0.0]]))
        assert d.index(0, 0) == pytest.approx(1.0)

    def test_softmax_columns_sum_to_one(self, x):
        y = Softmax().forward(x)

        assert y.min() > 0.0
        np.testing.assert_allclose(y.view().sum(axis=0), np.ones(8))

    def test_softmax_large_inputs(self):
        y = Softmax().forward(Matrix([[1000.0], [1001.0]]))
        assert np.all(np.isfinite(y.view()))
        assert y.index(1, 0) > y.index(0, 0)

    def test_softmax_has_no_elementwise_derivative(self, x):
        with pytest.raises(NotImplementedError):
            Softmax().derivative(x)

    def test_registry(self):
        assert isinstance(get_activation('tanh'), Tanh)
        assert isinstance(get_activation('hyperbolic-tangent'), HyperbolicTangent)
        assert isinstance(get_activation(None), Linear)
        with pytest.raises(ValueError, match="Available"):
            get_activation('swish')


class TestMSELoss:
    """Tests for MSELoss."""

    def test_value(self):
        loss = MSELoss()
        y_true = Matrix([[1.0, 0.0], [0.0, 1.0]])
        y_pred = Matrix([[0.0, 0.0], [0.0, 3.0]])

        assert loss.loss(y_true, y_pred) == pytest.approx((1.0 + 4.0) / 4)

    def test_zero_for_perfect_predictions(self, x):
        assert MSELoss().loss(x, x) == 0.0
        assert MSELoss().loss_prime(x, x) == Matrix.zeros(6, 8)

    def test_per_sample(self):
        y_true = Matrix([[1.0, 0.0], [0.0, 1.0]])
        y_pred = Matrix([[0.0, 0.0], [0.0, 3.0]])

        np.testing.assert_allclose(MSELoss().loss_per_sample(y_true, y_pred), [0.5, 2.0])

    def test_shape_mismatch(self):
        with pytest.raises(DimensionMismatchError):
            MSELoss().loss(Matrix.zeros(2, 3), Matrix.zeros(3, 2))


class TestBinaryCrossEntropyLoss:
    """Tests for BinaryCrossEntropyLoss."""

    def test_value_is_positive(self):
        loss = BinaryCrossEntropyLoss()
        y_true = Matrix([[1.0, 0.0]])
        y_pred = Matrix([[0.9, 0.2]])

        expected = -(np.log(0.9) + np.log(0.8)) / 2
        assert loss.loss(y_true, y_pred) == pytest.approx(expected)
        assert loss.loss(y_true, y_pred) > 0.0

    def test_per_sample_matches_loss(self):
        loss = BinaryCrossEntropyLoss()
        y_true = Matrix([[1.0, 0.0], [0.0, 1.0]])
        y_pred = Matrix([[0.7, 0.4], [0.1, 0.6]])

        per_sample = loss.loss_per_sample(y_true, y_pred)
        assert np.mean(per_sample) == pytest.approx(loss.loss(y_true, y_pred))

    @pytest.mark.parametrize('p', [0.0, 1.0, 1.5])
    def test_out_of_domain(self, p):
        with pytest.raises(NumericDomainError):
            BinaryCrossEntropyLoss().loss(Matrix([[1.0]]), Matrix([[p]]))
        with pytest.raises(NumericDomainError):
            BinaryCrossEntropyLoss().loss_prime(Matrix([[1.0]]), Matrix([[p]]))


class TestLossRegistry:
    """Tests for get_loss."""

    def test_names(self):
        assert isinstance(get_loss('mse'), MSELoss)
        assert isinstance(get_loss('Binary-Crossentropy'), BinaryCrossEntropyLoss)

    def test_instance_passthrough(self):
        loss = MSELoss()
        assert get_loss(loss) is loss

    def test_unknown(self):
        with pytest.raises(ValueError):
            get_loss('hinge')
