"""
Tests for Optimizers, Schedules and Initializers
================================================
"""

import numpy as np
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from nnengine.matrix import Matrix
from nnengine.optimizers import SGD, Momentum, Adam, get_optimizer, default_optimizer
from nnengine.schedules import (Constant, InverseTimeDecay, PiecewiseConstant,
                                get_schedule, default_learning_rate)
from nnengine.initializers import (Zeros, Uniform, UniformSigned, GlorotUniform,
                                   HeNormal, get_initializer)
from nnengine.exceptions import DimensionMismatchError


@pytest.fixture
def param():
    return Matrix([[1.0, -2.0], [3.0, 0.5]])


class TestOptimizers:
    """Update rules of the per-tensor optimizers."""

    @pytest.mark.parametrize('optimizer', [SGD(0.1), Momentum(0.1), Adam(0.1)])
    def test_zero_gradient_is_idempotent(self, optimizer, param):
        optimizer = optimizer.fresh()
        zeros = Matrix.zeros(*param.shape)

        assert optimizer.update(0, param, zeros) == param

    def test_sgd_step(self, param):
        grad = Matrix.constant(2, 2, 1.0)
        updated = SGD(0.5).update(0, param, grad)

        assert updated.to_row_leading() == [[0.5, -2.5], [2.5, 0.0]]

    def test_momentum_accumulates_velocity(self):
        optimizer = Momentum(0.1, momentum=0.9)
        param = Matrix([[0.0]])
        grad = Matrix([[1.0]])

        param = optimizer.update(0, param, grad)
        assert param.index(0, 0) == pytest.approx(-0.1)

        # v = 0.9 * 0.1 + 0.1
        param = optimizer.update(1, param, grad)
        assert param.index(0, 0) == pytest.approx(-0.1 - 0.19)

    def test_adam_first_step_is_lr_sized(self):
        optimizer = Adam(0.01)
        param = Matrix([[0.0, 0.0]])
        grad = Matrix([[5.0, -0.001]])

        updated = optimizer.update(0, param, grad)

        # Bias corrected m_hat / sqrt(v_hat) = sign(g) on the first step
        np.testing.assert_allclose(updated.view(), [[-0.01, 0.01]], rtol=1e-4)

    def test_adam_constant_bias_correction(self):
        optimizer = Adam(0.01, bias_correction='constant')
        grad = Matrix([[1.0]])

        updated = optimizer.update(5, Matrix([[0.0]]), grad)

        # m_hat = 1, v_hat = 1 whatever the epoch on the first step
        assert updated.index(0, 0) == pytest.approx(-0.01, rel=1e-6)

    def test_adam_invalid_bias_correction(self):
        with pytest.raises(ValueError):
            Adam(bias_correction='step')

    def test_shape_mismatch(self, param):
        with pytest.raises(DimensionMismatchError):
            SGD(0.1).update(0, param, Matrix.zeros(1, 2))

    def test_state_shape_mismatch(self):
        optimizer = Momentum(0.1)
        optimizer.update(0, Matrix.zeros(2, 2), Matrix.zeros(2, 2))

        with pytest.raises(DimensionMismatchError):
            optimizer.update(1, Matrix.zeros(3, 1), Matrix.zeros(3, 1))

    def test_fresh_drops_state(self):
        optimizer = Momentum(0.1)
        optimizer.update(0, Matrix([[0.0]]), Matrix([[1.0]]))

        clone = optimizer.fresh()
        assert clone._velocity is None
        assert optimizer._velocity is not None
        assert clone.momentum == optimizer.momentum

    def test_learning_rate_schedule(self):
        optimizer = SGD(PiecewiseConstant([1], [1.0, 0.1]))
        param = Matrix([[0.0]])
        grad = Matrix([[1.0]])

        assert optimizer.update(0, param, grad).index(0, 0) == pytest.approx(-1.0)
        assert optimizer.update(1, param, grad).index(0, 0) == pytest.approx(-0.1)


class TestOptimizerRegistry:
    """Tests for get_optimizer."""

    def test_by_name(self):
        assert isinstance(get_optimizer('adam'), Adam)
        assert isinstance(get_optimizer('Momentum', momentum=0.5), Momentum)

    def test_none_is_sgd(self):
        assert isinstance(get_optimizer(None), SGD)

    def test_instance_is_copied(self):
        prototype = Adam(0.01)
        optimizer = get_optimizer(prototype)

        assert optimizer is not prototype
        assert optimizer.get_lr(0) == 0.01

    def test_unknown(self):
        with pytest.raises(ValueError, match="Available"):
            get_optimizer('rmsprop')

    def test_default(self):
        optimizer = default_optimizer()
        assert isinstance(optimizer, SGD)
        assert optimizer.get_lr(0) == 0.001


class TestSchedules:
    """Tests for learning rate schedules."""

    def test_constant(self):
        schedule = Constant(0.05)
        assert schedule(0) == schedule(1000) == 0.05

    def test_default(self):
        assert default_learning_rate()(0) == 0.001

    def test_inverse_time_decay(self):
        schedule = InverseTimeDecay(0.1, decay_steps=10, decay_rate=1.0)

        assert schedule(0) == pytest.approx(0.1)
        assert schedule(5) == pytest.approx(0.1 / 1.5)
        assert schedule(10) == pytest.approx(0.05)

    def test_inverse_time_decay_staircase(self):
        schedule = InverseTimeDecay(0.1, decay_steps=10, decay_rate=1.0, staircase=True)

        assert schedule(9) == pytest.approx(0.1)
        assert schedule(10) == pytest.approx(0.05)

    def test_piecewise_constant(self):
        schedule = PiecewiseConstant([10, 20], [0.1, 0.01, 0.001])

        assert schedule(0) == 0.1
        assert schedule(9) == 0.1
        assert schedule(10) == 0.01
        assert schedule(25) == 0.001

    def test_piecewise_constant_lengths(self):
        with pytest.raises(ValueError):
            PiecewiseConstant([10, 20], [0.1, 0.01])

    def test_get_schedule(self):
        assert isinstance(get_schedule(0.1), Constant)
        assert get_schedule('inverse_time_decay', initial_learning_rate=1.0,
                            decay_steps=1, decay_rate=1.0)(1) == 0.5
        with pytest.raises(ValueError):
            get_schedule('cosine')

    def test_to_dict(self):
        assert Constant(0.1).to_dict() == {'type': 'constant', 'learning_rate': 0.1}


class TestInitializers:
    """Tests for parameter initializers."""

    @pytest.fixture
    def rng(self):
        return np.random.default_rng(0)

    def test_matrix_shape(self, rng):
        weights = GlorotUniform().gen_matrix(4, 3, rng)
        assert weights.shape == (3, 4)

    def test_vector_shape(self, rng):
        assert Zeros().gen_vector(5, rng).shape == (5, 1)

    def test_ranges(self, rng):
        assert Uniform().gen_matrix(20, 20, rng).min() >= 0.0
        signed = UniformSigned().gen_matrix(20, 20, rng)
        assert -1.0 <= signed.min() < 0.0 < signed.max() < 1.0

        limit = np.sqrt(6.0 / (20 + 30))
        glorot = GlorotUniform().gen_matrix(20, 30, rng)
        assert -limit <= glorot.min() and glorot.max() <= limit

    def test_he_normal_scale(self, rng):
        weights = HeNormal().gen_matrix(200, 200, rng).view()
        assert np.std(weights) == pytest.approx(np.sqrt(2.0 / 200), rel=0.05)

    def test_seeded_generators_repeat(self):
        a = GlorotUniform().gen_matrix(3, 3, np.random.default_rng(1))
        b = GlorotUniform().gen_matrix(3, 3, np.random.default_rng(1))
        assert a == b

    def test_registry(self):
        assert isinstance(get_initializer('xavier'), GlorotUniform)
        assert isinstance(get_initializer('he'), HeNormal)
        with pytest.raises(ValueError):
            get_initializer('orthogonal')
