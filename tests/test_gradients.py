"""
Gradient Checking Tests
=======================

Verify analytical gradients match numerical approximations.
This is THE most important test for ensuring backpropagation is correct.

Method: Centered finite differences
    f'(x) ≈ (f(x + ε) - f(x - ε)) / (2ε)

We compare:
    - Analytical gradient: computed by compute_gradients() / backward()
    - Numerical gradient: finite difference approximation

The scalar being differentiated is sum(output ⊙ G) for a fixed random G, so
its gradient w.r.t. the output is exactly G.
"""

import numpy as np
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from nnengine.matrix import Matrix
from nnengine.layers import DenseLayer, ActivationLayer, FullLayer
from nnengine.vision import ConvLayer, AvgPoolLayer
from nnengine.activations import Tanh, Sigmoid, ReLU, Softmax
from nnengine.losses import MSELoss, BinaryCrossEntropyLoss
from nnengine.network import Network
from nnengine.optimizers import SGD


def numerical_gradient(f, x, epsilon=1e-5):
    """
    Compute numerical gradient using centered finite differences.

    Args:
        f: Function that takes x and returns scalar loss
        x: Point at which to compute gradient (ndarray, perturbed in place)
        epsilon: Small perturbation

    Returns:
        Numerical gradient, same shape as x
    """
    grad = np.zeros_like(x)

    it = np.nditer(x, flags=['multi_index'])
    while not it.finished:
        idx = it.multi_index

        x[idx] += epsilon
        loss_plus = f(x)

        x[idx] -= 2 * epsilon
        loss_minus = f(x)

        x[idx] += epsilon

        grad[idx] = (loss_plus - loss_minus) / (2 * epsilon)

        it.iternext()

    return grad


def relative_error(analytical, numerical):
    """Maximum relative error across all elements."""
    diff = np.abs(analytical - numerical)
    denom = np.maximum(np.abs(analytical) + np.abs(numerical), 1e-8)
    return np.max(diff / denom)


@pytest.fixture
def rng():
    return np.random.default_rng(42)


class TestDenseGradients:
    """Gradient tests for DenseLayer."""

    def test_weight_gradients(self, rng):
        dense = DenseLayer(4, 3, rng=rng)
        x = Matrix.random_normal(4, 5, 0.0, 1.0, rng)

        output = dense.forward(x)
        grad_output = rng.standard_normal(output.shape)
        dense.compute_gradients(Matrix(grad_output))
        analytical_dW = dense.grads['weights'].to_numpy()

        def loss_fn(W):
            dense.params['weights'] = Matrix(W)
            return np.sum(dense.forward(x).view() * grad_output)

        numerical_dW = numerical_gradient(loss_fn, dense.weights.to_numpy())

        error = relative_error(analytical_dW, numerical_dW)
        assert error < 1e-5, f"Weight gradient error too large: {error}"

    def test_bias_gradients(self, rng):
        dense = DenseLayer(4, 3, rng=rng)
        x = Matrix.random_normal(4, 5, 0.0, 1.0, rng)

        output = dense.forward(x)
        grad_output = rng.standard_normal(output.shape)
        dense.compute_gradients(Matrix(grad_output))
        analytical_db = dense.grads['biases'].to_numpy()

        def loss_fn(b):
            dense.params['biases'] = Matrix(b)
            return np.sum(dense.forward(x).view() * grad_output)

        numerical_db = numerical_gradient(loss_fn, dense.biases.to_numpy())

        error = relative_error(analytical_db, numerical_db)
        assert error < 1e-5, f"Bias gradient error too large: {error}"

    def test_input_gradients(self, rng):
        dense = DenseLayer(4, 3, rng=rng)
        x = rng.standard_normal((4, 5))

        output = dense.forward(Matrix(x))
        grad_output = rng.standard_normal(output.shape)
        analytical_dx = dense.compute_gradients(Matrix(grad_output)).to_numpy()

        def loss_fn(x_in):
            return np.sum(dense.forward(Matrix(x_in)).view() * grad_output)

        numerical_dx = numerical_gradient(loss_fn, x.copy())

        error = relative_error(analytical_dx, numerical_dx)
        assert error < 1e-5, f"Input gradient error too large: {error}"


class TestActivationGradients:
    """Gradient tests for activation layers."""

    @pytest.mark.parametrize('activation', [Tanh(), Sigmoid(), ReLU(), Softmax()])
    def test_input_gradients(self, activation, rng):
        layer = ActivationLayer(activation)
        # Keep ReLU inputs away from the kink at 0
        x = rng.uniform(0.1, 1.0, (4, 3)) * rng.choice([-1.0, 1.0], (4, 3))

        layer.forward(Matrix(x))
        grad_output = rng.standard_normal(x.shape)
        analytical_dx = layer.backward(0, Matrix(grad_output)).to_numpy()

        def loss_fn(x_in):
            return np.sum(activation.forward(Matrix(x_in)).view() * grad_output)

        numerical_dx = numerical_gradient(loss_fn, x.copy())

        error = relative_error(analytical_dx, numerical_dx)
        assert error < 1e-5, f"{activation.name} gradient error too large: {error}"

    def test_softmax_backward_matches_jacobian(self, rng):
        softmax = Softmax()
        x = rng.standard_normal((5, 3))
        g = rng.standard_normal((5, 3))

        backward = softmax.backward(Matrix(x), Matrix(g)).view()
        s = softmax.forward(Matrix(x)).view()

        for j in range(3):
            expected = softmax.jacobian(s[:, j]) @ g[:, j]
            np.testing.assert_allclose(backward[:, j], expected, rtol=1e-10, atol=1e-12)


class TestLossGradients:
    """Gradient tests for loss functions (per-sample convention)."""

    def test_mse_gradients(self, rng):
        loss = MSELoss()
        y_true = Matrix(rng.standard_normal((3, 1)))
        y_pred = rng.standard_normal((3, 1))

        analytical = loss.loss_prime(y_true, Matrix(y_pred)).to_numpy()
        numerical = numerical_gradient(lambda p: loss.loss(y_true, Matrix(p)), y_pred.copy())

        error = relative_error(analytical, numerical)
        assert error < 1e-5, f"MSE gradient error too large: {error}"

    def test_bce_gradients(self, rng):
        loss = BinaryCrossEntropyLoss()
        y_true = Matrix(rng.integers(0, 2, (3, 1)).astype(float))
        y_pred = rng.uniform(0.1, 0.9, (3, 1))

        analytical = loss.loss_prime(y_true, Matrix(y_pred)).to_numpy()
        numerical = numerical_gradient(lambda p: loss.loss(y_true, Matrix(p)), y_pred.copy())

        error = relative_error(analytical, numerical)
        assert error < 1e-5, f"BCE gradient error too large: {error}"


class TestConvGradients:
    """Gradient tests for ConvLayer and AvgPoolLayer."""

    def test_kernel_gradients(self, rng):
        conv = ConvLayer((2, 5, 5), nkern=3, kernel_size=3, padding='same', rng=rng)
        x = Matrix.random_normal(50, 2, 0.0, 1.0, rng)

        output = conv.forward(x)
        grad_output = rng.standard_normal(output.shape)
        conv.compute_gradients(Matrix(grad_output))
        analytical_dK = conv.grads['weights'].to_numpy()

        def loss_fn(K):
            conv.params['weights'] = Matrix(K)
            return np.sum(conv.forward(x).view() * grad_output)

        numerical_dK = numerical_gradient(loss_fn, conv.params['weights'].to_numpy())

        error = relative_error(analytical_dK, numerical_dK)
        assert error < 1e-4, f"Kernel gradient error too large: {error}"

    def test_bias_gradients(self, rng):
        conv = ConvLayer((1, 4, 4), nkern=2, kernel_size=2, rng=rng)
        x = Matrix.random_normal(16, 3, 0.0, 1.0, rng)

        output = conv.forward(x)
        grad_output = rng.standard_normal(output.shape)
        conv.compute_gradients(Matrix(grad_output))
        analytical_db = conv.grads['biases'].to_numpy()

        def loss_fn(b):
            conv.params['biases'] = Matrix(b)
            return np.sum(conv.forward(x).view() * grad_output)

        numerical_db = numerical_gradient(loss_fn, conv.params['biases'].to_numpy())

        error = relative_error(analytical_db, numerical_db)
        assert error < 1e-5, f"Bias gradient error too large: {error}"

    @pytest.mark.parametrize('stride,padding', [(1, 'same'), (2, 'valid'), (1, 1)])
    def test_input_gradients(self, stride, padding, rng):
        conv = ConvLayer((2, 6, 6), nkern=2, kernel_size=3, stride=stride,
                         padding=padding, rng=rng)
        x = rng.standard_normal((72, 2))

        output = conv.forward(Matrix(x))
        grad_output = rng.standard_normal(output.shape)
        analytical_dx = conv.compute_gradients(Matrix(grad_output)).to_numpy()

        def loss_fn(x_in):
            return np.sum(conv.forward(Matrix(x_in)).view() * grad_output)

        numerical_dx = numerical_gradient(loss_fn, x.copy())

        error = relative_error(analytical_dx, numerical_dx)
        assert error < 1e-4, f"Input gradient error too large: {error}"

    def test_avg_pool_input_gradients(self, rng):
        pool = AvgPoolLayer((2, 4, 4), div=2)
        x = rng.standard_normal((32, 2))

        output = pool.forward(Matrix(x))
        grad_output = rng.standard_normal(output.shape)
        analytical_dx = pool.backward(0, Matrix(grad_output)).to_numpy()

        def loss_fn(x_in):
            return np.sum(pool.forward(Matrix(x_in)).view() * grad_output)

        numerical_dx = numerical_gradient(loss_fn, x.copy())

        error = relative_error(analytical_dx, numerical_dx)
        assert error < 1e-5, f"AvgPool gradient error too large: {error}"


class TestEndToEndGradients:
    """Gradient flow through a whole Network."""

    def test_network_input_gradients(self, rng):
        # Learning rate 0 so backward() leaves the parameters untouched
        network = Network([
            FullLayer(DenseLayer(3, 4, SGD(0.0), SGD(0.0), rng=rng), 'tanh'),
            FullLayer(DenseLayer(4, 2, SGD(0.0), SGD(0.0), rng=rng), 'sigmoid'),
        ])
        x = rng.standard_normal((3, 4))

        output = network.forward(Matrix(x))
        grad_output = rng.standard_normal(output.shape)
        analytical_dx = network.backward(0, Matrix(grad_output)).to_numpy()

        def loss_fn(x_in):
            return np.sum(network.forward(Matrix(x_in)).view() * grad_output)

        numerical_dx = numerical_gradient(loss_fn, x.copy())

        error = relative_error(analytical_dx, numerical_dx)
        assert error < 1e-5, f"Network input gradient error too large: {error}"
