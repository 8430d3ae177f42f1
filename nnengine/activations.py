"""
Activation Functions
====================

Non-linear functions applied by ActivationLayer. Inputs are Matrices of shape
(features, samples).

Element-wise activations (Tanh, Sigmoid, ReLU, Linear) have a diagonal
Jacobian, so the backward pass is simply:

    dE/dX = dE/dY ⊙ f'(X)

Softmax couples all the rows of a column, its Jacobian is not diagonal and it
implements its own backward() with the full per-sample Jacobian.
"""

import numpy as np

from .matrix import Matrix
from .exceptions import DimensionMismatchError


class Activation:
    """Base class for all activation functions."""

    name = 'activation'

    def forward(self, x):
        """Apply activation function."""
        raise NotImplementedError

    def derivative(self, x):
        """Element-wise derivative f'(x)."""
        raise NotImplementedError

    def backward(self, x, output_gradient):
        """Gradient w.r.t. the activation input, given dE/dY."""
        return output_gradient.component_mul(self.derivative(x))

    def __call__(self, x):
        return self.forward(x)

    def __repr__(self):
        return f"{type(self).__name__}()"


class Tanh(Activation):
    """
    Hyperbolic Tangent: f(x) = (e^x - e^-x) / (e^x + e^-x)

    Output range: (-1, 1), zero-centered.

    Derivative:
        f'(x) = 1 - tanh(x)^2
    """

    name = 'tanh'

    def forward(self, x):
        return x.map(np.tanh)

    def derivative(self, x):
        t = self.forward(x)
        return t.square().scalar_mul(-1.0).scalar_add(1.0)


class Sigmoid(Activation):
    """
    Sigmoid: f(x) = 1 / (1 + exp(-x))

    Squashes output to (0, 1). Pair it with BCE for binary targets.

    Derivative:
        f'(x) = f(x) * (1 - f(x))
    """

    name = 'sigmoid'

    def forward(self, x):
        # Clip for numerical stability
        return x.map(lambda a: 1.0 / (1.0 + np.exp(-np.clip(a, -500, 500))))

    def derivative(self, x):
        s = self.forward(x)
        return s.component_mul(s.scalar_mul(-1.0).scalar_add(1.0))


class ReLU(Activation):
    """
    Rectified Linear Unit: f(x) = max(x, 0)

    Derivative:
        f'(x) = sign(x) clamped to {0, 1}, i.e. 1 if x > 0 else 0
    """

    name = 'relu'

    def forward(self, x):
        return x.maxof(0.0)

    def derivative(self, x):
        # sign(0) is +1, so zero has to be excluded explicitly
        return x.map(lambda a: (a > 0).astype(np.float64))


class Linear(Activation):
    """
    Linear (Identity) activation: f(x) = x

    Used for regression output layers.
    """

    name = 'linear'

    def forward(self, x):
        return x

    def derivative(self, x):
        return Matrix.constant(x.nrows, x.ncols, 1.0)


class Softmax(Activation):
    """
    Softmax: f(x_i) = exp(x_i) / sum(exp(x_j)), computed per column.

    Numerical Stability:
        The column max is subtracted before exp to prevent overflow.
        exp(x-c)/sum(exp(x-c)) = exp(x)/sum(exp(x))

    Backward:
        For each sample column s = softmax(x), the Jacobian is
            J = diag(s) - s s^T
        and dE/dx = J · dE/dy (J is symmetric).
    """

    name = 'softmax'

    def forward(self, x):
        def stable_softmax(a):
            shifted = a - np.max(a, axis=0, keepdims=True)
            exp_a = np.exp(shifted)
            return exp_a / np.sum(exp_a, axis=0, keepdims=True)
        return x.map(stable_softmax)

    def derivative(self, x):
        raise NotImplementedError("Softmax has no element-wise derivative, use backward()")

    def jacobian(self, column):
        """Full Jacobian for a single sample column (1-D array)."""
        s = np.asarray(column, dtype=np.float64)
        return np.diag(s) - np.outer(s, s)

    def backward(self, x, output_gradient):
        if x.shape != output_gradient.shape:
            raise DimensionMismatchError('softmax.backward', x.shape, output_gradient.shape)
        s = self.forward(x).view()
        g = output_gradient.view()
        # J·g per column without materialising J: s ⊙ g - s (s·g)
        return Matrix._wrap(s * g - s * np.sum(s * g, axis=0, keepdims=True))


# Alias kept for topologies declared with the long name
HyperbolicTangent = Tanh


# ====================================
# Activation Registry
# ====================================

ACTIVATIONS = {
    'tanh': Tanh,
    'hyperbolic_tangent': HyperbolicTangent,
    'sigmoid': Sigmoid,
    'relu': ReLU,
    'linear': Linear,
    'none': Linear,
    'softmax': Softmax,
}


def get_activation(name):
    """
    Get activation function by name.

    Args:
        name: String name ('relu', 'tanh', etc.), Activation instance or None

    Returns:
        Activation instance

    Example:
        >>> act = get_activation('relu')
        >>> act(Matrix([[-1.0], [2.0]])).to_row_leading()
        [[0.0], [2.0]]
    """
    if isinstance(name, Activation):
        return name

    if name is None:
        return Linear()

    name_lower = name.lower().replace('-', '_')
    if name_lower not in ACTIVATIONS:
        available = ', '.join(ACTIVATIONS.keys())
        raise ValueError(f"Unknown activation '{name}'. Available: {available}")

    return ACTIVATIONS[name_lower]()
