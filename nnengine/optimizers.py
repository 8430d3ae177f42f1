"""
Optimizers
==========

Optimizers update a learnable parameter matrix given its gradient.

Unlike optimizers that walk every layer of a model, each instance here is
attached to ONE parameter tensor (a layer's weights, or its biases) and keeps
that tensor's hidden state (velocity, moment estimates). Layers call:

    new_param = optimizer.update(epoch, param, grad)

The epoch is passed in rather than counted internally, so the learning rate
schedule (and Adam's bias correction) only depend on the epoch index.

This module implements:
- SGD: plain gradient descent
- Momentum: gradient descent with a velocity term
- Adam: adaptive per-parameter step sizes
"""

import copy

from .matrix import Matrix
from .exceptions import DimensionMismatchError
from .schedules import default_learning_rate, get_schedule


class Optimizer:
    """Base class for per-tensor optimizers."""

    name = 'optimizer'

    def __init__(self, learning_rate=None):
        if learning_rate is None:
            learning_rate = default_learning_rate()
        self.learning_rate = get_schedule(learning_rate)

    def update(self, epoch, parameter, gradient):
        """Return the updated parameter matrix."""
        raise NotImplementedError

    def get_lr(self, epoch):
        """Learning rate used at `epoch`."""
        return self.learning_rate.get_learning_rate(epoch)

    def reset(self):
        """Reset optimizer state."""

    def fresh(self):
        """Copy with the same hyperparameters and an empty state."""
        clone = copy.copy(self)
        clone.reset()
        return clone

    @staticmethod
    def _check_shapes(parameter, gradient):
        if parameter.shape != gradient.shape:
            raise DimensionMismatchError('optimizer.update', parameter.shape, gradient.shape)

    def __repr__(self):
        return f"{type(self).__name__}(lr={self.learning_rate!r})"


class SGD(Optimizer):
    """
    Stochastic Gradient Descent.

    Update:
        param = param - lr(epoch) * grad
    """

    name = 'sgd'

    def update(self, epoch, parameter, gradient):
        self._check_shapes(parameter, gradient)
        lr = self.get_lr(epoch)
        return parameter.component_sub(gradient.scalar_mul(lr))


class Momentum(Optimizer):
    """
    Gradient descent with momentum.

    Update:
        v = momentum * v + lr(epoch) * grad
        param = param - v

    Args:
        learning_rate: Schedule or constant (default: Constant(0.001))
        momentum: Velocity decay factor (default: 0.9)
    """

    name = 'momentum'

    def __init__(self, learning_rate=None, momentum=0.9):
        super().__init__(learning_rate)
        self.momentum = momentum
        self._velocity = None

    def update(self, epoch, parameter, gradient):
        self._check_shapes(parameter, gradient)
        lr = self.get_lr(epoch)

        v = self._state(self._velocity, gradient)
        v = v.scalar_mul(self.momentum).component_add(gradient.scalar_mul(lr))
        self._velocity = v

        return parameter.component_sub(v)

    @staticmethod
    def _state(state, gradient):
        if state is None:
            return Matrix.zeros(gradient.nrows, gradient.ncols)
        if state.shape != gradient.shape:
            raise DimensionMismatchError('momentum state', state.shape, gradient.shape)
        return state

    def reset(self):
        self._velocity = None


class Adam(Optimizer):
    """
    Adam (Adaptive Moment Estimation) optimizer.

    Update:
        m = beta1 * m + (1 - beta1) * g
        v = beta2 * v + (1 - beta2) * g^2
        m_hat, v_hat = bias corrected m, v
        param = param - lr(epoch) * m_hat / (sqrt(v_hat) + epsilon)

    Bias correction:
        'epoch' (default): divide by (1 - beta^t) with t = epoch + 1
        'constant': divide by (1 - beta), which keeps the early steps as
            large as the late ones; kept to reproduce older training runs

    Args:
        learning_rate: Schedule or constant (default: Constant(0.001))
        beta1: Decay rate for first moment (default: 0.9)
        beta2: Decay rate for second moment (default: 0.999)
        epsilon: Small constant for numerical stability (default: 1e-8)
        bias_correction: 'epoch' or 'constant'
    """

    name = 'adam'

    def __init__(self, learning_rate=None, beta1=0.9, beta2=0.999,
                 epsilon=1e-8, bias_correction='epoch'):
        super().__init__(learning_rate)
        if bias_correction not in ('epoch', 'constant'):
            raise ValueError(f"bias_correction must be 'epoch' or 'constant', got {bias_correction!r}")
        self.beta1 = beta1
        self.beta2 = beta2
        self.epsilon = epsilon
        self.bias_correction = bias_correction
        self._m = None
        self._v = None

    def _correction(self, epoch):
        if self.bias_correction == 'constant':
            return 1.0 - self.beta1, 1.0 - self.beta2
        t = epoch + 1
        return 1.0 - self.beta1 ** t, 1.0 - self.beta2 ** t

    def update(self, epoch, parameter, gradient):
        self._check_shapes(parameter, gradient)
        alpha = self.get_lr(epoch)

        m = Momentum._state(self._m, gradient)
        v = Momentum._state(self._v, gradient)

        # Update biased first moment estimate
        m = m.scalar_mul(self.beta1).component_add(gradient.scalar_mul(1.0 - self.beta1))
        # Update biased second raw moment estimate
        v = v.scalar_mul(self.beta2).component_add(gradient.square().scalar_mul(1.0 - self.beta2))

        self._m = m
        self._v = v

        c1, c2 = self._correction(epoch)
        m_hat = m.scalar_div(c1)
        v_hat = v.scalar_div(c2)

        step = m_hat.scalar_mul(alpha).component_div(v_hat.sqrt().scalar_add(self.epsilon))
        return parameter.component_sub(step)

    def reset(self):
        self._m = None
        self._v = None


# Optimizer registry
OPTIMIZERS = {
    'sgd': SGD,
    'momentum': Momentum,
    'adam': Adam,
}


def get_optimizer(name, **kwargs):
    """
    Get optimizer by name.

    Args:
        name: 'sgd', 'momentum' or 'adam', or an Optimizer instance
        **kwargs: Arguments to pass to optimizer

    Returns:
        Optimizer instance. An instance passed in is returned as a fresh copy,
        so that it can safely be shared as a prototype between tensors.
    """
    if isinstance(name, Optimizer):
        return name.fresh()

    if name is None:
        name = 'sgd'

    name_lower = name.lower()
    if name_lower not in OPTIMIZERS:
        raise ValueError(f"Unknown optimizer '{name}'. Available: {list(OPTIMIZERS.keys())}")

    return OPTIMIZERS[name_lower](**kwargs)


def default_optimizer():
    return SGD(default_learning_rate())
