"""
Loss Functions
==============

Loss functions measure how wrong the network's predictions are.

Each loss implements:
- loss(y_true, y_pred): scalar error for a batch
- loss_prime(y_true, y_pred): dE/dY, the gradient fed into the output layer's backward()
- loss_per_sample(y_true, y_pred): one error per sample column, used for validation statistics

Both arguments are Matrices of shape (outputs, samples).
"""

import numpy as np

from .matrix import Matrix
from .exceptions import DimensionMismatchError, NumericDomainError


class Loss:
    """Base class for loss functions."""

    name = 'loss'

    def loss(self, y_true, y_pred):
        """Compute loss value."""
        raise NotImplementedError

    def loss_prime(self, y_true, y_pred):
        """Compute gradient of loss w.r.t. predictions."""
        raise NotImplementedError

    def loss_per_sample(self, y_true, y_pred):
        """Loss of every column taken on its own, as a 1-D array."""
        self._check_shapes(y_true, y_pred)
        return np.array([
            self.loss(y_true.slice_columns(j, j + 1), y_pred.slice_columns(j, j + 1))
            for j in range(y_true.ncols)
        ])

    def __call__(self, y_true, y_pred):
        return self.loss(y_true, y_pred)

    def _check_shapes(self, y_true, y_pred):
        if y_true.shape != y_pred.shape:
            raise DimensionMismatchError(self.name, y_true.shape, y_pred.shape)

    def __repr__(self):
        return f"{type(self).__name__}()"


class MSELoss(Loss):
    """
    Mean Squared Error Loss for regression.

    Formula: L = mean((y_pred - y_true)^2)

    Gradient: dL/dy_pred = 2 * (y_pred - y_true) / J, J being the output width
    """

    name = 'mse'

    def loss(self, y_true, y_pred):
        self._check_shapes(y_true, y_pred)
        return y_pred.component_sub(y_true).square().mean()

    def loss_prime(self, y_true, y_pred):
        self._check_shapes(y_true, y_pred)
        return y_pred.component_sub(y_true).scalar_mul(2.0).scalar_div(y_true.nrows)

    def loss_per_sample(self, y_true, y_pred):
        self._check_shapes(y_true, y_pred)
        diff = y_pred.view() - y_true.view()
        return np.mean(diff ** 2, axis=0)


class BinaryCrossEntropyLoss(Loss):
    """
    Binary Cross-Entropy for binary classification.

    Formula: L = -mean(y*log(p) + (1-y)*log(1-p))

    Gradient: dL/dp = ((1-y)/(1-p) - y/p) / N

    Predictions must lie strictly inside (0, 1): pair this loss with a Sigmoid
    or Softmax output layer. No clipping is applied, a prediction of exactly
    0 or 1 raises NumericDomainError.
    """

    name = 'bce'

    def _check_domain(self, y_pred):
        p = y_pred.view()
        if np.any(p <= 0.0) or np.any(p >= 1.0):
            raise NumericDomainError(
                f"BCE requires predictions strictly inside (0, 1), "
                f"got range [{p.min()}, {p.max()}]"
            )

    def loss(self, y_true, y_pred):
        self._check_shapes(y_true, y_pred)
        self._check_domain(y_pred)
        ones = Matrix.constant(y_true.nrows, y_true.ncols, 1.0)
        log_likelihood = y_true.component_mul(y_pred.log()).component_add(
            ones.component_sub(y_true).component_mul(ones.component_sub(y_pred).log())
        )
        return -log_likelihood.mean()

    def loss_prime(self, y_true, y_pred):
        self._check_shapes(y_true, y_pred)
        self._check_domain(y_pred)
        ones = Matrix.constant(y_true.nrows, y_true.ncols, 1.0)
        return (ones.component_sub(y_true)
                .component_div(ones.component_sub(y_pred))
                .component_sub(y_true.component_div(y_pred))
                .scalar_div(y_pred.nrows))

    def loss_per_sample(self, y_true, y_pred):
        self._check_shapes(y_true, y_pred)
        self._check_domain(y_pred)
        y, p = y_true.view(), y_pred.view()
        return -np.mean(y * np.log(p) + (1 - y) * np.log(1 - p), axis=0)


# ============================================================================
# Loss Registry
# ============================================================================

LOSSES = {
    'mse': MSELoss,
    'mean_squared_error': MSELoss,
    'bce': BinaryCrossEntropyLoss,
    'binary_crossentropy': BinaryCrossEntropyLoss,
}


def get_loss(name):
    """
    Get loss function by name.

    Args:
        name: String name or Loss instance

    Returns:
        Loss instance
    """
    if isinstance(name, Loss):
        return name

    name_lower = name.lower().replace('-', '_').replace(' ', '_')
    if name_lower not in LOSSES:
        available = ', '.join(sorted(set(LOSSES.keys())))
        raise ValueError(f"Unknown loss '{name}'. Available: {available}")

    return LOSSES[name_lower]()
