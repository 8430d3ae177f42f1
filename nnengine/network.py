"""
Network
=======

An ordered list of layers, with the forward/backward orchestration and the
mini-batch training loop:

    forward: batch -> layer 0 -> layer 1 -> ... -> prediction
    loss: E = loss(y_true, prediction), dE/dY = loss_prime(y_true, prediction)
    backward: dE/dY -> layer n-1 -> ... -> layer 0, every layer updating
              its own parameters on the way

All batches are column-per-sample Matrices: X is (inputs, n), Y is (outputs, n).
"""

import logging

import numpy as np

from .matrix import Matrix
from .exceptions import DimensionMismatchError
from .losses import get_loss
from .params import NetworkParams

logger = logging.getLogger(__name__)


def as_matrix(data):
    """Accept a Matrix or anything NumPy can read as a 2-D (features, samples) array."""
    if isinstance(data, Matrix):
        return data
    return Matrix(data)


class Network:
    """
    Feed-forward network.

    Args:
        layers: List of Layer objects, in forward order

    Example:
        >>> net = Network([
        ...     FullLayer(DenseLayer(2, 3), 'tanh'),
        ...     FullLayer(DenseLayer(3, 1), 'tanh'),
        ... ])
        >>> loss = net.train(0, x_train, y_train, MSELoss(), batch_size=4)
        >>> preds, avg, std = net.predict_evaluate_many(x_val, y_val, MSELoss())
    """

    def __init__(self, layers):
        self.layers = list(layers)
        self._check_sizes()

    def _check_sizes(self):
        previous = None
        for layer in self.layers:
            input_size = getattr(layer, 'input_size', None)
            if previous is not None and input_size is not None and input_size != previous:
                raise DimensionMismatchError('Network', (previous,), (input_size,))
            output_size = getattr(layer, 'output_size', None)
            if output_size is not None:
                previous = output_size

    # ------------------------------------------------------------------
    # Forward / backward
    # ------------------------------------------------------------------

    def forward(self, x, training=False):
        """
        Forward pass through the network.

        Args:
            x: Input Matrix, shape (inputs, n)
            training: Whether in training mode (enables dropout)

        Returns:
            Output Matrix, shape (outputs, n)
        """
        output = as_matrix(x)
        for layer in self.layers:
            output = layer.forward(output, training=training)
        return output

    def backward(self, epoch, output_gradient):
        """
        Backward pass through the network.

        Propagates the gradient backwards through each layer; every layer
        updates its parameters with its own optimizers.

        Args:
            epoch: Current epoch, passed to the optimizers
            output_gradient: dE/dY, shape (outputs, n)

        Returns:
            Gradient w.r.t. the network input, shape (inputs, n)
        """
        grad = output_gradient
        for layer in reversed(self.layers):
            grad = layer.backward(epoch, grad)
        return grad

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def train(self, epoch, x_train, y_train, loss, batch_size=None):
        """
        Train for one pass over the given samples.

        The samples are cut into contiguous chunks of `batch_size` columns.
        Every chunk runs forward, loss and backward. The returned loss is the
        mean of the chunk losses: a trailing partial chunk weighs as much as
        a full one.

        Args:
            epoch: Current epoch
            x_train: Inputs, shape (inputs, n)
            y_train: Targets, shape (outputs, n)
            loss: Loss instance or name
            batch_size: Samples per chunk (default: all samples)

        Returns:
            Average chunk loss
        """
        x_train = as_matrix(x_train)
        y_train = as_matrix(y_train)
        loss = get_loss(loss)

        n_samples = x_train.ncols
        if y_train.ncols != n_samples:
            raise DimensionMismatchError('Network.train', x_train.shape, y_train.shape)
        if n_samples == 0:
            raise ValueError("Cannot train on an empty dataset")

        batch_size = batch_size or n_samples
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")

        error = 0.0
        n_batches = 0
        for start in range(0, n_samples, batch_size):
            end = min(start + batch_size, n_samples)
            x_batch = x_train.slice_columns(start, end)
            y_batch = y_train.slice_columns(start, end)

            pred = self.forward(x_batch, training=True)
            error += loss.loss(y_batch, pred)

            self.backward(epoch, loss.loss_prime(y_batch, pred))
            n_batches += 1

        error /= n_batches
        logger.debug("epoch %d: trained %d batches, loss %.6f", epoch, n_batches, error)
        return error

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------

    def predict(self, x):
        """
        Predict a single sample.

        Args:
            x: Sequence of inputs, length `inputs`

        Returns:
            List of outputs
        """
        return self.forward(Matrix.from_column_vector(x), training=False).get_column(0)

    def predict_many(self, x, batch_size=None):
        """
        Predict many samples with dropout disabled.

        Args:
            x: Inputs, shape (inputs, n)
            batch_size: Samples per forward pass (default: all samples)

        Returns:
            Predictions Matrix, shape (outputs, n)
        """
        x = as_matrix(x)
        n_samples = x.ncols
        batch_size = batch_size or max(n_samples, 1)

        chunks = [self.forward(x.slice_columns(start, min(start + batch_size, n_samples)),
                               training=False)
                  for start in range(0, n_samples, batch_size)]
        return Matrix.hstack(chunks)

    def predict_evaluate(self, x, y, loss):
        """
        Predict a single sample and compute its loss.

        Returns:
            (predictions list, loss)
        """
        loss = get_loss(loss)
        preds = self.predict(x)
        value = loss.loss(Matrix.from_column_vector(y), Matrix.from_column_vector(preds))
        return preds, value

    def predict_evaluate_many(self, x, y, loss, batch_size=None):
        """
        Predict many samples and evaluate them one by one.

        Args:
            x: Inputs, shape (inputs, n)
            y: Targets, shape (outputs, n)
            loss: Loss instance or name
            batch_size: Samples per forward pass (default: all samples)

        Returns:
            Tuple of:
            - predictions Matrix, shape (outputs, n)
            - mean of the per-sample losses
            - standard deviation of the per-sample losses
        """
        x = as_matrix(x)
        y = as_matrix(y)
        loss = get_loss(loss)
        if x.ncols != y.ncols:
            raise DimensionMismatchError('Network.predict_evaluate_many', x.shape, y.shape)

        preds = self.predict_many(x, batch_size)
        losses = loss.loss_per_sample(y, preds)

        return preds, float(np.mean(losses)), float(np.std(losses))

    # ------------------------------------------------------------------
    # Parameters
    # ------------------------------------------------------------------

    def learnable_layers(self):
        return [layer for layer in self.layers if layer.is_learnable()]

    def get_params(self):
        """Snapshot of every learnable layer's parameters, in layer order."""
        return NetworkParams([layer.get_learnable_parameters()
                              for layer in self.learnable_layers()])

    def load_params(self, params):
        """Load a NetworkParams snapshot taken from a network of the same topology."""
        layers = self.learnable_layers()
        if len(params) != len(layers):
            raise DimensionMismatchError('Network.load_params', (len(layers),), (len(params),))
        for layer, layer_params in zip(layers, params):
            layer.set_learnable_parameters(layer_params)

    def count_parameters(self):
        return sum(layer.count_parameters() for layer in self.layers)

    def summary(self):
        """Print model summary."""
        print("\n" + "=" * 70)
        print("Network Summary")
        print("=" * 70)

        total_params = 0
        for i, layer in enumerate(self.layers):
            n_params = layer.count_parameters()
            total_params += n_params
            print(f"{i:3d}. {str(layer):<50} Params: {n_params:,}")

        print("-" * 70)
        print(f"Total trainable parameters: {total_params:,}")
        print("=" * 70 + "\n")

        return total_params

    def save(self, filepath):
        """
        Save learnable parameters to file.

        Args:
            filepath: Path to save file (.npz)
        """
        arrays = {}
        for i, layer_params in enumerate(self.get_params()):
            arrays[f'layer_{i}'] = np.asarray(layer_params, dtype=np.float64)

        np.savez(filepath, **arrays)
        logger.info("Network saved to %s", filepath)

    def load(self, filepath):
        """
        Load learnable parameters saved by save().

        Args:
            filepath: Path to saved parameters (.npz)
        """
        with np.load(filepath) as data:
            n_layers = len(data.files)
            params = NetworkParams([data[f'layer_{i}'].tolist() for i in range(n_layers)])

        self.load_params(params)
        logger.info("Network loaded from %s", filepath)

    def __len__(self):
        return len(self.layers)

    def __repr__(self):
        return f"Network({self.layers!r})"
