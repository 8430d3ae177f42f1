"""
Layers
======

The learnable building blocks of a Network. Each layer implements a forward
and a backward pass and updates its own parameters during backward.

Data layout: inputs are Matrices of shape (i, n), i features by n samples.
Outputs are (j, n).

Layer lifecycle:
    forward(input)              caches the input
    backward(epoch, dE/dY)      uses the cached input, updates the
                                parameters through the layer's optimizers
                                and returns dE/dX

Calling backward() without a preceding forward() raises LayerStateError.

Layers implemented:
- DenseLayer: affine transform Y = W·X + B
- ActivationLayer: element-wise non-linearity (or Softmax)
- FullLayer: Dense (or Conv) -> Activation, with optional dropout
- SkipLayer: identity
"""

import numpy as np

from .matrix import Matrix
from .activations import Softmax, get_activation
from .exceptions import DimensionMismatchError, LayerStateError
from .initializers import (default_biases_initializer, default_weights_initializer,
                           get_initializer)
from .optimizers import default_optimizer, get_optimizer


class Layer:
    """Base class for all layers."""

    def __init__(self):
        self.params = {}    # Trainable parameters (Matrices)
        self.grads = {}     # Gradients of the last backward pass
        self.cache = {}

    def forward(self, input, training=False):
        """Forward pass."""
        raise NotImplementedError

    def backward(self, epoch, output_gradient):
        """Backward pass. Returns the gradient w.r.t. the layer input."""
        raise NotImplementedError

    def __call__(self, input, training=False):
        return self.forward(input, training)

    def _cached(self, key):
        if key not in self.cache:
            raise LayerStateError(
                f"{type(self).__name__}.backward() called without a prior forward()"
            )
        return self.cache.pop(key)

    # Learnable parameters are exported column-leading: one list per column.
    # Parameterless layers export None.

    def get_learnable_parameters(self):
        return None

    def set_learnable_parameters(self, params):
        if params is not None:
            raise ValueError(f"{type(self).__name__} has no learnable parameters")

    def is_learnable(self):
        return bool(self.params)

    def count_parameters(self):
        return sum(p.nrows * p.ncols for p in self.params.values())


class DenseLayer(Layer):
    """
    Fully Connected (Dense) Layer.

    Each output is connected to every input.

    Args:
        i: Number of inputs
        j: Number of outputs
        weights_optimizer: Optimizer for W (default: SGD, lr 0.001)
        biases_optimizer: Optimizer for B (default: SGD, lr 0.001)
        weights_initializer: Initializer for W (default: GlorotUniform)
        biases_initializer: Initializer for B (default: Zeros)
        rng: numpy Generator used by the initializers

    Forward:
        Y = W·X + B, B broadcast over the n samples

    Backward:
        dE/dW = dE/dY · X^T
        dE/dB = columns_sum(dE/dY)
        dE/dX = W^T · dE/dY
    """

    def __init__(self, i, j, weights_optimizer=None, biases_optimizer=None,
                 weights_initializer=None, biases_initializer=None, rng=None):
        super().__init__()

        self.input_size = i
        self.output_size = j

        weights_initializer = get_initializer(weights_initializer or default_weights_initializer())
        biases_initializer = get_initializer(biases_initializer or default_biases_initializer())

        # (j, i) connection weights and (j, 1) biases
        self.params['weights'] = weights_initializer.gen_matrix(i, j, rng)
        self.params['biases'] = biases_initializer.gen_vector(j, rng)

        self.weights_optimizer = get_optimizer(weights_optimizer or default_optimizer())
        self.biases_optimizer = get_optimizer(biases_optimizer or default_optimizer())

    @property
    def weights(self):
        return self.params['weights']

    @weights.setter
    def weights(self, value):
        if value.shape != self.params['weights'].shape:
            raise DimensionMismatchError('set weights', self.params['weights'].shape, value.shape)
        self.params['weights'] = value

    @property
    def biases(self):
        return self.params['biases']

    @biases.setter
    def biases(self, value):
        if value.shape != self.params['biases'].shape:
            raise DimensionMismatchError('set biases', self.params['biases'].shape, value.shape)
        self.params['biases'] = value

    def forward(self, input, training=False):
        """Forward pass: Y = W·X + B"""
        if input.nrows != self.input_size:
            raise DimensionMismatchError('DenseLayer.forward', (self.input_size, '*'), input.shape)

        self.cache['x'] = input
        return self.weights.dot(input).add_column_vector(self.biases)

    def compute_gradients(self, output_gradient):
        """Gradients w.r.t. W, B and X without touching the parameters."""
        x = self._cached('x')
        if output_gradient.shape != (self.output_size, x.ncols):
            raise DimensionMismatchError('DenseLayer.backward',
                                         (self.output_size, x.ncols), output_gradient.shape)

        self.grads['weights'] = output_gradient.dot(x.transpose())
        self.grads['biases'] = output_gradient.columns_sum()

        return self.weights.transpose().dot(output_gradient)

    def backward(self, epoch, output_gradient):
        input_gradient = self.compute_gradients(output_gradient)

        self.params['weights'] = self.weights_optimizer.update(
            epoch, self.weights, self.grads['weights'])
        self.params['biases'] = self.biases_optimizer.update(
            epoch, self.biases, self.grads['biases'])

        return input_gradient

    def map_weights(self, f):
        self.params['weights'] = self.weights.map(f)

    def get_learnable_parameters(self):
        """Columns of the (j, i) weights followed by the (j) biases column."""
        params = self.weights.to_column_leading()
        params.append(self.biases.get_column(0))
        return params

    def set_learnable_parameters(self, params):
        columns = [list(c) for c in params]
        biases = columns.pop()
        self.weights = Matrix.from_column_leading(columns)
        self.biases = Matrix.from_column_vector(biases)

    def __repr__(self):
        return f"DenseLayer({self.input_size}, {self.output_size})"


class ActivationLayer(Layer):
    """
    Activation layer wrapper.

    Applies an activation function as a layer. i inputs = i outputs.

    Backward:
        element-wise activations: dE/dX = dE/dY ⊙ f'(X)
        softmax: dE/dX = J_softmax · dE/dY, per sample column
    """

    def __init__(self, activation='tanh'):
        super().__init__()
        self.activation = get_activation(activation)

    def forward(self, input, training=False):
        """Apply activation function."""
        self.cache['x'] = input
        return self.activation.forward(input)

    def backward(self, epoch, output_gradient):
        x = self._cached('x')
        if x.shape != output_gradient.shape:
            raise DimensionMismatchError('ActivationLayer.backward', x.shape, output_gradient.shape)
        return self.activation.backward(x, output_gradient)

    @property
    def is_softmax(self):
        return isinstance(self.activation, Softmax)

    def __repr__(self):
        return f"ActivationLayer({self.activation.name})"


class FullLayer(Layer):
    """
    Dense (or Conv) sublayer followed by an activation, with optional dropout.

    Dropout (https://jmlr.org/papers/volume15/srivastava14a/srivastava14a.pdf):
        training: every input unit is zeroed with probability `dropout`,
                  surviving units are left unscaled; the same mask is applied
                  to the input gradient returned by backward()
        inference: the sublayer sees its input scaled by (1 - dropout), which
                   is the same as scaling its weights by (1 - dropout)

    Args:
        dense: DenseLayer or ConvLayer
        activation: ActivationLayer, Activation or activation name
        dropout: Dropout rate in [0, 1), or None to disable
        rng: numpy Generator used to draw dropout masks
    """

    def __init__(self, dense, activation, dropout=None, rng=None):
        super().__init__()
        if dropout is not None and not 0.0 <= dropout < 1.0:
            raise ValueError(f"dropout must be in [0, 1), got {dropout}")

        self.dense = dense
        if not isinstance(activation, ActivationLayer):
            activation = ActivationLayer(activation)
        self.activation = activation
        self.dropout_rate = dropout
        self.rng = rng if rng is not None else np.random.default_rng()

        # Parameters are shared with the sublayer
        self.params = dense.params
        self.grads = dense.grads

    @property
    def input_size(self):
        return self.dense.input_size

    @property
    def output_size(self):
        return self.dense.output_size

    def generate_dropout_mask(self, shape):
        """1 = keep, 0 = drop."""
        return Matrix._wrap((self.rng.random(shape) > self.dropout_rate).astype(np.float64))

    def forward(self, input, training=False):
        self.cache.pop('mask', None)

        if self.dropout_rate:
            if training:
                mask = self.generate_dropout_mask(input.shape)
                input = input.component_mul(mask)
                self.cache['mask'] = mask
            else:
                input = input.scalar_mul(1.0 - self.dropout_rate)

        output = self.dense.forward(input, training)
        return self.activation.forward(output, training)

    def backward(self, epoch, output_gradient):
        activation_input_gradient = self.activation.backward(epoch, output_gradient)
        input_gradient = self.dense.backward(epoch, activation_input_gradient)

        mask = self.cache.pop('mask', None)
        if mask is not None:
            input_gradient = input_gradient.component_mul(mask)
        return input_gradient

    def get_learnable_parameters(self):
        return self.dense.get_learnable_parameters()

    def set_learnable_parameters(self, params):
        self.dense.set_learnable_parameters(params)

    def __repr__(self):
        dropout = f", dropout={self.dropout_rate}" if self.dropout_rate else ""
        return f"FullLayer({self.dense!r}, {self.activation.activation.name}{dropout})"


class SkipLayer(Layer):
    """Identity layer: passes inputs and gradients through unchanged."""

    def __init__(self, size=None):
        super().__init__()
        self.input_size = size
        self.output_size = size

    def forward(self, input, training=False):
        if self.input_size is not None and input.nrows != self.input_size:
            raise DimensionMismatchError('SkipLayer.forward', (self.input_size, '*'), input.shape)
        self.cache['x'] = True
        return input

    def backward(self, epoch, output_gradient):
        self._cached('x')
        return output_gradient

    def __repr__(self):
        return f"SkipLayer({self.input_size})"
