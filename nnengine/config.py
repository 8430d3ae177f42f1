"""
Model Configuration
===================

Resolved description of a network and its training hyperparameters.

A LayerSpec describes one layer of the topology; string names for the
activation, optimizer and initializers are resolved through the registries
of their modules. A Model groups the layer specs with the global
hyperparameters (epochs, batch size, loss, seed) and builds fresh Network
instances from them, one per training run or per fold.

Example:
    >>> model = Model(
    ...     layers=[
    ...         LayerSpec(2, 3, activation='tanh', optimizer=SGD(0.1)),
    ...         LayerSpec(3, 1, activation='tanh', optimizer=SGD(0.1)),
    ...     ],
    ...     epochs=1000, batch_size=4, loss='mse', seed=42,
    ... )
    >>> network = model.to_network()
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

import numpy as np

from .exceptions import DimensionMismatchError
from .layers import ActivationLayer, DenseLayer, FullLayer, SkipLayer
from .losses import get_loss
from .network import Network, as_matrix
from .optimizers import get_optimizer
from .vision import AvgPoolLayer, ConvLayer, FullConvLayer

LAYER_KINDS = ('full', 'dense', 'activation', 'skip', 'conv', 'avg_pool')


@dataclass
class LayerSpec:
    """
    One layer of a topology.

    Args:
        input_size: Number of inputs (derived from image_shape for image layers)
        output_size: Number of outputs (derived for image layers)
        activation: Activation name or instance
        optimizer: Optimizer name or instance, used as a prototype: weights
            and biases each get their own fresh copy
        initializer: Weights (or kernels) initializer
        biases_initializer: Biases initializer
        dropout: Dropout rate for 'full' and 'conv' layers
        kind: One of 'full', 'dense', 'activation', 'skip', 'conv', 'avg_pool'
        image_shape: (channels, height, width) for 'conv' and 'avg_pool'
        nkern, kernel_size, stride, padding: 'conv' geometry
        div: 'avg_pool' window size
    """

    input_size: Optional[int] = None
    output_size: Optional[int] = None
    activation: Any = 'tanh'
    optimizer: Any = None
    initializer: Any = None
    biases_initializer: Any = None
    dropout: Optional[float] = None
    kind: str = 'full'
    image_shape: Optional[Tuple[int, int, int]] = None
    nkern: int = 1
    kernel_size: Any = 3
    stride: Any = 1
    padding: Any = 'valid'
    div: int = 2

    def __post_init__(self):
        if self.kind not in LAYER_KINDS:
            raise ValueError(f"Unknown layer kind '{self.kind}'. Available: {', '.join(LAYER_KINDS)}")
        if self.kind in ('conv', 'avg_pool') and self.image_shape is None:
            raise ValueError(f"'{self.kind}' layers need an image_shape")
        if self.kind in ('full', 'dense') and (self.input_size is None or self.output_size is None):
            raise ValueError(f"'{self.kind}' layers need an input_size and an output_size")

    def _optimizer(self):
        return get_optimizer(self.optimizer)

    def build(self, rng=None):
        """Create the layer described by this spec."""
        if self.kind == 'full':
            dense = DenseLayer(self.input_size, self.output_size,
                               self._optimizer(), self._optimizer(),
                               self.initializer, self.biases_initializer, rng=rng)
            layer = FullLayer(dense, self.activation, dropout=self.dropout, rng=rng)
        elif self.kind == 'dense':
            layer = DenseLayer(self.input_size, self.output_size,
                               self._optimizer(), self._optimizer(),
                               self.initializer, self.biases_initializer, rng=rng)
        elif self.kind == 'activation':
            layer = ActivationLayer(self.activation)
        elif self.kind == 'skip':
            layer = SkipLayer(self.input_size)
        elif self.kind == 'conv':
            conv = ConvLayer(self.image_shape, self.nkern, self.kernel_size,
                             self.stride, self.padding,
                             self._optimizer(), self._optimizer(),
                             self.initializer, self.biases_initializer, rng=rng)
            layer = FullConvLayer(conv, self.activation, dropout=self.dropout, rng=rng)
        else:
            layer = AvgPoolLayer(self.image_shape, self.div)

        self._check_layer_sizes(layer)
        return layer

    def _check_layer_sizes(self, layer):
        for declared, actual in ((self.input_size, getattr(layer, 'input_size', None)),
                                 (self.output_size, getattr(layer, 'output_size', None))):
            if declared is not None and actual is not None and declared != actual:
                raise DimensionMismatchError(f"LayerSpec({self.kind})", (declared,), (actual,))


def build_network(layer_specs, rng=None):
    """
    Build a Network from a list of LayerSpecs.

    Args:
        layer_specs: List of LayerSpec, in forward order
        rng: numpy Generator (initial parameters and dropout masks)

    Returns:
        Network
    """
    rng = rng if rng is not None else np.random.default_rng()
    return Network([spec.build(rng) for spec in layer_specs])


@dataclass
class Model:
    """
    Topology and training hyperparameters.

    Args:
        layers: List of LayerSpec
        epochs: Number of training epochs
        batch_size: Mini-batch size (None: whole training set per step)
        loss: Loss name or instance ('mse', 'bce')
        seed: Base random seed (None: non-deterministic)
    """

    layers: List[LayerSpec] = field(default_factory=list)
    epochs: int = 1
    batch_size: Optional[int] = None
    loss: Any = 'mse'
    seed: Optional[int] = None

    def __post_init__(self):
        if self.epochs <= 0:
            raise ValueError(f"epochs must be positive, got {self.epochs}")
        if self.batch_size is not None and self.batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")
        self.loss = get_loss(self.loss)

    def make_rng(self, offset=0):
        """Generator seeded with seed + offset (unseeded when seed is None)."""
        if self.seed is None:
            return np.random.default_rng()
        return np.random.default_rng(self.seed + offset)

    def to_network(self, rng=None):
        return build_network(self.layers, rng if rng is not None else self.make_rng())

    def train_epoch(self, epoch, network, x_train, y_train, rng=None):
        """
        Train `network` for one epoch on a freshly shuffled sample order.

        Returns:
            Average chunk loss (see Network.train)
        """
        x_train = as_matrix(x_train)
        y_train = as_matrix(y_train)
        rng = rng if rng is not None else np.random.default_rng()

        order = rng.permutation(x_train.ncols)
        return network.train(epoch, x_train.select_columns(order), y_train.select_columns(order),
                             self.loss, self.batch_size or x_train.ncols)


def set_random_seed(seed):
    """
    Seed NumPy's legacy global generator and return a Generator for `seed`.

    Components of this package only draw from the Generators they are given;
    the global seed only matters for third-party code relying on np.random.
    """
    np.random.seed(seed)
    return np.random.default_rng(seed)
