"""
Parameter Initializers
======================

Initial values for learnable parameters.

- Zeros: all zeros (default for biases)
- Uniform: U[0, 1)
- UniformSigned: U[-1, 1)
- GlorotUniform: U[-limit, limit), limit = sqrt(6 / (fan_in + fan_out)) (default for weights)
- HeNormal: N(0, sqrt(2 / fan_in)), good for ReLU

About Glorot initialization: http://proceedings.mlr.press/v9/glorot10a/glorot10a.pdf
"""

import numpy as np

from .matrix import Matrix


class Initializer:
    """Base class for initializers."""

    name = 'initializer'

    def gen_array(self, shape, fan_in, fan_out, rng=None):
        """Generate an ndarray of the given shape."""
        raise NotImplementedError

    def gen_matrix(self, i, j, rng=None):
        """Weights mapping i inputs to j outputs: a (j, i) Matrix."""
        return Matrix._wrap(self.gen_array((j, i), i, j, rng))

    def gen_vector(self, j, rng=None):
        """A (j, 1) column, e.g. biases."""
        # Vectors have no fan-in; keras uses fan_in = fan_out = j
        return Matrix._wrap(self.gen_array((j, 1), j, 0, rng))

    def __repr__(self):
        return f"{type(self).__name__}()"


def _rng(rng):
    return rng if rng is not None else np.random.default_rng()


class Zeros(Initializer):
    name = 'zeros'

    def gen_array(self, shape, fan_in, fan_out, rng=None):
        return np.zeros(shape)


class Uniform(Initializer):
    name = 'uniform'

    def gen_array(self, shape, fan_in, fan_out, rng=None):
        return _rng(rng).uniform(0.0, 1.0, size=shape)


class UniformSigned(Initializer):
    name = 'uniform_signed'

    def gen_array(self, shape, fan_in, fan_out, rng=None):
        return _rng(rng).uniform(-1.0, 1.0, size=shape)


class GlorotUniform(Initializer):
    name = 'glorot_uniform'

    def gen_array(self, shape, fan_in, fan_out, rng=None):
        limit = np.sqrt(6.0 / (fan_in + fan_out))
        return _rng(rng).uniform(-limit, limit, size=shape)


class HeNormal(Initializer):
    name = 'he_normal'

    def gen_array(self, shape, fan_in, fan_out, rng=None):
        scale = np.sqrt(2.0 / fan_in)
        return _rng(rng).standard_normal(size=shape) * scale


INITIALIZERS = {
    'zeros': Zeros,
    'uniform': Uniform,
    'uniform_signed': UniformSigned,
    'glorot_uniform': GlorotUniform,
    'xavier': GlorotUniform,
    'he_normal': HeNormal,
    'he': HeNormal,
}


def get_initializer(name):
    """
    Get initializer by name.

    Args:
        name: String name ('glorot_uniform', 'zeros', ...) or Initializer instance

    Returns:
        Initializer instance
    """
    if isinstance(name, Initializer):
        return name

    name_lower = name.lower().replace('-', '_')
    if name_lower not in INITIALIZERS:
        available = ', '.join(INITIALIZERS.keys())
        raise ValueError(f"Unknown initializer '{name}'. Available: {available}")

    return INITIALIZERS[name_lower]()


def default_weights_initializer():
    return GlorotUniform()


def default_biases_initializer():
    return Zeros()
