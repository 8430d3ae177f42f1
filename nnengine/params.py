"""
Network parameter snapshots.

NetworkParams holds, for every learnable layer in order, its parameters as a
column-leading nested list (see DenseLayer.get_learnable_parameters). Matrices
are rebuilt positionally, so the nested order is preserved exactly through
every export format.
"""

import json
from pathlib import Path

import numpy as np

from .exceptions import DimensionMismatchError


class NetworkParams:
    """Snapshot of the learnable parameters of a Network."""

    def __init__(self, layers):
        self.layers = [[[float(v) for v in column] for column in layer] for layer in layers]

    def __len__(self):
        return len(self.layers)

    def __iter__(self):
        return iter(self.layers)

    def __getitem__(self, index):
        return self.layers[index]

    def __eq__(self, other):
        if not isinstance(other, NetworkParams):
            return NotImplemented
        return self.layers == other.layers

    def count(self):
        """Total number of scalar parameters."""
        return sum(len(column) for layer in self.layers for column in layer)

    def allclose(self, other, rtol=1e-7, atol=1e-9):
        if len(self) != len(other):
            return False
        for a, b in zip(self.layers, other.layers):
            a, b = np.asarray(a), np.asarray(b)
            if a.shape != b.shape or not np.allclose(a, b, rtol=rtol, atol=atol):
                return False
        return True

    @classmethod
    def average(cls, networks):
        """
        Element-wise mean of several snapshots of the same topology.

        Args:
            networks: List of NetworkParams

        Returns:
            NetworkParams
        """
        networks = list(networks)
        if not networks:
            raise ValueError("Cannot average an empty list of NetworkParams")

        layer_count = len(networks[0])
        params = []
        for layer_index in range(layer_count):
            stacked = []
            for network in networks:
                if len(network) != layer_count:
                    raise DimensionMismatchError('NetworkParams.average',
                                                 (layer_count,), (len(network),))
                layer = np.asarray(network[layer_index], dtype=np.float64)
                if stacked and layer.shape != stacked[0].shape:
                    raise DimensionMismatchError('NetworkParams.average',
                                                 stacked[0].shape, layer.shape)
                stacked.append(layer)
            params.append(np.mean(stacked, axis=0).tolist())

        return cls(params)

    def to_list(self):
        return [[list(column) for column in layer] for layer in self.layers]

    @classmethod
    def from_list(cls, layers):
        return cls(layers)

    def to_json(self, path):
        path = Path(path)
        with open(path, 'w') as f:
            json.dump(self.to_list(), f)

    @classmethod
    def from_json(cls, path):
        with open(Path(path)) as f:
            return cls(json.load(f))

    def __repr__(self):
        return f"NetworkParams({len(self)} layers, {self.count()} parameters)"
