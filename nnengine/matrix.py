"""
Matrix - Dense 2-D Container
============================

The numeric value type flowing through every layer, loss and optimizer.

A Matrix wraps a read-only float64 NumPy array. Every operation returns a new
Matrix; nothing is mutated in place. In batched contexts the layout is
column-major in the logical sense: each column is one sample, each row is one
feature.

    X has shape (i, n):  i features, n samples
    W has shape (j, i):  maps i inputs to j outputs
    W.dot(X) has shape (j, n)

Shape mismatches are programmer errors and raise DimensionMismatchError
immediately.
"""

import numpy as np

from .exceptions import DimensionMismatchError


class Matrix:
    """Immutable 2-D float64 matrix."""

    __slots__ = ('_data',)

    def __init__(self, data):
        array = np.array(data, dtype=np.float64)
        if array.ndim == 0:
            array = array.reshape(1, 1)
        elif array.ndim == 1:
            # A flat sequence is read as a column vector
            array = array.reshape(-1, 1)
        elif array.ndim != 2:
            raise ValueError(f"Matrix expects 2-D data, got {array.ndim} dimensions")
        array.setflags(write=False)
        self._data = array

    @classmethod
    def _wrap(cls, array):
        """Build a Matrix around an array produced internally (no validation)."""
        m = cls.__new__(cls)
        array = np.ascontiguousarray(array, dtype=np.float64)
        array.setflags(write=False)
        m._data = array
        return m

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def zeros(cls, nrows, ncols):
        return cls._wrap(np.zeros((nrows, ncols)))

    @classmethod
    def constant(cls, nrows, ncols, value):
        return cls._wrap(np.full((nrows, ncols), float(value)))

    @classmethod
    def random_uniform(cls, nrows, ncols, low, high, rng=None):
        """Values drawn uniformly from [low, high)."""
        rng = rng if rng is not None else np.random.default_rng()
        return cls._wrap(rng.uniform(low, high, size=(nrows, ncols)))

    @classmethod
    def random_normal(cls, nrows, ncols, mean, std, rng=None):
        rng = rng if rng is not None else np.random.default_rng()
        return cls._wrap(rng.normal(mean, std, size=(nrows, ncols)))

    @classmethod
    def from_array(cls, array):
        return cls(array)

    @classmethod
    def from_row_leading(cls, rows):
        """
        Build from a list of rows.

            [[row0: col0 col1 ...], [row1: col0 col1 ...], ...]
        """
        rows = [list(r) for r in rows]
        if not rows:
            return cls._wrap(np.zeros((0, 0)))
        _check_ragged(rows, 'from_row_leading')
        return cls._wrap(np.array(rows, dtype=np.float64))

    @classmethod
    def from_column_leading(cls, columns):
        """
        Build from a list of columns.

            [[col0: row0 row1 ...], [col1: row0 row1 ...], ...]

        This is the layout used for batches of samples (one sample per column)
        and for exported layer parameters.
        """
        columns = [list(c) for c in columns]
        if not columns:
            return cls._wrap(np.zeros((0, 0)))
        _check_ragged(columns, 'from_column_leading')
        return cls._wrap(np.array(columns, dtype=np.float64).T)

    @classmethod
    def from_column_vector(cls, values):
        return cls._wrap(np.asarray(values, dtype=np.float64).reshape(-1, 1))

    @classmethod
    def from_row_vector(cls, values):
        return cls._wrap(np.asarray(values, dtype=np.float64).reshape(1, -1))

    @classmethod
    def from_fn(cls, nrows, ncols, f):
        """Build element by element: m[i, j] = f(i, j)."""
        data = np.empty((nrows, ncols))
        for i in range(nrows):
            for j in range(ncols):
                data[i, j] = f(i, j)
        return cls._wrap(data)

    @staticmethod
    def hstack(matrices):
        """Concatenate matrices with the same row count side by side."""
        matrices = list(matrices)
        rows = {m.nrows for m in matrices}
        if len(rows) > 1:
            raise DimensionMismatchError('hstack', sorted(rows), ())
        return Matrix._wrap(np.hstack([m._data for m in matrices]))

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def shape(self):
        return self._data.shape

    @property
    def nrows(self):
        return self._data.shape[0]

    @property
    def ncols(self):
        return self._data.shape[1]

    def dim(self):
        """Returns (nrows, ncols)."""
        return self._data.shape

    def index(self, row, col):
        return float(self._data[row, col])

    def get_column(self, index):
        return self._data[:, index].tolist()

    def get_row(self, index):
        return self._data[index, :].tolist()

    def to_row_leading(self):
        return self._data.tolist()

    def to_column_leading(self):
        return self._data.T.tolist()

    def to_numpy(self):
        """Writable copy of the underlying data."""
        return self._data.copy()

    def view(self):
        """Read-only view of the underlying data (no copy)."""
        return self._data

    def copy(self):
        return self

    def slice_columns(self, start, stop):
        return Matrix._wrap(self._data[:, start:stop])

    def select_columns(self, indices):
        return Matrix._wrap(self._data[:, np.asarray(indices, dtype=int)])

    # ------------------------------------------------------------------
    # Linear algebra
    # ------------------------------------------------------------------

    def dot(self, other):
        if self.ncols != other.nrows:
            raise DimensionMismatchError('dot', self.shape, other.shape)
        return Matrix._wrap(self._data @ other._data)

    def transpose(self):
        return Matrix._wrap(self._data.T)

    @property
    def T(self):
        return self.transpose()

    def _check_same_shape(self, other, operation):
        if self.shape != other.shape:
            raise DimensionMismatchError(operation, self.shape, other.shape)

    def component_add(self, other):
        self._check_same_shape(other, 'component_add')
        return Matrix._wrap(self._data + other._data)

    def component_sub(self, other):
        self._check_same_shape(other, 'component_sub')
        return Matrix._wrap(self._data - other._data)

    def component_mul(self, other):
        self._check_same_shape(other, 'component_mul')
        return Matrix._wrap(self._data * other._data)

    def component_div(self, other):
        self._check_same_shape(other, 'component_div')
        return Matrix._wrap(self._data / other._data)

    def scalar_add(self, scalar):
        return Matrix._wrap(self._data + scalar)

    def scalar_sub(self, scalar):
        return Matrix._wrap(self._data - scalar)

    def scalar_mul(self, scalar):
        return Matrix._wrap(self._data * scalar)

    def scalar_div(self, scalar):
        return Matrix._wrap(self._data / scalar)

    def add_column_vector(self, column):
        """Add a (nrows, 1) column to every column (bias broadcast over a batch)."""
        if column.shape != (self.nrows, 1):
            raise DimensionMismatchError('add_column_vector', self.shape, column.shape)
        return Matrix._wrap(self._data + column._data)

    # ------------------------------------------------------------------
    # Reductions
    # ------------------------------------------------------------------

    def columns_sum(self):
        """Sum every row across all columns. Returns a (nrows, 1) column."""
        return Matrix._wrap(self._data.sum(axis=1, keepdims=True))

    def sum(self):
        return float(self._data.sum())

    def mean(self):
        return float(self._data.mean())

    def max(self):
        return float(self._data.max())

    def min(self):
        return float(self._data.min())

    # ------------------------------------------------------------------
    # Element-wise maps
    # ------------------------------------------------------------------

    def exp(self):
        return Matrix._wrap(np.exp(self._data))

    def log(self):
        return Matrix._wrap(np.log(self._data))

    def sqrt(self):
        return Matrix._wrap(np.sqrt(self._data))

    def square(self):
        return Matrix._wrap(np.square(self._data))

    def sign(self):
        """-1 for negative values, +1 otherwise."""
        return Matrix._wrap(np.where(self._data < 0, -1.0, 1.0))

    def maxof(self, other):
        """Element-wise maximum against a same-shape matrix or a scalar."""
        return Matrix._wrap(np.maximum(self._data, self._operand(other, 'maxof')))

    def minof(self, other):
        """Element-wise minimum against a same-shape matrix or a scalar."""
        return Matrix._wrap(np.minimum(self._data, self._operand(other, 'minof')))

    def _operand(self, other, operation):
        if isinstance(other, Matrix):
            self._check_same_shape(other, operation)
            return other._data
        return float(other)

    def map(self, f):
        """Apply a vectorized function (ndarray -> ndarray of the same shape)."""
        result = np.asarray(f(self._data), dtype=np.float64)
        if result.shape != self.shape:
            raise DimensionMismatchError('map', self.shape, result.shape)
        return Matrix._wrap(result)

    def columns_map(self, f):
        """Apply f(index, column) to every column; f returns the new column."""
        columns = [np.asarray(f(j, self._data[:, j]), dtype=np.float64)
                   for j in range(self.ncols)]
        if not columns:
            return self
        return Matrix._wrap(np.stack(columns, axis=1))

    # ------------------------------------------------------------------
    # Comparison / display
    # ------------------------------------------------------------------

    def allclose(self, other, rtol=1e-7, atol=1e-9):
        if self.shape != other.shape:
            return False
        return bool(np.allclose(self._data, other._data, rtol=rtol, atol=atol))

    def __eq__(self, other):
        if not isinstance(other, Matrix):
            return NotImplemented
        return self.shape == other.shape and bool(np.array_equal(self._data, other._data))

    __hash__ = None

    def __repr__(self):
        return f"Matrix({self.nrows}x{self.ncols}, {self._data.tolist()!r})"


def _check_ragged(vectors, operation):
    lengths = {len(v) for v in vectors}
    if len(lengths) > 1:
        raise DimensionMismatchError(operation, sorted(lengths), ())
