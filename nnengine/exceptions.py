"""
Exceptions for nnengine
=======================

Every failure raised by the engine is a programmer or configuration error.
Nothing is retried: shapes that don't line up, a backward pass without a
forward pass, or predictions outside a loss's domain all fail fast.
"""


class NNEngineError(Exception):
    """Base class for all nnengine errors."""


class DimensionMismatchError(NNEngineError, ValueError):
    """Raised when matrix or layer shapes are incompatible."""

    def __init__(self, operation, left, right):
        self.operation = operation
        self.left = tuple(left)
        self.right = tuple(right)
        super().__init__(
            f"{operation}: incompatible dimensions {self.left} and {self.right}"
        )


class LayerStateError(NNEngineError, RuntimeError):
    """Raised when a layer is used out of order (backward before forward)."""


class NumericDomainError(NNEngineError, ArithmeticError):
    """Raised when a value falls outside the domain of a function (e.g. log(0))."""


class FoldTrainingError(NNEngineError, RuntimeError):
    """Raised when one of the cross-validation workers failed."""

    def __init__(self, fold, cause):
        self.fold = fold
        super().__init__(f"Training of fold {fold} failed: {cause!r}")
