"""
Tensor Helpers

NumPy arrays are the tensors of this toolkit: a matrix is a 2-D float64
array (rows are samples), a vector is a 1-D float64 array. This module only
adds the shape checks, copies and comparisons the rest of the package
needs on top of NumPy.
"""

from typing import Optional

import numpy as np

from nnkit.errors import ShapeError

EPSILON = 1e-6


def as_matrix(values) -> np.ndarray:
    """
    Convert values to a fresh 2-D float64 array.

    A 1-D input becomes a single row.
    """
    matrix = np.array(values, dtype=np.float64)
    if matrix.ndim == 1:
        matrix = matrix.reshape(1, -1)
    if matrix.ndim != 2:
        raise ValueError(f"expected 1-D or 2-D values, got {matrix.ndim}-D")
    return matrix


def as_vector(values) -> np.ndarray:
    """Convert values to a fresh 1-D float64 array."""
    vector = np.array(values, dtype=np.float64)
    if vector.ndim == 2 and vector.shape[0] == 1:
        vector = vector.reshape(-1)
    if vector.ndim != 1:
        raise ValueError(f"expected 1-D values, got {vector.ndim}-D")
    return vector


def check_equal_shape(expected: np.ndarray, actual: np.ndarray, what: str) -> None:
    """Raise ShapeError if the two arrays have different shapes."""
    if actual is None:
        raise ShapeError(f"{what}: got None, expected shape {expected.shape}")
    if expected.shape != actual.shape:
        raise ShapeError(f"{what}: shape {actual.shape} != {expected.shape}")


def copy_or_none(array: Optional[np.ndarray]) -> Optional[np.ndarray]:
    if array is None:
        return None
    return array.copy()


def equal(first: Optional[np.ndarray], second: Optional[np.ndarray]) -> bool:
    """Exact element-wise equality; both None is equal, one None is not."""
    if first is None or second is None:
        return first is None and second is None
    return first.shape == second.shape and bool(np.array_equal(first, second))


def equal_approx(
    first: Optional[np.ndarray],
    second: Optional[np.ndarray],
    epsilon: float = EPSILON,
) -> bool:
    """Element-wise equality tolerating absolute differences up to epsilon."""
    if first is None or second is None:
        return first is None and second is None
    if first.shape != second.shape:
        return False
    return bool(np.all(np.abs(first - second) <= epsilon))


def short_string(array: Optional[np.ndarray]) -> str:
    if array is None:
        return "<nil>"
    if array.ndim == 1:
        return f"{array.shape[0]} vector"
    return "x".join(str(size) for size in array.shape) + " matrix"
