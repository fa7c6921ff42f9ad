"""
Activation Functions and Activation Operations

This module implements the nonlinearities used at the end of every dense
layer, both as plain NumPy functions (forward and backward) and as
operations that plug into a layer pipeline.

Functions:
    sigmoid: Logistic function 1 / (1 + exp(-x))
    sigmoid_backward: Gradient of sigmoid, from its output
    tanh_backward: Gradient of tanh, from its output

Classes:
    LinearActivation: Identity
    SigmoidActivation: Element-wise sigmoid
    TanhActivation: Element-wise tanh
    SigmoidParamActivation: Sigmoid with a per-neuron slope coefficient

The backward passes read the output cached during the forward pass, so a
backward call always pairs with the most recent forward call.
"""

from typing import Optional

import numpy as np

from nnkit import tensor
from nnkit.errors import CreateError, ShapeError
from nnkit.operation import ConstOperation, Operation, OperationKind


def sigmoid(x: np.ndarray) -> np.ndarray:
    """
    Compute the logistic sigmoid element-wise.

    Formula:
        sigmoid(x) = 1 / (1 + exp(-x)) = (1 + tanh(x / 2)) / 2

    The tanh form is used because it never overflows for large |x|.

    Args:
        x: Input array of any shape

    Returns:
        Array of the same shape with values in (0, 1)
    """
    return 0.5 * (1.0 + np.tanh(0.5 * x))


def sigmoid_backward(upstream_gradient: np.ndarray, sigmoid_output: np.ndarray) -> np.ndarray:
    """
    Gradient of sigmoid w.r.t. its input.

        d sigmoid(x) / dx = s * (1 - s),  s = sigmoid(x)

    Args:
        upstream_gradient: Gradient flowing back from the next operation
        sigmoid_output: Output of the forward pass

    Returns:
        Gradient w.r.t. the sigmoid input
    """
    return upstream_gradient * sigmoid_output * (1.0 - sigmoid_output)


def tanh_backward(upstream_gradient: np.ndarray, tanh_output: np.ndarray) -> np.ndarray:
    """Gradient of tanh w.r.t. its input: upstream * (1 - tanh(x)^2)."""
    return upstream_gradient * (1.0 - np.square(tanh_output))


class LinearActivation(Operation):
    """Identity activation: y = x, dx = dy."""

    kind = OperationKind.LINEAR_ACTIVATION

    def _output(self, x: np.ndarray) -> np.ndarray:
        return x.copy()

    def _gradient(self, dy: np.ndarray) -> np.ndarray:
        return dy.copy()


class SigmoidActivation(Operation):
    kind = OperationKind.SIGMOID_ACTIVATION

    def _output(self, x: np.ndarray) -> np.ndarray:
        return sigmoid(x)

    def _gradient(self, dy: np.ndarray) -> np.ndarray:
        return sigmoid_backward(dy, self._y)


class TanhActivation(Operation):
    kind = OperationKind.TANH_ACTIVATION

    def _output(self, x: np.ndarray) -> np.ndarray:
        return np.tanh(x)

    def _gradient(self, dy: np.ndarray) -> np.ndarray:
        return tanh_backward(dy, self._y)


class SigmoidParamActivation(ConstOperation):
    """
    Parametrized sigmoid.

    Each neuron j has its own constant slope k_j:

        y_ij  = sigmoid(k_j * x_ij)
        dx_ij = k_j * dy_ij * y_ij * (1 - y_ij)

    The coefficients are stored as a (1, neurons) matrix and are not learned.
    """

    kind = OperationKind.SIGMOID_PARAM_ACTIVATION

    def __init__(self, coeffs: Optional[np.ndarray]):
        if coeffs is None:
            raise CreateError("no coeffs provided")
        try:
            coeffs = tensor.as_vector(coeffs)
        except ValueError as err:
            raise CreateError("sigmoid coefficients must be a vector") from err
        if coeffs.size == 0:
            raise CreateError("empty sigmoid coefficients")
        super().__init__([coeffs.reshape(1, -1)])

    @property
    def coeffs_count(self) -> int:
        return self._params[0].shape[1]

    def _output(self, x: np.ndarray) -> np.ndarray:
        coeffs = self._params[0]
        if x.ndim != 2 or x.shape[1] != coeffs.shape[1]:
            raise ShapeError(f"can not apply {coeffs.shape[1]} coefficients to {x.shape}")
        return sigmoid(x * coeffs)

    def _gradient(self, dy: np.ndarray) -> np.ndarray:
        return sigmoid_backward(dy, self._y) * self._params[0]
