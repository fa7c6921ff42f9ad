"""
Loss Functions

A loss compares network outputs with targets. ``forward`` returns the scalar
loss and caches both matrices; ``backward`` returns the gradient of the loss
w.r.t. the outputs, which starts the backward pass through the network.

Mean Squared Error (halved):

    L  = sum((y - t)^2) / (2 * N)
    dL/dy = (y - t) / N

where N is the number of rows (samples).
"""

import copy
import logging
from enum import Enum
from typing import Optional

import numpy as np

from nnkit import tensor
from nnkit.errors import ExecError, FabricError

logger = logging.getLogger(__name__)


class LossKind(str, Enum):
    MSE = "MSE loss"

    def __str__(self) -> str:
        return self.value


def is_loss(kind) -> bool:
    try:
        LossKind(kind)
    except ValueError:
        return False
    return True


class Loss:
    """
    Base loss. Subclasses implement ``_output(t, y)`` and ``_gradient(t, y)``.
    """

    kind: LossKind

    def __init__(self):
        self._t: Optional[np.ndarray] = None
        self._y: Optional[np.ndarray] = None
        self._loss = 0.0
        self._grad: Optional[np.ndarray] = None

    def is_(self, kind) -> bool:
        return self.kind == kind

    def forward(self, targets: np.ndarray, outputs: np.ndarray) -> float:
        """
        Compute the loss of outputs against targets.

        Raises:
            ExecError: If either matrix is missing or their shapes differ
        """
        if targets is None:
            raise ExecError(f"forward on {self.kind}: no targets provided")
        if outputs is None:
            raise ExecError(f"forward on {self.kind}: no outputs provided")

        t = np.array(targets, dtype=np.float64)
        y = np.array(outputs, dtype=np.float64)
        if t.shape != y.shape:
            raise ExecError(
                f"forward on {self.kind}: targets and outputs sizes mismatch: {t.shape} != {y.shape}"
            )

        self._t = t
        self._y = y
        self._loss = float(self._output(t, y))
        return self._loss

    def backward(self) -> np.ndarray:
        """Gradient of the last computed loss w.r.t. the outputs."""
        if self._t is None or self._y is None:
            raise ExecError(
                f"backward on {self.kind}: calling backward before forward (missing targets or outputs)"
            )

        grad = self._gradient(self._t, self._y)
        self._grad = grad.copy()
        return grad

    def output(self) -> float:
        return self._loss

    def copy(self) -> "Loss":
        return copy.deepcopy(self)

    def equal(self, other) -> bool:
        return self._equal(other, tensor.equal, lambda a, b: a == b)

    def equal_approx(self, other) -> bool:
        return self._equal(other, tensor.equal_approx, lambda a, b: abs(a - b) <= tensor.EPSILON)

    def _equal(self, other, compare, compare_scalar) -> bool:
        if other is None or type(other) is not type(self):
            return False
        return (
            self.kind == other.kind
            and compare_scalar(self._loss, other._loss)
            and compare(self._t, other._t)
            and compare(self._y, other._y)
            and compare(self._grad, other._grad)
        )

    def short_string(self) -> str:
        return f"{{kind: {self.kind}, loss: {self._loss:e}}}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}(loss={self._loss!r})"

    def _output(self, t: np.ndarray, y: np.ndarray) -> float:
        raise NotImplementedError

    def _gradient(self, t: np.ndarray, y: np.ndarray) -> np.ndarray:
        raise NotImplementedError


class MSELoss(Loss):
    kind = LossKind.MSE

    def _output(self, t: np.ndarray, y: np.ndarray) -> float:
        delta = y - t
        return np.sum(np.square(delta)) / (2 * delta.shape[0])

    def _gradient(self, t: np.ndarray, y: np.ndarray) -> np.ndarray:
        delta = y - t
        return delta / delta.shape[0]


_LOSSES = {
    LossKind.MSE: MSELoss,
}


def create_loss(kind) -> Loss:
    """
    Create a loss of the given kind.

    Raises:
        FabricError: If kind is not a known loss
    """
    try:
        kind = LossKind(kind)
    except ValueError:
        raise FabricError(f"unknown loss: {kind}") from None

    logger.debug("create %s", kind)
    return _LOSSES[kind]()
