"""
Differentiable Operations

An operation is the smallest differentiable step of a network. Every
operation caches what it saw during the last forward and backward passes:

    x   input of the last forward pass
    y   output of the last forward pass
    dy  output gradient given to the last backward pass
    dx  input gradient produced by the last backward pass

All cached values are copies, so callers may freely mutate the arrays they
pass in or get back. The call order is always forward -> backward (->
apply_optim for operations with learnable parameters).

Three variants share the base class:

    Operation       stateless (activations)
    ParamOperation  owns a learnable parameter p and its gradient dp
                    (weight multiply, bias add)
    ConstOperation  owns auxiliary tensors that are not learned
                    (dropout mask, parametrized sigmoid coefficients)

Concrete operations subclass one of these and implement ``_output`` and
``_gradient`` (and ``_gradient_param`` for parametrized ones).

Classes:
    OperationKind: String tags of all operation kinds
    WeightMultiply: y = x @ W
    BiasAdd: y = x + b (b broadcast over rows)
    Dropout: y = x * mask, mask regenerated on every forward pass
"""

import copy
from enum import Enum
from typing import Callable, List, Optional

import numpy as np

from nnkit import tensor
from nnkit.errors import CreateError, ExecError, ShapeError

# Optimizer: (parameter, gradient) -> new parameter
Optimizer = Callable[[np.ndarray, np.ndarray], np.ndarray]


class OperationKind(str, Enum):
    LINEAR_ACTIVATION = "linear activation"
    SIGMOID_ACTIVATION = "sigmoid activation"
    TANH_ACTIVATION = "tanh activation"
    SIGMOID_PARAM_ACTIVATION = "parametrized sigmoid activation"
    DROPOUT = "dropout"
    WEIGHT_MULTIPLY = "weight multiply"
    BIAS_ADD = "bias add"

    def __str__(self) -> str:
        return self.value


ACTIVATIONS = frozenset(
    {
        OperationKind.LINEAR_ACTIVATION,
        OperationKind.SIGMOID_ACTIVATION,
        OperationKind.TANH_ACTIVATION,
        OperationKind.SIGMOID_PARAM_ACTIVATION,
    }
)


def is_activation(kind) -> bool:
    """Return True if kind names an activation operation."""
    try:
        return OperationKind(kind) in ACTIVATIONS
    except ValueError:
        return False


class Operation:
    """
    Stateless differentiable operation.

    Subclasses set ``kind`` and implement ``_output(x)`` and
    ``_gradient(dy)``. The gradient may read the cached forward values
    ``self._x`` and ``self._y``.
    """

    kind: OperationKind

    def __init__(self):
        self._x: Optional[np.ndarray] = None
        self._y: Optional[np.ndarray] = None
        self._dx: Optional[np.ndarray] = None
        self._dy: Optional[np.ndarray] = None

    @property
    def is_activation(self) -> bool:
        return self.kind in ACTIVATIONS

    def is_(self, kind) -> bool:
        return self.kind == kind

    def forward(self, x: np.ndarray) -> np.ndarray:
        """
        Forward pass: compute and cache the output for input x.

        Args:
            x: Input matrix of shape (rows, inputs)

        Returns:
            Output matrix

        Raises:
            ExecError: If x is missing or the output can't be computed
        """
        if x is None:
            raise ExecError(f"forward on {self.kind}: no input provided")

        x = np.array(x, dtype=np.float64)
        try:
            y = self._output(x.copy())
        except ValueError as err:
            raise ExecError(f"forward on {self.kind}: error computing output") from err

        self._x = x
        self._y = y.copy()
        return y

    def backward(self, dy: np.ndarray) -> np.ndarray:
        """
        Backward pass: compute and cache the input gradient.

        Args:
            dy: Gradient of the loss w.r.t. this operation's output

        Returns:
            dx: Gradient of the loss w.r.t. this operation's input

        Raises:
            ExecError: If called before forward, or if any shape mismatches
        """
        if dy is None:
            raise ExecError(f"backward on {self.kind}: no output gradient provided")
        if self._x is None or self._y is None:
            raise ExecError(f"backward on {self.kind}: call forward() before backward()")

        dy = np.array(dy, dtype=np.float64)
        try:
            tensor.check_equal_shape(self._y, dy, "output gradient")
            param_gradient = self._backward_params(dy)
            dx = self._gradient(dy.copy())
            tensor.check_equal_shape(self._x, dx, "input gradient")
        except ValueError as err:
            raise ExecError(f"backward on {self.kind}: {err}") from err

        self._store_backward_params(param_gradient)
        self._dy = dy
        self._dx = dx.copy()
        return dx

    def output(self) -> Optional[np.ndarray]:
        """Copy of the last forward output, None before the first forward."""
        return tensor.copy_or_none(self._y)

    def copy(self) -> "Operation":
        """Deep copy, including cached values and parameters."""
        return copy.deepcopy(self)

    def equal(self, other) -> bool:
        return self._equal(other, tensor.equal)

    def equal_approx(self, other) -> bool:
        return self._equal(other, tensor.equal_approx)

    def short_string(self) -> str:
        return f"{{kind: {self.kind}}}"

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(x={tensor.short_string(self._x)}, "
            f"y={tensor.short_string(self._y)}, dx={tensor.short_string(self._dx)}, "
            f"dy={tensor.short_string(self._dy)})"
        )

    def _equal(self, other, compare) -> bool:
        if other is None:
            return False
        if type(other) is not type(self) or other.kind != self.kind:
            return False
        return (
            compare(self._x, other._x)
            and compare(self._y, other._y)
            and compare(self._dx, other._dx)
            and compare(self._dy, other._dy)
        )

    def _backward_params(self, dy: np.ndarray) -> Optional[np.ndarray]:
        """Hook for gradients beyond dx; runs after dy is validated."""
        return None

    def _store_backward_params(self, gradient: Optional[np.ndarray]) -> None:
        """Cache what _backward_params returned, once the whole backward pass succeeded."""

    def _output(self, x: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def _gradient(self, dy: np.ndarray) -> np.ndarray:
        raise NotImplementedError


class ParamOperation(Operation):
    """
    Operation with a learnable parameter.

    Backward additionally computes ``dp``, the gradient w.r.t. the parameter,
    which ``apply_optim`` consumes to replace the parameter.
    """

    def __init__(self, parameter: np.ndarray):
        super().__init__()
        self._p = parameter
        self._dp: Optional[np.ndarray] = None

    def parameter(self) -> np.ndarray:
        return self._p.copy()

    def parameter_gradient(self) -> Optional[np.ndarray]:
        return tensor.copy_or_none(self._dp)

    def _backward_params(self, dy: np.ndarray) -> np.ndarray:
        dp = self._gradient_param(dy.copy())
        tensor.check_equal_shape(self._p, dp, "parameter gradient")
        return dp

    def _store_backward_params(self, gradient: np.ndarray) -> None:
        self._dp = gradient.copy()

    def apply_optim(self, optimizer: Optimizer) -> None:
        """
        Replace the parameter with optimizer(p, dp).

        Raises:
            ExecError: If no optimizer is given, backward has not run yet,
                       or the optimizer result is missing or reshaped
        """
        if optimizer is None:
            raise ExecError(f"apply optimizer on {self.kind}: no optimizer provided")
        if self._dp is None:
            raise ExecError(
                f"apply optimizer on {self.kind}: can not apply optimizer before gradient computation"
            )

        try:
            new_p = optimizer(self._p.copy(), self._dp.copy())
        except ValueError as err:
            raise ExecError(f"apply optimizer on {self.kind}: optimizer failed") from err
        if new_p is None:
            raise ExecError(f"apply optimizer on {self.kind}: nil parameter after optimization")
        try:
            new_p = np.array(new_p, dtype=np.float64)
            tensor.check_equal_shape(self._p, new_p, "optimized parameter")
        except (TypeError, ValueError) as err:
            raise ExecError(f"apply optimizer on {self.kind}: {err}") from err

        self._p = new_p

    def _equal(self, other, compare) -> bool:
        return (
            super()._equal(other, compare)
            and compare(self._p, other._p)
            and compare(self._dp, other._dp)
        )

    def __repr__(self) -> str:
        return (
            f"{super().__repr__()[:-1]}, p={tensor.short_string(self._p)}, "
            f"dp={tensor.short_string(self._dp)})"
        )

    def _gradient_param(self, dy: np.ndarray) -> np.ndarray:
        raise NotImplementedError


class ConstOperation(Operation):
    """
    Operation with a fixed-length list of auxiliary tensors.

    The tensors are either constants set at construction or regenerated on
    each forward pass; they are never touched by an optimizer.
    """

    def __init__(self, parameters: List[Optional[np.ndarray]]):
        super().__init__()
        self._params = parameters

    def parameters(self) -> List[Optional[np.ndarray]]:
        return [tensor.copy_or_none(param) for param in self._params]

    def _equal(self, other, compare) -> bool:
        if not super()._equal(other, compare):
            return False
        if len(self._params) != len(other._params):
            return False
        return all(compare(mine, theirs) for mine, theirs in zip(self._params, other._params))


class WeightMultiply(ParamOperation):
    """
    Multiply the input by a weight matrix.

        y  = x @ W
        dx = dy @ W^T
        dW = x^T @ dy

    W has shape (inputs, neurons), so rows of x are samples.
    """

    kind = OperationKind.WEIGHT_MULTIPLY

    def __init__(self, weight: np.ndarray):
        if weight is None:
            raise CreateError("no weight provided")
        weight = np.array(weight, dtype=np.float64)
        if weight.ndim != 2:
            raise CreateError(f"weight must be a matrix, got shape {weight.shape}")
        super().__init__(weight)

    @property
    def inputs_count(self) -> int:
        return self._p.shape[0]

    @property
    def neurons_count(self) -> int:
        return self._p.shape[1]

    def _output(self, x: np.ndarray) -> np.ndarray:
        if x.ndim != 2 or x.shape[1] != self._p.shape[0]:
            raise ShapeError(f"can not multiply {x.shape} by weight {self._p.shape}")
        return x @ self._p

    def _gradient(self, dy: np.ndarray) -> np.ndarray:
        return dy @ self._p.T

    def _gradient_param(self, dy: np.ndarray) -> np.ndarray:
        return self._x.T @ dy


class BiasAdd(ParamOperation):
    """
    Add a bias row to every input row.

        y  = x + b
        dx = dy
        db = column sums of dy (one contribution per broadcast row)

    The bias is stored as a (1, neurons) matrix.
    """

    kind = OperationKind.BIAS_ADD

    def __init__(self, bias: np.ndarray):
        if bias is None:
            raise CreateError("no bias provided")
        try:
            bias = tensor.as_vector(bias)
        except ValueError as err:
            raise CreateError("bias must be a vector") from err
        super().__init__(bias.reshape(1, -1))

    @property
    def neurons_count(self) -> int:
        return self._p.shape[1]

    def _output(self, x: np.ndarray) -> np.ndarray:
        if x.ndim != 2 or x.shape[1] != self._p.shape[1]:
            raise ShapeError(f"can not add bias {self._p.shape} to {x.shape}")
        return x + self._p

    def _gradient(self, dy: np.ndarray) -> np.ndarray:
        return dy.copy()

    def _gradient_param(self, dy: np.ndarray) -> np.ndarray:
        return np.sum(dy, axis=0, keepdims=True)


class Dropout(ConstOperation):
    """
    Randomly zero input elements.

    Every forward pass draws a fresh mask of zeros and ones with the same
    shape as the input; each element is kept with ``keep_probability``.
    The mask stays cached until the next forward pass, so backward routes
    gradient only through the elements that were kept:

        y  = x * mask
        dx = dy * mask

    Kept values are not rescaled.
    """

    kind = OperationKind.DROPOUT

    def __init__(self, keep_probability: float, rng: Optional[np.random.Generator] = None):
        if keep_probability is None:
            raise CreateError("no keep probability provided")
        keep_probability = float(keep_probability)
        if not 0.0 <= keep_probability <= 1.0:
            raise CreateError(f"keep probability must be in [0, 1]: {keep_probability}")
        super().__init__([None])
        self.keep_probability = keep_probability
        self._rng = rng if rng is not None else np.random.default_rng()

    def _output(self, x: np.ndarray) -> np.ndarray:
        mask = (self._rng.random(x.shape) < self.keep_probability).astype(np.float64)
        self._params[0] = mask
        return x * mask

    def _gradient(self, dy: np.ndarray) -> np.ndarray:
        return dy * self._params[0]

    def _equal(self, other, compare) -> bool:
        return super()._equal(other, compare) and self.keep_probability == other.keep_probability

    def short_string(self) -> str:
        return f"{{kind: {self.kind}, keep: {self.keep_probability:.0%}}}"
