"""
Network Layers

A layer is a fixed, ordered pipeline of operations. The toolkit knows two
kinds:

    DENSE       weight multiply -> bias add -> activation
    DENSE_DROP  weight multiply -> bias add -> activation -> dropout

Forward threads the input through the operations in order, backward threads
the gradient through them in reverse, and apply_optim updates only the
operations that own learnable parameters.

Functions:
    new_dense_layer: Build a DENSE layer from weight, bias and activation
    new_dense_drop_layer: Same, followed by dropout
"""

import logging
from enum import Enum
from typing import Optional, Sequence, Tuple

import numpy as np

from nnkit.activations import SigmoidParamActivation
from nnkit.errors import CreateError, ExecError
from nnkit.operation import (
    BiasAdd,
    Dropout,
    Operation,
    OperationKind,
    Optimizer,
    ParamOperation,
    WeightMultiply,
    is_activation,
)

logger = logging.getLogger(__name__)


class LayerKind(str, Enum):
    DENSE = "dense layer"
    DENSE_DROP = "densedrop layer"

    def __str__(self) -> str:
        return self.value


_DENSE_PIPELINE = (
    lambda kind: kind == OperationKind.WEIGHT_MULTIPLY,
    lambda kind: kind == OperationKind.BIAS_ADD,
    is_activation,
)
_PIPELINES = {
    LayerKind.DENSE: _DENSE_PIPELINE,
    LayerKind.DENSE_DROP: _DENSE_PIPELINE + (lambda kind: kind == OperationKind.DROPOUT,),
}


def is_layer(kind) -> bool:
    try:
        LayerKind(kind)
    except ValueError:
        return False
    return True


class Layer:
    """
    Ordered pipeline of operations.

    Attributes:
        kind: Layer kind
        inputs_count: Number of input features (weight rows)
        size: Number of neurons (weight columns)
    """

    def __init__(
        self,
        kind: LayerKind,
        operations: Sequence[Operation],
        inputs_count: int,
        size: int,
    ):
        self.kind = LayerKind(kind)
        self._operations = list(operations)
        self.inputs_count = inputs_count
        self.size = size

        kinds = [getattr(operation, "kind", None) for operation in self._operations]
        expected = _PIPELINES[self.kind]
        if len(kinds) != len(expected) or not all(
            check(kind) for check, kind in zip(expected, kinds)
        ):
            raise CreateError(f"invalid operations for {self.kind}: {[str(k) for k in kinds]}")

    @property
    def operations(self) -> Tuple[Operation, ...]:
        return tuple(self._operations)

    def is_(self, kind) -> bool:
        return self.kind == kind

    def forward(self, x: np.ndarray) -> np.ndarray:
        """
        Forward pass through every operation.

        Args:
            x: Input of shape (rows, inputs_count)

        Returns:
            Output of shape (rows, size)

        Raises:
            ExecError: Naming the index of the failing operation
        """
        if x is None:
            raise ExecError(f"forward on {self.kind}: no input provided")

        y = np.array(x, dtype=np.float64)
        for index, operation in enumerate(self._operations):
            try:
                y = operation.forward(y)
            except ExecError as err:
                raise ExecError(
                    f"forward on {self.kind}: error computing {index}'th operation"
                ) from err
        return y

    def backward(self, dy: np.ndarray) -> np.ndarray:
        """Backward pass through every operation, last to first."""
        if dy is None:
            raise ExecError(f"backward on {self.kind}: no output gradient provided")

        dx = np.array(dy, dtype=np.float64)
        for index in range(len(self._operations) - 1, -1, -1):
            try:
                dx = self._operations[index].backward(dx)
            except ExecError as err:
                raise ExecError(
                    f"backward on {self.kind}: error computing {index}'th operation"
                ) from err
        return dx

    def apply_optim(self, optimizer: Optimizer) -> None:
        """Apply the optimizer to every operation with a learnable parameter."""
        for index, operation in enumerate(self._operations):
            if not isinstance(operation, ParamOperation):
                continue
            try:
                operation.apply_optim(optimizer)
            except ExecError as err:
                raise ExecError(
                    f"apply optimizer on {self.kind}: error optimizing {index}'th operation's parameter"
                ) from err

    def output(self) -> Optional[np.ndarray]:
        return self._operations[-1].output()

    def copy(self) -> "Layer":
        return Layer(
            self.kind,
            [operation.copy() for operation in self._operations],
            self.inputs_count,
            self.size,
        )

    def equal(self, other) -> bool:
        return self._equal(other, approx=False)

    def equal_approx(self, other) -> bool:
        return self._equal(other, approx=True)

    def _equal(self, other, approx: bool) -> bool:
        if other is None or not isinstance(other, Layer):
            return False
        if self.kind != other.kind or len(self._operations) != len(other._operations):
            return False
        for mine, theirs in zip(self._operations, other._operations):
            same = mine.equal_approx(theirs) if approx else mine.equal(theirs)
            if not same:
                return False
        return True

    def short_string(self) -> str:
        operations = ", ".join(operation.short_string() for operation in self._operations)
        return f"{{kind: {self.kind}, operations: [{operations}]}}"

    def __repr__(self) -> str:
        return f"Layer(kind={self.kind.value!r}, {self.inputs_count} -> {self.size})"


def check_dense_sizes(weight: WeightMultiply, bias: BiasAdd, activation: Operation) -> None:
    """
    Check that weight, bias and activation agree on the layer size.

    Raises:
        ValueError: With a description of the mismatch
    """
    neurons = weight.neurons_count
    if bias.neurons_count != neurons:
        raise ValueError(
            f"weight cols count must match bias size (as it is layer's size): "
            f"{neurons} != {bias.neurons_count}"
        )
    if not activation.is_activation:
        raise ValueError(f"provided operation is not an activation: {activation.short_string()}")
    if isinstance(activation, SigmoidParamActivation) and activation.coeffs_count != neurons:
        raise ValueError(
            f"parametrized sigmoid coefficients count does not match weight cols count "
            f"(layer's size): {activation.coeffs_count} != {neurons}"
        )


def new_dense_layer(weight, bias, activation: Operation) -> Layer:
    """
    Create a DENSE layer.

    Args:
        weight: Weight matrix of shape (inputs, neurons)
        bias: Bias vector of size neurons
        activation: Activation operation (copied into the layer)

    Returns:
        New layer

    Raises:
        CreateError: If any argument is missing or the sizes disagree
    """
    logger.debug("create dense layer")
    if activation is None:
        raise CreateError("no activation provided")

    weight_operation = WeightMultiply(weight)
    bias_operation = BiasAdd(bias)
    try:
        check_dense_sizes(weight_operation, bias_operation, activation)
    except ValueError as err:
        raise CreateError(str(err)) from err

    return Layer(
        LayerKind.DENSE,
        [weight_operation, bias_operation, activation.copy()],
        inputs_count=weight_operation.inputs_count,
        size=weight_operation.neurons_count,
    )


def new_dense_drop_layer(
    weight,
    bias,
    activation: Operation,
    keep_probability: float,
    rng: Optional[np.random.Generator] = None,
) -> Layer:
    """Create a DENSE_DROP layer: a dense layer followed by dropout."""
    logger.debug("create densedrop layer")
    layer = new_dense_layer(weight, bias, activation)
    dropout = Dropout(keep_probability, rng=rng)

    return Layer(
        LayerKind.DENSE_DROP,
        list(layer.operations) + [dropout],
        inputs_count=layer.inputs_count,
        size=layer.size,
    )
